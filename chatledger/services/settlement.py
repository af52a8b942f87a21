from datetime import datetime

from loguru import logger

from chatledger.db.repository import GroupExpenseRepository, UserRepository
from chatledger.errors import AlreadySettled, AuthorizationDenied, NotFound, PreconditionFailed, ValidationFailed
from chatledger.models.schemas import (
    GroupExpense,
    Participant,
    Settlement,
    SettleResult,
    TransactionCreate,
)
from chatledger.services.transactions import TransactionService

EPSILON = 0.01

CONTRIBUTION_CATEGORY = "group contribution"
REIMBURSEMENT_CATEGORY = "group reimbursement"


def calculate_settlements(participants: list[Participant]) -> list[Settlement]:
    """Net participant balances into a short list of transfers.

    Greedy netting: the largest debtor pays the largest creditor until one of
    them is square, then move on. Produces at most
    ``creditors + debtors - 1`` transfers. It is not guaranteed to be the
    global minimum for every distribution of balances.
    """
    balances: dict[str, float] = {}
    names: dict[str, str | None] = {}
    for p in participants:
        balances[p.member_id] = balances.get(p.member_id, 0.0) + (p.paid - p.share)
        names.setdefault(p.member_id, p.display_name)

    creditors = [[member, amount] for member, amount in balances.items() if amount > EPSILON]
    debtors = [[member, -amount] for member, amount in balances.items() if amount < -EPSILON]
    # sorted() is stable, so equal balances keep participant order
    creditors = sorted(creditors, key=lambda c: c[1], reverse=True)
    debtors = sorted(debtors, key=lambda d: d[1], reverse=True)

    settlements = []
    ci = di = 0
    while ci < len(creditors) and di < len(debtors):
        creditor, debtor = creditors[ci], debtors[di]
        amount = min(creditor[1], debtor[1])

        settlements.append(
            Settlement(
                from_member=debtor[0],
                to_member=creditor[0],
                amount=round(amount, 2),
                from_name=names.get(debtor[0]),
                to_name=names.get(creditor[0]),
            )
        )

        creditor[1] -= amount
        debtor[1] -= amount
        if creditor[1] < EPSILON:
            ci += 1
        if debtor[1] < EPSILON:
            di += 1

    return settlements


def format_settlements(settlements: list[Settlement]) -> str:
    if not settlements:
        return "✅ Everyone is square, no transfers needed."

    lines = ["💰 Transfers:"]
    for i, s in enumerate(settlements, 1):
        from_name = s.from_name or s.from_member[:8]
        to_name = s.to_name or s.to_member[:8]
        lines.append(f"{i}. {from_name} → {to_name}: {s.amount:,.2f}")
    return "\n".join(lines)


class GroupExpenseService:
    def __init__(
        self,
        expenses: GroupExpenseRepository,
        users: UserRepository,
        transactions: TransactionService,
    ):
        self.expenses = expenses
        self.users = users
        self.transactions = transactions

    def create_group_expense(
        self, group_id: str, creator_id: str, total_amount: float, description: str | None = None
    ) -> GroupExpense:
        if total_amount <= 0:
            raise ValidationFailed("Please enter a valid amount.")
        expense = GroupExpense(
            group_id=group_id,
            creator_id=creator_id,
            total_amount=total_amount,
            description=description,
        )
        self.expenses.add(expense)
        logger.info("Created group expense #{} in {} by {}", expense.id[:8], group_id, creator_id)
        return expense

    def get_open_expense(self, group_id: str) -> GroupExpense | None:
        """Most recent unsettled expense of the group."""
        open_expenses = self.expenses.get_by_group(group_id, include_settled=False)
        return open_expenses[0] if open_expenses else None

    def _require_open(self, group_id: str) -> GroupExpense:
        expense = self.get_open_expense(group_id)
        if expense is None:
            raise PreconditionFailed("No open group expense. Start one with /group new <amount> <description>.")
        return expense

    def record_payment(
        self, group_id: str, member_id: str, amount: float, display_name: str | None = None
    ) -> GroupExpense:
        # zero is allowed so members who paid nothing can still join and set a share
        if amount < 0:
            raise ValidationFailed("Please enter a valid amount.")
        expense = self._require_open(group_id)
        participant = next((p for p in expense.participants if p.member_id == member_id), None)
        if participant:
            participant.paid = amount
        else:
            expense.participants.append(
                Participant(member_id=member_id, display_name=display_name, paid=amount, share=0)
            )
        return self.expenses.save(expense)

    def record_share(self, group_id: str, member_id: str, amount: float) -> GroupExpense:
        if amount <= 0:
            raise ValidationFailed("Please enter a valid amount.")
        expense = self._require_open(group_id)
        participant = next((p for p in expense.participants if p.member_id == member_id), None)
        if participant is None:
            raise PreconditionFailed("Add what you paid first with /group add <amount>.")
        participant.share = amount
        return self.expenses.save(expense)

    def settle_group_expense(self, expense_id: str, caller_id: str) -> SettleResult:
        """Close an open group expense and write each participant's ledger entries."""
        expense = self.expenses.get(expense_id)
        if expense is None:
            raise NotFound("Group expense not found.")
        if expense.creator_id != caller_id:
            raise AuthorizationDenied("Only the person who created this group expense can settle it.")
        if expense.settled:
            raise AlreadySettled()
        if not expense.participants or any(p.share <= 0 for p in expense.participants):
            raise PreconditionFailed("Every participant needs a share first (use /group split <amount>).")

        settlements = calculate_settlements(expense.participants)
        label = f" - {expense.description}" if expense.description else ""
        transaction_ids: list[str] = []
        owner_ids: list[str] = []

        for participant in expense.participants:
            owner_id = self.users.get_or_create(participant.member_id).id
            owner_ids.append(owner_id)

            if participant.paid > 0:
                contribution = self.transactions.create_transaction(
                    owner_id,
                    TransactionCreate(
                        amount=participant.paid,
                        category=CONTRIBUTION_CATEGORY,
                        description=f"Group contribution{label}",
                        kind="expense",
                    ),
                    group_expense_id=expense.id,
                    group_role="contribution",
                )
                transaction_ids.append(contribution.id)

            balance = participant.paid - participant.share
            if balance > EPSILON:
                reimbursement = self.transactions.create_transaction(
                    owner_id,
                    TransactionCreate(
                        amount=balance,
                        category=REIMBURSEMENT_CATEGORY,
                        description=f"Group reimbursement{label}",
                        kind="income",
                    ),
                    group_expense_id=expense.id,
                    group_role="reimbursement",
                )
                transaction_ids.append(reimbursement.id)

        expense.settled = True
        expense.settled_at = datetime.now()
        expense.transaction_ids = transaction_ids
        self.expenses.save(expense)

        logger.info(
            "Group expense #{} settled by {}: {} transfers, {} transactions",
            expense.id[:8],
            caller_id,
            len(settlements),
            len(transaction_ids),
        )
        return SettleResult(settlements=settlements, transaction_ids=transaction_ids, owner_ids=owner_ids)
