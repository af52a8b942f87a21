import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from loguru import logger

from chatledger.db.repository import TransactionRepository
from chatledger.errors import NotFound, ValidationFailed
from chatledger.models.schemas import Transaction, TransactionCreate

MAX_LIST = 50
MIN_ID_PREFIX = 4

_KIND_INDEX = re.compile(r"^(?P<kind>[io])(?P<index>\d+)$")


@dataclass
class Summary:
    total_income: float
    total_expense: float

    @property
    def balance(self) -> float:
        return round(self.total_income - self.total_expense, 2)


@dataclass
class PeriodBreakdown:
    label: str
    start: datetime
    end: datetime
    # date -> (income, expense), only days that have records
    days: dict[date, tuple[float, float]] = field(default_factory=dict)

    @property
    def total_income(self) -> float:
        return round(sum(i for i, _ in self.days.values()), 2)

    @property
    def total_expense(self) -> float:
        return round(sum(e for _, e in self.days.values()), 2)


def period_range(period: str, now: datetime) -> tuple[str, datetime, datetime]:
    """Date range for a reporting period keyword: week, last_week, month, last_month."""
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today - timedelta(days=today.weekday())
    month_start = today.replace(day=1)

    if period == "week":
        return "This week", week_start, now
    if period == "last_week":
        start = week_start - timedelta(days=7)
        return "Last week", start, week_start - timedelta(microseconds=1)
    if period == "month":
        return "This month", month_start, now
    if period == "last_month":
        last_month_end = month_start - timedelta(microseconds=1)
        start = last_month_end.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return "Last month", start, last_month_end
    raise ValidationFailed(f"Unknown period: {period}")


class TransactionService:
    def __init__(self, repo: TransactionRepository):
        self.repo = repo

    def create_transaction(self, owner_id: str, data: TransactionCreate, **tags) -> Transaction:
        fields = data.model_dump(exclude_none=True)
        transaction = Transaction(owner_id=owner_id, **fields, **tags)
        self.repo.add(transaction)
        logger.info(
            "Created {} #{} for {}: {} ({})",
            transaction.kind,
            transaction.id[:8],
            owner_id,
            transaction.amount,
            transaction.category,
        )
        return transaction

    def get_transactions(
        self,
        owner_id: str,
        limit: int | None = 10,
        kind: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Transaction]:
        return self.repo.find(owner_id, kind=kind, start=start, end=end, limit=limit)

    def update_transaction(self, transaction_id: str, owner_id: str, **fields) -> Transaction:
        allowed = {"amount", "category", "date", "description"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationFailed(f"Cannot edit: {', '.join(sorted(unknown))}")
        if fields.get("amount") is not None and fields["amount"] <= 0:
            raise ValidationFailed("Amount must be greater than zero.")
        updated = self.repo.update(transaction_id, owner_id, **fields)
        if updated is None:
            raise NotFound("Transaction not found.")
        return updated

    def delete_transaction(self, transaction_id: str, owner_id: str) -> bool:
        deleted = self.repo.delete(transaction_id, owner_id)
        if deleted:
            logger.info("Deleted transaction #{} for {}", transaction_id[:8], owner_id)
        return deleted

    def resolve_reference(self, owner_id: str, ref: str) -> Transaction:
        """Resolve ``i2``/``o1`` (nth income/expense in the recent list),
        a plain index, or a record id / id prefix to a transaction."""
        ref = ref.strip().lower()
        m = _KIND_INDEX.match(ref)
        if m:
            kind = "income" if m.group("kind") == "i" else "expense"
            index = int(m.group("index"))
            if index < 1:
                raise ValidationFailed("Invalid number. Use i1, i2, o1, o2 ...")
            recent = [t for t in self.get_transactions(owner_id, limit=MAX_LIST) if t.kind == kind]
            if index > len(recent):
                raise NotFound(f"No record {ref}. Send /list to see your records.")
            return recent[index - 1]

        if ref.isdigit():
            index = int(ref)
            if index < 1:
                raise ValidationFailed("Invalid number. Use i1, i2, o1, o2 ...")
            recent = self.get_transactions(owner_id, limit=index)
            if index > len(recent):
                raise NotFound(f"No record {index}. Send /list to see your records.")
            return recent[index - 1]

        candidates = self.get_transactions(owner_id, limit=None)
        exact = [t for t in candidates if t.id == ref]
        if exact:
            return exact[0]
        if len(ref) >= MIN_ID_PREFIX:
            prefixed = [t for t in candidates if t.id.startswith(ref)]
            if len(prefixed) == 1:
                return prefixed[0]
            if len(prefixed) > 1:
                raise ValidationFailed(f'"{ref}" matches several records; use more characters.')
        raise NotFound(f'No record with id "{ref}". Send /list to see your records.')

    def get_summary(
        self, owner_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> Summary:
        return Summary(
            total_income=self.repo.sum_amount(owner_id, "income", start=start, end=end),
            total_expense=self.repo.sum_amount(owner_id, "expense", start=start, end=end),
        )

    def get_period_breakdown(self, owner_id: str, period: str, now: datetime | None = None) -> PeriodBreakdown:
        now = now or datetime.now()
        label, start, end = period_range(period, now)
        breakdown = PeriodBreakdown(label=label, start=start, end=end)
        transactions = self.repo.find(owner_id, start=start, end=end)
        per_day: dict[date, list[float]] = {}
        for t in transactions:
            income_expense = per_day.setdefault(t.date.date(), [0.0, 0.0])
            income_expense[0 if t.kind == "income" else 1] += t.amount
        for day in sorted(per_day):
            income, expense = per_day[day]
            if income or expense:
                breakdown.days[day] = (round(income, 2), round(expense, 2))
        return breakdown
