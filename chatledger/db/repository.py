from datetime import datetime

from tinydb import Query, TinyDB
from tinydb.storages import MemoryStorage

from chatledger.models.schemas import (
    Budget,
    GroupExpense,
    Pet,
    SavingsGoal,
    Transaction,
    User,
)


def open_database(db_path: str | None = None) -> TinyDB:
    """Open the JSON store at ``db_path``, or an in-memory one when no path is given."""
    if db_path is None:
        return TinyDB(storage=MemoryStorage)
    return TinyDB(db_path)


class TransactionRepository:
    def __init__(self, db: TinyDB):
        self.table = db.table("transactions")

    def add(self, transaction: Transaction) -> Transaction:
        self.table.insert(transaction.model_dump(mode="json"))
        return transaction

    def get(self, id: str, owner_id: str) -> Transaction | None:
        Tx = Query()
        doc = self.table.get((Tx.id == id) & (Tx.owner_id == owner_id))
        if doc is None:
            return None
        return Transaction(**doc)

    def find(
        self,
        owner_id: str,
        kind: str | None = None,
        category: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[Transaction]:
        """Transactions of one owner, newest first, filtered by kind/category/date range."""
        Tx = Query()
        docs = self.table.search(Tx.owner_id == owner_id)
        results = []
        for doc in docs:
            tx = Transaction(**doc)
            if kind and tx.kind != kind:
                continue
            if category and tx.category != category:
                continue
            if start and tx.date < start:
                continue
            if end and tx.date > end:
                continue
            results.append(tx)
        results.sort(key=lambda t: (t.date, t.created_at), reverse=True)
        if limit is not None:
            results = results[:limit]
        return results

    def sum_amount(
        self,
        owner_id: str,
        kind: str,
        category: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> float:
        txs = self.find(owner_id, kind=kind, category=category, start=start, end=end)
        return round(sum(t.amount for t in txs), 2)

    def update(self, id: str, owner_id: str, **fields) -> Transaction | None:
        existing = self.get(id, owner_id)
        if existing is None:
            return None
        # Filter out None values so we only update provided fields
        updates = {k: v for k, v in fields.items() if v is not None}
        if updates:
            updated = existing.model_copy(update=updates)
            # Re-validate so edited amounts are rounded like new ones
            updated = Transaction.model_validate(updated.model_dump())
            Tx = Query()
            self.table.update(updated.model_dump(mode="json"), Tx.id == id)
            return updated
        return existing

    def delete(self, id: str, owner_id: str) -> bool:
        Tx = Query()
        removed = self.table.remove((Tx.id == id) & (Tx.owner_id == owner_id))
        return len(removed) > 0


class BudgetRepository:
    def __init__(self, db: TinyDB):
        self.table = db.table("budgets")

    def get(self, owner_id: str, month: str) -> Budget | None:
        B = Query()
        doc = self.table.get(
            ((B.owner_id == owner_id) | (B.userId == owner_id)) & (B.month == month)
        )
        if doc is None:
            return None
        return Budget.model_validate(dict(doc))

    def upsert(self, budget: Budget) -> Budget:
        B = Query()
        # Rewriting the whole document also upgrades legacy field names.
        self.table.remove(
            ((B.owner_id == budget.owner_id) | (B.userId == budget.owner_id))
            & (B.month == budget.month)
        )
        self.table.insert(budget.model_dump(mode="json"))
        return budget


class SavingsGoalRepository:
    def __init__(self, db: TinyDB):
        self.table = db.table("savings_goals")

    def add(self, goal: SavingsGoal) -> SavingsGoal:
        self.table.insert(goal.model_dump(mode="json"))
        return goal

    def get(self, id: str, owner_id: str) -> SavingsGoal | None:
        G = Query()
        doc = self.table.get((G.id == id) & (G.owner_id == owner_id))
        if doc is None:
            return None
        return SavingsGoal(**doc)

    def get_all(self, owner_id: str, include_completed: bool = True) -> list[SavingsGoal]:
        G = Query()
        docs = self.table.search(G.owner_id == owner_id)
        goals = [SavingsGoal(**doc) for doc in docs]
        if not include_completed:
            goals = [g for g in goals if not g.completed]
        goals.sort(key=lambda g: g.created_at, reverse=True)
        return goals

    def save(self, goal: SavingsGoal) -> SavingsGoal:
        G = Query()
        self.table.update(goal.model_dump(mode="json"), G.id == goal.id)
        return goal

    def delete(self, id: str, owner_id: str) -> bool:
        G = Query()
        removed = self.table.remove((G.id == id) & (G.owner_id == owner_id))
        return len(removed) > 0


class GroupExpenseRepository:
    def __init__(self, db: TinyDB):
        self.table = db.table("group_expenses")

    def add(self, expense: GroupExpense) -> GroupExpense:
        self.table.insert(expense.model_dump(mode="json"))
        return expense

    def get(self, id: str) -> GroupExpense | None:
        E = Query()
        doc = self.table.get(E.id == id)
        if doc is None:
            return None
        return GroupExpense(**doc)

    def get_by_group(self, group_id: str, include_settled: bool = True) -> list[GroupExpense]:
        E = Query()
        docs = self.table.search(E.group_id == group_id)
        expenses = [GroupExpense(**doc) for doc in docs]
        if not include_settled:
            expenses = [e for e in expenses if not e.settled]
        expenses.sort(key=lambda e: e.created_at, reverse=True)
        return expenses

    def save(self, expense: GroupExpense) -> GroupExpense:
        # Whole-document write: concurrent edits to the same open record are last-write-wins.
        E = Query()
        self.table.update(expense.model_dump(mode="json"), E.id == expense.id)
        return expense


class UserRepository:
    def __init__(self, db: TinyDB):
        self.table = db.table("users")

    def get_by_line_id(self, line_user_id: str) -> User | None:
        U = Query()
        doc = self.table.get(U.line_user_id == line_user_id)
        if doc is None:
            return None
        return User(**doc)

    def get_or_create(self, line_user_id: str) -> User:
        user = self.get_by_line_id(line_user_id)
        if user is None:
            user = User(line_user_id=line_user_id)
            self.table.insert(user.model_dump(mode="json"))
        return user

    def get(self, id: str) -> User | None:
        U = Query()
        doc = self.table.get(U.id == id)
        if doc is None:
            return None
        return User(**doc)


class PetRepository:
    def __init__(self, db: TinyDB):
        self.table = db.table("pets")

    def get(self, owner_id: str) -> Pet | None:
        P = Query()
        doc = self.table.get(P.owner_id == owner_id)
        if doc is None:
            return None
        return Pet(**doc)

    def save(self, pet: Pet) -> Pet:
        P = Query()
        self.table.upsert(pet.model_dump(mode="json"), P.owner_id == pet.owner_id)
        return pet
