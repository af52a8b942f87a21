from datetime import datetime, timedelta

from loguru import logger

from chatledger.db.repository import BudgetRepository, TransactionRepository
from chatledger.models.schemas import Budget, BudgetBreach, BudgetStatus


def current_month(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"{now.year:04d}-{now.month:02d}"


def window_start(period: str, now: datetime) -> datetime:
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "daily":
        return today
    if period == "weekly":
        # ISO weeks start on Monday
        return today - timedelta(days=today.weekday())
    if period == "monthly":
        return today.replace(day=1)
    raise ValueError(f"Unknown budget period: {period}")


def month_bounds(month: str) -> tuple[datetime, datetime]:
    year, month_num = (int(part) for part in month.split("-"))
    start = datetime(year, month_num, 1)
    if month_num == 12:
        next_start = datetime(year + 1, 1, 1)
    else:
        next_start = datetime(year, month_num + 1, 1)
    return start, next_start - timedelta(microseconds=1)


class BudgetService:
    # Broader windows first: a monthly breach hides weekly and daily ones.
    PRIORITY = ("monthly", "weekly", "daily")

    def __init__(self, budgets: BudgetRepository, transactions: TransactionRepository):
        self.budgets = budgets
        self.transactions = transactions

    def get_budget(self, owner_id: str, month: str | None = None) -> Budget | None:
        return self.budgets.get(owner_id, month or current_month())

    def get_or_create_budget(self, owner_id: str, month: str | None = None) -> Budget:
        month = month or current_month()
        budget = self.budgets.get(owner_id, month)
        if budget is None:
            budget = self.budgets.upsert(Budget(owner_id=owner_id, month=month))
        return budget

    def update_budget(self, owner_id: str, month: str, **fields) -> Budget:
        """Replace the given limit fields of one month's budget, keeping the others."""
        budget = self.get_or_create_budget(owner_id, month)
        updates = {k: v for k, v in fields.items() if v is not None}
        updated = Budget.model_validate({**budget.model_dump(), **updates})
        self.budgets.upsert(updated)
        logger.info("Updated budget {} for {}: {}", month, owner_id, updates)
        return updated

    def _limit_for(self, budget: Budget, period: str) -> float | None:
        if period == "monthly":
            return budget.effective_monthly_limit
        if period == "weekly":
            return budget.weekly_limit
        return budget.daily_limit

    def check_budget_exceeded(self, owner_id: str, now: datetime | None = None) -> BudgetBreach | None:
        """Return the highest-priority window whose spending exceeds its limit."""
        now = now or datetime.now()
        budget = self.get_budget(owner_id, current_month(now))
        if budget is None:
            return None

        for period in self.PRIORITY:
            limit = self._limit_for(budget, period)
            if limit is None:
                continue
            spent = self.transactions.sum_amount(
                owner_id, "expense", start=window_start(period, now), end=now
            )
            if spent > limit:
                return BudgetBreach(period=period, limit=limit, current=spent)
        return None

    def check_category_budget_exceeded(
        self, owner_id: str, category: str, now: datetime | None = None
    ) -> BudgetBreach | None:
        now = now or datetime.now()
        budget = self.get_budget(owner_id, current_month(now))
        if budget is None or category not in budget.category_limits:
            return None
        limit = budget.category_limits[category]
        spent = self.transactions.sum_amount(
            owner_id, "expense", category=category, start=window_start("monthly", now), end=now
        )
        if spent > limit:
            return BudgetBreach(period="monthly", limit=limit, current=spent, category=category)
        return None

    def get_budget_status(self, owner_id: str, month: str | None = None) -> BudgetStatus:
        month = month or current_month()
        budget = self.get_budget(owner_id, month) or Budget(owner_id=owner_id, month=month)
        start, end = month_bounds(month)
        expenses = self.transactions.find(owner_id, kind="expense", start=start, end=end)

        total_spent = round(sum(t.amount for t in expenses), 2)
        category_spent: dict[str, float] = {}
        for t in expenses:
            category_spent[t.category] = round(category_spent.get(t.category, 0) + t.amount, 2)

        limit = budget.effective_monthly_limit
        return BudgetStatus(
            budget=budget,
            total_spent=total_spent,
            category_spent=category_spent,
            total_remaining=round(limit - total_spent, 2) if limit is not None else None,
            category_remaining={
                category: round(amount - category_spent.get(category, 0), 2)
                for category, amount in budget.category_limits.items()
            },
        )
