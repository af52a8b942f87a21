import math
from datetime import datetime

from loguru import logger

from chatledger.db.repository import SavingsGoalRepository, TransactionRepository
from chatledger.errors import NotFound, ValidationFailed
from chatledger.models.schemas import GoalProgress, SavingsGoal


class SavingsGoalService:
    def __init__(self, goals: SavingsGoalRepository, transactions: TransactionRepository):
        self.goals = goals
        self.transactions = transactions

    def net_savings(self, owner_id: str) -> float:
        income = self.transactions.sum_amount(owner_id, "income")
        expense = self.transactions.sum_amount(owner_id, "expense")
        return max(0.0, round(income - expense, 2))

    def create_goal(
        self, owner_id: str, title: str, target_amount: float, deadline: datetime | None = None
    ) -> SavingsGoal:
        if target_amount <= 0:
            raise ValidationFailed("Target amount must be greater than zero.")
        goal = SavingsGoal(owner_id=owner_id, title=title, target_amount=target_amount, deadline=deadline)
        self.goals.add(goal)
        logger.info("Created savings goal #{} '{}' for {}", goal.id[:8], title, owner_id)
        return self.update_goal_progress(owner_id, goal.id)

    def get_goals(self, owner_id: str, include_completed: bool = True) -> list[SavingsGoal]:
        return self.goals.get_all(owner_id, include_completed=include_completed)

    def update_goal_progress(self, owner_id: str, goal_id: str, now: datetime | None = None) -> SavingsGoal:
        """Recompute ``current_amount`` from lifetime net savings.

        Completion is sticky: once reached, later expenses lower the amount but
        never reopen the goal.
        """
        goal = self.goals.get(goal_id, owner_id)
        if goal is None:
            raise NotFound("Savings goal not found.")

        goal.current_amount = self.net_savings(owner_id)
        if not goal.completed and goal.current_amount >= goal.target_amount:
            goal.completed = True
            goal.completed_at = now or datetime.now()
            logger.info("Savings goal #{} '{}' completed for {}", goal.id[:8], goal.title, owner_id)
        return self.goals.save(goal)

    def refresh_goals(self, owner_id: str) -> list[SavingsGoal]:
        """Recompute every open goal; returns the ones completed by this call."""
        newly_completed = []
        for goal in self.goals.get_all(owner_id, include_completed=False):
            updated = self.update_goal_progress(owner_id, goal.id)
            if updated.completed:
                newly_completed.append(updated)
        return newly_completed

    def update_goal(
        self,
        goal_id: str,
        owner_id: str,
        title: str | None = None,
        target_amount: float | None = None,
        deadline: datetime | None = None,
    ) -> SavingsGoal:
        goal = self.goals.get(goal_id, owner_id)
        if goal is None:
            raise NotFound("Savings goal not found.")
        if title:
            goal.title = title
        if target_amount is not None:
            if target_amount <= 0:
                raise ValidationFailed("Target amount must be greater than zero.")
            goal.target_amount = target_amount
        if deadline is not None:
            goal.deadline = deadline
        self.goals.save(goal)
        return self.update_goal_progress(owner_id, goal_id)

    def delete_goal(self, goal_id: str, owner_id: str) -> bool:
        return self.goals.delete(goal_id, owner_id)

    def calculate_progress(self, goal: SavingsGoal, now: datetime | None = None) -> GoalProgress:
        percentage = min(goal.current_amount / goal.target_amount * 100, 100)
        remaining = max(goal.target_amount - goal.current_amount, 0)

        days_remaining = None
        if goal.deadline and not goal.completed:
            now = now or datetime.now()
            days_remaining = math.ceil((goal.deadline - now).total_seconds() / 86400)
        return GoalProgress(percentage=percentage, remaining=remaining, days_remaining=days_remaining)
