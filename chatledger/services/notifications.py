from loguru import logger

from chatledger.bot.formatting import format_amount
from chatledger.bot.reply import ReplyChannel
from chatledger.db.repository import UserRepository
from chatledger.models.schemas import Reply
from chatledger.services.budget import BudgetService
from chatledger.services.savings import SavingsGoalService


class NotificationService:
    """Push messages sent outside any reply window: budget usage and goals reached."""

    def __init__(
        self,
        channel: ReplyChannel,
        users: UserRepository,
        budgets: BudgetService,
        goals: SavingsGoalService,
    ):
        self.channel = channel
        self.users = users
        self.budgets = budgets
        self.goals = goals

    def budget_usage_message(self, owner_id: str) -> str | None:
        status = self.budgets.get_budget_status(owner_id)
        limit = status.budget.effective_monthly_limit

        message = None
        if limit:
            usage = status.total_spent / limit * 100
            remaining = status.total_remaining or 0
            if usage >= 100:
                message = (
                    "⚠️ Budget exceeded\n\n"
                    f"Monthly budget: {format_amount(limit)}\n"
                    f"Spent: {format_amount(status.total_spent)}\n"
                    f"Over by: {format_amount(abs(remaining))}"
                )
            elif usage >= 90:
                message = (
                    f"🔴 You have used {usage:.1f}% of this month's budget\n"
                    f"Remaining: {format_amount(remaining)}"
                )
            elif usage >= 80:
                message = (
                    f"🟡 You have used {usage:.1f}% of this month's budget\n"
                    f"Remaining: {format_amount(remaining)}"
                )

        warnings = []
        for category, category_limit in status.budget.category_limits.items():
            if not category_limit:
                continue
            spent = status.category_spent.get(category, 0)
            percent = spent / category_limit * 100
            if percent >= 100:
                warnings.append(
                    f"⚠️ {category} is over budget ({format_amount(spent)} / {format_amount(category_limit)})"
                )
            elif percent >= 90:
                warnings.append(f"🔴 {category} at {percent:.1f}%")

        if warnings:
            if message:
                message += "\n\nCategory budgets:\n" + "\n".join(warnings)
            else:
                message = "📊 Category budgets\n\n" + "\n".join(warnings)
        return message

    async def check_and_notify_budget(self, owner_id: str) -> bool:
        message = self.budget_usage_message(owner_id)
        user = self.users.get(owner_id)
        if message is None or user is None:
            return False
        await self.channel.push(user.line_user_id, Reply(text=message))
        logger.info("Budget notification pushed to {}", owner_id)
        return True

    async def check_and_notify_goal_completion(self, owner_id: str) -> int:
        completed = self.goals.refresh_goals(owner_id)
        user = self.users.get(owner_id)
        if not completed or user is None:
            return 0
        for goal in completed:
            text = (
                "🎉 Savings goal reached!\n\n"
                f"Goal: {goal.title}\n"
                f"Target: {format_amount(goal.target_amount)}\n"
                f"Saved: {format_amount(goal.current_amount)}"
            )
            await self.channel.push(user.line_user_id, Reply(text=text))
            logger.info("Goal completion pushed to {} for goal #{}", owner_id, goal.id[:8])
        return len(completed)
