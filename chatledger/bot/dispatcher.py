import asyncio
import math
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from loguru import logger
from pydantic import ValidationError

from chatledger.bot.formatting import PERIOD_LABELS, format_amount, format_transaction_line
from chatledger.bot.reply import with_quick_actions
from chatledger.errors import AuthorizationDenied, LedgerError, ValidationFailed
from chatledger.llm.parser import LLMTransactionParser
from chatledger.models.schemas import ParsedTransaction, Reply, Transaction, TransactionCreate
from chatledger.parsing.thresholds import (
    BUDGET_TEMPLATE,
    BudgetThresholds,
    GoalRequest,
    parse_budget_message,
    parse_savings_goal_message,
)
from chatledger.parsing.transaction import parse_transaction_text
from chatledger.services.budget import BudgetService, current_month
from chatledger.services.pet import PetService
from chatledger.services.savings import SavingsGoalService
from chatledger.services.settlement import EPSILON, GroupExpenseService, calculate_settlements, format_settlements
from chatledger.services.transactions import MAX_LIST, TransactionService

DEFAULT_LIST = 10

# Phrases users type instead of the slash command.
NATURAL_LANGUAGE_COMMANDS = {
    "list": "list",
    "recent": "list",
    "recent records": "list",
    "records": "list",
    "history": "list",
    "summary": "summary",
    "overview": "summary",
    "statistics": "summary",
    "stats": "summary",
    "delete": "delete",
    "remove": "delete",
    "del": "delete",
    "pet": "pet",
    "my pet": "pet",
    "tamagotchi": "pet",
    "savings": "savings",
    "savings goals": "savings",
    "goal": "savings",
    "goals": "savings",
    "my goals": "savings",
    "myid": "myid",
    "my id": "myid",
    "user id": "myid",
    "userid": "myid",
    "id": "myid",
    "help": "help",
    "how to use": "help",
    "instructions": "help",
}

# Only these verbs keep trailing text when normalized, and only in this shape.
NATURAL_LANGUAGE_ARGS = {
    "list": re.compile(r"^\d+$"),
    "delete": re.compile(r"^(?:[io]\d+|\d+|[0-9a-f]{4,32})$", re.IGNORECASE),
}

VERB_SYNONYMS = {
    "list": "list",
    "ls": "list",
    "recent": "list",
    "records": "list",
    "history": "list",
    "summary": "summary",
    "sum": "summary",
    "overview": "summary",
    "statistics": "summary",
    "stats": "summary",
    "delete": "delete",
    "del": "delete",
    "remove": "delete",
    "rm": "delete",
    "pet": "pet",
    "tamagotchi": "pet",
    "savings": "savings",
    "goal": "savings",
    "goals": "savings",
    "myid": "myid",
    "id": "myid",
    "userid": "myid",
    "group": "group",
    "g": "group",
    "help": "help",
    "h": "help",
    "start": "help",
}

GROUP_SYNONYMS = {
    "new": "new",
    "n": "new",
    "create": "new",
    "add": "add",
    "a": "add",
    "paid": "add",
    "split": "split",
    "s": "split",
    "share": "split",
    "list": "list",
    "l": "list",
    "status": "list",
    "settle": "settle",
    "st": "settle",
    "help": "help",
    "h": "help",
}

HELP_TEXT = (
    "📖 How to use\n\n"
    "💬 Just type what you spent, e.g. \"lunch 150\"\n\n"
    "📋 Commands:\n"
    "/list [n] - recent records (default 10)\n"
    "/summary - income, expenses and balance\n"
    "/delete <no.> - delete a record (e.g. /delete i1 or /delete o1)\n"
    "/pet - check on your pet\n"
    "/savings or /goal - savings goal progress\n"
    "/myid - show your chat user id\n"
    "/group - split expenses (group chats only)\n"
    "/help - show this message\n\n"
    "💰 Set a savings goal:\n"
    "savings goal <name> <amount> [YYYY-MM-DD]\n"
    "e.g. savings goal Trip 50000\n\n"
    "📊 Set a budget:\n" + BUDGET_TEMPLATE
)

UNRECOGNIZED_TEXT = (
    "🤔 Sorry, I didn't understand that.\n\n"
    "💡 To record something, just tell me:\n"
    "• \"lunch 150\"\n"
    "• \"taxi 50\"\n"
    "• \"salary 5000\"\n\n"
    "📋 Or send /help to see all commands."
)

GROUP_USAGE = (
    "📋 Group expense commands:\n\n"
    "/group new <total> <description> - start a shared expense\n"
    "/group add <amount> - record what you paid\n"
    "/group split <amount> - record your share\n"
    "/group list - current status and transfers\n"
    "/group settle - settle and copy into everyone's ledger\n"
    "/group help - detailed help"
)

GROUP_HELP = (
    "📖 Splitting a group expense:\n\n"
    "1️⃣ /group new 1000 dinner\n"
    "2️⃣ Everyone who paid: /group add 300\n"
    "3️⃣ Everyone sets their share: /group split 250\n"
    "4️⃣ /group list shows who owes whom\n"
    "5️⃣ The creator runs /group settle\n\n"
    "💡 Settling records a \"group contribution\" expense and, for anyone owed money, "
    "a \"group reimbursement\" income."
)

SET_BUDGET_TEXT = "Send your budget in this format:\n\n" + BUDGET_TEMPLATE + "\n\nCopy, edit the amounts and send it back."


@dataclass
class CommandContext:
    owner_id: str
    user_id: str
    group_id: str | None = None


@dataclass
class DispatchResult:
    reply: Reply
    created: Transaction | None = None
    # owners whose ledger changed and need their goals recomputed
    touched_owners: set[str] = field(default_factory=set)


Handler = Callable[[CommandContext, list[str]], Awaitable[DispatchResult]]


def normalize_command(message: str) -> str:
    """Map natural-language shortcuts such as "recent" onto ``/list``."""
    stripped = message.strip()
    if stripped.startswith("/"):
        return stripped

    lowered = stripped.lower()
    if lowered in NATURAL_LANGUAGE_COMMANDS:
        return "/" + NATURAL_LANGUAGE_COMMANDS[lowered]

    for phrase, verb in NATURAL_LANGUAGE_COMMANDS.items():
        shape = NATURAL_LANGUAGE_ARGS.get(verb)
        if shape and lowered.startswith(phrase + " "):
            rest = stripped[len(phrase):].strip()
            if shape.match(rest):
                return f"/{verb} {rest}"
    return stripped


def _parse_amount(raw: str | None, allow_zero: bool = False) -> float:
    try:
        amount = float(raw) if raw is not None else 0
    except ValueError:
        amount = -1
    if not math.isfinite(amount) or amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationFailed("Please enter a valid amount.")
    return amount


def _text(text: str) -> DispatchResult:
    return DispatchResult(reply=Reply(text=text))


class CommandDispatcher:
    """Turns one inbound message or postback into exactly one reply.

    Slash commands (after natural-language normalization) go through a handler
    table. Anything else is tried as a savings goal, then a budget, then a
    transaction; the first parser that matches wins.
    """

    def __init__(
        self,
        transactions: TransactionService,
        budgets: BudgetService,
        goals: SavingsGoalService,
        groups: GroupExpenseService,
        pets: PetService,
        llm_parser: LLMTransactionParser | None = None,
        budget_check_delay: float = 0.1,
    ):
        self.transactions = transactions
        self.budgets = budgets
        self.goals = goals
        self.groups = groups
        self.pets = pets
        self.llm_parser = llm_parser
        self.budget_check_delay = budget_check_delay

        self.handlers: dict[str, Handler] = {
            "list": self.cmd_list,
            "summary": self.cmd_summary,
            "delete": self.cmd_delete,
            "pet": self.cmd_pet,
            "savings": self.cmd_savings,
            "myid": self.cmd_myid,
            "group": self.cmd_group,
            "help": self.cmd_help,
        }
        self.group_handlers: dict[str, Handler] = {
            "new": self.group_new,
            "add": self.group_add,
            "split": self.group_split,
            "list": self.group_list,
            "settle": self.group_settle,
            "help": self.group_help,
        }

    async def dispatch(self, ctx: CommandContext, text: str) -> DispatchResult:
        return await self._guard(ctx, text, self._route_text)

    async def dispatch_postback(self, ctx: CommandContext, data: str) -> DispatchResult:
        return await self._guard(ctx, data, self._route_postback)

    async def _guard(self, ctx: CommandContext, payload: str, route) -> DispatchResult:
        try:
            return await route(ctx, payload)
        except LedgerError as e:
            logger.info("Rejected {!r} from {}: {}", payload, ctx.user_id, e.message)
            return _text(f"❌ {e.message}")
        except ValidationError as e:
            logger.info("Invalid input {!r} from {}: {}", payload, ctx.user_id, e.errors())
            return _text(f"❌ {self._describe_validation(e)}")
        except Exception:
            logger.exception("Error handling {!r} from {}", payload, ctx.user_id)
            return _text("❌ Something went wrong while handling your message. Please try again later.")

    @staticmethod
    def _describe_validation(error: ValidationError) -> str:
        first = error.errors()[0]
        field_name = first["loc"][0] if first["loc"] else "input"
        if field_name == "amount":
            return "Amount must be greater than zero."
        if field_name == "category":
            return "Category cannot be empty."
        return f"Invalid {field_name}: {first['msg']}"

    async def _route_text(self, ctx: CommandContext, text: str) -> DispatchResult:
        normalized = normalize_command(text)
        if normalized.startswith("/"):
            return await self.run_command(ctx, normalized)

        goal = parse_savings_goal_message(text)
        if goal:
            return await self.set_goal(ctx, goal)

        thresholds = parse_budget_message(text)
        if thresholds:
            return await self.set_budget(ctx, thresholds)

        parsed, source = await self.parse_transaction(text)
        if parsed is None:
            return _text(UNRECOGNIZED_TEXT)
        logger.info("Parsed {!r} via {} as {!r}", text, source, parsed.render())
        return await self.record_transaction(ctx, parsed)

    async def run_command(self, ctx: CommandContext, command: str) -> DispatchResult:
        parts = command[1:].split()
        if not parts:
            return _text(HELP_TEXT)
        verb, args = parts[0], parts[1:]
        canonical = VERB_SYNONYMS.get(verb.lower())
        handler = self.handlers.get(canonical) if canonical else None
        if handler is None:
            return _text(f"❌ Unknown command: {verb}\nSend /help to see available commands.")
        return await handler(ctx, args)

    async def parse_transaction(self, text: str) -> tuple[ParsedTransaction | None, str | None]:
        parsed = parse_transaction_text(text)
        if parsed is not None:
            return parsed, "heuristic"
        if self.llm_parser is None:
            return None, None
        parsed = await self.llm_parser.parse(text)
        return parsed, ("llm" if parsed else None)

    async def record_transaction(self, ctx: CommandContext, parsed: ParsedTransaction) -> DispatchResult:
        data = TransactionCreate.model_validate(parsed.model_dump())
        transaction = self.transactions.create_transaction(ctx.owner_id, data)

        text = f"✅ Recorded: {transaction.category} {format_amount(transaction.amount)}"
        if transaction.kind == "income":
            text += " (income)"

        if transaction.kind == "expense":
            # The transaction is already saved; a failed check only loses the warning.
            try:
                text += await self._budget_warnings(ctx.owner_id, transaction.category)
            except Exception:
                logger.exception("Budget check failed for {}", ctx.owner_id)

        return DispatchResult(
            reply=with_quick_actions(text),
            created=transaction,
            touched_owners={ctx.owner_id},
        )

    async def _budget_warnings(self, owner_id: str, category: str) -> str:
        if self.budget_check_delay:
            # Give the store a moment before reading the new expense back.
            await asyncio.sleep(self.budget_check_delay)

        warnings = ""
        breach = self.budgets.check_budget_exceeded(owner_id)
        if breach:
            warnings += (
                f"\n\n⚠️ {PERIOD_LABELS[breach.period]} budget exceeded! "
                f"{format_amount(breach.current)} / {format_amount(breach.limit)}"
            )
        category_breach = self.budgets.check_category_budget_exceeded(owner_id, category)
        if category_breach:
            warnings += (
                f"\n\n⚠️ \"{category}\" is over its budget! "
                f"{format_amount(category_breach.current)} / {format_amount(category_breach.limit)}"
            )
        logger.info("Budget check for {}: total={} category={}", owner_id, breach, category_breach)
        return warnings

    async def set_budget(self, ctx: CommandContext, thresholds: BudgetThresholds) -> DispatchResult:
        self.budgets.update_budget(
            ctx.owner_id,
            current_month(),
            daily_limit=thresholds.daily,
            weekly_limit=thresholds.weekly,
            monthly_limit=thresholds.monthly,
        )
        return DispatchResult(
            reply=with_quick_actions(
                "✅ Budget saved!\n\n"
                f"Daily: {format_amount(thresholds.daily)}\n"
                f"Weekly: {format_amount(thresholds.weekly)}\n"
                f"Monthly: {format_amount(thresholds.monthly)}"
            )
        )

    async def set_goal(self, ctx: CommandContext, request: GoalRequest) -> DispatchResult:
        goal = self.goals.create_goal(ctx.owner_id, request.title, request.target_amount, request.deadline)
        progress = self.goals.calculate_progress(goal)
        text = (
            "✅ Savings goal created!\n\n"
            f"Goal: {goal.title}\n"
            f"Target: {format_amount(goal.target_amount)}\n"
            f"Saved so far: {format_amount(goal.current_amount)} ({progress.percentage:.1f}%)\n"
            f"Still needed: {format_amount(progress.remaining)}"
        )
        if progress.days_remaining is not None:
            text += f"\nDeadline: {goal.deadline:%Y-%m-%d} ({progress.days_remaining} days left)"
        if goal.completed:
            text += "\n\n🎉 Your savings already cover this goal!"
        return DispatchResult(reply=with_quick_actions(text))

    # -- commands ---------------------------------------------------------

    async def cmd_list(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        limit = DEFAULT_LIST
        if args:
            if not args[0].isdigit() or int(args[0]) < 1:
                raise ValidationFailed("Usage: /list [number of records]")
            limit = min(int(args[0]), MAX_LIST)

        transactions = self.transactions.get_transactions(ctx.owner_id, limit=limit)
        if not transactions:
            return _text("📝 No records yet.")

        incomes = [t for t in transactions if t.kind == "income"]
        expenses = [t for t in transactions if t.kind == "expense"]
        lines = [f"📝 Your last {len(transactions)} records:\n"]
        if incomes:
            lines.append("💰 Income:")
            for i, t in enumerate(incomes, 1):
                lines.append(f"i{i}. {format_transaction_line(t)} ({t.date:%Y-%m-%d})")
            lines.append("")
        if expenses:
            lines.append("💸 Expenses:")
            for i, t in enumerate(expenses, 1):
                lines.append(f"o{i}. {format_transaction_line(t)} ({t.date:%Y-%m-%d})")
            lines.append("")
        lines.append("💡 Delete one with /delete <no.>, e.g. /delete i1 or /delete o1")
        return _text("\n".join(lines))

    async def cmd_summary(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        summary = self.transactions.get_summary(ctx.owner_id)
        return _text(
            "📊 Summary:\n\n"
            f"Total income: {format_amount(summary.total_income)}\n"
            f"Total expenses: {format_amount(summary.total_expense)}\n"
            f"Balance: {format_amount(summary.balance)}"
        )

    async def cmd_delete(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        if not args:
            raise ValidationFailed("Tell me which record to delete, e.g. /delete o1. Send /list to see them.")
        transaction = self.transactions.resolve_reference(ctx.owner_id, " ".join(args))
        if not self.transactions.delete_transaction(transaction.id, ctx.owner_id):
            return _text("❌ Record not found or not yours to delete.")
        return DispatchResult(
            reply=Reply(text=f"✅ Deleted: {format_transaction_line(transaction)}"),
            touched_owners={ctx.owner_id},
        )

    async def cmd_pet(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        pet = self.pets.get_or_create_pet(ctx.owner_id)
        return _text(
            f"🐣 {pet.name}\n\n"
            f"Stage: {pet.stage}\n"
            f"Level: {pet.level}\n"
            f"Fullness: {pet.hunger:.0f}%\n"
            f"Mood: {pet.happiness:.0f}%\n"
            f"Health: {pet.health:.0f}%\n"
            f"Logging streak: {pet.consecutive_days} days\n"
            f"Records logged: {pet.total_transactions}\n\n"
            f"{self.pets.status_message(pet)}"
        )

    async def cmd_savings(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        goals = self.goals.get_goals(ctx.owner_id)
        if not goals:
            return _text(
                "💰 No savings goals yet.\n\n"
                "💡 Create one with:\nsavings goal <name> <amount> [YYYY-MM-DD]\n"
                "e.g. savings goal Trip 50000"
            )

        lines = ["💰 Savings goals:\n"]
        for goal in goals:
            goal = self.goals.update_goal_progress(ctx.owner_id, goal.id)
            progress = self.goals.calculate_progress(goal)
            lines.append(f"{'✅' if goal.completed else '🎯'} {goal.title}")
            lines.append(f"Target: {format_amount(goal.target_amount)}")
            lines.append(f"Saved: {format_amount(goal.current_amount)} ({progress.percentage:.1f}%)")
            lines.append(f"Still needed: {format_amount(progress.remaining)}")
            if progress.days_remaining is not None:
                lines.append(f"Deadline: {goal.deadline:%Y-%m-%d} ({progress.days_remaining} days left)")
            lines.append("")
        return _text("\n".join(lines).strip())

    async def cmd_myid(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        return _text(f"🆔 Your chat user id:\n{ctx.user_id}\n\n💡 Enter it on the web dashboard to link your account.")

    async def cmd_help(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        return _text(HELP_TEXT)

    async def cmd_group(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        if not ctx.group_id:
            raise AuthorizationDenied("This command only works in a group chat.")
        if not args:
            return _text(GROUP_USAGE)
        sub = GROUP_SYNONYMS.get(args[0].lower())
        if sub is None:
            return _text(f"❌ Unknown group command: {args[0]}\nSend /group help for instructions.")
        return await self.group_handlers[sub](ctx, args[1:])

    # -- group sub-commands -------------------------------------------------

    async def group_new(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        if not args:
            raise ValidationFailed("Usage: /group new <total> <description>\ne.g. /group new 1000 dinner")
        amount = _parse_amount(args[0])
        description = " ".join(args[1:]) or None
        self.groups.create_group_expense(ctx.group_id, ctx.user_id, amount, description)
        text = f"✅ Group expense started\nTotal: {format_amount(amount)}"
        if description:
            text += f"\nDescription: {description}"
        text += "\n\n💡 Use /group add <amount> for what you paid\nand /group split <amount> for your share"
        return _text(text)

    async def group_add(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        if not args:
            raise ValidationFailed("Usage: /group add <amount>\ne.g. /group add 300 (use 0 if you paid nothing)")
        amount = _parse_amount(args[0], allow_zero=True)
        self.groups.record_payment(ctx.group_id, ctx.user_id, amount)
        return _text(
            f"✅ Recorded your payment: {format_amount(amount)}\n💡 Now set your share with /group split <amount>"
        )

    async def group_split(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        if not args:
            raise ValidationFailed("Usage: /group split <amount>\ne.g. /group split 250")
        amount = _parse_amount(args[0])
        self.groups.record_share(ctx.group_id, ctx.user_id, amount)
        return _text(f"✅ Your share is set to {format_amount(amount)}")

    async def group_list(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        expense = self.groups.get_open_expense(ctx.group_id)
        if expense is None:
            return _text("📝 No open group expense.")

        lines = [f"📋 Current group expense\n\nTotal: {format_amount(expense.total_amount)}"]
        if expense.description:
            lines.append(f"Description: {expense.description}")
        lines.append("\nParticipants:")
        for i, p in enumerate(expense.participants, 1):
            balance = p.paid - p.share
            if balance > EPSILON:
                note = f"is owed {format_amount(round(balance, 2))}"
            elif balance < -EPSILON:
                note = f"owes {format_amount(round(-balance, 2))}"
            else:
                note = "even"
            lines.append(f"{i}. {p.label}: paid {format_amount(p.paid)}, share {format_amount(p.share)} ({note})")

        lines.append("")
        lines.append(format_settlements(calculate_settlements(expense.participants)))
        lines.append("\n💡 The creator can run /group settle to close it")
        return _text("\n".join(lines))

    async def group_settle(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        expense = self.groups.get_open_expense(ctx.group_id)
        if expense is None:
            return _text("❌ There is no open group expense to settle.")
        result = self.groups.settle_group_expense(expense.id, ctx.user_id)
        return DispatchResult(
            reply=Reply(
                text="✅ Settled and copied into everyone's ledger\n\n"
                + format_settlements(result.settlements)
            ),
            touched_owners=set(result.owner_ids),
        )

    async def group_help(self, ctx: CommandContext, args: list[str]) -> DispatchResult:
        return _text(GROUP_HELP)

    # -- postbacks ----------------------------------------------------------

    async def _route_postback(self, ctx: CommandContext, data: str) -> DispatchResult:
        if data.startswith("expense_summary:"):
            period = data.split(":", 1)[1]
            if period not in ("week", "last_week", "month", "last_month"):
                logger.warning("Invalid postback period in {!r}", data)
                return _text("❌ Invalid request.")
            return DispatchResult(reply=with_quick_actions(self._period_report(ctx.owner_id, period)))

        if data == "recent_records":
            transactions = self.transactions.get_transactions(ctx.owner_id, limit=DEFAULT_LIST)
            if not transactions:
                return DispatchResult(reply=with_quick_actions("📝 No records yet."))
            lines = [f"📝 Last {len(transactions)} records:\n"]
            for i, t in enumerate(transactions, 1):
                lines.append(f"{i}. {t.category} | {t.kind} | {format_amount(t.amount)} | {t.date:%Y-%m-%d}")
            return DispatchResult(reply=with_quick_actions("\n".join(lines)))

        if data == "set_budget":
            return DispatchResult(reply=with_quick_actions(SET_BUDGET_TEXT))

        logger.warning("Unknown postback data {!r}", data)
        return _text("❌ Unrecognized request.")

    def _period_report(self, owner_id: str, period: str) -> str:
        breakdown = self.transactions.get_period_breakdown(owner_id, period)
        lines = [f"📊 {breakdown.label}, day by day:\n"]
        if not breakdown.days:
            lines.append("No records yet.")
            return "\n".join(lines)

        for day, (income, expense) in breakdown.days.items():
            lines.append(f"{day:%Y-%m-%d}")
            if income:
                lines.append(f"  Income: {format_amount(income)}")
            if expense:
                lines.append(f"  Expenses: {format_amount(expense)}")
        total_income, total_expense = breakdown.total_income, breakdown.total_expense
        lines.append("━━━━━━━━━━━━━━")
        lines.append(f"💰 Total income: {format_amount(total_income)}")
        lines.append(f"💸 Total expenses: {format_amount(total_expense)}")
        lines.append(f"📊 Balance: {format_amount(round(total_income - total_expense, 2))}")
        return "\n".join(lines)
