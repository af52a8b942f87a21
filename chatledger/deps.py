from functools import lru_cache

from tinydb import TinyDB

from chatledger.bot.dispatcher import CommandDispatcher
from chatledger.bot.engine import ConversationEngine
from chatledger.bot.line_client import LineMessagingClient
from chatledger.bot.reply import MessagingClient, ReplyChannel
from chatledger.config import Settings, get_settings
from chatledger.db.repository import (
    BudgetRepository,
    GroupExpenseRepository,
    PetRepository,
    SavingsGoalRepository,
    TransactionRepository,
    UserRepository,
    open_database,
)
from chatledger.llm.parser import LLMTransactionParser
from chatledger.services.budget import BudgetService
from chatledger.services.notifications import NotificationService
from chatledger.services.pet import PetService
from chatledger.services.savings import SavingsGoalService
from chatledger.services.settlement import GroupExpenseService
from chatledger.services.transactions import TransactionService


def build_engine(
    settings: Settings,
    db: TinyDB | None = None,
    client: MessagingClient | None = None,
    llm_parser: LLMTransactionParser | None = None,
) -> ConversationEngine:
    db = db if db is not None else open_database(settings.db_path)
    client = client or LineMessagingClient(settings.line_channel_access_token, settings.line_api_base)
    if llm_parser is None and settings.openrouter_api_key:
        llm_parser = LLMTransactionParser(
            api_key=settings.openrouter_api_key,
            model=settings.llm_model,
            min_confidence=settings.llm_min_confidence,
        )

    transaction_repo = TransactionRepository(db)
    users = UserRepository(db)

    transactions = TransactionService(transaction_repo)
    budgets = BudgetService(BudgetRepository(db), transaction_repo)
    goals = SavingsGoalService(SavingsGoalRepository(db), transaction_repo)
    groups = GroupExpenseService(GroupExpenseRepository(db), users, transactions)
    pets = PetService(PetRepository(db))

    channel = ReplyChannel(client)
    dispatcher = CommandDispatcher(
        transactions,
        budgets,
        goals,
        groups,
        pets,
        llm_parser=llm_parser,
        budget_check_delay=settings.budget_check_delay,
    )
    notifications = NotificationService(channel, users, budgets, goals)
    return ConversationEngine(users, dispatcher, channel, notifications, pets)


@lru_cache
def get_engine() -> ConversationEngine:
    return build_engine(get_settings())
