from datetime import datetime

import pytest

from chatledger.db.repository import BudgetRepository, TransactionRepository, open_database
from chatledger.models.schemas import Budget, TransactionCreate
from chatledger.services.budget import BudgetService, window_start
from chatledger.services.transactions import TransactionService

# A Thursday; the week started on Monday 2026-10-26.
NOW = datetime(2026, 10, 29, 12, 0)
OWNER = "owner-1"


@pytest.fixture
def db():
    return open_database(None)


@pytest.fixture
def budgets(db):
    return BudgetService(BudgetRepository(db), TransactionRepository(db))


@pytest.fixture
def transactions(db):
    return TransactionService(TransactionRepository(db))


def spend(transactions, amount, when, category="food"):
    return transactions.create_transaction(
        OWNER, TransactionCreate(amount=amount, category=category, kind="expense", date=when)
    )


def test_monthly_breach_wins_over_weekly(budgets, transactions):
    budgets.update_budget(OWNER, "2026-10", monthly_limit=1000, weekly_limit=200)
    spend(transactions, 1150, datetime(2026, 10, 5, 9))
    spend(transactions, 50, datetime(2026, 10, 27, 9))

    breach = budgets.check_budget_exceeded(OWNER, now=NOW)
    assert breach.period == "monthly"
    assert breach.limit == 1000
    assert breach.current == 1200


def test_no_breach_when_only_older_weeks_are_heavy(budgets, transactions):
    budgets.update_budget(OWNER, "2026-10", monthly_limit=2000, weekly_limit=200)
    spend(transactions, 1150, datetime(2026, 10, 5, 9))
    spend(transactions, 50, datetime(2026, 10, 27, 9))

    assert budgets.check_budget_exceeded(OWNER, now=NOW) is None


def test_weekly_breach_before_daily(budgets, transactions):
    budgets.update_budget(OWNER, "2026-10", monthly_limit=5000, weekly_limit=100, daily_limit=10)
    spend(transactions, 150, datetime(2026, 10, 29, 8))

    assert budgets.check_budget_exceeded(OWNER, now=NOW).period == "weekly"


def test_spending_equal_to_limit_is_not_a_breach(budgets, transactions):
    budgets.update_budget(OWNER, "2026-10", daily_limit=100)
    spend(transactions, 100, datetime(2026, 10, 29, 8))

    assert budgets.check_budget_exceeded(OWNER, now=NOW) is None


def test_total_limit_stands_in_for_monthly(budgets, transactions):
    budgets.update_budget(OWNER, "2026-10", total_limit=100)
    spend(transactions, 120, datetime(2026, 10, 2, 8))

    assert budgets.check_budget_exceeded(OWNER, now=NOW).period == "monthly"


def test_category_limit(budgets, transactions):
    budgets.update_budget(OWNER, "2026-10", category_limits={"food": 100})
    spend(transactions, 80, datetime(2026, 10, 3, 8))
    spend(transactions, 500, datetime(2026, 10, 3, 8), category="rent")
    assert budgets.check_category_budget_exceeded(OWNER, "food", now=NOW) is None

    spend(transactions, 30, datetime(2026, 10, 28, 8))
    breach = budgets.check_category_budget_exceeded(OWNER, "food", now=NOW)
    assert breach.category == "food"
    assert breach.current == 110
    assert budgets.check_category_budget_exceeded(OWNER, "rent", now=NOW) is None


def test_update_keeps_other_fields(budgets):
    budgets.update_budget(OWNER, "2026-10", category_limits={"food": 100}, total_limit=3000)
    updated = budgets.update_budget(OWNER, "2026-10", daily_limit=50, weekly_limit=300, monthly_limit=1200)

    assert updated.category_limits == {"food": 100}
    assert updated.total_limit == 3000
    assert (updated.daily_limit, updated.weekly_limit, updated.monthly_limit) == (50, 300, 1200)


def test_legacy_budget_document_migrates_on_read(db, budgets):
    db.table("budgets").insert(
        {
            "userId": OWNER,
            "month": "2026-10",
            "totalBudget": 900,
            "categoryBudgets": {"food": 200},
            "dailyBudget": 30,
        }
    )

    budget = budgets.get_budget(OWNER, "2026-10")
    assert budget.schema_version == 2
    assert budget.owner_id == OWNER
    assert budget.total_limit == 900
    assert budget.category_limits == {"food": 200}
    assert budget.daily_limit == 30
    assert budget.effective_monthly_limit == 900

    budgets.update_budget(OWNER, "2026-10", weekly_limit=100)
    docs = db.table("budgets").all()
    assert len(docs) == 1
    assert "userId" not in docs[0]


def test_status_reports_remaining(budgets, transactions):
    budgets.update_budget(OWNER, "2026-10", monthly_limit=1000, category_limits={"food": 300})
    spend(transactions, 250, datetime(2026, 10, 10, 8))

    status = budgets.get_budget_status(OWNER, "2026-10")
    assert status.total_spent == 250
    assert status.total_remaining == 750
    assert status.category_remaining == {"food": 50}


def test_week_starts_on_monday():
    assert window_start("weekly", NOW) == datetime(2026, 10, 26)


def test_legacy_model_validation_directly():
    budget = Budget.model_validate({"userId": "x", "month": "2026-01", "monthlyBudget": 10, "categoryBudgets": None})
    assert budget.monthly_limit == 10
    assert budget.category_limits == {}
