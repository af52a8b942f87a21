import pytest

from chatledger.bot.dispatcher import HELP_TEXT, UNRECOGNIZED_TEXT, normalize_command
from chatledger.services.budget import current_month


@pytest.mark.parametrize(
    "message, expected",
    [
        ("recent", "/list"),
        ("Records", "/list"),
        ("list 5", "/list 5"),
        ("stats", "/summary"),
        ("delete o1", "/delete o1"),
        ("remove i2", "/delete i2"),
        ("my id", "/myid"),
        ("how to use", "/help"),
        ("goals", "/savings"),
        ("/list 3", "/list 3"),
        ("lunch 150", "lunch 150"),
        ("delete the old stuff", "delete the old stuff"),
        ("goal Trip 5000", "goal Trip 5000"),
    ],
)
def test_normalize_command(message, expected):
    assert normalize_command(message) == expected


@pytest.mark.asyncio
async def test_free_text_records_transaction(dispatcher, make_ctx):
    ctx = make_ctx()
    result = await dispatcher.dispatch(ctx, "lunch 150")

    assert result.created is not None
    assert result.created.amount == 150
    assert result.created.category == "food"
    assert "✅ Recorded: food $150" in result.reply.text
    assert result.reply.quick_actions
    assert result.touched_owners == {ctx.owner_id}


@pytest.mark.asyncio
async def test_zero_amount_is_rejected(dispatcher, make_ctx):
    ctx = make_ctx()
    result = await dispatcher.dispatch(ctx, "lunch 0")

    assert result.created is None
    assert result.reply.text == "❌ Amount must be greater than zero."
    assert dispatcher.transactions.get_transactions(ctx.owner_id) == []


@pytest.mark.asyncio
async def test_unparseable_text_gets_help(dispatcher, make_ctx):
    result = await dispatcher.dispatch(make_ctx(), "good morning")
    assert result.reply.text == UNRECOGNIZED_TEXT


@pytest.mark.asyncio
async def test_unknown_command(dispatcher, make_ctx):
    result = await dispatcher.dispatch(make_ctx(), "/frobnicate")
    assert result.reply.text.startswith("❌ Unknown command: frobnicate")


@pytest.mark.asyncio
async def test_help_and_synonyms(dispatcher, make_ctx):
    ctx = make_ctx()
    assert (await dispatcher.dispatch(ctx, "/help")).reply.text == HELP_TEXT
    assert (await dispatcher.dispatch(ctx, "/h")).reply.text == HELP_TEXT
    assert (await dispatcher.dispatch(ctx, "/")).reply.text == HELP_TEXT
    assert "U-alice" in (await dispatcher.dispatch(ctx, "/myid")).reply.text


@pytest.mark.asyncio
async def test_list_and_delete_by_kind_index(dispatcher, make_ctx):
    ctx = make_ctx()
    await dispatcher.dispatch(ctx, "salary 5000")
    await dispatcher.dispatch(ctx, "taxi 50")
    await dispatcher.dispatch(ctx, "lunch 120")

    listing = (await dispatcher.dispatch(ctx, "/list")).reply.text
    assert "i1. $5,000 · salary" in listing
    assert "o1. $120 · food" in listing
    assert "o2. $50 · transport" in listing

    result = await dispatcher.dispatch(ctx, "delete o2")
    assert result.reply.text.startswith("✅ Deleted: $50 · transport")
    assert result.touched_owners == {ctx.owner_id}
    remaining = dispatcher.transactions.get_transactions(ctx.owner_id)
    assert {t.category for t in remaining} == {"salary", "food"}

    missing = await dispatcher.dispatch(ctx, "/delete o5")
    assert missing.reply.text.startswith("❌ No record o5")


@pytest.mark.asyncio
async def test_list_rejects_bad_count(dispatcher, make_ctx):
    result = await dispatcher.dispatch(make_ctx(), "/list abc")
    assert result.reply.text.startswith("❌ Usage: /list")


@pytest.mark.asyncio
async def test_summary(dispatcher, make_ctx):
    ctx = make_ctx()
    await dispatcher.dispatch(ctx, "salary 1000")
    await dispatcher.dispatch(ctx, "dinner 250.5")

    text = (await dispatcher.dispatch(ctx, "summary")).reply.text
    assert "Total income: $1,000" in text
    assert "Total expenses: $250.50" in text
    assert "Balance: $749.50" in text


@pytest.mark.asyncio
async def test_budget_message_sets_limits_and_warns(dispatcher, make_ctx):
    ctx = make_ctx()
    result = await dispatcher.dispatch(ctx, "Daily budget: 100\nWeekly budget: 500\nMonthly budget: 2000")
    assert result.reply.text.startswith("✅ Budget saved!")

    budget = dispatcher.budgets.get_budget(ctx.owner_id, current_month())
    assert (budget.daily_limit, budget.weekly_limit, budget.monthly_limit) == (100, 500, 2000)

    over = await dispatcher.dispatch(ctx, "dinner 150")
    assert "⚠️ Daily budget exceeded! $150 / $100" in over.reply.text


@pytest.mark.asyncio
async def test_goal_message_creates_goal(dispatcher, make_ctx):
    ctx = make_ctx()
    result = await dispatcher.dispatch(ctx, "savings goal Trip 5000 2030-01-01")

    assert result.reply.text.startswith("✅ Savings goal created!")
    goals = dispatcher.goals.get_goals(ctx.owner_id)
    assert [(g.title, g.target_amount) for g in goals] == [("Trip", 5000)]

    listing = (await dispatcher.dispatch(ctx, "/goal")).reply.text
    assert "🎯 Trip" in listing


@pytest.mark.asyncio
async def test_pet_status(dispatcher, make_ctx):
    text = (await dispatcher.dispatch(make_ctx(), "/pet")).reply.text
    assert "Level: 1" in text


@pytest.mark.asyncio
async def test_group_commands_need_a_group(dispatcher, make_ctx):
    result = await dispatcher.dispatch(make_ctx(), "/group new 300 dinner")
    assert result.reply.text == "❌ This command only works in a group chat."


@pytest.mark.asyncio
async def test_group_flow(dispatcher, make_ctx):
    alice = make_ctx("U-alice", "G1")
    bob = make_ctx("U-bob", "G1")
    carol = make_ctx("U-carol", "G1")

    await dispatcher.dispatch(alice, "/group new 300 dinner")
    await dispatcher.dispatch(alice, "/group add 300")
    await dispatcher.dispatch(bob, "/g a 0")
    await dispatcher.dispatch(carol, "/group paid 0")
    for ctx in (alice, bob, carol):
        await dispatcher.dispatch(ctx, "/group split 100")

    status = (await dispatcher.dispatch(bob, "/group list")).reply.text
    assert "Total: $300" in status
    assert status.count("→") == 2

    denied = await dispatcher.dispatch(bob, "/group settle")
    assert denied.reply.text.startswith("❌ Only the person who created")

    settled = await dispatcher.dispatch(alice, "/group settle")
    assert settled.reply.text.startswith("✅ Settled")
    assert settled.touched_owners == {alice.owner_id, bob.owner_id, carol.owner_id}

    again = await dispatcher.dispatch(alice, "/group settle")
    assert again.reply.text == "❌ There is no open group expense to settle."


@pytest.mark.asyncio
async def test_group_split_before_add(dispatcher, make_ctx):
    ctx = make_ctx("U-alice", "G1")
    await dispatcher.dispatch(ctx, "/group new 100")
    result = await dispatcher.dispatch(make_ctx("U-bob", "G1"), "/group split 50")
    assert result.reply.text.startswith("❌ Add what you paid first")


@pytest.mark.asyncio
async def test_postbacks(dispatcher, make_ctx):
    ctx = make_ctx()
    await dispatcher.dispatch(ctx, "lunch 100")
    await dispatcher.dispatch(ctx, "taxi 20")
    await dispatcher.dispatch(ctx, "salary 500")

    week = (await dispatcher.dispatch_postback(ctx, "expense_summary:week")).reply
    assert "Total expenses: $120" in week.text
    assert "Total income: $500" in week.text
    assert week.quick_actions

    recent = (await dispatcher.dispatch_postback(ctx, "recent_records")).reply.text
    assert recent.count("\n") >= 3

    budget = (await dispatcher.dispatch_postback(ctx, "set_budget")).reply.text
    assert "Daily budget: 1000" in budget

    assert (await dispatcher.dispatch_postback(ctx, "expense_summary:decade")).reply.text == "❌ Invalid request."
    assert (await dispatcher.dispatch_postback(ctx, "bogus")).reply.text == "❌ Unrecognized request."


@pytest.mark.asyncio
async def test_empty_period_summary(dispatcher, make_ctx):
    text = (await dispatcher.dispatch_postback(make_ctx(), "expense_summary:last_month")).reply.text
    assert "No records yet." in text


@pytest.mark.asyncio
async def test_goal_already_covered_by_savings(dispatcher, make_ctx):
    ctx = make_ctx()
    await dispatcher.dispatch(ctx, "salary 800")
    result = await dispatcher.dispatch(ctx, "savings goal Bike 500 2030-01-01")

    assert "None" not in result.reply.text
    assert "days left" not in result.reply.text
    assert "🎉 Your savings already cover this goal!" in result.reply.text
    assert dispatcher.goals.get_goals(ctx.owner_id)[0].completed


@pytest.mark.asyncio
async def test_open_goal_shows_days_left(dispatcher, make_ctx):
    result = await dispatcher.dispatch(make_ctx(), "savings goal Bike 500 2030-01-01")
    assert "Deadline: 2030-01-01 (" in result.reply.text
    assert "days left)" in result.reply.text


@pytest.mark.asyncio
async def test_budget_on_one_line_is_not_a_transaction(dispatcher, make_ctx):
    ctx = make_ctx()
    result = await dispatcher.dispatch(ctx, "Daily budget: 100 Weekly budget: 500 Monthly budget: 2000")

    assert result.reply.text.startswith("✅ Budget saved!")
    assert dispatcher.transactions.get_transactions(ctx.owner_id) == []
