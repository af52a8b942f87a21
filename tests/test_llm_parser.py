import pytest

from chatledger.bot.dispatcher import CommandDispatcher
from chatledger.llm.parser import LLMTransactionParser

from conftest import make_llm_client


def make_parser(content, min_confidence=0.6):
    return LLMTransactionParser(
        api_key="test", model="test-model", min_confidence=min_confidence, client=make_llm_client(content)
    )


@pytest.mark.asyncio
async def test_valid_answer():
    parser = make_parser(
        {"amount": 42, "category": "Food", "description": "pizza", "kind": "expense", "confidence": 0.9}
    )
    parsed = await parser.parse("grabbed a pizza for forty two")

    assert parsed.amount == 42
    assert parsed.category == "food"
    assert parsed.kind == "expense"


@pytest.mark.asyncio
async def test_code_fenced_answer():
    parser = make_parser('```json\n{"amount": 10, "category": "coffee", "kind": "expense"}\n```')
    parsed = await parser.parse("coffee ten")
    assert parsed.amount == 10


@pytest.mark.asyncio
async def test_low_confidence_is_discarded():
    parser = make_parser({"amount": 5, "category": "misc", "kind": "expense", "confidence": 0.2})
    assert await parser.parse("something maybe five") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [
        "not json at all",
        {"amount": -3, "category": "misc", "kind": "expense"},
        {"amount": 3, "category": "misc", "kind": "loan"},
        {"category": "misc"},
    ],
)
async def test_malformed_answers_are_discarded(content):
    assert await make_parser(content).parse("whatever") is None


@pytest.mark.asyncio
async def test_request_failure_is_discarded():
    assert await make_parser(RuntimeError("timeout")).parse("whatever") is None


@pytest.mark.asyncio
async def test_llm_only_consulted_when_heuristic_fails(dispatcher):
    parser = make_parser({"amount": 12, "category": "food", "kind": "expense", "confidence": 0.95})
    dispatcher.llm_parser = parser

    parsed, source = await dispatcher.parse_transaction("lunch 150")
    assert (parsed.amount, source) == (150, "heuristic")
    assert parser.client.chat.completions.calls == 0

    parsed, source = await dispatcher.parse_transaction("a dozen bagels")
    assert (parsed.amount, source) == (12, "llm")
    assert parser.client.chat.completions.calls == 1


@pytest.mark.asyncio
async def test_no_llm_configured(dispatcher):
    assert isinstance(dispatcher, CommandDispatcher)
    assert await dispatcher.parse_transaction("a dozen bagels") == (None, None)
