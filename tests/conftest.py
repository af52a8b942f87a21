import json
from types import SimpleNamespace

import pytest

from chatledger.bot.dispatcher import CommandContext
from chatledger.config import Settings
from chatledger.db.repository import open_database
from chatledger.deps import build_engine
from chatledger.errors import MessagingError


class FakeMessagingClient:
    """Records reply/push calls; can be told to fail either one."""

    def __init__(self):
        self.replies = []
        self.pushes = []
        self.fail_reply = False
        self.fail_push = False

    async def reply_message(self, reply_token, reply):
        if self.fail_reply:
            raise MessagingError("Invalid reply token", status=400)
        self.replies.append((reply_token, reply))

    async def push_message(self, to, reply):
        if self.fail_push:
            raise MessagingError("push failed", status=500)
        self.pushes.append((to, reply))

    @property
    def texts(self):
        return [r.text for _, r in self.replies] + [r.text for _, r in self.pushes]


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = 0

    async def create(self, **kwargs):
        self.calls += 1
        if isinstance(self.content, Exception):
            raise self.content
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_llm_client(content):
    """Stand-in for ``AsyncOpenAI`` returning ``content`` (a dict is JSON encoded)."""
    if isinstance(content, dict):
        content = json.dumps(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(content)))


@pytest.fixture
def settings():
    return Settings(
        line_channel_secret="test-secret",
        line_channel_access_token="test-token",
        openrouter_api_key="",
        environment="development",
        budget_check_delay=0,
    )


@pytest.fixture
def db():
    return open_database(None)


@pytest.fixture
def client():
    return FakeMessagingClient()


@pytest.fixture
def engine(settings, db, client):
    return build_engine(settings, db=db, client=client)


@pytest.fixture
def dispatcher(engine):
    return engine.dispatcher


@pytest.fixture
def make_ctx(engine):
    def _make(user_id="U-alice", group_id=None):
        user = engine.users.get_or_create(user_id)
        return CommandContext(owner_id=user.id, user_id=user_id, group_id=group_id)

    return _make
