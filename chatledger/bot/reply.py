from collections import OrderedDict
from enum import Enum
from typing import Protocol

from loguru import logger

from chatledger.models.schemas import InboundEvent, QuickAction, Reply

QUICK_ACTIONS = [
    QuickAction(label="This week", data="expense_summary:week"),
    QuickAction(label="This month", data="expense_summary:month"),
    QuickAction(label="Recent", data="recent_records"),
    QuickAction(label="Set budget", data="set_budget"),
]

# Reply tokens expire within minutes; remembering the last few thousand is plenty.
MAX_REMEMBERED_TOKENS = 4096


class MessagingClient(Protocol):
    async def reply_message(self, reply_token: str, reply: Reply) -> None: ...

    async def push_message(self, to: str, reply: Reply) -> None: ...


class Delivery(str, Enum):
    REPLIED = "replied"
    PUSHED = "pushed"
    DROPPED = "dropped"


def with_quick_actions(text: str) -> Reply:
    return Reply(text=text, quick_actions=list(QUICK_ACTIONS))


class ReplyChannel:
    """Delivers exactly one reply per inbound event.

    The single-use reply token is tried once. Whatever the reason it fails
    (already used, expired, transport error) the reply is pushed to the
    originating user instead. If the push fails as well the reply is dropped
    and logged; nothing is retried.
    """

    def __init__(self, client: MessagingClient):
        self.client = client
        self._used_tokens: OrderedDict[str, None] = OrderedDict()

    def _consume(self, token: str) -> bool:
        if token in self._used_tokens:
            return False
        self._used_tokens[token] = None
        if len(self._used_tokens) > MAX_REMEMBERED_TOKENS:
            self._used_tokens.popitem(last=False)
        return True

    async def deliver(self, event: InboundEvent, reply: Reply) -> Delivery:
        if self._consume(event.reply_token):
            try:
                await self.client.reply_message(event.reply_token, reply)
                logger.info("Reply sent to {} ({} chars)", event.source_user_id, len(reply.text))
                return Delivery.REPLIED
            except Exception as e:
                logger.warning("Reply with token failed for {}: {}; falling back to push", event.source_user_id, e)
        else:
            logger.warning("Reply token already used for {}; falling back to push", event.source_user_id)

        return await self.push(event.source_user_id, reply)

    async def push(self, user_id: str, reply: Reply) -> Delivery:
        try:
            await self.client.push_message(user_id, reply)
            logger.info("Pushed message to {} ({} chars)", user_id, len(reply.text))
            return Delivery.PUSHED
        except Exception:
            logger.exception("Push to {} failed; dropping message", user_id)
            return Delivery.DROPPED
