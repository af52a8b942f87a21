import aiohttp
from linebot.v3.messaging import (
    ApiException,
    AsyncApiClient,
    AsyncMessagingApi,
    Configuration,
    PostbackAction,
    PushMessageRequest,
    QuickReply,
    QuickReplyItem,
    ReplyMessageRequest,
    TextMessage,
)
from linebot.v3.webhook import SignatureValidator
from loguru import logger

from chatledger.errors import MessagingError
from chatledger.models.schemas import Reply


def verify_signature(body: bytes, channel_secret: str, signature: str) -> bool:
    """Check ``X-Line-Signature`` against the raw request body."""
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return SignatureValidator(channel_secret).validate(text, signature)


def to_line_message(reply: Reply) -> TextMessage:
    quick_reply = None
    if reply.quick_actions:
        quick_reply = QuickReply(
            items=[
                QuickReplyItem(action=PostbackAction(label=action.label, data=action.data))
                for action in reply.quick_actions
            ]
        )
    return TextMessage(text=reply.text, quick_reply=quick_reply)


class LineMessagingClient:
    """Reply and push through the LINE Messaging API async client."""

    def __init__(self, access_token: str, base_url: str = "https://api.line.me"):
        self.configuration = Configuration(host=base_url.rstrip("/"), access_token=access_token)
        self._api_client: AsyncApiClient | None = None
        self._api: AsyncMessagingApi | None = None

    def _get_api(self) -> AsyncMessagingApi:
        # The SDK opens an aiohttp session, so build it inside the running loop.
        if self._api is None:
            self._api_client = AsyncApiClient(self.configuration)
            self._api = AsyncMessagingApi(self._api_client)
        return self._api

    async def reply_message(self, reply_token: str, reply: Reply) -> None:
        request = ReplyMessageRequest(reply_token=reply_token, messages=[to_line_message(reply)])
        try:
            await self._get_api().reply_message(request)
        except ApiException as e:
            raise MessagingError(f"reply failed: {e.status} {e.body}", status=e.status) from e
        except aiohttp.ClientError as e:
            raise MessagingError(f"reply failed: {e}") from e

    async def push_message(self, to: str, reply: Reply) -> None:
        request = PushMessageRequest(to=to, messages=[to_line_message(reply)])
        try:
            await self._get_api().push_message(request)
        except ApiException as e:
            raise MessagingError(f"push failed: {e.status} {e.body}", status=e.status) from e
        except aiohttp.ClientError as e:
            raise MessagingError(f"push failed: {e}") from e

    async def close(self) -> None:
        if self._api_client is not None:
            await self._api_client.close()
            self._api_client = None
            self._api = None
            logger.debug("LINE client session closed")
