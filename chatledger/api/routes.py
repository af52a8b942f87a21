import asyncio
import json

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from loguru import logger

from chatledger.bot.engine import ConversationEngine
from chatledger.bot.line_client import verify_signature
from chatledger.config import Settings, get_settings
from chatledger.deps import get_engine
from chatledger.models.schemas import InboundEvent, ParseRequest, ParseResponse

router = APIRouter()


def to_inbound_event(raw: dict) -> InboundEvent | None:
    """Convert one LINE webhook event; ``None`` for anything we do not handle."""
    source = raw.get("source") or {}
    user_id = source.get("userId")
    reply_token = raw.get("replyToken")
    if not user_id or not reply_token:
        return None
    group_id = source.get("groupId") if source.get("type") == "group" else None

    if raw.get("type") == "message" and (raw.get("message") or {}).get("type") == "text":
        return InboundEvent(
            type="message",
            source_user_id=user_id,
            source_group_id=group_id,
            reply_token=reply_token,
            text=raw["message"].get("text", ""),
        )
    if raw.get("type") == "postback":
        return InboundEvent(
            type="postback",
            source_user_id=user_id,
            source_group_id=group_id,
            reply_token=reply_token,
            postback_data=(raw.get("postback") or {}).get("data", ""),
        )
    return None


async def _handle_isolated(engine: ConversationEngine, event: InboundEvent) -> None:
    try:
        await engine.handle_event(event)
    except Exception:
        logger.exception("Failed to process event from {}", event.source_user_id)


@router.get("/webhook")
def webhook_alive():
    return {"message": "Chat ledger webhook is running"}


@router.post("/webhook")
async def webhook(
    request: Request,
    x_line_signature: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
    engine: ConversationEngine = Depends(get_engine),
):
    body = await request.body()
    if not x_line_signature:
        logger.warning("Webhook call without signature")
        raise HTTPException(status_code=401, detail="Missing signature")

    if not verify_signature(body, settings.line_channel_secret, x_line_signature):
        if settings.is_production:
            logger.error("Invalid webhook signature")
            raise HTTPException(status_code=401, detail="Invalid signature")
        logger.warning("Invalid webhook signature, accepting outside production")

    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict) or not isinstance(payload.get("events", []), list):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    events = []
    for raw in payload.get("events", []):
        if not isinstance(raw, dict):
            logger.warning("Skipping malformed webhook event: {!r}", raw)
            continue
        event = to_inbound_event(raw)
        if event is None:
            logger.info("Skipping {} event", raw.get("type"))
            continue
        events.append(event)

    await asyncio.gather(*(_handle_isolated(engine, e) for e in events))
    logger.info("Processed {} webhook events", len(events))
    return {"success": True, "processed_events": len(events)}


@router.post("/parse", response_model=ParseResponse)
async def parse_message(request: ParseRequest, engine: ConversationEngine = Depends(get_engine)):
    logger.info("Parsing message: {}", request.message)
    parsed, source = await engine.dispatcher.parse_transaction(request.message)
    return ParseResponse(parsed=parsed, source=source)
