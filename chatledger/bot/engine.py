import asyncio

from loguru import logger

from chatledger.bot.dispatcher import CommandContext, CommandDispatcher, DispatchResult
from chatledger.bot.reply import Delivery, ReplyChannel
from chatledger.db.repository import UserRepository
from chatledger.models.schemas import InboundEvent, Reply
from chatledger.services.notifications import NotificationService
from chatledger.services.pet import PetService

GENERIC_ERROR = "❌ Something went wrong while handling your message. Please try again later."


class ConversationEngine:
    """Runs one inbound event end to end.

    The dispatcher produces the reply, the channel delivers it exactly once,
    and follow-up work (feeding the pet, budget and goal pushes) is scheduled
    in the background so it never delays or replaces the reply.
    """

    def __init__(
        self,
        users: UserRepository,
        dispatcher: CommandDispatcher,
        channel: ReplyChannel,
        notifications: NotificationService,
        pets: PetService,
    ):
        self.users = users
        self.dispatcher = dispatcher
        self.channel = channel
        self.notifications = notifications
        self.pets = pets
        self._background: set[asyncio.Task] = set()

    async def handle_event(self, event: InboundEvent) -> Delivery:
        try:
            user = self.users.get_or_create(event.source_user_id)
            ctx = CommandContext(owner_id=user.id, user_id=event.source_user_id, group_id=event.source_group_id)
            if event.type == "postback":
                logger.info("Postback from {}: {!r}", event.source_user_id, event.postback_data)
                result = await self.dispatcher.dispatch_postback(ctx, event.postback_data or "")
            else:
                logger.info("Message from {}: {!r}", event.source_user_id, event.text)
                result = await self.dispatcher.dispatch(ctx, event.text or "")
        except Exception:
            logger.exception("Dispatch failed for {}", event.source_user_id)
            return await self.channel.deliver(event, Reply(text=GENERIC_ERROR))

        delivery = await self.channel.deliver(event, result.reply)
        self._schedule_followups(ctx, result)
        return delivery

    def _schedule_followups(self, ctx: CommandContext, result: DispatchResult) -> None:
        created = result.created
        if created is not None:
            self._spawn(self._feed_pet(ctx.owner_id, created.amount), f"feed pet of {ctx.owner_id}")
            if created.kind == "expense":
                self._spawn(
                    self.notifications.check_and_notify_budget(ctx.owner_id),
                    f"budget notification for {ctx.owner_id}",
                )
        for owner_id in result.touched_owners:
            self._spawn(
                self.notifications.check_and_notify_goal_completion(owner_id),
                f"goal check for {owner_id}",
            )

    async def _feed_pet(self, owner_id: str, amount: float) -> None:
        self.pets.feed_pet(owner_id, amount)

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Background task '{}' failed", task.get_name())

    async def drain_background(self) -> None:
        """Wait for every scheduled follow-up to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
