import asyncio
import inspect
import logging
import uuid
from typing import Any, Awaitable, Callable, Set, Union

from supabase import AsyncClient

from linkup.chat.messages import MESSAGES_TABLE, MessageRepository
from linkup.chat.conversations import CONVERSATIONS_TABLE
from linkup.chat.schemas import EnrichedMessage
from linkup.profiles.service import require_id

from .schemas import ConversationChange, parse_change

logger = logging.getLogger(__name__)

MessageHandler = Callable[[EnrichedMessage], Union[None, Awaitable[None]]]
ChangeHandler = Callable[[ConversationChange], Union[None, Awaitable[None]]]


class Subscription:
    """
    A live realtime channel and the handler deliveries it has in flight.

    `cancel()` is idempotent. Once it returns the handler is not called
    again: pending deliveries are cancelled and later events are dropped.
    """

    def __init__(self, client: AsyncClient, channel, name: str):
        self.client = client
        self.channel = channel
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def schedule(self, coro: Awaitable[Any]) -> None:
        """Run one delivery on the event loop the realtime listener lives on."""
        if self._closed:
            coro.close()
            return
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def deliver(self, handler: Callable[[Any], Any], value: Any) -> None:
        if self._closed:
            return
        try:
            result = handler(value)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Realtime handler for %s raised", self.name)

    async def wait_idle(self) -> None:
        """Wait until every delivery scheduled so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        try:
            await self.client.remove_channel(self.channel)
        except Exception as e:
            logger.warning("Could not remove realtime channel %s: %s", self.name, e)

        logger.info("Realtime subscription %s cancelled", self.name)


def _log_state(name: str):
    def callback(state, error=None):
        state_name = getattr(state, "value", state)
        if error:
            logger.error("Realtime channel %s %s: %s", name, state_name, error)
        else:
            logger.info("Realtime channel %s %s", name, state_name)

    return callback


class RealtimeBridge:
    """Turns Supabase postgres_changes streams into enriched handler calls."""

    def __init__(self, client: AsyncClient, messages: MessageRepository):
        self.client = client
        self.messages = messages

    def _channel_name(self, prefix: str, key: str) -> str:
        # unique per subscription so two screens on the same thread don't collide
        return f"{prefix}:{key}:{uuid.uuid4().hex[:8]}"

    async def _subscribe(self, channel, name: str) -> None:
        try:
            await channel.subscribe(_log_state(name))
        except Exception:
            logger.exception("Realtime channel %s failed to subscribe", name)
            try:
                await self.client.remove_channel(channel)
            except Exception as e:
                logger.warning("Could not remove realtime channel %s: %s", name, e)
            raise

    async def subscribe_to_conversation(self, conversation_id: str, on_message: MessageHandler) -> Subscription:
        """
        Stream new messages of one conversation to `on_message`.

        Each insert event is re-read by id and enriched with the sender
        profile before delivery. Delivery is at-least-once and not ordered
        across senders; dedupe on `message.id` if that matters.
        """
        conversation_id = require_id(conversation_id, "conversation ID")
        name = self._channel_name("messages", conversation_id)
        channel = self.client.channel(name)
        subscription = Subscription(self.client, channel, name)

        def on_insert(payload):
            change = parse_change(payload)
            message_id = change.record.get("id")
            if not message_id:
                logger.warning("Realtime insert on %s without message id: %s", name, payload)
                return
            logger.debug("Realtime message %s received on %s", message_id, name)
            subscription.schedule(self._deliver_message(subscription, message_id, on_message))

        channel.on_postgres_changes(
            "INSERT",
            on_insert,
            table=MESSAGES_TABLE,
            schema="public",
            filter=f"conversation_id=eq.{conversation_id}",
        )
        await self._subscribe(channel, name)
        return subscription

    async def _deliver_message(self, subscription: Subscription, message_id: str, on_message: MessageHandler) -> None:
        result = await self.messages.get(message_id)
        if not result.success:
            logger.error(
                "Could not load message %s for realtime delivery: %s", message_id, result.msg
            )
            return
        await subscription.deliver(on_message, result.data)

    async def subscribe_to_user_conversations(self, user_id: str, on_change: ChangeHandler) -> Subscription:
        """
        Stream every insert/update/delete on conversations where `user_id`
        is either participant. The two filters feed the same handler and
        their relative order is not guaranteed.
        """
        user_id = require_id(user_id)
        name = self._channel_name("conversations", user_id)
        channel = self.client.channel(name)
        subscription = Subscription(self.client, channel, name)

        def on_any(payload):
            change = parse_change(payload)
            logger.debug("Realtime conversation %s %s on %s", change.event_type, change.record.get("id"), name)
            subscription.schedule(subscription.deliver(on_change, change))

        for column in ("participant_1", "participant_2"):
            channel.on_postgres_changes(
                "*",
                on_any,
                table=CONVERSATIONS_TABLE,
                schema="public",
                filter=f"{column}=eq.{user_id}",
            )
        await self._subscribe(channel, name)
        return subscription
