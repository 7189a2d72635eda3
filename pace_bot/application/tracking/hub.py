"""Per-activity publish/subscribe registry for live followers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Mapping

from pace_bot.application.ports.services import EventTransport
from pace_bot.domain.errors import NotFoundError
from pace_bot.domain.models import EventMessage, EventType, FollowerSubscription
from utils.logger import get_logger

__all__ = ["FollowerHub"]

logger = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 100
DEFAULT_DELIVERY_TIMEOUT = 5.0
DEFAULT_GRACE_SECONDS = 5.0


@dataclass(eq=False)
class _Subscriber:
    activity_id: str
    connection_id: str
    user_id: str
    queue: asyncio.Queue[EventMessage | None]
    task: asyncio.Task | None = None


@dataclass(eq=False)
class _Channel:
    activity_id: str
    subscribers: dict[str, _Subscriber] = field(default_factory=dict)
    closed: bool = False
    teardown_task: asyncio.Task | None = None


class FollowerHub:
    """Route follower events of each live activity to its subscribers.

    Every subscriber owns a bounded FIFO queue drained by a dedicated delivery
    task, so ``publish`` never waits on a connection and each subscriber sees
    events in the order they were published. A connection whose queue
    overflows, whose delivery times out or whose transport raises is dropped.

    All state is confined to the running event loop.
    """

    def __init__(
        self,
        transport: EventTransport,
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        delivery_timeout: float = DEFAULT_DELIVERY_TIMEOUT,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ) -> None:
        self._transport = transport
        self._queue_size = max(int(queue_size), 1)
        self._delivery_timeout = delivery_timeout
        self._grace_seconds = max(float(grace_seconds), 0.0)
        self._channels: dict[str, _Channel] = {}
        self._lock = asyncio.Lock()

    # --- channel lifecycle ------------------------------------------------

    def open(self, activity_id: str) -> None:
        """Register a channel for a freshly started activity."""

        if activity_id in self._channels:
            return
        self._channels[activity_id] = _Channel(activity_id=activity_id)
        logger.info("follower_channel_opened", extra={"activity_id": activity_id})

    def is_open(self, activity_id: str) -> bool:
        channel = self._channels.get(activity_id)
        return channel is not None and not channel.closed

    async def teardown(self, activity_id: str) -> None:
        """Stop accepting joins and forget the channel after the grace delay."""

        async with self._lock:
            channel = self._channels.get(activity_id)
            if channel is None or channel.closed:
                return
            channel.closed = True
            channel.teardown_task = asyncio.create_task(
                self._expire(channel), name=f"follower-teardown-{activity_id}"
            )
        logger.info(
            "follower_channel_closing",
            extra={"activity_id": activity_id, "grace_seconds": self._grace_seconds},
        )

    async def _expire(self, channel: _Channel) -> None:
        if self._grace_seconds:
            await asyncio.sleep(self._grace_seconds)
        for subscriber in list(channel.subscribers.values()):
            self._retire(subscriber)
        channel.subscribers.clear()
        if self._channels.get(channel.activity_id) is channel:
            del self._channels[channel.activity_id]
        logger.info(
            "follower_channel_removed", extra={"activity_id": channel.activity_id}
        )

    async def close(self) -> None:
        """Cancel every delivery and teardown task, e.g. on shutdown."""

        tasks: list[asyncio.Task] = []
        for channel in self._channels.values():
            if channel.teardown_task is not None:
                tasks.append(channel.teardown_task)
            for subscriber in channel.subscribers.values():
                if subscriber.task is not None:
                    tasks.append(subscriber.task)
        self._channels.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("Cancelled task %s", task.get_name())

    # --- membership -------------------------------------------------------

    async def join(self, activity_id: str, connection_id: str, user_id: str) -> bool:
        """Subscribe a connection; return ``False`` when it was already joined."""

        async with self._lock:
            channel = self._channels.get(activity_id)
            if channel is None or channel.closed:
                raise NotFoundError(f"Activity {activity_id} is not accepting followers")
            if connection_id in channel.subscribers:
                return False
            subscriber = _Subscriber(
                activity_id=activity_id,
                connection_id=connection_id,
                user_id=user_id,
                queue=asyncio.Queue(maxsize=self._queue_size),
            )
            subscriber.task = asyncio.create_task(
                self._deliver_loop(subscriber),
                name=f"follower-delivery-{activity_id}-{connection_id}",
            )
            channel.subscribers[connection_id] = subscriber
        logger.info(
            "follower_joined", extra={"activity_id": activity_id, "user_id": user_id}
        )
        return True

    async def leave(
        self, activity_id: str, connection_id: str, user_id: str | None = None
    ) -> bool:
        """Unsubscribe a connection; no-op when it is not subscribed.

        With ``user_id`` only that user's own subscription is removed.
        """

        async with self._lock:
            channel = self._channels.get(activity_id)
            if channel is None:
                return False
            subscriber = channel.subscribers.get(connection_id)
            if subscriber is None:
                return False
            if user_id is not None and subscriber.user_id != user_id:
                return False
            del channel.subscribers[connection_id]
        self._retire(subscriber)
        logger.info(
            "follower_left",
            extra={"activity_id": activity_id, "user_id": subscriber.user_id},
        )
        return True

    async def disconnect(self, connection_id: str) -> list[str]:
        """Drop every subscription held by a lost connection."""

        left: list[str] = []
        async with self._lock:
            for channel in self._channels.values():
                subscriber = channel.subscribers.pop(connection_id, None)
                if subscriber is not None:
                    self._retire(subscriber)
                    left.append(channel.activity_id)
        return left

    def list_subscribers(self, activity_id: str) -> frozenset[FollowerSubscription]:
        channel = self._channels.get(activity_id)
        if channel is None:
            return frozenset()
        return frozenset(
            FollowerSubscription(
                activity_id=activity_id,
                connection_id=subscriber.connection_id,
                user_id=subscriber.user_id,
            )
            for subscriber in list(channel.subscribers.values())
        )

    def is_subscribed(self, activity_id: str, user_id: str) -> bool:
        channel = self._channels.get(activity_id)
        if channel is None:
            return False
        return any(s.user_id == user_id for s in channel.subscribers.values())

    # --- fan-out ----------------------------------------------------------

    def publish(
        self,
        activity_id: str,
        event_type: EventType,
        payload: Mapping[str, Any] | None = None,
    ) -> int:
        """Queue an event for every subscriber and return how many got it.

        Never raises and never waits: broadcast is best effort.
        """

        try:
            channel = self._channels.get(activity_id)
            if channel is None:
                logger.debug(
                    "publish_without_channel",
                    extra={"activity_id": activity_id, "event": event_type.value},
                )
                return 0
            message = EventMessage(
                type=event_type, activity_id=activity_id, payload=dict(payload or {})
            )
            queued = 0
            for subscriber in list(channel.subscribers.values()):
                try:
                    subscriber.queue.put_nowait(message)
                except asyncio.QueueFull:
                    logger.warning(
                        "follower_queue_overflow",
                        extra={
                            "activity_id": activity_id,
                            "user_id": subscriber.user_id,
                        },
                    )
                    self._drop(subscriber)
                    continue
                queued += 1
            return queued
        except Exception:
            logger.exception(
                "publish_failed",
                extra={"activity_id": activity_id, "event": event_type.value},
            )
            return 0

    async def flush(self, activity_id: str) -> None:
        """Wait until every queued event of the activity has been handled."""

        channel = self._channels.get(activity_id)
        if channel is None:
            return
        for subscriber in list(channel.subscribers.values()):
            await subscriber.queue.join()

    async def _deliver_loop(self, subscriber: _Subscriber) -> None:
        while True:
            message = await subscriber.queue.get()
            try:
                if message is None:
                    return
                await asyncio.wait_for(
                    self._transport.deliver(subscriber.connection_id, message),
                    timeout=self._delivery_timeout,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "follower_delivery_failed: %s",
                    type(exc).__name__,
                    extra={
                        "activity_id": subscriber.activity_id,
                        "user_id": subscriber.user_id,
                        "event": message.type.value if message else None,
                    },
                )
                self._drop(subscriber, from_worker=True)
                return
            finally:
                subscriber.queue.task_done()

    def _drop(self, subscriber: _Subscriber, *, from_worker: bool = False) -> None:
        channel = self._channels.get(subscriber.activity_id)
        if channel is not None and channel.subscribers.get(subscriber.connection_id) is subscriber:
            del channel.subscribers[subscriber.connection_id]
        # Pending events of a dropped connection are discarded.
        while True:
            try:
                subscriber.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            subscriber.queue.task_done()
        if not from_worker and subscriber.task is not None:
            subscriber.task.cancel()

    @staticmethod
    def _retire(subscriber: _Subscriber) -> None:
        """Let the worker flush already queued events, then stop."""

        try:
            subscriber.queue.put_nowait(None)
        except asyncio.QueueFull:
            if subscriber.task is not None:
                subscriber.task.cancel()
