from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Literal

from uploadman.models import CompletionEvent, ProgressEvent, QueueSnapshot

log = logging.getLogger(__name__)

Topic = Literal["snapshot", "completion", "progress"]
EventHandler = Callable[[Any], Awaitable[None] | None]

DEFAULT_SNAPSHOT_BUFFER = 64

_CLOSED = object()


class SubscriptionClosed(RuntimeError):
    pass


class Subscription:
    """One subscriber's private mailbox on the bus.

    Items arrive in publish order. A bounded mailbox drops its oldest item when
    full, which is only used for snapshots where the newest value wins.
    """

    def __init__(
        self,
        bus: EventBus,
        topic: Topic,
        *,
        maxsize: int = 0,
        task_id: str | None = None,
    ) -> None:
        self._bus = bus
        self.topic = topic
        self.task_id = task_id
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, item: Any) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except asyncio.QueueEmpty:
                    pass

    def accepts(self, item: Any) -> bool:
        if self.task_id is None:
            return True
        return getattr(item, "task_id", None) == self.task_id

    async def get(self) -> Any:
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise SubscriptionClosed(f"{self.topic} subscription is closed.")
        return item

    def get_nowait(self) -> Any:
        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise asyncio.QueueEmpty
        return item

    def drain(self) -> list[Any]:
        items: list[Any] = []
        while True:
            try:
                items.append(self.get_nowait())
            except asyncio.QueueEmpty:
                return items

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        self._offer(_CLOSED)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Any:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration from None

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EventBus:
    """Fire-and-forget broadcast of queue snapshots, completions and progress."""

    def __init__(self, *, snapshot_buffer: int = DEFAULT_SNAPSHOT_BUFFER) -> None:
        self._snapshot_buffer = max(1, snapshot_buffer)
        self._subscribers: dict[str, list[Subscription]] = {
            "snapshot": [],
            "completion": [],
            "progress": [],
        }
        self._listener_tasks: list[asyncio.Task] = []
        self._closed = False

    def subscribe_snapshots(self) -> Subscription:
        return self._subscribe("snapshot", maxsize=self._snapshot_buffer)

    def subscribe_completions(self) -> Subscription:
        return self._subscribe("completion")

    def subscribe_progress(self, task_id: str | None = None) -> Subscription:
        return self._subscribe("progress", task_id=task_id)

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._subscribers[topic])

    def _subscribe(
        self, topic: Topic, *, maxsize: int = 0, task_id: str | None = None
    ) -> Subscription:
        if self._closed:
            raise RuntimeError("Event bus is closed.")
        subscription = Subscription(self, topic, maxsize=maxsize, task_id=task_id)
        self._subscribers[topic].append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.topic, [])
        if subscription in subscribers:
            subscribers.remove(subscription)

    def publish_snapshot(self, snapshot: QueueSnapshot) -> None:
        self._publish("snapshot", snapshot)

    def publish_completion(self, event: CompletionEvent) -> None:
        self._publish("completion", event)

    def publish_progress(self, event: ProgressEvent) -> None:
        self._publish("progress", event)

    def _publish(self, topic: Topic, item: Any) -> None:
        for subscription in tuple(self._subscribers[topic]):
            if subscription.accepts(item):
                subscription._offer(item)

    def listen(
        self, topic: Topic, handler: EventHandler, *, task_id: str | None = None
    ) -> asyncio.Task:
        """Feed ``topic`` into ``handler`` from a dedicated consumer task."""
        if topic == "snapshot":
            subscription = self.subscribe_snapshots()
        elif topic == "completion":
            subscription = self.subscribe_completions()
        else:
            subscription = self.subscribe_progress(task_id)
        consumer = asyncio.create_task(self._consume(subscription, handler))
        self._listener_tasks.append(consumer)
        consumer.add_done_callback(self._forget_listener)
        return consumer

    def _forget_listener(self, task: asyncio.Task) -> None:
        if task in self._listener_tasks:
            self._listener_tasks.remove(task)

    @staticmethod
    async def _consume(subscription: Subscription, handler: EventHandler) -> None:
        try:
            async for item in subscription:
                try:
                    maybe = handler(item)
                    if asyncio.iscoroutine(maybe):
                        await maybe
                except Exception:
                    log.exception("Event handler failed for %s", subscription.topic)
        finally:
            subscription.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for subscribers in self._subscribers.values():
            for subscription in tuple(subscribers):
                subscription.close()
