from __future__ import annotations

import asyncio

from uploadman.events import EventBus
from uploadman.models import CompletionEvent, ProgressEvent, QueueSnapshot


def _completion(task_id: str) -> CompletionEvent:
    return CompletionEvent(
        task_id=task_id,
        filename=f"{task_id}.txt",
        success=True,
        retry_count=0,
        finished_at=0.0,
    )


def _progress(task_id: str, value: float) -> ProgressEvent:
    return ProgressEvent(
        task_id=task_id, attempt=1, progress=value, sent_bytes=int(value * 10), total_bytes=10
    )


def test_publish_without_subscribers_is_a_noop() -> None:
    bus = EventBus()

    bus.publish_snapshot(QueueSnapshot(tasks=()))
    bus.publish_completion(_completion("a"))

    assert bus.subscriber_count("snapshot") == 0


def test_slow_snapshot_subscriber_keeps_latest() -> None:
    async def scenario():
        bus = EventBus(snapshot_buffer=2)
        subscription = bus.subscribe_snapshots()
        snapshots = [QueueSnapshot(tasks=(), taken_at=float(i)) for i in range(3)]
        for snapshot in snapshots:
            bus.publish_snapshot(snapshot)
        return subscription.drain(), subscription.dropped

    received, dropped = asyncio.run(scenario())

    assert [snapshot.taken_at for snapshot in received] == [1.0, 2.0]
    assert dropped == 1


def test_completions_are_never_dropped_and_stay_ordered() -> None:
    async def scenario():
        bus = EventBus(snapshot_buffer=1)
        subscription = bus.subscribe_completions()
        for i in range(100):
            bus.publish_completion(_completion(str(i)))
        return subscription.drain()

    received = asyncio.run(scenario())

    assert [event.task_id for event in received] == [str(i) for i in range(100)]


def test_progress_subscription_filters_by_task() -> None:
    async def scenario():
        bus = EventBus()
        only_a = bus.subscribe_progress("a")
        everything = bus.subscribe_progress()
        bus.publish_progress(_progress("a", 0.5))
        bus.publish_progress(_progress("b", 0.5))
        bus.publish_progress(_progress("a", 1.0))
        return only_a.drain(), everything.drain()

    only_a, everything = asyncio.run(scenario())

    assert [(event.task_id, event.progress) for event in only_a] == [("a", 0.5), ("a", 1.0)]
    assert len(everything) == 3


def test_close_ends_iteration() -> None:
    async def scenario():
        bus = EventBus()
        subscription = bus.subscribe_completions()
        bus.publish_completion(_completion("a"))
        bus.close()
        return [event.task_id async for event in subscription]

    assert asyncio.run(scenario()) == ["a"]


def test_closed_subscription_stops_receiving() -> None:
    async def scenario():
        bus = EventBus()
        with bus.subscribe_completions() as subscription:
            bus.publish_completion(_completion("a"))
        bus.publish_completion(_completion("b"))
        return subscription.drain(), bus.subscriber_count("completion")

    received, remaining = asyncio.run(scenario())

    assert [event.task_id for event in received] == ["a"]
    assert remaining == 0


def test_listen_survives_failing_handler() -> None:
    async def scenario():
        bus = EventBus()
        seen: list[str] = []

        async def handler(event: CompletionEvent) -> None:
            if event.task_id == "bad":
                raise RuntimeError("handler blew up")
            seen.append(event.task_id)

        consumer = bus.listen("completion", handler)
        for task_id in ("a", "bad", "b"):
            bus.publish_completion(_completion(task_id))
        await asyncio.sleep(0.01)
        bus.close()
        await asyncio.wait_for(consumer, timeout=1.0)
        return seen

    assert asyncio.run(scenario()) == ["a", "b"]


def test_listen_accepts_plain_callables() -> None:
    async def scenario():
        bus = EventBus()
        seen: list[float] = []
        consumer = bus.listen("progress", lambda event: seen.append(event.progress), task_id="a")
        bus.publish_progress(_progress("a", 0.25))
        bus.publish_progress(_progress("b", 0.5))
        await asyncio.sleep(0.01)
        bus.close()
        await asyncio.wait_for(consumer, timeout=1.0)
        return seen

    assert asyncio.run(scenario()) == [0.25]
