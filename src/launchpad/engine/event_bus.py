"""Async pub/sub fan-out for job update events.

Pipelines publish JobUpdateEvents; the SSE stream, webhook notifiers and the
CLI renderer subscribe. A drain loop routes each event into the bounded deque
of every matching subscriber, and each subscriber has its own delivery task
that feeds its callback from that deque. A slow consumer therefore loses its
oldest undelivered events instead of holding up a job or the other
subscribers, and a subscriber that keeps failing is disabled rather than
retried forever. Publishing never raises into the caller.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from collections.abc import Callable
from typing import Any

from launchpad.core.logging import get_logger
from launchpad.core.models import JobUpdateEvent

_logger = get_logger("engine.event_bus")

EventFilter = Callable[[JobUpdateEvent], bool] | None
EventCallback = Callable[[JobUpdateEvent], Any]

_MAX_CONSECUTIVE_FAILURES = 10


class EventBus:
    """Pub/sub bus with a background drain loop and per-subscriber delivery.

    Usage::

        bus = EventBus(max_queue_size=1000)
        await bus.start()
        sub_id = bus.subscribe(render, event_filter=lambda e: e.id == job_id)
        await bus.publish(event)
        bus.unsubscribe(sub_id)
        await bus.shutdown()
    """

    def __init__(self, *, max_queue_size: int = 1000) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: dict[str, _Subscriber] = {}
        self._drain_task: asyncio.Task[None] | None = None
        self._pending: asyncio.Queue[JobUpdateEvent] = asyncio.Queue()
        self._retiring: set[asyncio.Task[None]] = set()
        self._running = False

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._drain_task = asyncio.create_task(self._drain_loop(), name="event-bus-drain")
        for sub_id, sub in self._subscribers.items():
            self._start_delivery(sub_id, sub)

    @property
    def running(self) -> bool:
        return self._running

    async def publish(self, event: JobUpdateEvent) -> None:
        """Queue an event for delivery. Dropped if the bus is not running."""
        if not self._running:
            _logger.debug("event_bus.dropped_not_running", job_id=event.id)
            return
        await self._pending.put(event)

    def subscribe(
        self,
        callback: EventCallback,
        *,
        event_filter: EventFilter = None,
    ) -> str:
        """Register a sync or async callback; returns the subscription id."""
        sub_id = str(uuid.uuid4())
        sub = _Subscriber(
            callback=callback,
            event_filter=event_filter,
            queue=deque(maxlen=self._max_queue_size),
        )
        self._subscribers[sub_id] = sub
        if self._running:
            self._start_delivery(sub_id, sub)
        _logger.debug("event_bus.subscribed", sub_id=sub_id)
        return sub_id

    def unsubscribe(self, sub_id: str) -> bool:
        sub = self._subscribers.pop(sub_id, None)
        if sub is None:
            return False
        sub.close()
        # The delivery task exits on its own; hold it until it does
        if sub.task is not None and not sub.task.done():
            self._retiring.add(sub.task)
            sub.task.add_done_callback(self._retiring.discard)
        sub.task = None
        _logger.debug("event_bus.unsubscribed", sub_id=sub_id)
        return True

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def shutdown(self) -> None:
        """Stop the drain loop, then deliver whatever is still queued."""
        self._running = False
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None

        while not self._pending.empty():
            try:
                event = self._pending.get_nowait()
            except asyncio.QueueEmpty:
                break
            try:
                self._route(event)
            finally:
                self._pending.task_done()

        for sub_id, sub in list(self._subscribers.items()):
            if sub.task is None:
                await self._flush(sub_id, sub)
                continue
            sub.finish()
            await sub.task
            sub.task = None

        _logger.info("event_bus.shutdown", remaining_subscribers=len(self._subscribers))

    async def wait_idle(self) -> None:
        """Block until every event published so far has reached its subscribers."""
        await self._pending.join()
        for sub in list(self._subscribers.values()):
            await sub.idle.wait()

    async def _drain_loop(self) -> None:
        while self._running:
            try:
                event = await asyncio.wait_for(self._pending.get(), timeout=1.0)
            except TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            try:
                self._route(event)
            finally:
                self._pending.task_done()

    def _route(self, event: JobUpdateEvent) -> None:
        # Snapshot: callbacks may unsubscribe while we iterate
        for sub_id, sub in list(self._subscribers.items()):
            if sub.consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
                continue
            try:
                if sub.event_filter is not None and not sub.event_filter(event):
                    continue
            except Exception:
                _logger.warning(
                    "event_bus.filter_error",
                    subscriber_id=sub_id,
                    job_id=event.id,
                    exc_info=True,
                )
                continue
            if len(sub.queue) == sub.queue.maxlen:
                sub.dropped += 1
                log = _logger.warning if sub.dropped == 1 else _logger.debug
                log(
                    "event_bus.subscriber_lagging",
                    subscriber_id=sub_id,
                    job_id=event.id,
                    dropped=sub.dropped,
                )
            sub.push(event)

    def _start_delivery(self, sub_id: str, sub: _Subscriber) -> None:
        sub.finishing = False
        sub.task = asyncio.create_task(
            self._delivery_loop(sub_id, sub), name=f"event-bus-sub-{sub_id[:8]}",
        )

    async def _delivery_loop(self, sub_id: str, sub: _Subscriber) -> None:
        while not sub.closed:
            await sub.wakeup.wait()
            sub.wakeup.clear()
            await self._flush(sub_id, sub)
            if sub.finishing:
                return

    async def _flush(self, sub_id: str, sub: _Subscriber) -> None:
        while sub.queue and not sub.closed:
            await self._invoke(sub_id, sub, sub.queue.popleft())
        sub.idle.set()

    async def _invoke(self, sub_id: str, sub: _Subscriber, event: JobUpdateEvent) -> None:
        if sub.consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
            return
        try:
            result = sub.callback(event)
            if asyncio.iscoroutine(result):
                await result
            sub.consecutive_failures = 0
        except Exception:
            sub.consecutive_failures += 1
            _logger.warning(
                "event_bus.subscriber_error",
                subscriber_id=sub_id,
                job_id=event.id,
                consecutive_failures=sub.consecutive_failures,
                exc_info=True,
            )
            if sub.consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
                _logger.error(
                    "event_bus.subscriber_disabled",
                    subscriber_id=sub_id,
                    reason=f"{_MAX_CONSECUTIVE_FAILURES} consecutive failures",
                )


class _Subscriber:
    __slots__ = (
        "callback",
        "event_filter",
        "queue",
        "consecutive_failures",
        "dropped",
        "task",
        "wakeup",
        "idle",
        "closed",
        "finishing",
    )

    def __init__(
        self,
        callback: EventCallback,
        event_filter: EventFilter,
        queue: deque[JobUpdateEvent],
    ) -> None:
        self.callback = callback
        self.event_filter = event_filter
        self.queue = queue
        self.consecutive_failures: int = 0
        self.dropped: int = 0
        self.task: asyncio.Task[None] | None = None
        self.wakeup = asyncio.Event()
        self.idle = asyncio.Event()
        self.idle.set()
        self.closed = False
        self.finishing = False

    def push(self, event: JobUpdateEvent) -> None:
        self.queue.append(event)
        self.idle.clear()
        self.wakeup.set()

    def finish(self) -> None:
        """Deliver what is queued, then stop."""
        self.finishing = True
        self.wakeup.set()

    def close(self) -> None:
        """Stop delivering; queued events are discarded."""
        self.closed = True
        self.queue.clear()
        self.idle.set()
        self.wakeup.set()


__all__ = ["EventBus", "EventCallback", "EventFilter"]
