"""
Agent events and the optional event bus they can be fanned out on.

Every run reports what it is doing as ``AgentEvent`` values on a named
stream (text, tool, reasoning, compaction, error, lifecycle).  The caller's
``on_agent_event`` hook receives them directly; when a controller is given an
``EventBus`` the same events are also published there so observers can
subscribe by pattern without being wired into each run.

Concurrency model of the bus:
  - emit() enqueues; it never blocks and is safe from sync code
  - one dispatcher task dequeues and fans out to matching handlers
  - handler exceptions are logged, never propagated
  - events are dispatched in emission order
"""

from __future__ import annotations

import asyncio
import fnmatch
import re
import time
import uuid
from typing import Any, Callable, Coroutine, Literal

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

AgentStream = Literal["text", "tool", "reasoning", "compaction", "error", "lifecycle"]

EventHandler = Callable[["AgentEvent"], Any] | Callable[["AgentEvent"], Coroutine[Any, Any, Any]]


class AgentEvent(BaseModel):
    """A structured observability record emitted during a run."""

    stream: AgentStream
    data: dict[str, Any] = Field(default_factory=dict)
    session_key: str = ""
    epoch: int = 0
    ts: float = Field(default_factory=time.time)

    @property
    def event_type(self) -> str:
        phase = self.data.get("phase")
        if isinstance(phase, str) and phase:
            return f"agent.{self.stream}.{phase}"
        return f"agent.{self.stream}"


class _Subscription:
    __slots__ = ("sub_id", "pattern", "handler", "_compiled")

    def __init__(self, sub_id: str, pattern: str, handler: EventHandler) -> None:
        self.sub_id = sub_id
        self.pattern = pattern
        self.handler = handler
        self._compiled: re.Pattern[str] = re.compile(fnmatch.translate(pattern))

    def matches(self, event_type: str) -> bool:
        return self._compiled.match(event_type) is not None


_STOP = object()


class EventBus:
    """Async fan-out of agent events to fnmatch-style subscribers.

      "agent.tool.*"   matches "agent.tool.start", "agent.tool.end"
      "agent.*"        matches every agent event
    """

    def __init__(self, max_queue_size: int = 10000) -> None:
        self._queue: asyncio.Queue[AgentEvent | object] = asyncio.Queue(maxsize=max_queue_size)
        self._subscriptions: dict[str, _Subscription] = {}
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._waiters: dict[int, asyncio.Event] = {}

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._dispatch_loop(), name="cadence-event-bus")
        logger.info("event_bus.started")

    async def stop(self) -> None:
        """Drain queued events, then stop the dispatcher."""
        if not self._running:
            return
        self._running = False
        try:
            self._queue.put_nowait(_STOP)
        except asyncio.QueueFull:
            logger.warning("event_bus.stop_queue_full")
            if self._task is not None:
                self._task.cancel()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("event_bus.stop_timeout", timeout=5.0)
                self._task.cancel()
            except asyncio.CancelledError:
                pass
            self._task = None
        for waiter in self._waiters.values():
            waiter.set()
        self._waiters.clear()
        logger.info("event_bus.stopped")

    def subscribe(self, pattern: str, handler: EventHandler) -> str:
        sub_id = uuid.uuid4().hex[:12]
        self._subscriptions[sub_id] = _Subscription(sub_id, pattern, handler)
        logger.debug("event_bus.subscribed", pattern=pattern, sub_id=sub_id)
        return sub_id

    def unsubscribe(self, subscription_id: str) -> None:
        if self._subscriptions.pop(subscription_id, None) is not None:
            logger.debug("event_bus.unsubscribed", sub_id=subscription_id)

    def emit(self, event: AgentEvent) -> None:
        """Enqueue an event; dropped with a warning if the queue is full."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("event_bus.queue_full", event_type=event.event_type)

    async def emit_async(self, event: AgentEvent) -> None:
        """Emit and wait until every matching handler has run."""
        if not self._running:
            raise RuntimeError("emit_async called on a stopped EventBus")
        done = asyncio.Event()
        self._waiters[id(event)] = done
        self.emit(event)
        try:
            await asyncio.wait_for(done.wait(), timeout=10.0)
        finally:
            self._waiters.pop(id(event), None)

    async def _dispatch_loop(self) -> None:
        while True:
            try:
                item = await self._queue.get()
            except asyncio.CancelledError:
                break
            if item is _STOP:
                break
            await self._dispatch(item)  # type: ignore[arg-type]

        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _STOP:
                await self._dispatch(item)  # type: ignore[arg-type]

    async def _dispatch(self, event: AgentEvent) -> None:
        event_type = event.event_type
        matching = [s for s in self._subscriptions.values() if s.matches(event_type)]
        if matching:
            await asyncio.gather(*(self._invoke(s, event) for s in matching))
        waiter = self._waiters.get(id(event))
        if waiter is not None:
            waiter.set()

    @staticmethod
    async def _invoke(sub: _Subscription, event: AgentEvent) -> None:
        try:
            result = sub.handler(event)
            if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                await result
        except Exception:
            logger.error(
                "event_bus.handler_error",
                pattern=sub.pattern,
                event_type=event.event_type,
                exc_info=True,
            )

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def is_running(self) -> bool:
        return self._running
