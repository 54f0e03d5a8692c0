"""
Ordered, paced delivery of outbound replies.

A run produces replies from three places: tool results, streamed blocks and
the final answer.  ``ReplyDispatcher`` pushes all of them through a single
FIFO chain so a channel sees them in exactly the order they were submitted,
whatever their kind.

Each accepted payload becomes one asyncio task that first waits for its
predecessor, then (for every block reply after the first) sleeps for a
human-like random pause, then calls ``deliver``.  A failed delivery is logged
and reported through ``on_error`` and the chain carries on.  ``on_idle``
fires every time the number of in-flight deliveries drops back to zero.

The ``send_*`` methods are synchronous and must be called while an event
loop is running.
"""

from __future__ import annotations

import asyncio
import inspect
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

import structlog

from cadence.config import DispatchConfig, HumanDelayConfig
from cadence.metrics import metrics
from cadence.reply.tokens import HEARTBEAT_TOKEN, SILENT_REPLY_TOKEN, strip_heartbeat_token
from cadence.types import ReplyKind, ReplyPayload

logger = structlog.get_logger(__name__)

Deliverer = Callable[[ReplyPayload, ReplyKind], Awaitable[None] | None]
ErrorHandler = Callable[[BaseException, ReplyKind], Any]


def normalize_reply_payload(
    payload: ReplyPayload,
    *,
    response_prefix: Optional[str] = None,
    on_heartbeat_strip: Optional[Callable[[], Any]] = None,
) -> Optional[ReplyPayload]:
    """
    Return the payload as it should be delivered, or None to drop it.

    Empty payloads and a bare silent token are dropped unless media is
    attached.  An embedded heartbeat token is stripped.  The response prefix
    is added once.
    """
    has_media = payload.has_media
    trimmed = (payload.text or "").strip()
    if not trimmed and not has_media:
        return None
    if trimmed == SILENT_REPLY_TOKEN and not has_media:
        return None

    text = payload.text
    if text and not trimmed:
        # Media-only reply: keep an empty caption rather than whitespace.
        text = ""

    if text and HEARTBEAT_TOKEN in text:
        stripped = strip_heartbeat_token(text, mode="message")
        if stripped.did_strip and on_heartbeat_strip is not None:
            on_heartbeat_strip()
        if stripped.should_skip and not has_media:
            return None
        text = stripped.text

    if (
        response_prefix
        and text
        and text.strip() != HEARTBEAT_TOKEN
        and not text.startswith(response_prefix)
    ):
        text = f"{response_prefix} {text}"

    return payload.with_text(text)


def human_delay_ms(config: Optional[HumanDelayConfig], rng: random.Random | None = None) -> int:
    """Pick a pause in ``[min_ms, max_ms]``; 0 when pacing is disabled."""
    if config is None or not config.enabled:
        return 0
    low, high = config.min_ms, config.max_ms
    if high <= low:
        return low
    return (rng or random).randint(low, high)


class ReplyDispatcher:
    """Serialises tool, block and final replies into one delivery chain."""

    def __init__(
        self,
        deliver: Deliverer,
        *,
        response_prefix: Optional[str] = None,
        on_heartbeat_strip: Optional[Callable[[], Any]] = None,
        on_idle: Optional[Callable[[], Any]] = None,
        on_error: Optional[ErrorHandler] = None,
        human_delay: Optional[HumanDelayConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._deliver = deliver
        self._response_prefix = response_prefix
        self._on_heartbeat_strip = on_heartbeat_strip
        self._on_idle = on_idle
        self._on_error = on_error
        self._human_delay = human_delay
        self._sleep = sleep
        self._rng = rng

        self._tail: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._pending = 0
        self._sent_first_block = False
        self._queued_counts: dict[str, int] = {"tool": 0, "block": 0, "final": 0}

    @classmethod
    def from_config(
        cls,
        deliver: Deliverer,
        dispatch: DispatchConfig,
        human_delay: HumanDelayConfig,
        **hooks: Any,
    ) -> "ReplyDispatcher":
        """Build a dispatcher from the dispatch and pacing config slices."""
        return cls(
            deliver,
            response_prefix=dispatch.response_prefix,
            human_delay=human_delay,
            **hooks,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def send_tool_result(self, payload: ReplyPayload) -> bool:
        return self._enqueue("tool", payload)

    def send_block_reply(self, payload: ReplyPayload) -> bool:
        return self._enqueue("block", payload)

    def send_final_reply(self, payload: ReplyPayload) -> bool:
        return self._enqueue("final", payload)

    async def wait_for_idle(self) -> None:
        """Wait for every delivery enqueued before this call."""
        tail = self._tail
        if tail is not None and not tail.done():
            await asyncio.wait({tail})

    def get_queued_counts(self) -> dict[str, int]:
        return dict(self._queued_counts)

    @property
    def pending(self) -> int:
        return self._pending

    # ------------------------------------------------------------------
    # Chain
    # ------------------------------------------------------------------

    def _enqueue(self, kind: ReplyKind, payload: ReplyPayload) -> bool:
        normalized = normalize_reply_payload(
            payload,
            response_prefix=self._response_prefix,
            on_heartbeat_strip=self._on_heartbeat_strip,
        )
        if normalized is None:
            logger.debug("reply_dispatcher.dropped", kind=kind)
            return False

        self._queued_counts[kind] += 1
        self._pending += 1

        # The first block goes out immediately; later ones are paced.
        should_delay = kind == "block" and self._sent_first_block
        if kind == "block":
            self._sent_first_block = True

        task = asyncio.get_running_loop().create_task(
            self._deliver_after(self._tail, kind, normalized, should_delay),
            name=f"reply-dispatch-{kind}",
        )
        self._tail = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _deliver_after(
        self,
        previous: asyncio.Task[None] | None,
        kind: ReplyKind,
        payload: ReplyPayload,
        should_delay: bool,
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        try:
            if should_delay:
                delay_ms = human_delay_ms(self._human_delay, self._rng)
                if delay_ms > 0:
                    await self._sleep(delay_ms / 1000.0)
            result = self._deliver(payload, kind)
            if inspect.isawaitable(result):
                await result
            metrics.inc("replies_delivered_total", kind=kind)
        except Exception as exc:
            metrics.inc("replies_failed_total", kind=kind)
            logger.warning("reply_dispatcher.delivery_failed", kind=kind, error=str(exc))
            self._call_hook("on_error", self._on_error, exc, kind)
        finally:
            self._pending -= 1
            if self._pending == 0:
                self._call_hook("on_idle", self._on_idle)

    @staticmethod
    def _call_hook(name: str, hook: Optional[Callable[..., Any]], *args: Any) -> None:
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as hook_error:
            logger.warning("reply_dispatcher.hook_failed", hook=name, error=str(hook_error))


# ----------------------------------------------------------------------
# Typing-indicator variant
# ----------------------------------------------------------------------


class TypingController(Protocol):
    def mark_dispatch_idle(self) -> None: ...


@dataclass
class ReplyOptions:
    """Hooks handed to the reply producer alongside the dispatcher."""

    on_reply_start: Optional[Callable[[], Any]] = None
    on_typing_controller: Optional[Callable[[TypingController], None]] = None


@dataclass
class TypingReplyDispatcher:
    dispatcher: ReplyDispatcher
    reply_options: ReplyOptions
    mark_dispatch_idle: Callable[[], None]


def create_reply_dispatcher_with_typing(
    deliver: Deliverer,
    *,
    on_reply_start: Optional[Callable[[], Any]] = None,
    on_idle: Optional[Callable[[], Any]] = None,
    **options: Any,
) -> TypingReplyDispatcher:
    """
    Build a dispatcher that also stops a channel's typing indicator.

    The reply producer registers its ``TypingController`` through
    ``reply_options.on_typing_controller``; whenever the dispatcher goes idle
    the controller is told before the caller's own ``on_idle`` runs.
    """
    typing: list[TypingController] = []

    def _mark_idle() -> None:
        if typing:
            typing[0].mark_dispatch_idle()
        if on_idle is not None:
            on_idle()

    def _register(controller: TypingController) -> None:
        typing[:] = [controller]

    dispatcher = ReplyDispatcher(deliver, on_idle=_mark_idle, **options)
    return TypingReplyDispatcher(
        dispatcher=dispatcher,
        reply_options=ReplyOptions(
            on_reply_start=on_reply_start,
            on_typing_controller=_register,
        ),
        mark_dispatch_idle=_mark_idle,
    )
