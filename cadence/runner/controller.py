"""
The Run Controller: one streaming agent run per session key.

A run is a single prompt sent into a provider-side session and the walk over
the parts of the response that comes back:

    session = registry.begin_run(key)
    response = provider.prompt_session(session_id, prompt)
    for part in response.parts:
        text      -> on_partial_reply, payloads
        reasoning -> on_reasoning_stream
        tool      -> tool events, messaging-send capture
    on_block_reply(full text)
    registry.end_run(session)

Everything else (abort, wait, steering, compaction) is bookkeeping around that
walk.  The controller does not frame text into chat-sized blocks, and it does
not deliver anything itself; callers wire the callbacks to a
``ReplyPipeline``/``ReplyDispatcher`` for that.

``start`` never raises for provider or callback failures: they come back as
``RunResult(success=False, error=...)``.  An abort, whether through
``abort(key)`` or the caller's ``signal``, comes back as ``aborted=True``.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

import structlog

from cadence.config import RunnerConfig
from cadence.defaults import DEFAULT_CONTEXT_TOKENS, lookup_context_tokens, split_model_ref
from cadence.events import AgentEvent, AgentStream, EventBus
from cadence.metrics import metrics
from cadence.runner.messaging import MessagingToolSpec
from cadence.runner.provider import (
    CadenceError,
    ModelRef,
    PromptRequest,
    ProviderError,
    ReasoningPart,
    SessionProvider,
    TextPart,
    ToolPart,
)
from cadence.runner.session import RunHandle, SessionRegistry
from cadence.types import (
    CompactResult,
    Lane,
    MessagingSend,
    ReplyPayload,
    RunMeta,
    RunResult,
    ToolCallRecord,
    UsageInfo,
)

logger = structlog.get_logger(__name__)

PayloadCallback = Callable[[ReplyPayload], Optional[Awaitable[None]]]
EventCallback = Callable[[AgentEvent], Any]


class AbortSignal(Protocol):
    """Anything with ``asyncio.Event``'s ``is_set``/``wait`` pair."""

    def is_set(self) -> bool: ...

    async def wait(self) -> Any: ...


class RunAborted(CadenceError):
    """Raised inside a run once its abort handle is set."""


@dataclass
class RunOptions:
    session_id: str
    session_file: str
    prompt: str
    provider: str
    model: str
    session_key: Optional[str] = None
    extra_system_prompt: Optional[str] = None
    lane: Lane = "main"
    workspace_dir: Optional[str] = None
    tools: list[dict[str, Any]] = field(default_factory=list)
    thinking_budget: Optional[int] = None
    on_partial_reply: Optional[PayloadCallback] = None
    on_reasoning_stream: Optional[PayloadCallback] = None
    on_block_reply: Optional[PayloadCallback] = None
    on_tool_result: Optional[PayloadCallback] = None
    on_agent_event: Optional[EventCallback] = None
    should_emit_tool_result: Optional[Callable[[], bool]] = None
    signal: Optional[AbortSignal] = None


@dataclass
class CompactOptions:
    session_id: str
    session_file: str
    session_key: Optional[str] = None
    workspace_dir: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    custom_instructions: Optional[str] = None


@dataclass
class _RunState:
    """Everything a run has collected so far; survives into error results."""

    full_text: str = ""
    usage: UsageInfo = field(default_factory=UsageInfo)
    payloads: list[ReplyPayload] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    sent_texts: list[str] = field(default_factory=list)
    sent_targets: list[MessagingSend] = field(default_factory=list)


class RunController:
    """Owns the lifecycle of agent runs, one live run per session key."""

    def __init__(
        self,
        provider: SessionProvider,
        *,
        registry: Optional[SessionRegistry] = None,
        messaging_tools: Optional[MessagingToolSpec] = None,
        event_bus: Optional[EventBus] = None,
        title_prefix: str = "cadence",
        wait_timeout: float = 60.0,
    ) -> None:
        self._provider = provider
        self._registry = registry if registry is not None else SessionRegistry()
        self._messaging_tools = messaging_tools or MessagingToolSpec()
        self._event_bus = event_bus
        self._title_prefix = title_prefix
        self._wait_timeout = wait_timeout

    @classmethod
    def from_config(
        cls,
        provider: SessionProvider,
        config: RunnerConfig,
        *,
        registry: Optional[SessionRegistry] = None,
        event_bus: Optional[EventBus] = None,
    ) -> "RunController":
        return cls(
            provider,
            registry=registry,
            messaging_tools=MessagingToolSpec(config.messaging_tools),
            event_bus=event_bus,
            title_prefix=config.session_title_prefix,
            wait_timeout=config.wait_timeout_seconds,
        )

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Lifecycle queries
    # ------------------------------------------------------------------

    def is_active(self, session_key: str) -> bool:
        return self._registry.is_streaming(session_key)

    def is_streaming(self, session_key: str) -> bool:
        return self.is_active(session_key)

    def abort(self, session_key: str, *, epoch: Optional[int] = None) -> bool:
        """Stop the key's current run at its next checkpoint."""
        aborted = self._registry.abort(session_key, epoch=epoch)
        if aborted:
            logger.info("run_controller.abort_requested", session_key=session_key)
        return aborted

    async def wait_for_end(self, session_key: str, timeout: Optional[float] = None) -> bool:
        """Wait until nothing is streaming on the key; False if *timeout* elapses first.

        *timeout* defaults to the controller's ``wait_timeout`` (60s).  Only
        stops waiting; the run itself is left alone.  If a newer run replaces
        the awaited one, the wait carries on with the newer run.
        """
        if timeout is None:
            timeout = self._wait_timeout
        deadline = time.monotonic() + timeout
        while self.is_active(session_key):
            done = self._registry.completion_signal(session_key)
            remaining = deadline - time.monotonic()
            if done is None or remaining <= 0:
                break
            try:
                await asyncio.wait_for(done.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                break
        return not self.is_active(session_key)

    def queue_message(self, session_key: str, message: str) -> bool:
        """
        Accept a steering message for the key's in-flight run.

        The message is recorded on the session (``pending_messages``) but is
        not injected into the live provider call.  Unlike a stub that always
        reports success, this returns False when nothing is streaming on the
        key, so a caller can tell that its message reached no run.
        """
        session = self._registry.get(session_key)
        if session is None or not session.is_streaming:
            return False
        session.pending_messages.append(message)
        logger.info(
            "run_controller.message_queued",
            session_key=session_key,
            queued=len(session.pending_messages),
        )
        return True

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def start(self, options: RunOptions) -> RunResult:
        session_key = options.session_key or f"session-{int(time.time() * 1000)}"
        handle = self._registry.begin_run(
            session_key, session_id=options.session_id, lane=options.lane
        )
        provider_id, model_id = split_model_ref(options.model, options.provider)
        meta = RunMeta(
            session_key=session_key,
            session_id=options.session_id,
            session_file=options.session_file,
            lane=options.lane,
            model=options.model,
            provider=options.provider,
            started_at=time.time(),
            context_tokens=lookup_context_tokens(model_id) or DEFAULT_CONTEXT_TOKENS,
        )
        state = _RunState()
        bridge = self._bridge_signal(options.signal, handle.abort)
        aborted = False
        error: Optional[str] = None

        metrics.inc("runs_started_total")
        logger.info(
            "run_controller.run_started",
            session_key=session_key,
            epoch=handle.epoch,
            model=model_id,
            provider=provider_id,
        )
        self._emit(options, handle, "lifecycle", {"phase": "start", "lane": options.lane})

        try:
            await self._run(options, handle, state, ModelRef(provider_id, model_id))
        except Exception as exc:
            if handle.abort.is_set():
                aborted = True
            else:
                error = str(exc) or type(exc).__name__
                logger.warning(
                    "run_controller.run_failed",
                    session_key=session_key,
                    error=error,
                    error_type=type(exc).__name__,
                )
                self._emit(options, handle, "error", {"error": error})
        finally:
            if bridge is not None:
                bridge.cancel()
            self._registry.end_run(handle)

        meta.ended_at = time.time()
        meta.usage = state.usage
        meta.aborted = aborted
        status = "errored" if error is not None else "aborted" if aborted else "completed"
        metrics.inc(f"runs_{status}_total")
        metrics.observe("run_duration_seconds", meta.ended_at - meta.started_at)
        logger.info(
            "run_controller.run_finished",
            session_key=session_key,
            epoch=handle.epoch,
            status=status,
            duration_ms=meta.duration_ms,
            tool_calls=len(state.tool_calls),
        )
        self._emit(options, handle, "lifecycle", {"phase": "end", "status": status})

        return RunResult(
            success=error is None,
            text=state.full_text,
            token_count=state.usage.total,
            aborted=aborted,
            meta=meta,
            error=error,
            payloads=state.payloads,
            messaging_tool_sent_texts=state.sent_texts,
            messaging_tool_sent_targets=state.sent_targets,
            tool_calls=state.tool_calls,
        )

    async def _run(
        self,
        options: RunOptions,
        handle: RunHandle,
        state: _RunState,
        model: ModelRef,
    ) -> None:
        session = handle.session
        provider_session_id = session.provider_session_id
        if not provider_session_id:
            title = f"{self._title_prefix}-{session.session_key}"
            provider_session_id = await self._abortable(
                self._provider.create_session(title), handle.abort
            )
            if not provider_session_id:
                raise ProviderError("Failed to create session")
            if handle.is_current:
                session.provider_session_id = provider_session_id

        response = await self._abortable(
            self._provider.prompt_session(
                provider_session_id,
                PromptRequest(
                    parts=[TextPart(text=options.prompt)],
                    model=model,
                    system=options.extra_system_prompt,
                    tools=list(options.tools),
                    thinking_budget=options.thinking_budget,
                ),
            ),
            handle.abort,
        )
        state.usage = response.usage

        for part in response.parts:
            if handle.abort.is_set():
                raise RunAborted("run aborted")
            if isinstance(part, TextPart):
                state.full_text += part.text
                self._emit(options, handle, "text", {"text": part.text})
                await self._invoke(options.on_partial_reply, ReplyPayload(text=part.text))
                if part.text.strip():
                    state.payloads.append(ReplyPayload(text=part.text))
            elif isinstance(part, ReasoningPart):
                self._emit(options, handle, "reasoning", {"text": part.text})
                await self._invoke(options.on_reasoning_stream, ReplyPayload(text=part.text))
            elif isinstance(part, ToolPart):
                await self._handle_tool(options, handle, state, part)
            else:
                logger.debug("run_controller.unknown_part", part_type=getattr(part, "type", None))

        if handle.abort.is_set():
            raise RunAborted("run aborted")
        if state.full_text.strip():
            await self._invoke(options.on_block_reply, ReplyPayload(text=state.full_text))

    async def _handle_tool(
        self,
        options: RunOptions,
        handle: RunHandle,
        state: _RunState,
        part: ToolPart,
    ) -> None:
        self._emit(
            options, handle, "tool", {"phase": "start", "tool": part.tool, "call_id": part.call_id}
        )
        state.tool_calls.append(
            ToolCallRecord(name=part.tool, call_id=part.call_id, result=part.output)
        )

        sent_text, send = self._messaging_tools.extract(part)
        if sent_text is not None:
            state.sent_texts.append(sent_text)
        if send is not None:
            state.sent_targets.append(send)

        if options.on_tool_result is not None and part.output:
            emit = options.should_emit_tool_result() if options.should_emit_tool_result else True
            if emit:
                await self._invoke(options.on_tool_result, ReplyPayload(text=part.output))

        self._emit(
            options,
            handle,
            "tool",
            {
                "phase": "end",
                "tool": part.tool,
                "call_id": part.call_id,
                "messaging": send is not None,
            },
        )

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    async def compact(self, options: CompactOptions) -> CompactResult:
        """Ask the provider to summarise the key's session history."""
        session_key = options.session_key
        if not session_key:
            return CompactResult(success=True, ok=True, compacted=False)
        session = self._registry.get(session_key)
        if session is None or not session.provider_session_id:
            return CompactResult(success=True, ok=True, compacted=False)

        self._publish(
            AgentEvent(
                stream="compaction",
                data={"phase": "start"},
                session_key=session_key,
                epoch=session.epoch,
            )
        )
        try:
            await self._provider.summarize_session(session.provider_session_id)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.warning("run_controller.compact_failed", session_key=session_key, error=message)
            metrics.inc("compactions_failed_total")
            return CompactResult(success=False, ok=False, error=message, reason=message)

        metrics.inc("compactions_total")
        logger.info("run_controller.compacted", session_key=session_key)
        self._publish(
            AgentEvent(
                stream="compaction",
                data={"phase": "end"},
                session_key=session_key,
                epoch=session.epoch,
            )
        )
        return CompactResult(success=True, ok=True, compacted=True, tokens_removed=0)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _bridge_signal(
        signal: Optional[AbortSignal], abort: asyncio.Event
    ) -> Optional[asyncio.Task[None]]:
        """Forward an external abort signal to the run's own handle."""
        if signal is None:
            return None
        if signal.is_set():
            abort.set()
            return None

        async def _forward() -> None:
            await signal.wait()
            abort.set()

        return asyncio.get_running_loop().create_task(_forward(), name="run-abort-bridge")

    @staticmethod
    async def _abortable(awaitable: Awaitable[Any], abort: asyncio.Event) -> Any:
        """Await *awaitable* unless *abort* fires first, then cancel it."""
        if abort.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RunAborted("run aborted")
        work = asyncio.ensure_future(awaitable)
        aborted = asyncio.ensure_future(abort.wait())
        try:
            done, _ = await asyncio.wait({work, aborted}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            aborted.cancel()
            raise
        if work in done:
            aborted.cancel()
            return work.result()
        work.cancel()
        await asyncio.wait({work})
        raise RunAborted("run aborted")

    @staticmethod
    async def _invoke(callback: Optional[PayloadCallback], payload: ReplyPayload) -> None:
        if callback is None:
            return
        result = callback(payload)
        if inspect.isawaitable(result):
            await result

    def _emit(
        self,
        options: RunOptions,
        handle: RunHandle,
        stream: AgentStream,
        data: dict[str, Any],
    ) -> None:
        event = AgentEvent(
            stream=stream,
            data=data,
            session_key=handle.session.session_key,
            epoch=handle.epoch,
        )
        if options.on_agent_event is not None:
            try:
                options.on_agent_event(event)
            except Exception as callback_error:
                logger.warning(
                    "run_controller.agent_event_callback_failed",
                    stream=stream,
                    error=str(callback_error),
                )
        self._publish(event)

    def _publish(self, event: AgentEvent) -> None:
        if self._event_bus is not None:
            self._event_bus.emit(event)
