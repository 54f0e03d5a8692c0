"""
Anthropic-backed session provider.

The Messages API is stateless, so ``AnthropicSessionProvider`` keeps each
provider-side session as an in-process list of messages keyed by a generated
id.  A prompt sends the session's history plus the new user turn, appends
both turns on success, and converts the assistant's content blocks into the
part types the run controller consumes:

    text      -> TextPart
    thinking  -> ReasoningPart
    tool_use  -> ToolPart

Thinking and tool use only occur when the request carries a
``thinking_budget`` or ``tools``.  Tools are not executed here: a tool call
comes back as a ``ToolPart`` without output, and the stored history keeps the
turn's text with a note naming the tools called.

Failed calls are not retried: each one surfaces as a
``ProviderError`` and the run reports it.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import anthropic
import structlog

from cadence.config import ProviderConfig
from cadence.runner.provider import (
    ContentPart,
    PromptRequest,
    ProviderError,
    ProviderResponse,
    ReasoningPart,
    TextPart,
    ToolPart,
)
from cadence.types import UsageInfo

logger = structlog.get_logger(__name__)

SUMMARY_PROMPT = (
    "Summarize the conversation so far for your own future reference. Keep "
    "decisions, open tasks, names and facts the user gave you; drop small talk."
)


class ProviderInitError(ProviderError):
    """Raised when the Anthropic client cannot be constructed."""


@dataclass
class _ProviderSession:
    title: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)


class AnthropicSessionProvider:
    """``SessionProvider`` over ``anthropic.AsyncAnthropic``."""

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ) -> None:
        try:
            self._client = client if client is not None else anthropic.AsyncAnthropic(
                api_key=config.api_key
            )
        except Exception as exc:
            raise ProviderInitError(f"Failed to initialize Anthropic client: {exc}") from exc
        self._default_model = config.model
        self._max_tokens = config.max_tokens
        self._timeout = float(config.request_timeout_seconds)
        self._sessions: dict[str, _ProviderSession] = {}

        self._total_calls = 0
        self._total_input_tokens = 0
        self._total_output_tokens = 0

        logger.info("anthropic_provider.initialized", model=self._default_model)

    # ------------------------------------------------------------------
    # SessionProvider
    # ------------------------------------------------------------------

    async def create_session(self, title: str) -> str:
        session_id = f"ses_{uuid.uuid4().hex[:16]}"
        self._sessions[session_id] = _ProviderSession(title=title)
        logger.debug("anthropic_provider.session_created", session_id=session_id, title=title)
        return session_id

    async def prompt_session(self, session_id: str, request: PromptRequest) -> ProviderResponse:
        session = self._require_session(session_id)
        if request.model.provider_id not in ("anthropic", ""):
            raise ProviderError(f"Unsupported provider: {request.model.provider_id}")

        user_turn = {
            "role": "user",
            "content": "\n".join(part.text for part in request.parts),
        }
        kwargs: dict[str, Any] = {
            "model": request.model.model_id or self._default_model,
            "max_tokens": self._max_tokens,
            "messages": session.messages + [user_turn],
        }
        if request.system:
            kwargs["system"] = request.system
        if request.tools:
            kwargs["tools"] = list(request.tools)
        if request.thinking_budget:
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": request.thinking_budget}

        response = await self._create(kwargs)
        session.messages.append(user_turn)
        session.messages.append(
            {"role": "assistant", "content": self._history_text(response.content)}
        )

        return ProviderResponse(
            parts=self._to_parts(response.content),
            usage=self._to_usage(response.usage),
        )

    async def summarize_session(self, session_id: str) -> None:
        """Replace the session's history with a model-written summary."""
        session = self._require_session(session_id)
        if not session.messages:
            return
        response = await self._create(
            {
                "model": self._default_model,
                "max_tokens": self._max_tokens,
                "messages": session.messages + [{"role": "user", "content": SUMMARY_PROMPT}],
            }
        )
        summary = self.extract_text(response.content)
        before = len(session.messages)
        session.messages = [
            {"role": "user", "content": f"Summary of our conversation so far:\n{summary}"},
            {"role": "assistant", "content": "Understood."},
        ]
        logger.info(
            "anthropic_provider.session_summarized",
            session_id=session_id,
            messages_before=before,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_session(self, session_id: str) -> _ProviderSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise ProviderError(f"Unknown session: {session_id}")
        return session

    async def _create(self, kwargs: dict[str, Any]) -> Any:
        start_time = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**kwargs),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("anthropic_provider.timeout", timeout=self._timeout)
            raise ProviderError(f"Prompt timed out after {self._timeout:.0f}s") from e
        except anthropic.APIConnectionError as e:
            logger.error("anthropic_provider.connection_error", error=str(e))
            raise ProviderError(f"Prompt failed: {e}") from e
        except anthropic.APIError as e:
            logger.error(
                "anthropic_provider.api_error",
                error=str(e),
                status=getattr(e, "status_code", None),
            )
            raise ProviderError(f"Prompt failed: {e}") from e

        self._total_calls += 1
        self._total_input_tokens += response.usage.input_tokens or 0
        self._total_output_tokens += response.usage.output_tokens or 0
        logger.debug(
            "anthropic_provider.call_complete",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            elapsed_seconds=round(time.monotonic() - start_time, 2),
            stop_reason=response.stop_reason,
        )
        return response

    @staticmethod
    def _to_parts(content: list[Any]) -> list[ContentPart]:
        parts: list[ContentPart] = []
        for block in content:
            if block.type == "text":
                parts.append(TextPart(text=block.text))
            elif block.type == "thinking":
                parts.append(ReasoningPart(text=block.thinking))
            elif block.type == "tool_use":
                tool_input = block.input if isinstance(block.input, dict) else {}
                parts.append(ToolPart(tool=block.name, call_id=block.id, input=dict(tool_input)))
        return parts

    @staticmethod
    def _to_usage(usage: Any) -> UsageInfo:
        return UsageInfo(
            input=getattr(usage, "input_tokens", 0) or 0,
            output=getattr(usage, "output_tokens", 0) or 0,
            cache_read=getattr(usage, "cache_read_input_tokens", 0) or 0,
            cache_write=getattr(usage, "cache_creation_input_tokens", 0) or 0,
        )

    @staticmethod
    def extract_text(content: list[Any]) -> str:
        return "\n".join(block.text for block in content if block.type == "text")

    @classmethod
    def _history_text(cls, content: list[Any]) -> str:
        # tool_use blocks without a matching tool_result would be rejected on
        # replay, so the stored turn keeps the text and only names the tools.
        text = cls.extract_text(content)
        tools = [block.name for block in content if block.type == "tool_use"]
        if tools:
            note = f"[called tools: {', '.join(tools)}]"
            text = f"{text}\n{note}" if text else note
        return text or "(no reply)"

    @property
    def telemetry(self) -> dict[str, Any]:
        return {
            "total_calls": self._total_calls,
            "total_input_tokens": self._total_input_tokens,
            "total_output_tokens": self._total_output_tokens,
            "sessions": len(self._sessions),
        }
