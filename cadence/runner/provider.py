"""
The model-provider boundary.

The run controller never talks to a model SDK directly.  It consumes a
``SessionProvider``: something that can open a provider-side session, send a
prompt into it and hand back the assistant's response as an ordered list of
content parts, and summarise a session's history.
``cadence.api.claude.AnthropicSessionProvider`` is the stock implementation;
tests use scripted fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union, runtime_checkable

from cadence.types import UsageInfo


class CadenceError(Exception):
    """Base class for errors raised by Cadence."""


class ProviderError(CadenceError):
    """The provider failed to create a session, answer a prompt or summarise."""


@dataclass(frozen=True)
class TextPart:
    text: str
    type: str = "text"


@dataclass(frozen=True)
class ReasoningPart:
    text: str
    type: str = "reasoning"


@dataclass(frozen=True)
class ToolPart:
    """A tool call the model made, with its recorded output."""

    tool: str
    call_id: Optional[str] = None
    input: dict[str, Any] = field(default_factory=dict)
    output: Optional[str] = None
    type: str = "tool"


ContentPart = Union[TextPart, ReasoningPart, ToolPart]


@dataclass(frozen=True)
class ModelRef:
    provider_id: str
    model_id: str


@dataclass(frozen=True)
class PromptRequest:
    parts: list[TextPart]
    model: ModelRef
    system: Optional[str] = None
    # Tool definitions the model may call, in the provider's own schema.
    tools: list[dict[str, Any]] = field(default_factory=list)
    # Extended-thinking budget in tokens; None leaves thinking off.
    thinking_budget: Optional[int] = None


@dataclass
class ProviderResponse:
    parts: list[ContentPart] = field(default_factory=list)
    usage: UsageInfo = field(default_factory=UsageInfo)


@runtime_checkable
class SessionProvider(Protocol):
    async def create_session(self, title: str) -> str: ...

    async def prompt_session(self, session_id: str, request: PromptRequest) -> ProviderResponse: ...

    async def summarize_session(self, session_id: str) -> None: ...
