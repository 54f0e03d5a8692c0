"""Run controller and its collaborators."""

from cadence.runner.controller import (
    AbortSignal,
    CompactOptions,
    RunAborted,
    RunController,
    RunOptions,
)
from cadence.runner.messaging import MessagingToolSpec
from cadence.runner.provider import (
    CadenceError,
    ContentPart,
    ModelRef,
    PromptRequest,
    ProviderError,
    ProviderResponse,
    ReasoningPart,
    SessionProvider,
    TextPart,
    ToolPart,
)
from cadence.runner.session import RunHandle, RunSession, SessionRegistry, resolve_session_lane

__all__ = [
    "AbortSignal",
    "CompactOptions",
    "RunAborted",
    "RunController",
    "RunOptions",
    "MessagingToolSpec",
    "CadenceError",
    "ContentPart",
    "ModelRef",
    "PromptRequest",
    "ProviderError",
    "ProviderResponse",
    "ReasoningPart",
    "SessionProvider",
    "TextPart",
    "ToolPart",
    "RunHandle",
    "RunSession",
    "SessionRegistry",
    "resolve_session_lane",
]
