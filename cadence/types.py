"""
Core data types shared across Cadence subsystems.

These are the values that cross the boundary between the run controller, the
reply layer and the caller: reply payloads, usage counters, messaging-tool
send records and the final run result.  They live here rather than in a
specific subsystem to avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal, Optional

Lane = Literal["main", "compact"]
ReplyKind = Literal["tool", "block", "final"]


@dataclass(frozen=True)
class ReplyPayload:
    """One outbound reply: text, media, or both.

    Payloads are immutable.  Normalisation in the dispatcher produces a new
    payload via ``with_text()`` instead of mutating the caller's copy.
    """

    text: Optional[str] = None
    media_url: Optional[str] = None
    media_urls: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Accept lists from callers while keeping the payload hashable.
        if not isinstance(self.media_urls, tuple):
            object.__setattr__(self, "media_urls", tuple(self.media_urls or ()))

    @property
    def has_media(self) -> bool:
        return bool(self.media_url or len(self.media_urls) > 0)

    def with_text(self, text: Optional[str]) -> "ReplyPayload":
        return replace(self, text=text)


@dataclass
class UsageInfo:
    """Token counters from the provider's terminal usage report."""

    input: Optional[int] = None
    output: Optional[int] = None
    cache_read: Optional[int] = None
    cache_write: Optional[int] = None

    @property
    def total(self) -> int:
        return (self.input or 0) + (self.output or 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "input": self.input,
            "output": self.output,
            "cache_read": self.cache_read,
            "cache_write": self.cache_write,
        }


@dataclass(frozen=True)
class MessagingSend:
    """A side-channel send issued by a messaging tool during a run."""

    tool: str
    provider: str
    account_id: Optional[str] = None
    to: Optional[str] = None


@dataclass(frozen=True)
class ToolCallRecord:
    name: str
    call_id: Optional[str] = None
    result: Optional[str] = None


@dataclass
class RunMeta:
    """Identifying metadata attached to every ``RunResult``."""

    session_key: str
    session_id: str
    session_file: str
    lane: Lane
    model: str
    provider: str
    aborted: bool = False
    usage: UsageInfo = field(default_factory=UsageInfo)
    started_at: float = 0.0
    ended_at: float = 0.0
    context_tokens: Optional[int] = None

    @property
    def duration_ms(self) -> int:
        if not self.ended_at:
            return 0
        return max(0, int((self.ended_at - self.started_at) * 1000))


@dataclass
class RunResult:
    """
    The terminal outcome of one agent run.

    This is the only place tool-call records and messaging-send records are
    surfaced to the caller.  ``error`` is set only for genuine failures; an
    aborted run reports ``aborted=True`` with no error.
    """

    success: bool
    text: str
    token_count: int
    aborted: bool
    meta: RunMeta
    error: Optional[str] = None
    payloads: list[ReplyPayload] = field(default_factory=list)
    messaging_tool_sent_texts: list[str] = field(default_factory=list)
    messaging_tool_sent_targets: list[MessagingSend] = field(default_factory=list)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)

    @property
    def used_tools(self) -> bool:
        return len(self.tool_calls) > 0


@dataclass
class CompactResult:
    success: bool
    ok: bool
    compacted: bool = False
    tokens_removed: Optional[int] = None
    error: Optional[str] = None
    reason: Optional[str] = None
