"""
Which tools count as messaging sends.

When a tool in this set runs during a run, its ``content`` is remembered so
the run's closing reply can be checked against it, and its target is
recorded on the result.  The set is configuration (see
``RunnerConfig.messaging_tools``), not a constant baked into the controller.
"""

from __future__ import annotations

from typing import Iterable, Optional

from cadence.config import DEFAULT_MESSAGING_TOOLS
from cadence.runner.provider import ToolPart
from cadence.types import MessagingSend


def _optional_str(value: object) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


class MessagingToolSpec:
    """The set of tool names whose calls send messages out of band."""

    def __init__(self, tool_names: Iterable[str] = DEFAULT_MESSAGING_TOOLS) -> None:
        self._names = frozenset(name.strip().lower() for name in tool_names if name.strip())

    @property
    def tool_names(self) -> frozenset[str]:
        return self._names

    def is_messaging_tool(self, tool_name: str) -> bool:
        return tool_name.strip().lower() in self._names

    def extract(self, part: ToolPart) -> tuple[Optional[str], Optional[MessagingSend]]:
        """Return ``(sent_text, send_record)`` for a messaging tool call.

        Both are None for other tools.  Malformed inputs yield a record with
        missing fields rather than an error.
        """
        if not self.is_messaging_tool(part.tool):
            return None, None
        tool_input = part.input if isinstance(part.input, dict) else {}
        content = tool_input.get("content")
        sent_text = content if isinstance(content, str) and content else None
        record = MessagingSend(
            tool=part.tool,
            provider=part.tool,
            account_id=_optional_str(
                tool_input.get("accountId", tool_input.get("account_id"))
            ),
            to=_optional_str(tool_input.get("to")),
        )
        return sent_text, record

    def __repr__(self) -> str:
        return f"MessagingToolSpec({sorted(self._names)})"
