"""
Reserved reply tokens.

The model is instructed to answer with ``HEARTBEAT_OK`` when a periodic
check-in has nothing to report and with ``NO_REPLY`` when it deliberately
stays silent.  Neither should ever reach a user.  ``strip_heartbeat_token``
removes the heartbeat marker from the edges of a reply (including when the
model wraps it in markdown or HTML emphasis) and reports whether what is left
is worth sending.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

HEARTBEAT_TOKEN = "HEARTBEAT_OK"
SILENT_REPLY_TOKEN = "NO_REPLY"

DEFAULT_HEARTBEAT_ACK_MAX_CHARS = 300

StripMode = Literal["message", "heartbeat"]

_HTML_TAG_RE = re.compile(r"<[^>]*>")
_NBSP_RE = re.compile(r"&nbsp;", re.IGNORECASE)
# Emphasis characters the model tends to wrap a bare token in.
_EDGE_MARKUP = "*`~_"


@dataclass(frozen=True)
class StripResult:
    should_skip: bool
    text: str
    did_strip: bool


def _strip_markup(text: str) -> str:
    text = _HTML_TAG_RE.sub(" ", text)
    text = _NBSP_RE.sub(" ", text)
    return text.strip().strip(_EDGE_MARKUP).strip()


def _strip_token_at_edges(text: str) -> tuple[str, bool]:
    did_strip = False
    text = text.strip()
    changed = True
    while changed:
        changed = False
        if text.startswith(HEARTBEAT_TOKEN):
            text = text[len(HEARTBEAT_TOKEN):].lstrip()
            did_strip = changed = True
        if text.endswith(HEARTBEAT_TOKEN):
            text = text[: -len(HEARTBEAT_TOKEN)].rstrip()
            did_strip = changed = True
    return text, did_strip


def strip_heartbeat_token(
    raw: str | None,
    *,
    mode: StripMode = "message",
    max_ack_chars: int = DEFAULT_HEARTBEAT_ACK_MAX_CHARS,
) -> StripResult:
    """Remove ``HEARTBEAT_OK`` from the edges of *raw*.

    In ``message`` mode only an empty remainder is skippable.  In
    ``heartbeat`` mode a short acknowledgement (at most *max_ack_chars*)
    around the token is skipped too.
    """
    if not raw or not raw.strip():
        return StripResult(should_skip=True, text="", did_strip=False)

    trimmed = raw.strip()
    if HEARTBEAT_TOKEN not in trimmed:
        return StripResult(should_skip=False, text=trimmed, did_strip=False)

    remainder, did_strip = _strip_token_at_edges(trimmed)
    if not did_strip:
        # Token only appears wrapped in markup, e.g. "**HEARTBEAT_OK**".
        remainder, did_strip = _strip_token_at_edges(_strip_markup(trimmed))
    if not did_strip:
        return StripResult(should_skip=False, text=trimmed, did_strip=False)

    remainder = remainder.strip()
    if not _strip_markup(remainder):
        return StripResult(should_skip=True, text="", did_strip=True)
    if mode == "heartbeat" and len(remainder) <= max_ack_chars:
        return StripResult(should_skip=True, text="", did_strip=True)
    return StripResult(should_skip=False, text=remainder, did_strip=True)
