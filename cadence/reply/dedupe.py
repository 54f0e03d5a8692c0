"""
Duplicate suppression against messaging-tool sends.

An agent may call a "send message" tool mid-run and then restate the same
content in its closing reply.  The helpers here decide whether a candidate
reply repeats text a tool already pushed out of band, so the caller can drop
it before it reaches the dispatcher.

Matching is loose: both sides are normalised (case, emoji and
whitespace folded) and either string containing the other counts as a
duplicate, which tolerates the model quoting, elaborating or truncating what
it sent.  Very short strings are never considered duplicates so generic
acknowledgements like "ok" or "done!" always go through.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import regex

from cadence.types import ReplyPayload

MIN_DUPLICATE_TEXT_LENGTH = 10

_EMOJI_RE = regex.compile(r"\p{Emoji_Presentation}|\p{Extended_Pictographic}")
_WHITESPACE_RE = regex.compile(r"\s+")


def normalize_text_for_comparison(text: str) -> str:
    """Trim, lowercase, drop emoji and collapse whitespace runs."""
    folded = _EMOJI_RE.sub("", text.strip().lower())
    return _WHITESPACE_RE.sub(" ", folded).strip()


def _comparable(text: object) -> str | None:
    if not isinstance(text, str):
        return None
    normalized = normalize_text_for_comparison(text)
    if len(normalized) < MIN_DUPLICATE_TEXT_LENGTH:
        return None
    return normalized


def is_messaging_tool_duplicate(text: str, sent_texts: Sequence[str]) -> bool:
    """Return True when *text* repeats any of *sent_texts*."""
    if not sent_texts:
        return False
    candidate = _comparable(text)
    if candidate is None:
        return False
    for sent in sent_texts:
        normalized_sent = _comparable(sent)
        if normalized_sent is None:
            continue
        if normalized_sent in candidate or candidate in normalized_sent:
            return True
    return False


def filter_messaging_duplicates(
    payloads: Iterable[ReplyPayload],
    sent_texts: Sequence[str],
) -> list[ReplyPayload]:
    """Drop text-only payloads that duplicate a messaging-tool send.

    Payloads carrying media are kept even when their caption matches, since
    the media itself was not part of the tool send.
    """
    kept: list[ReplyPayload] = []
    for payload in payloads:
        if (
            not payload.has_media
            and payload.text
            and is_messaging_tool_duplicate(payload.text, sent_texts)
        ):
            continue
        kept.append(payload)
    return kept
