"""Reply layer: chunking, duplicate suppression and ordered delivery."""

from cadence.reply.chunker import BlockChunker, BreakPoint
from cadence.reply.dedupe import (
    MIN_DUPLICATE_TEXT_LENGTH,
    filter_messaging_duplicates,
    is_messaging_tool_duplicate,
    normalize_text_for_comparison,
)
from cadence.reply.dispatcher import (
    ReplyDispatcher,
    ReplyOptions,
    TypingReplyDispatcher,
    create_reply_dispatcher_with_typing,
    human_delay_ms,
    normalize_reply_payload,
)
from cadence.reply.pipeline import ReplyPipeline
from cadence.reply.tokens import (
    HEARTBEAT_TOKEN,
    SILENT_REPLY_TOKEN,
    StripResult,
    strip_heartbeat_token,
)

__all__ = [
    "BlockChunker",
    "BreakPoint",
    "MIN_DUPLICATE_TEXT_LENGTH",
    "filter_messaging_duplicates",
    "is_messaging_tool_duplicate",
    "normalize_text_for_comparison",
    "ReplyDispatcher",
    "ReplyOptions",
    "TypingReplyDispatcher",
    "create_reply_dispatcher_with_typing",
    "human_delay_ms",
    "normalize_reply_payload",
    "ReplyPipeline",
    "HEARTBEAT_TOKEN",
    "SILENT_REPLY_TOKEN",
    "StripResult",
    "strip_heartbeat_token",
]
