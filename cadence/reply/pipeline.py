"""
Glue between a run's callbacks and a channel's reply dispatcher.

The run controller reports raw text parts and leaves framing to the caller.
``ReplyPipeline`` is the standard wiring a channel adapter uses:

  - partial text is pushed through a ``BlockChunker`` and each ready block
    goes out as a block reply;
  - tool output goes out as a tool result;
  - when the run ends, the chunker's remainder (or, without a chunker, the
    run's text payloads) becomes the final reply, minus anything a messaging
    tool already sent during the run.

An aborted run delivers nothing further: whatever is still buffered is
discarded.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from cadence.reply.chunker import BlockChunker
from cadence.reply.dedupe import filter_messaging_duplicates, is_messaging_tool_duplicate
from cadence.reply.dispatcher import ReplyDispatcher
from cadence.types import ReplyPayload, RunResult

logger = structlog.get_logger(__name__)


class ReplyPipeline:
    def __init__(
        self,
        dispatcher: ReplyDispatcher,
        chunker: Optional[BlockChunker] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._chunker = chunker
        self._blocks_sent = 0

    @property
    def dispatcher(self) -> ReplyDispatcher:
        return self._dispatcher

    @property
    def blocks_sent(self) -> int:
        return self._blocks_sent

    def callbacks(self) -> dict[str, Any]:
        """Keyword arguments to merge into ``RunOptions``."""
        return {
            "on_partial_reply": self.on_partial_reply,
            "on_tool_result": self.on_tool_result,
        }

    async def on_partial_reply(self, payload: ReplyPayload) -> None:
        if self._chunker is None or not payload.text:
            return
        for chunk in self._chunker.push(payload.text):
            if self._dispatcher.send_block_reply(ReplyPayload(text=chunk)):
                self._blocks_sent += 1

    async def on_tool_result(self, payload: ReplyPayload) -> None:
        self._dispatcher.send_tool_result(payload)

    async def finish(self, result: RunResult) -> int:
        """Send the final reply for *result* and wait for delivery.

        Returns the number of final payloads enqueued.
        """
        sent_texts = result.messaging_tool_sent_texts
        enqueued = 0

        if result.aborted:
            if self._chunker is not None:
                discarded = self._chunker.flush()
                if discarded:
                    logger.debug("reply_pipeline.discarded_on_abort", chars=len(discarded))
        elif self._chunker is not None:
            remainder = self._chunker.flush()
            if remainder:
                if is_messaging_tool_duplicate(remainder, sent_texts):
                    logger.info("reply_pipeline.final_suppressed_duplicate")
                elif self._dispatcher.send_final_reply(ReplyPayload(text=remainder)):
                    enqueued += 1
        else:
            finals = filter_messaging_duplicates(result.payloads, sent_texts)
            if len(finals) < len(result.payloads):
                logger.info(
                    "reply_pipeline.final_suppressed_duplicate",
                    dropped=len(result.payloads) - len(finals),
                )
            for payload in finals:
                if self._dispatcher.send_final_reply(payload):
                    enqueued += 1

        await self._dispatcher.wait_for_idle()
        return enqueued
