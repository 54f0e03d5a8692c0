"""Tests for cadence.reply.chunker: BlockChunker bounds and break preference."""

from __future__ import annotations

import pytest

from cadence.reply.chunker import BlockChunker, BreakPoint


class TestConstruction:
    def test_max_must_exceed_min(self) -> None:
        with pytest.raises(ValueError):
            BlockChunker(10, 10)

    def test_negative_min_rejected(self) -> None:
        with pytest.raises(ValueError):
            BlockChunker(-1, 10)

    def test_bounds_exposed(self) -> None:
        chunker = BlockChunker(5, 50)
        assert chunker.min_chars == 5
        assert chunker.max_chars == 50


class TestPush:
    def test_sentence_break_leaves_remainder_buffered(self) -> None:
        chunker = BlockChunker(10, 20)
        assert chunker.push("Hello world. This is text.") == ["Hello world. "]
        assert chunker.peek() == "This is text."

    def test_below_min_emits_nothing(self) -> None:
        chunker = BlockChunker(10, 50)
        assert chunker.push("short") == []
        assert chunker.peek() == "short"

    def test_under_max_without_break_waits(self) -> None:
        chunker = BlockChunker(5, 50)
        assert chunker.push("abcdefghij") == []
        assert chunker.peek() == "abcdefghij"

    def test_paragraph_preferred_over_sentence(self) -> None:
        chunker = BlockChunker(5, 100)
        chunks = chunker.push("First para here.\n\nSecond para. More text")
        assert chunks == ["First para here.\n\n", "Second para. "]
        assert chunker.peek() == "More text"

    def test_newline_preferred_over_space(self) -> None:
        chunker = BlockChunker(5, 100)
        chunks = chunker.push("line one\nline two words")
        assert chunks == ["line one\n", "line two "]
        assert chunker.peek() == "words"

    def test_break_before_min_is_ignored(self) -> None:
        chunker = BlockChunker(10, 30)
        # The ". " after "Hi" sits below min_chars, so the space wins.
        chunks = chunker.push("Hi. Hello there friend")
        assert chunks == ["Hi. Hello there "]
        assert chunker.peek() == "friend"

    def test_hard_cut_at_max_without_breaks(self) -> None:
        chunker = BlockChunker(5, 10)
        chunks = chunker.push("abcdefghijklmnopqrstuvwxy")
        assert chunks == ["abcdefghij", "klmnopqrst"]
        assert chunker.peek() == "uvwxy"

    def test_remainder_leading_whitespace_dropped(self) -> None:
        chunker = BlockChunker(5, 100)
        chunker.push("One two.\n\n\n   Three")
        assert not chunker.peek().startswith((" ", "\n"))

    def test_incremental_pushes_accumulate(self) -> None:
        chunker = BlockChunker(10, 20)
        emitted: list[str] = []
        for piece in ["Hello ", "world. ", "This ", "is ", "text."]:
            emitted.extend(chunker.push(piece))
        assert emitted == ["Hello world. "]
        assert chunker.peek() == "This is text."

    @pytest.mark.parametrize("step", [1, 3, 7, 50])
    def test_chunks_respect_bounds_and_preserve_content(self, step: int) -> None:
        text = (
            "The quick brown fox jumps over the lazy dog. It was a sunny day!\n"
            "Nobody expected what came next. Would the fox return?\n\n"
            "A new paragraph begins here with several words in a row "
            "and keeps going without much punctuation for quite a while"
        )
        chunker = BlockChunker(20, 40)
        chunks: list[str] = []
        for i in range(0, len(text), step):
            chunks.extend(chunker.push(text[i:i + step]))
        for chunk in chunks:
            assert 20 <= len(chunk) <= 40
        tail = chunker.flush() or ""
        assert "".join((*chunks, tail)).split() == text.split()


class TestFlushAndPeek:
    def test_flush_returns_remainder_then_none(self) -> None:
        chunker = BlockChunker(10, 20)
        chunker.push("tiny")
        assert chunker.flush() == "tiny"
        assert chunker.peek() == ""
        assert chunker.flush() is None

    def test_flush_empty(self) -> None:
        assert BlockChunker(1, 2).flush() is None


class TestFindBreakPoint:
    def test_priorities(self) -> None:
        chunker = BlockChunker(0, 100)
        assert chunker.find_break_point("a\n\nb", 100) == BreakPoint(index=3, priority=1)
        assert chunker.find_break_point("a\nb", 100) == BreakPoint(index=2, priority=2)
        assert chunker.find_break_point("a. b", 100) == BreakPoint(index=3, priority=3)
        assert chunker.find_break_point("a b", 100) == BreakPoint(index=2, priority=4)

    def test_window_limits_search(self) -> None:
        chunker = BlockChunker(0, 100)
        assert chunker.find_break_point("abcdef ghi", 5) is None

    def test_no_break(self) -> None:
        assert BlockChunker(0, 100).find_break_point("abcdef", 6) is None
