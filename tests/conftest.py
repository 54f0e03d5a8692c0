"""
Shared fixtures for the Cadence test suite.

Provides a scripted session provider and small builders for run options and
results so individual test modules can focus on behaviour rather than setup.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from cadence.metrics import metrics
from cadence.runner.controller import RunOptions
from cadence.runner.provider import PromptRequest, ProviderError, ProviderResponse
from cadence.types import ReplyKind, ReplyPayload, RunMeta, RunResult


# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """A ``SessionProvider`` that replays canned responses.

    ``gate``, when given, blocks every prompt until it is set, which lets a
    test observe (and abort) a run while it is in flight.
    """

    def __init__(
        self,
        responses: Optional[list[ProviderResponse]] = None,
        *,
        gate: Optional[asyncio.Event] = None,
        session_id: Optional[str] = None,
        prompt_error: Optional[Exception] = None,
        summarize_error: Optional[Exception] = None,
    ) -> None:
        self.responses = list(responses or [])
        self.gate = gate
        self.session_id = session_id
        self.prompt_error = prompt_error
        self.summarize_error = summarize_error
        self.created: list[str] = []
        self.prompts: list[tuple[str, PromptRequest]] = []
        self.summarized: list[str] = []

    async def create_session(self, title: str) -> str:
        self.created.append(title)
        if self.session_id is not None:
            return self.session_id
        return f"ses-{len(self.created)}"

    async def prompt_session(self, session_id: str, request: PromptRequest) -> ProviderResponse:
        self.prompts.append((session_id, request))
        if self.gate is not None:
            await self.gate.wait()
        if self.prompt_error is not None:
            raise self.prompt_error
        if self.responses:
            return self.responses.pop(0)
        return ProviderResponse()

    async def summarize_session(self, session_id: str) -> None:
        if self.summarize_error is not None:
            raise self.summarize_error
        self.summarized.append(session_id)


class DeliveryRecorder:
    """Collects ``(kind, text)`` pairs handed to a dispatcher's deliver."""

    def __init__(self, fail_on: Optional[set[str]] = None) -> None:
        self.delivered: list[tuple[ReplyKind, Optional[str]]] = []
        self.fail_on = fail_on or set()

    async def __call__(self, payload: ReplyPayload, kind: ReplyKind) -> None:
        await asyncio.sleep(0)
        if payload.text in self.fail_on:
            raise ProviderError(f"channel rejected {payload.text!r}")
        self.delivered.append((kind, payload.text))

    @property
    def texts(self) -> list[Optional[str]]:
        return [text for _, text in self.delivered]


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_options(**overrides: Any) -> RunOptions:
    defaults: dict[str, Any] = {
        "session_id": "sess-1",
        "session_file": "/tmp/sess-1.jsonl",
        "prompt": "Hello",
        "provider": "anthropic",
        "model": "claude-opus-4-5",
        "session_key": "chat-1",
    }
    defaults.update(overrides)
    return RunOptions(**defaults)


def make_result(**overrides: Any) -> RunResult:
    defaults: dict[str, Any] = {
        "success": True,
        "text": "",
        "token_count": 0,
        "aborted": False,
        "meta": RunMeta(
            session_key="chat-1",
            session_id="sess-1",
            session_file="/tmp/sess-1.jsonl",
            lane="main",
            model="claude-opus-4-5",
            provider="anthropic",
        ),
    }
    defaults.update(overrides)
    return RunResult(**defaults)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture()
def recorder() -> DeliveryRecorder:
    return DeliveryRecorder()
