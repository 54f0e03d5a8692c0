"""Tests for cadence.api.claude: the Anthropic-backed session provider."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest

from conftest import make_options
from cadence.api.claude import SUMMARY_PROMPT, AnthropicSessionProvider
from cadence.config import ProviderConfig
from cadence.runner.controller import RunController
from cadence.runner.provider import (
    ModelRef,
    PromptRequest,
    ProviderError,
    ReasoningPart,
    SessionProvider,
    TextPart,
    ToolPart,
)


def _message(*blocks: SimpleNamespace, input_tokens: int = 3, output_tokens: int = 4) -> SimpleNamespace:
    return SimpleNamespace(
        content=list(blocks),
        usage=SimpleNamespace(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_read_input_tokens=1,
            cache_creation_input_tokens=None,
        ),
        stop_reason="end_turn",
    )


def _text(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def _client(*responses: SimpleNamespace) -> SimpleNamespace:
    return SimpleNamespace(messages=SimpleNamespace(create=AsyncMock(side_effect=list(responses))))


def _provider(client: SimpleNamespace) -> AnthropicSessionProvider:
    config = ProviderConfig(api_key="sk-test", model="claude-test", max_tokens=512)
    return AnthropicSessionProvider(config, client=client)


def _request(text: str, model_id: str = "claude-test", system: str | None = None) -> PromptRequest:
    return PromptRequest(
        parts=[TextPart(text=text)],
        model=ModelRef(provider_id="anthropic", model_id=model_id),
        system=system,
    )


class TestAnthropicSessionProvider:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(_provider(_client()), SessionProvider)

    @pytest.mark.asyncio
    async def test_content_blocks_converted_to_parts(self) -> None:
        client = _client(
            _message(
                SimpleNamespace(type="thinking", thinking="let me see"),
                _text("Sure."),
                SimpleNamespace(type="tool_use", id="tu_1", name="telegram", input={"content": "hi"}),
            )
        )
        provider = _provider(client)
        sid = await provider.create_session("cadence-chat")

        response = await provider.prompt_session(sid, _request("Say hi", system="Be kind."))

        assert response.parts == [
            ReasoningPart(text="let me see"),
            TextPart(text="Sure."),
            ToolPart(tool="telegram", call_id="tu_1", input={"content": "hi"}),
        ]
        assert response.usage.input == 3
        assert response.usage.output == 4
        assert response.usage.cache_read == 1
        assert response.usage.cache_write == 0

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["max_tokens"] == 512
        assert kwargs["system"] == "Be kind."
        assert kwargs["messages"] == [{"role": "user", "content": "Say hi"}]

    @pytest.mark.asyncio
    async def test_tools_and_thinking_forwarded(self) -> None:
        tool = {"name": "telegram", "description": "Send", "input_schema": {"type": "object"}}
        client = _client(_message(_text("ok")))
        provider = _provider(client)
        sid = await provider.create_session("t")

        await provider.prompt_session(
            sid,
            PromptRequest(
                parts=[TextPart(text="hi")],
                model=ModelRef(provider_id="anthropic", model_id="claude-test"),
                tools=[tool],
                thinking_budget=256,
            ),
        )

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["tools"] == [tool]
        assert kwargs["thinking"] == {"type": "enabled", "budget_tokens": 256}

    @pytest.mark.asyncio
    async def test_plain_request_sends_no_tools_or_thinking(self) -> None:
        client = _client(_message(_text("ok")))
        provider = _provider(client)
        sid = await provider.create_session("t")
        await provider.prompt_session(sid, _request("hi"))

        kwargs = client.messages.create.call_args.kwargs
        assert "tools" not in kwargs
        assert "thinking" not in kwargs

    @pytest.mark.asyncio
    async def test_history_replays_text_not_tool_blocks(self) -> None:
        client = _client(
            _message(
                SimpleNamespace(type="thinking", thinking="hmm"),
                _text("Sending now."),
                SimpleNamespace(type="tool_use", id="tu_1", name="telegram", input={}),
            ),
            _message(SimpleNamespace(type="tool_use", id="tu_2", name="slack", input={})),
            _message(_text("done")),
        )
        provider = _provider(client)
        sid = await provider.create_session("t")

        await provider.prompt_session(sid, _request("first"))
        await provider.prompt_session(sid, _request("second"))
        await provider.prompt_session(sid, _request("third"))

        messages = client.messages.create.call_args.kwargs["messages"]
        assert messages[1] == {
            "role": "assistant",
            "content": "Sending now.\n[called tools: telegram]",
        }
        assert messages[3] == {"role": "assistant", "content": "[called tools: slack]"}
        assert all(isinstance(m["content"], str) for m in messages)

    @pytest.mark.asyncio
    async def test_history_accumulates(self) -> None:
        client = _client(_message(_text("one")), _message(_text("two")))
        provider = _provider(client)
        sid = await provider.create_session("t")

        await provider.prompt_session(sid, _request("first"))
        await provider.prompt_session(sid, _request("second", model_id=""))

        kwargs = client.messages.create.call_args.kwargs
        assert [m["role"] for m in kwargs["messages"]] == ["user", "assistant", "user"]
        assert kwargs["messages"][-1]["content"] == "second"
        assert kwargs["model"] == "claude-test"
        assert "system" not in kwargs
        assert provider.telemetry["total_calls"] == 2
        assert provider.telemetry["total_input_tokens"] == 6

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self) -> None:
        client = _client(_message(_text("a")), _message(_text("b")))
        provider = _provider(client)
        first = await provider.create_session("t1")
        second = await provider.create_session("t2")
        assert first != second

        await provider.prompt_session(first, _request("to first"))
        await provider.prompt_session(second, _request("to second"))

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "to second"}]

    @pytest.mark.asyncio
    async def test_unknown_session_rejected(self) -> None:
        provider = _provider(_client())
        with pytest.raises(ProviderError, match="Unknown session"):
            await provider.prompt_session("ses_missing", _request("x"))

    @pytest.mark.asyncio
    async def test_other_provider_rejected(self) -> None:
        provider = _provider(_client())
        sid = await provider.create_session("t")
        request = PromptRequest(parts=[TextPart(text="x")], model=ModelRef("openai", "gpt-4o"))
        with pytest.raises(ProviderError, match="Unsupported provider"):
            await provider.prompt_session(sid, request)

    @pytest.mark.asyncio
    async def test_connection_error_wrapped(self) -> None:
        error = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )
        client = SimpleNamespace(messages=SimpleNamespace(create=AsyncMock(side_effect=error)))
        provider = _provider(client)
        sid = await provider.create_session("t")

        with pytest.raises(ProviderError, match="Prompt failed"):
            await provider.prompt_session(sid, _request("x"))

    @pytest.mark.asyncio
    async def test_timeout_wrapped(self) -> None:
        client = SimpleNamespace(
            messages=SimpleNamespace(create=AsyncMock(side_effect=asyncio.TimeoutError()))
        )
        provider = _provider(client)
        sid = await provider.create_session("t")

        with pytest.raises(ProviderError, match="timed out"):
            await provider.prompt_session(sid, _request("x"))

    @pytest.mark.asyncio
    async def test_failed_prompt_leaves_history_untouched(self) -> None:
        error = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )
        client = SimpleNamespace(
            messages=SimpleNamespace(create=AsyncMock(side_effect=[error, _message(_text("ok"))]))
        )
        provider = _provider(client)
        sid = await provider.create_session("t")

        with pytest.raises(ProviderError):
            await provider.prompt_session(sid, _request("lost"))
        await provider.prompt_session(sid, _request("kept"))

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "kept"}]

    @pytest.mark.asyncio
    async def test_summarize_replaces_history(self) -> None:
        client = _client(
            _message(_text("one")),
            _message(_text("two")),
            _message(_text("User likes tea.")),
            _message(_text("three")),
        )
        provider = _provider(client)
        sid = await provider.create_session("t")
        await provider.prompt_session(sid, _request("first"))
        await provider.prompt_session(sid, _request("second"))

        await provider.summarize_session(sid)
        summary_kwargs = client.messages.create.call_args.kwargs
        assert summary_kwargs["messages"][-1]["content"] == SUMMARY_PROMPT
        assert len(summary_kwargs["messages"]) == 5

        await provider.prompt_session(sid, _request("third"))
        messages = client.messages.create.call_args.kwargs["messages"]
        assert len(messages) == 3
        assert "User likes tea." in messages[0]["content"]

    @pytest.mark.asyncio
    async def test_summarize_empty_session_skips_call(self) -> None:
        client = _client()
        provider = _provider(client)
        sid = await provider.create_session("t")
        await provider.summarize_session(sid)
        client.messages.create.assert_not_called()


class TestAnthropicProviderWithController:
    @pytest.mark.asyncio
    async def test_run_through_controller(self) -> None:
        client = _client(_message(_text("Hi there!"), input_tokens=7, output_tokens=2))
        controller = RunController(_provider(client))

        result = await controller.start(make_options(model="anthropic/claude-test"))

        assert result.success
        assert result.text == "Hi there!"
        assert result.token_count == 9
        assert client.messages.create.call_args.kwargs["model"] == "claude-test"

    @pytest.mark.asyncio
    async def test_provider_failure_surfaces_in_result(self) -> None:
        error = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )
        client = SimpleNamespace(messages=SimpleNamespace(create=AsyncMock(side_effect=error)))
        controller = RunController(_provider(client))

        result = await controller.start(make_options())

        assert not result.success
        assert result.error is not None
        assert result.error.startswith("Prompt failed")
