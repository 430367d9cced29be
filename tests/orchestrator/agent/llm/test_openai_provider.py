"""Tests for the OpenAI adapter using a fake SDK client."""

import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from nexus.errors import ProviderError
from nexus.orchestrator.agent.llm.openai_provider import OpenAIProvider, convert_messages
from nexus.orchestrator.agent.llm.types import LLMMessage, LLMOptions, ToolCall, ToolDefinition

OPTIONS = LLMOptions(model="gpt-test", max_tokens=128)
TOOLS = [ToolDefinition("list_orders", "List orders", {"type": "object", "properties": {}})]


async def _aiter(items):
    for item in items:
        yield item


class FakeCompletions:
    def __init__(self, response=None, chunks=None, error=None):
        self.response = response
        self.chunks = chunks or []
        self.error = error
        self.calls: list[dict] = []

    async def create(self, **params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        if params.get("stream"):
            return _aiter(self.chunks)
        return self.response


def _provider(completions: FakeCompletions) -> OpenAIProvider:
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIProvider("sk-test", client=client)


def _chunk(content=None, tool_calls=None, finish_reason=None, usage=None, empty=False):
    choices = [] if empty else [
        SimpleNamespace(
            delta=SimpleNamespace(content=content, tool_calls=tool_calls),
            finish_reason=finish_reason,
        )
    ]
    return SimpleNamespace(choices=choices, usage=usage)


def _tc(index, id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments)
    )


class TestConvertMessages:
    def test_tool_calls_serialized_as_json_strings(self):
        converted = convert_messages([
            LLMMessage(role="system", content="sys"),
            LLMMessage(role="assistant", tool_calls=[ToolCall("call_1", "list_orders", {"a": 1})]),
            LLMMessage(role="tool", content="{}", tool_call_id="call_1"),
        ])
        assert converted[0] == {"role": "system", "content": "sys"}
        assert converted[1]["content"] is None
        fn = converted[1]["tool_calls"][0]["function"]
        assert json.loads(fn["arguments"]) == {"a": 1}
        assert converted[2] == {"role": "tool", "tool_call_id": "call_1", "content": "{}"}

    def test_empty_assistant_message_dropped(self):
        assert convert_messages([LLMMessage(role="assistant", content="")]) == []


class TestSend:
    @pytest.mark.asyncio
    async def test_parses_tool_calls(self):
        message = SimpleNamespace(
            content=None,
            tool_calls=[
                SimpleNamespace(
                    id="call_1",
                    function=SimpleNamespace(name="list_orders", arguments='{"status":"draft"}'),
                )
            ],
        )
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=message, finish_reason="tool_calls")],
            usage=SimpleNamespace(prompt_tokens=5, completion_tokens=3),
        )
        fake = FakeCompletions(response=response)
        result = await _provider(fake).send([LLMMessage(role="user", content="hi")], TOOLS, OPTIONS)

        assert result.content == ""
        assert result.tool_calls == [ToolCall("call_1", "list_orders", {"status": "draft"})]
        assert result.finish_reason == "tool_use"
        assert fake.calls[0]["max_completion_tokens"] == 128
        assert "temperature" not in fake.calls[0]

    @pytest.mark.asyncio
    async def test_length_finish(self):
        response = SimpleNamespace(
            choices=[SimpleNamespace(
                message=SimpleNamespace(content="cut", tool_calls=None), finish_reason="length",
            )],
            usage=None,
        )
        result = await _provider(FakeCompletions(response=response)).send(
            [LLMMessage(role="user", content="hi")], None, OPTIONS
        )
        assert result.finish_reason == "max_tokens"

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        error = openai.APIStatusError(
            "Rate limited", response=httpx.Response(429, request=request), body=None
        )
        with pytest.raises(ProviderError) as exc_info:
            await _provider(FakeCompletions(error=error)).send(
                [LLMMessage(role="user", content="hi")], None, OPTIONS
            )
        assert exc_info.value.status_code == 429


class TestStream:
    @pytest.mark.asyncio
    async def test_accumulates_tool_call_fragments_per_index(self):
        chunks = [
            _chunk(content="Let me "),
            _chunk(content="look."),
            _chunk(tool_calls=[_tc(0, id="call_a", name="list_orders", arguments='{"sta')]),
            _chunk(tool_calls=[_tc(1, id="call_b", name="get_order", arguments='{"id": "o1"}')]),
            _chunk(tool_calls=[_tc(0, arguments='tus": "draft"}')]),
            _chunk(finish_reason="tool_calls"),
            _chunk(empty=True, usage=SimpleNamespace(prompt_tokens=20, completion_tokens=9)),
        ]
        fake = FakeCompletions(chunks=chunks)
        out = [c async for c in _provider(fake).stream([LLMMessage(role="user", content="x")], TOOLS, OPTIONS)]

        assert "".join(c.text for c in out if c.type == "text_delta") == "Let me look."
        ends = [c.tool_call for c in out if c.type == "tool_call_end"]
        assert ends == [
            ToolCall("call_a", "list_orders", {"status": "draft"}),
            ToolCall("call_b", "get_order", {"id": "o1"}),
        ]
        done = out[-1]
        assert done.finish_reason == "tool_use"
        assert done.usage.output_tokens == 9
        assert fake.calls[0]["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    async def test_plain_text_stream(self):
        chunks = [_chunk(content="Hello"), _chunk(finish_reason="stop")]
        out = [c async for c in _provider(FakeCompletions(chunks=chunks)).stream(
            [LLMMessage(role="user", content="x")], None, OPTIONS
        )]
        assert [c.type for c in out] == ["text_delta", "done"]
        assert out[-1].finish_reason == "end_turn"

    @pytest.mark.asyncio
    async def test_stream_cut_before_finish_raises(self):
        chunks = [
            _chunk(tool_calls=[_tc(0, id="call_a", name="list_orders", arguments='{"sta')]),
            _chunk(tool_calls=[_tc(0, arguments='tus": "draft"}')]),
        ]
        seen = []
        with pytest.raises(ProviderError) as exc_info:
            async for chunk in _provider(FakeCompletions(chunks=chunks)).stream(
                [LLMMessage(role="user", content="x")], TOOLS, OPTIONS
            ):
                seen.append(chunk.type)

        assert exc_info.value.provider == "openai"
        assert "finish_reason" in exc_info.value.reason
        assert "tool_call_end" not in seen
        assert "done" not in seen

    @pytest.mark.asyncio
    async def test_text_stream_without_finish_raises(self):
        chunks = [_chunk(content="partial")]
        with pytest.raises(ProviderError):
            _ = [c async for c in _provider(FakeCompletions(chunks=chunks)).stream(
                [LLMMessage(role="user", content="x")], None, OPTIONS
            )]
