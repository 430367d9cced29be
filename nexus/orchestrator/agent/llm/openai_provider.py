"""OpenAI Chat Completions adapter.

Wire mapping:
    - dedicated ``tool`` role for tool results
    - tool-call arguments travel as JSON strings in both directions
    - streamed tool-call fragments arrive keyed by index and are parsed once,
      when the finish chunk arrives
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import openai
from openai import AsyncOpenAI

from nexus.errors import ProviderError
from nexus.orchestrator.agent.llm.types import (
    FinishReason,
    LLMMessage,
    LLMOptions,
    LLMResponse,
    StreamChunk,
    ToolCall,
    ToolDefinition,
    Usage,
    parse_tool_arguments,
)

logger = logging.getLogger(__name__)

PROVIDER = "openai"


def _finish_reason(reason: str | None) -> FinishReason:
    if reason in ("tool_calls", "function_call"):
        return "tool_use"
    if reason == "length":
        return "max_tokens"
    return "end_turn"


def _wrap_error(exc: Exception) -> ProviderError:
    if isinstance(exc, openai.APIStatusError):
        return ProviderError(PROVIDER, exc.message, status_code=exc.status_code)
    return ProviderError(PROVIDER, str(exc) or type(exc).__name__)


def _usage(raw: Any) -> Usage | None:
    if raw is None:
        return None
    return Usage(
        input_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        output_tokens=getattr(raw, "completion_tokens", 0) or 0,
    )


def convert_messages(messages: list[LLMMessage]) -> list[dict[str, Any]]:
    """Translate neutral messages to Chat Completions messages."""
    converted: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == "tool":
            converted.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id or "",
                "content": msg.content,
            })
        elif msg.role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": msg.content or None}
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments, default=str),
                        },
                    }
                    for tc in msg.tool_calls
                ]
            elif not msg.content:
                continue
            converted.append(entry)
        else:
            converted.append({"role": msg.role, "content": msg.content})
    return converted


def convert_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
            },
        }
        for t in tools
    ]


class OpenAIProvider:
    """LLMClient backed by the official ``openai`` SDK.

    Args:
        api_key: Decrypted organization key.
        client: Optional pre-built AsyncOpenAI (used by tests).
    """

    provider = PROVIDER

    def __init__(self, api_key: str, client: Any = None) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key, max_retries=0)

    def _build_params(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        options: LLMOptions,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": options.model,
            "messages": convert_messages(messages),
            "max_completion_tokens": options.max_tokens,
        }
        if options.temperature is not None:
            params["temperature"] = options.temperature
        if tools:
            params["tools"] = convert_tools(tools)
        return params

    async def send(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        options: LLMOptions,
    ) -> LLMResponse:
        params = self._build_params(messages, tools, options)
        try:
            response = await self._client.chat.completions.create(**params)
        except openai.APIError as e:
            raise _wrap_error(e) from e

        if not response.choices:
            return LLMResponse(content="", usage=_usage(response.usage))

        choice = response.choices[0]
        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=parse_tool_arguments(
                    tc.function.arguments, PROVIDER, tc.function.name
                ),
            )
            for tc in (choice.message.tool_calls or [])
        ]
        return LLMResponse(
            content=choice.message.content or "",
            tool_calls=tool_calls,
            finish_reason=_finish_reason(choice.finish_reason),
            usage=_usage(response.usage),
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        options: LLMOptions,
    ) -> AsyncIterator[StreamChunk]:
        params = self._build_params(messages, tools, options)
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}

        finish_reason: str | None = None
        usage: Usage | None = None
        # index -> {"id", "name", "args"}
        active_tool_calls: dict[int, dict[str, Any]] = {}

        try:
            stream = await self._client.chat.completions.create(**params)
            async for chunk in stream:
                if getattr(chunk, "usage", None) is not None:
                    usage = _usage(chunk.usage)
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta

                if delta is not None and delta.content:
                    yield StreamChunk(type="text_delta", text=delta.content)

                for tc_delta in (delta.tool_calls if delta is not None else None) or []:
                    idx = tc_delta.index
                    fn = tc_delta.function
                    if idx not in active_tool_calls:
                        active_tool_calls[idx] = {
                            "id": tc_delta.id or "",
                            "name": (fn.name if fn is not None else None) or "",
                            "args": [],
                        }
                        info = active_tool_calls[idx]
                        yield StreamChunk(
                            type="tool_call_start",
                            tool_call=ToolCall(id=info["id"], name=info["name"]),
                        )
                    info = active_tool_calls[idx]
                    if fn is not None and fn.arguments:
                        info["args"].append(fn.arguments)
                        yield StreamChunk(
                            type="tool_call_delta",
                            tool_call=ToolCall(id=info["id"], name=info["name"]),
                            arguments_delta=fn.arguments,
                        )

                if choice.finish_reason is not None:
                    finish_reason = choice.finish_reason
                    for idx in sorted(active_tool_calls):
                        info = active_tool_calls[idx]
                        yield StreamChunk(
                            type="tool_call_end",
                            tool_call=ToolCall(
                                id=info["id"],
                                name=info["name"],
                                arguments=parse_tool_arguments(
                                    "".join(info["args"]), PROVIDER, info["name"]
                                ),
                            ),
                        )
                    active_tool_calls.clear()
        except openai.APIError as e:
            raise _wrap_error(e) from e

        if finish_reason is None or active_tool_calls:
            logger.warning(
                "OpenAI stream ended before finish_reason (%d pending tool call(s))",
                len(active_tool_calls),
            )
            raise ProviderError(PROVIDER, "stream ended before finish_reason")

        yield StreamChunk(
            type="done", finish_reason=_finish_reason(finish_reason), usage=usage
        )
