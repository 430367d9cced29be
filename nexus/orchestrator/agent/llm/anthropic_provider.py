"""Anthropic Messages API adapter.

Wire mapping:
    - system messages -> top-level ``system`` parameter
    - assistant tool calls -> ``tool_use`` content blocks
    - tool results -> user-role message with ``tool_result`` blocks
    - consecutive same-role messages are merged, since the API requires
      strictly alternating user/assistant turns
"""

import logging
from collections.abc import AsyncIterator
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

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
    split_system,
)

logger = logging.getLogger(__name__)

PROVIDER = "anthropic"


def _finish_reason(stop_reason: str | None) -> FinishReason:
    if stop_reason == "tool_use":
        return "tool_use"
    if stop_reason == "max_tokens":
        return "max_tokens"
    return "end_turn"


def _wrap_error(exc: Exception) -> ProviderError:
    if isinstance(exc, anthropic.APIStatusError):
        return ProviderError(PROVIDER, exc.message, status_code=exc.status_code)
    return ProviderError(PROVIDER, str(exc) or type(exc).__name__)


def convert_messages(messages: list[LLMMessage]) -> tuple[str | None, list[dict[str, Any]]]:
    """Translate neutral messages to (system, Anthropic messages)."""
    system, rest = split_system(messages)
    converted: list[dict[str, Any]] = []

    for msg in rest:
        if msg.role == "tool":
            role = "user"
            blocks: list[dict[str, Any]] = [{
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id or "",
                "content": msg.content,
            }]
        elif msg.role == "assistant":
            role = "assistant"
            blocks = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for tc in msg.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": tc.id,
                    "name": tc.name,
                    "input": tc.arguments,
                })
        else:
            role = "user"
            blocks = [{"type": "text", "text": msg.content}] if msg.content else []

        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})

    # tool_result blocks must lead their user message
    for entry in converted:
        if entry["role"] == "user":
            entry["content"].sort(key=lambda b: 0 if b["type"] == "tool_result" else 1)

    return system, converted


def convert_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {"name": t.name, "description": t.description, "input_schema": t.parameters}
        for t in tools
    ]


class AnthropicProvider:
    """LLMClient backed by the official ``anthropic`` SDK.

    Args:
        api_key: Decrypted organization key.
        client: Optional pre-built AsyncAnthropic (used by tests).
    """

    provider = PROVIDER

    def __init__(self, api_key: str, client: Any = None) -> None:
        self._client = client or AsyncAnthropic(api_key=api_key, max_retries=0)

    def _build_params(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        options: LLMOptions,
    ) -> dict[str, Any]:
        system, converted = convert_messages(messages)
        params: dict[str, Any] = {
            "model": options.model,
            "max_tokens": options.max_tokens,
            "messages": converted,
        }
        if system:
            params["system"] = system
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
            response = await self._client.messages.create(**params)
        except anthropic.APIError as e:
            raise _wrap_error(e) from e

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                args = block.input if isinstance(block.input, dict) else {}
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=args))

        usage = None
        if getattr(response, "usage", None) is not None:
            usage = Usage(
                input_tokens=response.usage.input_tokens or 0,
                output_tokens=response.usage.output_tokens or 0,
            )
        return LLMResponse(
            content="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=_finish_reason(response.stop_reason),
            usage=usage,
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        options: LLMOptions,
    ) -> AsyncIterator[StreamChunk]:
        params = self._build_params(messages, tools, options)
        usage = Usage()
        stop_reason: str | None = None
        # content block index -> (ToolCall, accumulated JSON)
        open_calls: dict[int, tuple[ToolCall, list[str]]] = {}

        try:
            event_stream = await self._client.messages.create(stream=True, **params)
            async for event in event_stream:
                etype = event.type
                if etype == "message_start":
                    start_usage = getattr(event.message, "usage", None)
                    if start_usage is not None:
                        usage.input_tokens = start_usage.input_tokens or 0
                elif etype == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        call = ToolCall(id=block.id, name=block.name)
                        open_calls[event.index] = (call, [])
                        yield StreamChunk(
                            type="tool_call_start",
                            tool_call=ToolCall(id=call.id, name=call.name),
                        )
                elif etype == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        yield StreamChunk(type="text_delta", text=delta.text)
                    elif delta.type == "input_json_delta" and event.index in open_calls:
                        call, fragments = open_calls[event.index]
                        fragments.append(delta.partial_json)
                        yield StreamChunk(
                            type="tool_call_delta",
                            tool_call=ToolCall(id=call.id, name=call.name),
                            arguments_delta=delta.partial_json,
                        )
                elif etype == "content_block_stop":
                    entry = open_calls.pop(event.index, None)
                    if entry is not None:
                        call, fragments = entry
                        call.arguments = parse_tool_arguments(
                            "".join(fragments), PROVIDER, call.name
                        )
                        yield StreamChunk(type="tool_call_end", tool_call=call)
                elif etype == "message_delta":
                    stop_reason = event.delta.stop_reason or stop_reason
                    delta_usage = getattr(event, "usage", None)
                    if delta_usage is not None:
                        usage.output_tokens = delta_usage.output_tokens or 0
                elif etype == "message_stop":
                    break
        except anthropic.APIError as e:
            raise _wrap_error(e) from e

        yield StreamChunk(
            type="done", finish_reason=_finish_reason(stop_reason), usage=usage
        )
