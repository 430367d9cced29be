"""Vendor-neutral message, tool and stream types shared by all adapters.

The engine only ever sees these types; each adapter translates them to and
from its vendor's wire format.
"""

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal["end_turn", "tool_use", "max_tokens"]
StreamChunkType = Literal[
    "text_delta", "tool_call_start", "tool_call_delta", "tool_call_end", "done"
]


@dataclass
class ToolCall:
    """A model-requested tool invocation.

    Attributes:
        id: Vendor correlation id (generated for vendors without one).
        name: Model-facing tool name.
        arguments: Fully parsed JSON arguments.
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        args = data.get("arguments")
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            arguments=args if isinstance(args, dict) else {},
        )


@dataclass
class LLMMessage:
    """One neutral conversation message.

    Assistant messages may carry tool_calls; tool messages carry
    tool_call_id plus the tool name and a string result.
    """

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None


@dataclass
class ToolDefinition:
    """Model-facing tool description with a JSON Schema for arguments."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class LLMOptions:
    model: str
    temperature: float | None = None
    max_tokens: int = 4096


@dataclass
class LLMResponse:
    """Complete (non-streamed) model response."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: FinishReason = "end_turn"
    usage: Usage | None = None


@dataclass
class StreamChunk:
    """One streamed event.

    tool_call_start carries the call id and name, tool_call_delta the raw
    JSON fragment, tool_call_end the complete ToolCall with parsed
    arguments, and done the finish reason and usage.
    """

    type: StreamChunkType
    text: str | None = None
    tool_call: ToolCall | None = None
    arguments_delta: str | None = None
    finish_reason: FinishReason | None = None
    usage: Usage | None = None


class LLMClient(Protocol):
    """Interface every provider adapter implements."""

    provider: str

    async def send(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        options: LLMOptions,
    ) -> LLMResponse:
        ...

    def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        options: LLMOptions,
    ) -> AsyncIterator[StreamChunk]:
        ...


def parse_tool_arguments(raw: str | None, provider: str, tool_name: str) -> dict[str, Any]:
    """Parse accumulated tool-call JSON, degrading to {} when unusable.

    Only called once all fragments have arrived, so callers never see
    partially parsed arguments.
    """
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(
            "%s returned unparsable arguments for tool %s; using {}",
            provider, tool_name,
        )
        return {}
    if not isinstance(parsed, dict):
        logger.warning(
            "%s returned non-object arguments for tool %s; using {}",
            provider, tool_name,
        )
        return {}
    return parsed


def split_system(messages: list[LLMMessage]) -> tuple[str | None, list[LLMMessage]]:
    """Separate system messages (joined) from the conversational ones."""
    system_parts = [m.content for m in messages if m.role == "system" and m.content]
    rest = [m for m in messages if m.role != "system"]
    return ("\n\n".join(system_parts) or None), rest


def tool_result_payload(content: str) -> Any:
    """Decode a tool message's string content when it holds JSON."""
    try:
        return json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return content
