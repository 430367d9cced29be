"""Google Gemini adapter over the generateContent REST API.

Wire mapping:
    - system messages -> ``systemInstruction``
    - assistant -> ``model`` role; tool calls -> ``functionCall`` parts
    - tool results -> ``functionResponse`` parts, grouped into one user turn
      so their count matches the preceding functionCall parts
    - JSON Schema tool parameters -> Gemini's upper-case schema dialect

Gemini assigns no call ids, so the adapter generates ``call_<hex>`` ids.
Streaming uses ``:streamGenerateContent?alt=sse``.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any
from uuid import uuid4

import httpx

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
    split_system,
    tool_result_payload,
)

logger = logging.getLogger(__name__)

PROVIDER = "google"
BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_TIMEOUT = httpx.Timeout(120.0, connect=10.0)

_SCHEMA_TYPES = {
    "object": "OBJECT",
    "string": "STRING",
    "number": "NUMBER",
    "integer": "INTEGER",
    "boolean": "BOOLEAN",
    "array": "ARRAY",
}


def convert_schema(schema: dict[str, Any] | None) -> dict[str, Any]:
    """Convert a JSON Schema fragment to Gemini's schema dialect.

    Unknown types fall back to STRING; a missing schema becomes an empty
    OBJECT.
    """
    if not schema or not schema.get("type"):
        return {"type": "OBJECT", "properties": {}}

    raw_type = schema["type"]
    if isinstance(raw_type, list):
        raw_type = next((t for t in raw_type if t != "null"), "string")
    result: dict[str, Any] = {"type": _SCHEMA_TYPES.get(str(raw_type), "STRING")}

    if schema.get("description"):
        result["description"] = schema["description"]
    if isinstance(schema.get("properties"), dict):
        result["properties"] = {
            name: convert_schema(sub) for name, sub in schema["properties"].items()
        }
    if schema.get("required"):
        result["required"] = list(schema["required"])
    if isinstance(schema.get("items"), dict):
        result["items"] = convert_schema(schema["items"])
    if schema.get("enum"):
        result["enum"] = [str(v) for v in schema["enum"]]
    return result


def convert_messages(
    messages: list[LLMMessage],
) -> tuple[str | None, list[dict[str, Any]]]:
    """Translate neutral messages to (systemInstruction text, contents)."""
    system, rest = split_system(messages)
    contents: list[dict[str, Any]] = []

    for msg in rest:
        if msg.role == "tool":
            role = "user"
            payload = tool_result_payload(msg.content)
            parts: list[dict[str, Any]] = [{
                "functionResponse": {
                    "name": msg.name or "tool",
                    "response": {"result": payload},
                }
            }]
        elif msg.role == "assistant":
            role = "model"
            parts = [{"text": msg.content}] if msg.content else []
            parts.extend(
                {"functionCall": {"name": tc.name, "args": tc.arguments}}
                for tc in msg.tool_calls
            )
        else:
            role = "user"
            parts = [{"text": msg.content}] if msg.content else []

        if not parts:
            continue
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].extend(parts)
        else:
            contents.append({"role": role, "parts": parts})

    return system, contents


def _new_call_id() -> str:
    return f"call_{uuid4().hex[:24]}"


# The model tried to call a tool but Gemini could not produce a usable call
_TOOL_FAILURE_FINISH = frozenset({"MALFORMED_FUNCTION_CALL", "UNEXPECTED_TOOL_CALL"})


def _finish_reason(raw: str | None, has_tool_calls: bool) -> FinishReason:
    if has_tool_calls:
        return "tool_use"
    if raw in _TOOL_FAILURE_FINISH:
        return "tool_use"
    if raw == "MAX_TOKENS":
        return "max_tokens"
    return "end_turn"


def _usage(raw: Any) -> Usage | None:
    if not isinstance(raw, dict):
        return None
    return Usage(
        input_tokens=int(raw.get("promptTokenCount") or 0),
        output_tokens=int(raw.get("candidatesTokenCount") or 0),
    )


def _error_reason(response: httpx.Response) -> str:
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message") or response.reason_phrase)
    return response.reason_phrase


def _candidate_parts(chunk: dict[str, Any]) -> tuple[list[dict[str, Any]], str | None]:
    candidates = chunk.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return [], None
    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    finish = first.get("finishReason")
    return (
        [p for p in parts if isinstance(p, dict)] if isinstance(parts, list) else [],
        finish if isinstance(finish, str) else None,
    )


async def _iter_sse_json(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Yield JSON objects from ``data:`` SSE events."""
    buf: list[str] = []

    def _flush() -> dict[str, Any] | None:
        raw = "\n".join(buf).strip()
        buf.clear()
        if not raw or raw == "[DONE]":
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Malformed Gemini stream event: %s", e)
            raise ProviderError(PROVIDER, f"malformed stream event: {e}") from e
        return data if isinstance(data, dict) else None

    async for line in response.aiter_lines():
        s = line.strip()
        if not s:
            data = _flush()
            if data is not None:
                yield data
            continue
        if s.startswith(":"):
            continue
        if s.startswith("data:"):
            buf.append(s[len("data:"):].lstrip())

    data = _flush()
    if data is not None:
        yield data


class GoogleProvider:
    """LLMClient for Gemini, speaking REST through ``httpx``.

    Args:
        api_key: Decrypted organization key.
        client: Optional shared httpx.AsyncClient (used by tests).
        base_url: API root, overridable for gateways.
    """

    provider = PROVIDER

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        base_url: str = BASE_URL,
    ) -> None:
        self._api_key = api_key
        self._client = client
        self._base_url = base_url.rstrip("/")

    def _build_body(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        options: LLMOptions,
    ) -> dict[str, Any]:
        system, contents = convert_messages(messages)
        generation_config: dict[str, Any] = {"maxOutputTokens": options.max_tokens}
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature

        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if tools:
            body["tools"] = [{
                "functionDeclarations": [
                    {
                        "name": t.name,
                        "description": t.description,
                        "parameters": convert_schema(t.parameters),
                    }
                    for t in tools
                ]
            }]
        return body

    def _url(self, model: str, stream: bool) -> str:
        if stream:
            return f"{self._base_url}/models/{model}:streamGenerateContent?alt=sse"
        return f"{self._base_url}/models/{model}:generateContent"

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}

    async def send(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        options: LLMOptions,
    ) -> LLMResponse:
        body = self._build_body(messages, tools, options)
        client = self._client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        try:
            response = await client.post(
                self._url(options.model, stream=False),
                headers=self._headers(),
                json=body,
            )
            if response.status_code >= 400:
                raise ProviderError(
                    PROVIDER, _error_reason(response), status_code=response.status_code
                )
            data = response.json()
        except httpx.HTTPError as e:
            raise ProviderError(PROVIDER, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise ProviderError(PROVIDER, f"invalid JSON response: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        parts, raw_finish = _candidate_parts(data)
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for part in parts:
            if isinstance(part.get("text"), str) and not part.get("thought"):
                text_parts.append(part["text"])
            fc = part.get("functionCall")
            if isinstance(fc, dict) and fc.get("name"):
                args = fc.get("args")
                tool_calls.append(
                    ToolCall(
                        id=_new_call_id(),
                        name=fc["name"],
                        arguments=args if isinstance(args, dict) else {},
                    )
                )

        return LLMResponse(
            content="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=_finish_reason(raw_finish, bool(tool_calls)),
            usage=_usage(data.get("usageMetadata")),
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        options: LLMOptions,
    ) -> AsyncIterator[StreamChunk]:
        body = self._build_body(messages, tools, options)
        client = self._client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        raw_finish: str | None = None
        usage: Usage | None = None
        saw_tool_call = False

        try:
            async with client.stream(
                "POST",
                self._url(options.model, stream=True),
                headers=self._headers(),
                json=body,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise ProviderError(
                        PROVIDER,
                        _error_reason(response),
                        status_code=response.status_code,
                    )
                async for chunk in _iter_sse_json(response):
                    parts, finish = _candidate_parts(chunk)
                    raw_finish = finish or raw_finish
                    usage = _usage(chunk.get("usageMetadata")) or usage
                    for part in parts:
                        text = part.get("text")
                        if isinstance(text, str) and text and not part.get("thought"):
                            yield StreamChunk(type="text_delta", text=text)
                        fc = part.get("functionCall")
                        if isinstance(fc, dict) and fc.get("name"):
                            # Gemini delivers each call whole, never in fragments
                            args = fc.get("args")
                            call = ToolCall(
                                id=_new_call_id(),
                                name=fc["name"],
                                arguments=args if isinstance(args, dict) else {},
                            )
                            saw_tool_call = True
                            yield StreamChunk(
                                type="tool_call_start",
                                tool_call=ToolCall(id=call.id, name=call.name),
                            )
                            yield StreamChunk(type="tool_call_end", tool_call=call)
        except httpx.HTTPError as e:
            raise ProviderError(PROVIDER, str(e) or type(e).__name__) from e
        finally:
            if self._client is None:
                await client.aclose()

        yield StreamChunk(
            type="done",
            finish_reason=_finish_reason(raw_finish, saw_tool_call),
            usage=usage,
        )
