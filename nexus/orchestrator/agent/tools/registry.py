"""Tool registry: tools keyed by stable key, looked up by model-facing name.

Registration happens once at startup; after freeze() the registry is
read-only and safe to share between concurrent turns. Permission checks are
the engine's job, not the registry's.
"""

import inspect
import logging
from collections.abc import Iterable
from typing import Any

from nexus.errors import ToolExecutionError, UnknownToolError
from nexus.orchestrator.agent.llm.types import ToolDefinition
from nexus.orchestrator.agent.tools.types import OrgContext, Tool
from nexus.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Catalog of tools with O(1) lookup by key and by name."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._by_key: dict[str, Tool] = {}
        self._by_name: dict[str, Tool] = {}
        self._frozen = False
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Add a tool.

        Raises:
            RuntimeError: If the registry is frozen.
            ValueError: If the key or name is already registered.
        """
        if self._frozen:
            raise RuntimeError(f"Cannot register {tool.key!r}: registry is frozen")
        if tool.key in self._by_key:
            raise ValueError(f"Duplicate tool key {tool.key!r}")
        if tool.name in self._by_name:
            raise ValueError(f"Duplicate tool name {tool.name!r}")
        self._by_key[tool.key] = tool
        self._by_name[tool.name] = tool

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def keys(self) -> list[str]:
        return list(self._by_key)

    def by_key(self, key: str) -> Tool:
        try:
            return self._by_key[key]
        except KeyError:
            raise UnknownToolError(key) from None

    def by_name(self, name: str) -> Tool:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def tools_for(self, keys: Iterable[str]) -> list[Tool]:
        """Resolve an agent's bound keys, skipping unknown ones."""
        tools: list[Tool] = []
        for key in keys:
            tool = self._by_key.get(key)
            if tool is None:
                logger.warning("Agent is bound to unknown tool key %r; skipping", key)
                continue
            tools.append(tool)
        return tools

    def definitions_for(self, keys: Iterable[str]) -> list[ToolDefinition]:
        return [t.definition() for t in self.tools_for(keys)]

    async def execute(self, name: str, ctx: OrgContext, args: dict[str, Any]) -> Any:
        """Run a tool's handler.

        Raises:
            UnknownToolError: If no tool has this name.
            ToolExecutionError: If the handler raises.
        """
        tool = self.by_name(name)
        logger.debug(
            "Executing tool %s for org %s args=%s",
            name, ctx.org_id, redact_for_logging(args),
        )
        try:
            result = tool.handler(ctx, args)
            if inspect.isawaitable(result):
                result = await result
        except ToolExecutionError:
            raise
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            raise ToolExecutionError(name, str(e) or type(e).__name__) from e
        return result
