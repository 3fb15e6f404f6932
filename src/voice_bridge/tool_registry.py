"""
Registry of tools exposed to the realtime backend.

Each tool pairs an OpenAI Realtime function schema with an async handler.
Handlers receive an explicit `ToolContext` carrying the per-call session key
(the telephony stream id), so cart and order state is always scoped to the
call that requested it.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ToolContext:
    session_id: str


ToolHandler = Callable[[ToolContext, Dict[str, Any]], Awaitable[Any]]


@dataclass
class ToolDefinition:
    schema: Dict[str, Any]
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.schema["name"]


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, ToolDefinition] = {}
        self._default_schemas: Dict[str, Dict[str, Any]] = {}

    def register(self, schema: Dict[str, Any], handler: ToolHandler) -> ToolDefinition:
        name = schema.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError("Tool schema must have a name")
        if name in self._tools:
            logger.warning("Tool already registered, overwriting", tool=name)

        schema = {"type": "function", **schema}
        tool = ToolDefinition(schema=schema, handler=handler)
        self._tools[name] = tool
        self._default_schemas[name] = copy.deepcopy(schema)
        return tool

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def schemas(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(tool.schema) for tool in self._tools.values()]

    def update_schema(
        self,
        name: str,
        *,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Override a tool's description/parameters (applies to the next connection)."""
        tool = self._tools.get(name)
        if tool is None:
            return None
        if description is not None:
            tool.schema["description"] = description
        if parameters is not None:
            tool.schema["parameters"] = copy.deepcopy(parameters)
        logger.info("Tool schema updated", tool=name)
        return copy.deepcopy(tool.schema)

    def reset_schema(self, name: str) -> Optional[Dict[str, Any]]:
        tool = self._tools.get(name)
        if tool is None:
            return None
        tool.schema = copy.deepcopy(self._default_schemas[name])
        return copy.deepcopy(tool.schema)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
