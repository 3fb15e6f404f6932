"""
Function-call dispatcher for realtime tool calling.

Looks up the registered handler by exact name, parses the JSON arguments and
awaits the handler. Every failure (unknown tool, malformed arguments, handler
exception) comes back as a structured error payload so the assistant can
explain the problem conversationally; nothing is raised to the caller.
"""

from __future__ import annotations

import json
import time
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from src.voice_bridge.tool_registry import ToolContext, ToolRegistry

logger = structlog.get_logger(__name__)


def safe_json_dumps(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return json.dumps({"error": "json_encode_failed"})


def parse_arguments(raw_arguments: Optional[str]) -> dict[str, Any]:
    """
    Parse a tool call's argument string into an object.

    Raises:
        ValueError: If the arguments are not a JSON object
    """
    if raw_arguments is None:
        return {}
    if isinstance(raw_arguments, dict):
        return raw_arguments
    text = str(raw_arguments).strip()
    if not text:
        return {}
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("Function arguments must be a JSON object")
    return parsed


def _error(name: str, message: str, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": message, "function": name}
    payload.update(extra)
    return payload


class FunctionCallDispatcher:
    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def tool_schemas(self) -> list[dict[str, Any]]:
        return self.registry.schemas()

    async def dispatch(
        self,
        name: str,
        raw_arguments: Optional[str],
        *,
        context: ToolContext,
    ) -> dict[str, Any]:
        started = time.time()

        tool = self.registry.get(name)
        if tool is None:
            logger.warning("No handler for function call", function=name, session_id=context.session_id)
            return _error(name, f"No handler found for function: {name}")

        try:
            args = parse_arguments(raw_arguments)
        except ValueError:
            # json.JSONDecodeError is a ValueError too.
            logger.warning("Invalid function arguments", function=name, session_id=context.session_id)
            return _error(name, "Invalid JSON arguments for function call.")

        try:
            result = await tool.handler(context, args)
        except ValidationError as e:
            details = [
                f"{'.'.join(str(part) for part in err.get('loc', ())) or 'arguments'}: {err.get('msg', '')}"
                for err in e.errors()
            ]
            logger.warning("Function arguments rejected", function=name, details=details)
            return _error(name, f"Invalid arguments for function {name}", details=details)
        except Exception as e:
            logger.exception("Function handler failed", function=name, session_id=context.session_id)
            return _error(name, f"Error running function {name}: {e}")

        logger.info(
            "Function call completed",
            function=name,
            session_id=context.session_id,
            ms=int((time.time() - started) * 1000),
        )
        if not isinstance(result, dict):
            return {"result": result}
        return result
