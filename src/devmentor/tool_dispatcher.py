from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from devmentor.errors import DevMentorError
from devmentor.tool import Tool

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: dict[str, Any]

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description, "parameters": self.input_schema}


@dataclass(frozen=True)
class ToolResult:
    success: bool
    result: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
        return data


def validate_params(schema: dict[str, Any], params: dict[str, Any]) -> str | None:
    """Return a readable problem with ``params`` under ``schema``, or None."""
    properties = schema.get("properties", {})
    for name in schema.get("required", []):
        value = params.get(name)
        if value is None:
            return f"Missing required parameter: {name}"
        if isinstance(value, str) and not value.strip():
            return f"Parameter '{name}' must not be empty"

    for name, value in params.items():
        prop = properties.get(name)
        if prop is None or value is None:
            continue
        expected = prop.get("type")
        accepted = _JSON_TYPES.get(expected)
        if accepted is not None:
            is_bool = isinstance(value, bool)
            if not isinstance(value, accepted) or (is_bool and expected != "boolean"):
                return f"Parameter '{name}' must be of type {expected}"
        if "enum" in prop and value not in prop["enum"]:
            return f"Parameter '{name}' must be one of: {', '.join(map(str, prop['enum']))}"
    return None


class ToolDispatcher:
    """Runs named tools and folds every outcome into a ToolResult."""

    def __init__(self, tools_by_type: dict[str, list[Tool]], *, max_result_chars: int = 40_000):
        self._tools_by_type = tools_by_type
        self._tool_map: dict[str, Tool] = {}
        for tools in tools_by_type.values():
            for tool in tools:
                self._tool_map.setdefault(tool.name, tool)
        self._max_result_chars = max_result_chars

    def list_tools(self, session_type: str) -> list[ToolDescriptor]:
        return [
            ToolDescriptor(name=t.name, description=t.description, input_schema=t.input_schema)
            for t in self._tools_by_type.get(session_type, [])
        ]

    def tools_for(self, session_type: str) -> list[Tool]:
        return list(self._tools_by_type.get(session_type, []))

    async def execute(self, tool_name: str, params: dict[str, Any] | None) -> ToolResult:
        tool = self._tool_map.get(tool_name)
        if tool is None:
            return ToolResult(success=False, error=f'Unknown tool "{tool_name}"')
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return ToolResult(success=False, error="Tool parameters must be an object")

        problem = validate_params(tool.input_schema, params)
        if problem is not None:
            return ToolResult(success=False, error=problem)

        try:
            output = await tool.execute(params)
        except DevMentorError as ex:
            logger.info(f"Tool {tool_name} failed: {ex.message}")
            return ToolResult(success=False, error=ex.message)
        except Exception as ex:
            logger.exception(f"Tool {tool_name} raised unexpectedly")
            return ToolResult(success=False, error=f'Error executing tool "{tool_name}": {ex}')

        return ToolResult(success=True, result=self._truncate(output, tool_name))

    async def analyze_config(self, content: str, config_type: str = "auto") -> ToolResult:
        return await self.execute("analyze_config", {"content": content, "type": config_type or "auto"})

    async def analyze_error(self, error: str, context: str = "general") -> ToolResult:
        return await self.execute("analyze_error", {"error": error, "context": context or "general"})

    def _truncate(self, output: str, tool_name: str) -> str:
        if not isinstance(output, str):
            output = str(output)
        if self._max_result_chars <= 0 or len(output) <= self._max_result_chars:
            return output
        logger.warning(f"{tool_name} output truncated from {len(output):,} to {self._max_result_chars:,} chars")
        return (
            output[: self._max_result_chars]
            + f"\n\n[OUTPUT TRUNCATED: Showing {self._max_result_chars:,} of {len(output):,} characters]"
        )
