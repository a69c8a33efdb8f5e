from typing import Any

from devmentor.errors import ToolExecutionError
from devmentor.tools.path_sandbox import PathSandbox

DEFAULT_MAX_LINES = 500


class ReadFileTool:
    def __init__(self, sandbox: PathSandbox):
        self._sandbox = sandbox

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read the contents of a local file. Use this to analyze configuration files, logs, or code."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Absolute or relative path to the file to read",
                },
                "maxLines": {
                    "type": "integer",
                    "description": f"Maximum number of lines to read (default: {DEFAULT_MAX_LINES})",
                },
            },
            "required": ["path"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> str:
        raw_path = tool_input["path"]
        max_lines = tool_input.get("maxLines") or DEFAULT_MAX_LINES
        if max_lines < 1:
            raise ToolExecutionError("maxLines must be at least 1")

        file_path = self._sandbox.resolve(raw_path)
        if file_path.is_dir():
            raise ToolExecutionError(f"{raw_path} is a directory. Use list_directory instead.")
        try:
            content = file_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError as ex:
            raise ToolExecutionError(f"File not found: {raw_path}") from ex
        except OSError as ex:
            raise ToolExecutionError(f"Error reading file: {ex}") from ex

        lines = content.split("\n")
        if len(lines) > max_lines:
            return "\n".join(lines[:max_lines]) + f"\n\n[Truncated: {len(lines) - max_lines} more lines]"
        return content
