from pathlib import Path
from typing import Any

from devmentor.errors import ToolExecutionError
from devmentor.tools.path_sandbox import PathSandbox

MAX_DEPTH = 3
MAX_ENTRIES = 1_000


def format_size(size_bytes: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    size = float(size_bytes)
    unit = 0
    while size >= 1024 and unit < len(units) - 1:
        size /= 1024
        unit += 1
    return f"{size:.1f} {units[unit]}"


class ListDirectoryTool:
    def __init__(self, sandbox: PathSandbox):
        self._sandbox = sandbox

    @property
    def name(self) -> str:
        return "list_directory"

    @property
    def description(self) -> str:
        return "List contents of a directory. Useful for exploring project structure."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the directory to list",
                },
                "recursive": {
                    "type": "boolean",
                    "description": f"Whether to list recursively (default: false, max depth: {MAX_DEPTH})",
                },
            },
            "required": ["path"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> str:
        raw_path = tool_input["path"]
        recursive = bool(tool_input.get("recursive", False))

        directory = self._sandbox.resolve(raw_path)
        if not directory.exists():
            raise ToolExecutionError(f"Directory not found: {raw_path}")
        if not directory.is_dir():
            raise ToolExecutionError(f"{raw_path} is not a directory")

        lines: list[str] = []
        try:
            self._walk(directory, 0, recursive, lines)
        except OSError as ex:
            raise ToolExecutionError(f"Error listing directory: {ex}") from ex

        if not lines:
            return "(empty directory)"
        if len(lines) >= MAX_ENTRIES:
            lines.append(f"[Listing stopped after {MAX_ENTRIES} entries]")
        return "\n".join(lines)

    def _walk(self, directory: Path, depth: int, recursive: bool, lines: list[str]) -> None:
        indent = "  " * depth
        for entry in sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower())):
            if len(lines) >= MAX_ENTRIES:
                return
            if entry.is_dir():
                lines.append(f"{indent}[dir] {entry.name}/")
                if recursive and depth < MAX_DEPTH:
                    self._walk(entry, depth + 1, recursive, lines)
            else:
                try:
                    size = format_size(entry.stat().st_size)
                except OSError:
                    size = "?"
                lines.append(f"{indent}[file] {entry.name} ({size})")
