from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from devmentor.memory.models import SESSION_TYPES
from devmentor.tool import Tool
from devmentor.tools.analyze_config_tool import AnalyzeConfigTool
from devmentor.tools.analyze_error_tool import AnalyzeErrorTool
from devmentor.tools.list_directory_tool import ListDirectoryTool
from devmentor.tools.path_sandbox import PathSandbox
from devmentor.tools.read_file_tool import ReadFileTool


@dataclass(frozen=True)
class ToolGroup:
    session_types: frozenset[str]
    build: Callable[[dict], list[Tool]]


def _devops_tools(ctx: dict) -> list[Tool]:
    sandbox = PathSandbox(ctx["allowed_roots"], ctx["working_directory"])
    return [
        ReadFileTool(sandbox),
        ListDirectoryTool(sandbox),
        AnalyzeConfigTool(),
        AnalyzeErrorTool(),
    ]


_GROUPS = [
    ToolGroup(session_types=frozenset({"devops"}), build=_devops_tools),
]


def get_by_session_type(
    allowed_roots: list[str] | None = None,
    working_directory: str | None = None,
) -> dict[str, list[Tool]]:
    ctx = {"allowed_roots": allowed_roots, "working_directory": working_directory}
    by_type: dict[str, list[Tool]] = {session_type: [] for session_type in SESSION_TYPES}
    for group in _GROUPS:
        tools = group.build(ctx)
        for session_type in group.session_types:
            by_type[session_type].extend(tools)
    return by_type
