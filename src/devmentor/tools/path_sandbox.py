import os
import tempfile
from pathlib import Path

from devmentor.errors import ToolExecutionError


def default_roots() -> list[str]:
    return [str(Path.home()), tempfile.gettempdir()]


class PathSandbox:
    """Restricts file tools to a fixed set of root directories."""

    def __init__(self, roots: list[str] | None = None, working_directory: str | None = None):
        self._roots = [Path(os.path.expanduser(r)).resolve() for r in (roots or default_roots())]
        self._working_directory = working_directory

    @property
    def roots(self) -> list[Path]:
        return list(self._roots)

    def resolve(self, raw_path: str) -> Path:
        path = Path(os.path.expanduser(raw_path))
        if not path.is_absolute():
            base = Path(self._working_directory) if self._working_directory else Path.cwd()
            path = base / path
        resolved = path.resolve()
        if not any(resolved == root or resolved.is_relative_to(root) for root in self._roots):
            raise ToolExecutionError(f'Access denied. Path "{raw_path}" is outside allowed directories.')
        return resolved
