from dataclasses import dataclass
from typing import Any

ERROR_CONTEXTS = ["kubernetes", "docker", "terraform", "aws", "linux", "nodejs", "python", "general"]


@dataclass(frozen=True)
class ErrorPattern:
    markers: tuple[str, ...]
    causes: tuple[str, ...]
    solutions: tuple[str, ...]
    context: str | None = None

    def matches(self, error: str, context: str) -> bool:
        if self.context is not None and self.context != context:
            return False
        lowered = error.lower()
        return any(marker.lower() in lowered for marker in self.markers)


PATTERNS = [
    ErrorPattern(
        markers=("permission denied", "EACCES"),
        causes=("Insufficient file system permissions",),
        solutions=(
            "Check file/directory permissions with `ls -la`",
            "Try running with appropriate user or `sudo` if necessary",
        ),
    ),
    ErrorPattern(
        markers=("connection refused", "ECONNREFUSED"),
        causes=("Target service is not running or not listening on expected port",),
        solutions=(
            "Verify the service is running: `systemctl status <service>`",
            "Check if the port is open: `netstat -tlnp | grep <port>`",
        ),
    ),
    ErrorPattern(
        markers=("out of memory", "OOMKilled"),
        causes=("Application exceeded memory limits",),
        solutions=(
            "Increase memory limits if possible",
            "Profile memory usage to find leaks",
            "Consider horizontal scaling",
        ),
    ),
    ErrorPattern(
        markers=("timeout", "ETIMEDOUT", "timed out"),
        causes=("Network latency or unreachable endpoint", "Slow database queries or API responses"),
        solutions=(
            "Check network connectivity: `ping`, `traceroute`",
            "Review and optimize slow queries",
            "Consider increasing timeout values",
        ),
    ),
    ErrorPattern(
        context="kubernetes",
        markers=("CrashLoopBackOff",),
        causes=("Container fails to start or crashes immediately",),
        solutions=(
            "Check container logs: `kubectl logs <pod> --previous`",
            "Verify image exists and is pullable",
            "Check resource limits and requests",
        ),
    ),
    ErrorPattern(
        context="kubernetes",
        markers=("ImagePullBackOff", "ErrImagePull"),
        causes=("Cannot pull container image",),
        solutions=(
            "Verify image name and tag",
            "Check image registry credentials (imagePullSecrets)",
        ),
    ),
    ErrorPattern(
        context="docker",
        markers=("no space left on device",),
        causes=("Docker disk space exhausted",),
        solutions=(
            "Clean up: `docker system prune -a`",
            "Remove unused images: `docker image prune`",
        ),
    ),
]


class AnalyzeErrorTool:
    @property
    def name(self) -> str:
        return "analyze_error"

    @property
    def description(self) -> str:
        return "Analyze error messages or logs to diagnose issues and suggest solutions."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "error": {
                    "type": "string",
                    "description": "The error message or log content to analyze",
                },
                "context": {
                    "type": "string",
                    "enum": ERROR_CONTEXTS,
                    "description": "Context/environment where the error occurred",
                },
            },
            "required": ["error"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> str:
        error = tool_input["error"]
        context = tool_input.get("context") or "general"

        causes: list[str] = []
        solutions: list[str] = []
        for pattern in PATTERNS:
            if pattern.matches(error, context):
                causes.extend(pattern.causes)
                solutions.extend(pattern.solutions)

        out = f"## Error Analysis\n\n**Context:** {context}\n\n"
        if causes:
            out += "### Possible Causes\n" + "".join(f"- {cause}\n" for cause in causes) + "\n"
        if solutions:
            out += "### Suggested Solutions\n"
            out += "".join(f"{i}. {solution}\n" for i, solution in enumerate(solutions, start=1)) + "\n"
        if not causes:
            out += (
                "### Notes\n"
                "No specific pattern matched. Consider:\n"
                "- Searching the error message in documentation\n"
                "- Checking application logs for more context\n"
                "- Verifying configuration and environment variables\n"
            )
        return out
