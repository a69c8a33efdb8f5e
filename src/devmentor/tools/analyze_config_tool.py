import re
from typing import Any

from devmentor.errors import ToolExecutionError

CONFIG_TYPES = ["kubernetes", "docker", "terraform", "cloudformation", "github-actions", "auto"]

_HARDCODED_AWS_IDS = [
    re.compile(r"ami-[a-z0-9]+"),
    re.compile(r"subnet-[a-z0-9]+"),
    re.compile(r"sg-[a-z0-9]+"),
    re.compile(r"vpc-[a-z0-9]+"),
]


def detect_config_type(content: str) -> str:
    if "apiVersion:" in content and "kind:" in content:
        return "kubernetes"
    if "jobs:" in content and "runs-on:" in content:
        return "github-actions"
    if "AWSTemplateFormatVersion" in content or "Resources:" in content:
        return "cloudformation"
    if 'resource "' in content or 'provider "' in content:
        return "terraform"
    if re.search(r"^\s*(FROM|COPY|RUN)\s", content, re.MULTILINE):
        return "docker"
    return "unknown"


def _kubernetes(content: str, issues: list[str], suggestions: list[str]) -> None:
    if "resources:" not in content or "limits:" not in content:
        issues.append("Missing resource limits. Pods without limits can consume excessive cluster resources.")
    if "securityContext:" not in content:
        suggestions.append("Consider adding securityContext to restrict container privileges.")
    if ":latest" in content:
        issues.append("Using :latest tag. Pin specific image versions for reproducible deployments.")
    if "livenessProbe:" not in content and "readinessProbe:" not in content:
        suggestions.append("Add health probes (livenessProbe/readinessProbe) for better reliability.")
    if "namespace:" not in content:
        suggestions.append("Explicitly specify namespace to avoid deploying to default namespace.")
    if "runAsRoot: true" in content or "privileged: true" in content:
        issues.append("Container configured to run as root or privileged. This is a security risk.")


def _docker(content: str, issues: list[str], suggestions: list[str]) -> None:
    lines = [line.strip() for line in content.split("\n")]
    from_line = next((line for line in lines if line.startswith("FROM ")), None)
    if from_line and ":latest" in from_line:
        issues.append("Using :latest base image. Pin a specific version for reproducible builds.")

    run_count = sum(1 for line in lines if line.startswith("RUN "))
    if run_count > 5:
        suggestions.append(f"{run_count} separate RUN commands. Consider combining them to reduce image layers.")
    if "ADD " in content and ".tar" not in content and "http" not in content:
        suggestions.append(
            "Use COPY instead of ADD for simple file copying. ADD has extra features that may be unnecessary."
        )
    if "COPY . " in content or "COPY ./ " in content:
        suggestions.append("Copying entire context. Ensure .dockerignore is configured to exclude unnecessary files.")
    if "USER " not in content:
        suggestions.append("No USER directive. Consider running as non-root user for security.")
    if " AS " not in content.upper() and ("npm install" in content or "go build" in content):
        suggestions.append("Consider multi-stage builds to reduce final image size.")


def _terraform(content: str, issues: list[str], suggestions: list[str]) -> None:
    if "required_version" not in content and "required_providers" not in content:
        issues.append("Missing version constraints. Pin Terraform and provider versions for reproducibility.")
    if any(p.search(content) for p in _HARDCODED_AWS_IDS):
        suggestions.append("Hardcoded AWS resource IDs detected. Consider using data sources or variables.")
    if 'backend "' not in content:
        suggestions.append("No remote backend configured. Use S3/GCS/Azure for team collaboration.")
    if any(word in content for word in ("password", "secret", "api_key")) and "sensitive = true" not in content:
        issues.append("Potentially sensitive variables without sensitive = true flag.")
    if "aws_s3_bucket" in content and "server_side_encryption" not in content:
        suggestions.append("S3 bucket without explicit encryption configuration.")


def _cloudformation(content: str, issues: list[str], suggestions: list[str]) -> None:
    stateful = "AWS::RDS::" in content or "AWS::S3::Bucket" in content
    if stateful and "DeletionPolicy" not in content:
        issues.append("Stateful resources without DeletionPolicy. Data may be lost on stack deletion.")
    if "UpdateReplacePolicy" not in content:
        suggestions.append("Consider adding UpdateReplacePolicy for stateful resources.")
    suggestions.append("Run `aws cloudformation detect-stack-drift` regularly to catch manual changes.")
    if "Parameters:" in content and "AllowedValues" not in content:
        suggestions.append("Consider adding AllowedValues constraints to parameters.")


def _github_actions(content: str, issues: list[str], suggestions: list[str]) -> None:
    uses = re.findall(r"uses:\s*(\S+)", content)
    if any("@" not in ref for ref in uses if not ref.startswith("./")):
        issues.append("Actions without version pinning. Pin to specific versions or SHA for security.")
    if "${{ secrets." in content and "echo " in content:
        issues.append("Potential secret exposure in echo/print commands.")
    if "permissions:" not in content:
        suggestions.append("Explicitly define job permissions for better security (least privilege).")
    if any(cmd in content for cmd in ("npm ", "pip ", "go ")) and "actions/cache" not in content:
        suggestions.append("Consider adding caching to speed up workflows.")
    if "timeout-minutes:" not in content:
        suggestions.append("Add timeout-minutes to prevent stuck workflows from running indefinitely.")


_ANALYZERS = {
    "kubernetes": _kubernetes,
    "docker": _docker,
    "terraform": _terraform,
    "cloudformation": _cloudformation,
    "github-actions": _github_actions,
}


class AnalyzeConfigTool:
    @property
    def name(self) -> str:
        return "analyze_config"

    @property
    def description(self) -> str:
        return (
            "Analyze a configuration file for DevOps best practices. "
            "Supports Kubernetes, Docker, Terraform, CloudFormation and GitHub Actions."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "content": {
                    "type": "string",
                    "description": "The configuration file content to analyze",
                },
                "type": {
                    "type": "string",
                    "enum": CONFIG_TYPES,
                    "description": "Type of configuration (auto-detect if not specified)",
                },
            },
            "required": ["content"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> str:
        content = tool_input["content"]
        config_type = tool_input.get("type") or "auto"
        if config_type == "auto":
            config_type = detect_config_type(content)

        analyzer = _ANALYZERS.get(config_type)
        if analyzer is None:
            raise ToolExecutionError("Could not determine configuration type. Please specify the type parameter.")

        issues: list[str] = []
        suggestions: list[str] = []
        analyzer(content, issues, suggestions)

        out = f"## Configuration Analysis ({config_type})\n\n"
        if issues:
            out += "### Issues Found\n"
            out += "".join(f"{i}. {issue}\n" for i, issue in enumerate(issues, start=1))
            out += "\n"
        else:
            out += "### No Critical Issues Found\n\n"
        if suggestions:
            out += "### Suggestions\n"
            out += "".join(f"{i}. {suggestion}\n" for i, suggestion in enumerate(suggestions, start=1))
        return out
