from __future__ import annotations

from dataclasses import dataclass

FALLBACK_MODEL = "gpt-4.1"


@dataclass(frozen=True)
class AgentConfig:
    name: str
    display_name: str
    description: str
    prompt: str


@dataclass(frozen=True)
class SessionTypeConfig:
    name: str
    description: str
    agent: AgentConfig | None
    default_model: str = FALLBACK_MODEL


_DEVOPS_PROMPT = """\
You are a DevOps mentor and expert. You help users with:
- AWS, Azure, GCP cloud services and best practices
- Kubernetes, Docker, and container orchestration
- CI/CD pipelines (GitHub Actions, GitLab CI, Jenkins, CircleCI)
- Infrastructure as Code (Terraform, Pulumi, CloudFormation, Ansible)
- Security best practices and compliance
- Cost optimization and resource management
- Error diagnosis, log analysis, and troubleshooting
- Architecture design and scalability patterns

When analyzing configurations or errors:
1. Identify the issue or configuration clearly
2. Explain WHY something is problematic or recommended
3. Provide actionable steps to fix or improve
4. Reference official documentation when helpful
5. Warn about security implications when relevant

You can read files, list directories, analyze configuration files and diagnose \
error messages with the tools available to you. If a tool call fails, read the \
error message carefully and try a different approach.

Be concise but thorough. Use code blocks for configurations and commands."""

_WRITING_PROMPT = """\
You are a professional writing assistant. You help users with:
- Writing and composing emails (formal, casual, technical)
- Rewriting text with different tones and styles
- Grammar, spelling, and clarity improvements
- Translation between languages (preserving tone and meaning)
- Summarization and expansion of content
- Technical documentation writing
- Business communication and proposals

Guidelines:
1. Maintain the original meaning and intent
2. Match the requested tone (formal, casual, friendly, technical)
3. Preserve formatting when rewriting
4. For translations, keep cultural nuances in mind
5. Provide alternatives when helpful
6. Be concise unless expansion is requested

When the user provides text to modify, respond with ONLY the modified text \
unless they ask for explanation."""

_DEVELOPMENT_PROMPT = """\
You are a senior software development assistant. You help users with:
- Code review and improvement suggestions
- Bug diagnosis and debugging strategies
- Architecture decisions and design patterns
- Performance optimization
- Testing strategies and test writing
- Documentation and code comments
- Refactoring and code cleanup

Guidelines:
1. Be concise and actionable
2. Explain the "why" behind suggestions
3. Provide code examples when helpful
4. Consider edge cases and error handling
5. Suggest tests for critical changes
6. Reference best practices and patterns

When reviewing code, focus on:
- Correctness and logic errors
- Security vulnerabilities
- Performance issues
- Maintainability and readability
- Missing error handling"""

SESSION_TYPE_CONFIGS: dict[str, SessionTypeConfig] = {
    "devops": SessionTypeConfig(
        name="DevOps Mentor",
        description="Expert in DevOps, cloud infrastructure, and best practices",
        agent=AgentConfig(
            name="devops-mentor",
            display_name="DevOps Mentor",
            description="Expert in DevOps, cloud infrastructure, and best practices",
            prompt=_DEVOPS_PROMPT,
        ),
    ),
    "writing": SessionTypeConfig(
        name="Writing Assistant",
        description="Helps with writing, rewriting, and translation",
        agent=AgentConfig(
            name="writing-assistant",
            display_name="Writing Assistant",
            description="Helps with writing, rewriting, and translation",
            prompt=_WRITING_PROMPT,
        ),
    ),
    "development": SessionTypeConfig(
        name="Development Helper",
        description="Assists with code review, debugging, and best practices",
        agent=AgentConfig(
            name="dev-helper",
            display_name="Development Helper",
            description="Assists with code review, debugging, and best practices",
            prompt=_DEVELOPMENT_PROMPT,
        ),
    ),
    "general": SessionTypeConfig(
        name="General Assistant",
        description="General-purpose AI assistant",
        agent=None,
    ),
}


def get_agent_config(session_type: str) -> AgentConfig | None:
    config = SESSION_TYPE_CONFIGS.get(session_type)
    return config.agent if config else None


def get_default_model(session_type: str) -> str:
    config = SESSION_TYPE_CONFIGS.get(session_type)
    return config.default_model if config else FALLBACK_MODEL


def build_system_prompt(
    session_type: str,
    *,
    system_prompt: str | None = None,
    custom_agent: str | None = None,
) -> str | None:
    """Return the system text for a session.

    An explicit ``system_prompt`` wins. Otherwise the prompt of the named
    ``custom_agent`` is used, falling back to the session type's own agent.
    General sessions have no system text.
    """
    if system_prompt and system_prompt.strip():
        return system_prompt.strip()

    if custom_agent:
        for config in SESSION_TYPE_CONFIGS.values():
            if config.agent is not None and config.agent.name == custom_agent:
                return config.agent.prompt

    agent = get_agent_config(session_type)
    return agent.prompt if agent else None
