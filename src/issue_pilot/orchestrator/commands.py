"""Slash-command classification for issue comments.

A comment whose first line starts with ``/`` is a structured command; any
other text is a natural-language turn for the agent.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

COMMAND_PREFIX = "/"
AGENT_COMMAND = "agent"
UNKNOWN_COMMAND = "unknown"

_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True, frozen=True)
class CommandDescriptor:
    """Registry entry for one engine sub-command."""

    description: str
    mutation: bool


@dataclass(slots=True)
class ParsedCommand:
    """Classified comment."""

    command: str
    args: list[str] = field(default_factory=list)
    raw_text: str = ""

    @property
    def is_agent_turn(self) -> bool:
        return self.command == AGENT_COMMAND

    @property
    def is_known(self) -> bool:
        return self.command in SUPPORTED_COMMANDS


SUPPORTED_COMMANDS: dict[str, CommandDescriptor] = {
    AGENT_COMMAND: CommandDescriptor("Run one agent turn", mutation=False),
    "agents": CommandDescriptor("Inspect isolated agents", mutation=False),
    "setup": CommandDescriptor("Initialize local config and agent workspace", mutation=True),
    "onboard": CommandDescriptor("Run the onboarding wizard", mutation=True),
    "configure": CommandDescriptor("Configure credentials and channels", mutation=True),
    "config": CommandDescriptor("Read or change config (`/config set provider openai`)", True),
    "reset": CommandDescriptor("Reset local config and state", mutation=True),
    "uninstall": CommandDescriptor("Remove the gateway service and local data", mutation=True),
    "doctor": CommandDescriptor("Run health checks", mutation=False),
    "status": CommandDescriptor("Show channel health", mutation=False),
    "health": CommandDescriptor("Fetch gateway health", mutation=False),
    "channels": CommandDescriptor("List connected chat channels", mutation=False),
    "sessions": CommandDescriptor("List stored conversation sessions", mutation=False),
    "memory": CommandDescriptor("Search memory files", mutation=False),
    "models": CommandDescriptor("Discover and inspect models", mutation=False),
    "message": CommandDescriptor("Send and manage messages", mutation=True),
    "cron": CommandDescriptor("Manage scheduled jobs", mutation=True),
    "plugins": CommandDescriptor("Manage plugins and extensions", mutation=True),
    "skills": CommandDescriptor("List and inspect available skills", mutation=False),
    "update": CommandDescriptor("Update the engine", mutation=True),
    "logs": CommandDescriptor("Tail gateway logs", mutation=False),
    "system": CommandDescriptor("System events and presence", mutation=False),
    "docs": CommandDescriptor("Search the engine documentation", mutation=False),
    "security": CommandDescriptor("Audit local security settings", mutation=False),
    "gateway": CommandDescriptor("Run and query the gateway", mutation=True),
    "sandbox": CommandDescriptor("Manage sandbox containers", mutation=True),
    "hooks": CommandDescriptor("Manage agent hooks", mutation=True),
    "webhooks": CommandDescriptor("Manage webhook integrations", mutation=True),
    "help": CommandDescriptor("Show available commands", mutation=False),
}

MUTATION_COMMANDS: frozenset[str] = frozenset(
    name for name, descriptor in SUPPORTED_COMMANDS.items() if descriptor.mutation
)

# Sub-actions that only read, even under a mutating top-level command.
READ_ONLY_SUBACTIONS: frozenset[str] = frozenset(
    {"get", "list", "ls", "show", "status", "info", "inspect", "help"},
)


def parse_command(text: str) -> ParsedCommand:
    """Classify comment text. Never rejects input."""

    trimmed = text.strip()
    first_line = trimmed.split("\n", 1)[0].strip()
    if not first_line.startswith(COMMAND_PREFIX):
        return ParsedCommand(command=AGENT_COMMAND, args=[], raw_text=trimmed)

    parts = [part for part in _WHITESPACE.split(first_line[len(COMMAND_PREFIX) :]) if part]
    if not parts:
        return ParsedCommand(command=UNKNOWN_COMMAND, args=[], raw_text=trimmed)
    return ParsedCommand(command=parts[0].casefold(), args=parts[1:], raw_text=trimmed)


def is_mutation_invocation(command: str, args: list[str] | tuple[str, ...]) -> bool:
    """Whether running ``command args`` may change state."""

    if command not in MUTATION_COMMANDS:
        return False
    if args and args[0].casefold() in READ_ONLY_SUBACTIONS:
        return False
    return True


def render_help() -> str:
    """Markdown listing of slash commands, answered without the engine."""

    lines = [
        "## Available Slash Commands",
        "",
        "Start a comment with `/<command>` to run it. Any other comment is sent to the agent.",
        "",
        "| Command | Description | Changes state |",
        "|---|---|---|",
    ]
    for name in sorted(SUPPORTED_COMMANDS):
        descriptor = SUPPORTED_COMMANDS[name]
        lines.append(
            f"| `/{name}` | {descriptor.description} | {'yes' if descriptor.mutation else 'no'} |",
        )
    return "\n".join(lines)
