"""Reply text extraction, truncation, and the fixed notices posted to issues."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from issue_pilot.orchestrator.commands import ParsedCommand

logger = logging.getLogger(__name__)

# Platform hard limit is 65535; keep a margin for markdown wrapping.
MAX_COMMENT_LENGTH = 60_000

PROVIDER_KEY_NAMES: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}

READ_ONLY_DIRECTIVE = (
    "[System: You are operating in read-only mode for this request. The requesting user "
    "is not a trusted maintainer. Do not modify, create or delete files, do not run shell "
    "commands, and do not change configuration. Answer questions and explain code only.]"
)

SEMI_TRUSTED_TOOL_POLICY: dict[str, object] = {
    "profile": "minimal",
    "deny": ["bash", "edit", "create", "write", "delete", "apply_patch"],
}


def extract_reply_text(raw_output: str) -> str:
    """Pull the human-readable reply out of the engine's stdout.

    Structured output carries text in ``payloads[*].text`` (joined by blank
    lines) or a top-level ``text``. Anything that does not parse as JSON is
    used verbatim.
    """

    text = raw_output.strip()
    if not text:
        return ""
    parsed = parse_engine_output(text)
    if parsed is None:
        try:
            loaded = json.loads(text)
        except json.JSONDecodeError:
            return text
        return loaded.strip() if isinstance(loaded, str) else text

    payloads = parsed.get("payloads")
    if isinstance(payloads, list):
        parts = [
            item["text"].strip()
            for item in payloads
            if isinstance(item, dict) and isinstance(item.get("text"), str) and item["text"].strip()
        ]
        if parts:
            return "\n\n".join(parts)
    top_level = parsed.get("text")
    if isinstance(top_level, str):
        return top_level.strip()
    return ""


def parse_engine_output(raw_output: str) -> dict[str, object] | None:
    """Parse the engine's JSON document, tolerating log lines before it."""

    text = raw_output.strip()
    direct = _try_load_dict(text)
    if direct is not None:
        return direct
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return _try_load_dict(text[start : end + 1])


def read_raw_output(path: Path) -> str:
    if not path.exists():
        logger.warning("Raw agent output %s is missing", path)
        return ""
    return path.read_text("utf-8", errors="replace")


def _try_load_dict(raw: str) -> dict[str, object] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def build_reply(text: str, repository: str) -> str:
    """Truncate to the comment limit, or substitute the empty-response notice."""

    trimmed = text.strip()
    if trimmed:
        if len(trimmed) > MAX_COMMENT_LENGTH:
            logger.info("Reply truncated from %d to %d chars", len(trimmed), MAX_COMMENT_LENGTH)
        return trimmed[:MAX_COMMENT_LENGTH]
    return (
        "✅ The agent ran successfully but did not produce a text response. "
        "Check the repository for any file changes that were made.\n\n"
        f"For full details, see the [workflow run logs](https://github.com/{repository}/actions)."
    )


def build_command_reply(parsed: ParsedCommand, output: str) -> str:
    """Wrap structured-command output in a code block."""

    body = output.strip() or "(no output)"
    header = f"### `/{parsed.command}{' ' + ' '.join(parsed.args) if parsed.args else ''}`\n\n"
    fence = "```"
    budget = MAX_COMMENT_LENGTH - len(header) - 2 * len(fence) - 2
    return f"{header}{fence}\n{body[:budget]}\n{fence}"


def access_denied_notice(actor: str) -> str:
    return (
        "## 🚫 Access Denied\n\n"
        f"@{actor}, you are not authorized to trigger the agent in this repository. "
        "Ask a maintainer to add you to the trusted users if you need access."
    )


def read_only_notice(actor: str) -> str:
    return (
        "## 🔒 Read-Only Mode\n\n"
        f"@{actor}, the agent only acts on requests from trusted maintainers. "
        "Your comment was received, but no action was taken. A maintainer can pick "
        "up the request by commenting on this issue."
    )


def permission_denied_notice(actor: str, parsed: ParsedCommand) -> str:
    return (
        "## 🔒 Permission Denied\n\n"
        f"@{actor}, `/{parsed.command}` with these arguments changes the agent's "
        "configuration, which requires trusted access. Read-only commands are still available."
    )


def unknown_command_notice(parsed: ParsedCommand) -> str:
    return (
        "## ❓ Unknown Command\n\n"
        f"`/{parsed.command}` is not a recognized command. "
        "Comment `/help` to see the available commands."
    )


def missing_api_key_notice(provider: str, key_name: str) -> str:
    return (
        f"## ⚠️ Missing API Key: `{key_name}`\n\n"
        f"The configured provider is `{provider}`, but the `{key_name}` secret is not "
        "available to this workflow run.\n\n"
        "### How to fix\n\n"
        "1. Go to **Settings > Secrets and variables > Actions > New repository secret**\n"
        f"2. Name: `{key_name}`, Value: your API key\n\n"
        "If it is an organization secret, grant this repository access to it. "
        "Once the secret is accessible, re-trigger the run by posting a new comment."
    )


def agent_failure_notice(reason: str, repository: str) -> str:
    return (
        "## ❌ Agent Run Failed\n\n"
        f"{reason}\n\n"
        f"See the [workflow run logs](https://github.com/{repository}/actions) for details."
    )


def required_key_for_provider(provider: str) -> str | None:
    return PROVIDER_KEY_NAMES.get(provider.strip().lower())


def apply_read_only_directive(prompt: str) -> str:
    return f"{READ_ONLY_DIRECTIVE}\n\n{prompt}"
