"""Usage extraction, the append-only usage log, and budget checks."""

from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from issue_pilot.config import RunLimits

logger = logging.getLogger(__name__)

UNION_MERGE_ATTRIBUTE = "usage.log merge=union"

_TOOL_CALL_MARKERS = frozenset({"tool_call", "tool_use", "toolCall", "toolUse"})


@dataclass(slots=True)
class TokenUsage:
    """Token counts reported by the engine; zero when absent."""

    tokens_input: int = 0
    tokens_output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    tokens_used: int = 0


@dataclass(slots=True, frozen=True)
class UsageRecord:
    """One immutable line of ``usage.log``."""

    timestamp: str
    issue_number: int
    actor: str
    tokens_input: int
    tokens_output: int
    cache_read: int
    cache_write: int
    tokens_used: int
    tool_calls: int
    duration_ms: int
    stop_reason: str

    def to_payload(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp,
            "issueNumber": self.issue_number,
            "actor": self.actor,
            "tokensInput": self.tokens_input,
            "tokensOutput": self.tokens_output,
            "cacheRead": self.cache_read,
            "cacheWrite": self.cache_write,
            "tokensUsed": self.tokens_used,
            "toolCallCount": self.tool_calls,
            "durationMs": self.duration_ms,
            "stopReason": self.stop_reason,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> UsageRecord:
        return cls(
            timestamp=str(payload.get("timestamp", "")),
            issue_number=_as_int(payload.get("issueNumber")),
            actor=str(payload.get("actor", "")),
            tokens_input=_as_int(payload.get("tokensInput")),
            tokens_output=_as_int(payload.get("tokensOutput")),
            cache_read=_as_int(payload.get("cacheRead")),
            cache_write=_as_int(payload.get("cacheWrite")),
            tokens_used=_as_int(payload.get("tokensUsed")),
            tool_calls=_as_int(payload.get("toolCallCount")),
            duration_ms=_as_int(payload.get("durationMs")),
            stop_reason=str(payload.get("stopReason", "")),
        )


@dataclass(slots=True, frozen=True)
class BudgetViolation:
    """One exceeded ceiling, with the notice posted to the issue."""

    limit_name: str
    limit: int
    actual: int
    notice: str


def extract_token_usage(parsed_output: dict[str, Any] | None) -> TokenUsage:
    """Read ``meta.agentMeta.usage`` from the engine's JSON document."""

    agent_meta = _agent_meta(parsed_output)
    usage = agent_meta.get("usage")
    if not isinstance(usage, dict):
        return TokenUsage()
    tokens_input = _as_int(usage.get("input"))
    tokens_output = _as_int(usage.get("output"))
    cache_read = _as_int(usage.get("cacheRead"))
    cache_write = _as_int(usage.get("cacheWrite"))
    total = _as_int(usage.get("total"))
    if total == 0:
        total = tokens_input + tokens_output + cache_read + cache_write
    return TokenUsage(
        tokens_input=tokens_input,
        tokens_output=tokens_output,
        cache_read=cache_read,
        cache_write=cache_write,
        tokens_used=total,
    )


def transcript_line_count(transcript_path: Path | None) -> int:
    """Lines already in a transcript, so a run can count only what it appends."""

    if transcript_path is None or not transcript_path.exists():
        return 0
    with transcript_path.open(encoding="utf-8") as handle:
        return sum(1 for _ in handle)


def count_tool_calls(transcript_path: Path | None, *, skip_lines: int = 0) -> int:
    """Count tool invocations in a JSONL transcript after the first ``skip_lines`` lines."""

    if transcript_path is None or not transcript_path.exists():
        return 0
    count = 0
    with transcript_path.open(encoding="utf-8") as handle:
        for line in itertools.islice(handle, skip_lines, None):
            stripped = line.strip()
            if not stripped:
                continue
            try:
                entry = json.loads(stripped)
            except json.JSONDecodeError:
                continue
            if isinstance(entry, dict):
                count += _tool_calls_in_entry(entry)
    return count


def _tool_calls_in_entry(entry: dict[str, Any]) -> int:
    if entry.get("type") in _TOOL_CALL_MARKERS:
        return 1
    message = entry.get("message")
    if not isinstance(message, dict):
        return 0
    if message.get("role") in _TOOL_CALL_MARKERS:
        return 1
    content = message.get("content")
    if message.get("role") != "assistant" or not isinstance(content, list):
        return 0
    return sum(
        1
        for block in content
        if isinstance(block, dict) and block.get("type") in _TOOL_CALL_MARKERS
    )


def record_usage(
    *,
    issue_number: int,
    actor: str,
    parsed_output: dict[str, Any] | None,
    transcript_path: Path | None,
    transcript_start_line: int = 0,
    elapsed_seconds: float = 0.0,
) -> UsageRecord:
    """Build the usage record for this run.

    Tool calls come from the transcript, not the engine summary, which does
    not always report them. A resumed transcript already holds earlier turns,
    so only lines after ``transcript_start_line`` belong to this run.
    """

    tokens = extract_token_usage(parsed_output)
    meta = parsed_output.get("meta") if isinstance(parsed_output, dict) else None
    meta = meta if isinstance(meta, dict) else {}
    agent_meta = _agent_meta(parsed_output)

    duration_ms = _as_int(meta.get("durationMs")) or int(elapsed_seconds * 1000)
    stop_reason = meta.get("stopReason") or agent_meta.get("stopReason") or "unknown"
    return UsageRecord(
        timestamp=datetime.now(tz=UTC).isoformat(),
        issue_number=issue_number,
        actor=actor,
        tokens_input=tokens.tokens_input,
        tokens_output=tokens.tokens_output,
        cache_read=tokens.cache_read,
        cache_write=tokens.cache_write,
        tokens_used=tokens.tokens_used,
        tool_calls=count_tool_calls(transcript_path, skip_lines=transcript_start_line),
        duration_ms=duration_ms,
        stop_reason=str(stop_reason),
    )


class UsageLog:
    """Append-only ``usage.log``; parallel runs merge it with git's union driver."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, record: UsageRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        ensure_union_merge(self.path.parent / ".gitattributes")
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record.to_payload(), sort_keys=True) + "\n")
        logger.info(
            "Usage recorded: issue=#%s tokens=%d tool_calls=%d",
            record.issue_number,
            record.tokens_used,
            record.tool_calls,
        )

    def read(self) -> list[UsageRecord]:
        if not self.path.exists():
            return []
        records: list[UsageRecord] = []
        for line in self.path.read_text("utf-8").splitlines():
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed usage.log line: %.80s", line)
                continue
            if isinstance(payload, dict):
                records.append(UsageRecord.from_payload(payload))
        return records


def ensure_union_merge(gitattributes_path: Path) -> bool:
    """Make sure ``usage.log`` uses the union merge driver. Returns True if written."""

    existing = gitattributes_path.read_text("utf-8") if gitattributes_path.exists() else ""
    if has_union_merge(existing):
        return False
    prefix = existing if not existing or existing.endswith("\n") else existing + "\n"
    gitattributes_path.write_text(prefix + UNION_MERGE_ATTRIBUTE + "\n", "utf-8")
    return True


def has_union_merge(gitattributes_text: str) -> bool:
    for line in gitattributes_text.splitlines():
        parts = line.split()
        if parts and parts[0] == "usage.log" and "merge=union" in parts[1:]:
            return True
    return False


def check_budgets(usage: UsageRecord, limits: RunLimits) -> list[BudgetViolation]:
    """Compare a finished run against the configured ceilings. Advisory only."""

    violations: list[BudgetViolation] = []
    if limits.max_tokens_per_run is not None and usage.tokens_used > limits.max_tokens_per_run:
        violations.append(
            BudgetViolation(
                limit_name="maxTokensPerRun",
                limit=limits.max_tokens_per_run,
                actual=usage.tokens_used,
                notice=(
                    "## ⚠️ Token Budget Exceeded\n\n"
                    f"This run used **{usage.tokens_used:,}** tokens; the configured "
                    f"`maxTokensPerRun` is **{limits.max_tokens_per_run:,}**."
                ),
            ),
        )
    if (
        limits.max_tool_calls_per_run is not None
        and usage.tool_calls > limits.max_tool_calls_per_run
    ):
        violations.append(
            BudgetViolation(
                limit_name="maxToolCallsPerRun",
                limit=limits.max_tool_calls_per_run,
                actual=usage.tool_calls,
                notice=(
                    "## ⚠️ Tool-Call Limit Exceeded\n\n"
                    f"This run made **{usage.tool_calls}** tool calls; the configured "
                    f"`maxToolCallsPerRun` is **{limits.max_tool_calls_per_run}**."
                ),
            ),
        )
    if limits.workflow_timeout_minutes is not None:
        limit_ms = limits.workflow_timeout_minutes * 60 * 1000
        if usage.duration_ms > limit_ms:
            violations.append(
                BudgetViolation(
                    limit_name="workflowTimeoutMinutes",
                    limit=limits.workflow_timeout_minutes,
                    actual=usage.duration_ms // 60_000,
                    notice=(
                        "## ⚠️ Run Time Limit Exceeded\n\n"
                        f"This run took **{usage.duration_ms / 60_000:.1f}** minutes; the "
                        f"configured `workflowTimeoutMinutes` is "
                        f"**{limits.workflow_timeout_minutes}**."
                    ),
                ),
            )
    return violations


def _agent_meta(parsed_output: dict[str, Any] | None) -> dict[str, Any]:
    if not isinstance(parsed_output, dict):
        return {}
    meta = parsed_output.get("meta")
    if not isinstance(meta, dict):
        return {}
    agent_meta = meta.get("agentMeta")
    return agent_meta if isinstance(agent_meta, dict) else {}


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        return max(0, int(value))
    return 0
