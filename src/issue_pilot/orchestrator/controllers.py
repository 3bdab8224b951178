"""Controllers for issue-pilot CLI commands."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from issue_pilot.config import RuntimeSettings, Settings
from issue_pilot.events import InboundEvent
from issue_pilot.orchestrator.commands import is_mutation_invocation, parse_command
from issue_pilot.orchestrator.pipeline import IssuePipeline
from issue_pilot.orchestrator.platform import GitHubClient, IssuePlatform, ReactionState
from issue_pilot.orchestrator.preflight import run_preflight
from issue_pilot.orchestrator.usage import UsageLog

logger = logging.getLogger(__name__)

PlatformFactory = Callable[[str], IssuePlatform]


@dataclass(slots=True)
class RunCommand:
    """CLI input for one pipeline run."""

    home_dir: Path | None


@dataclass(slots=True)
class PreflightCommand:
    """CLI input for workspace checks."""

    home_dir: Path | None


@dataclass(slots=True)
class IndicateCommand:
    """CLI input for the in-progress reaction step."""

    home_dir: Path | None


@dataclass(slots=True)
class CheckEnabledCommand:
    """CLI input for the opt-in guard."""

    home_dir: Path | None


@dataclass(slots=True)
class ParseCommandInput:
    """CLI input for offline comment classification."""

    text: str


@dataclass(slots=True)
class UsageSummaryCommand:
    """CLI input for the usage log summary."""

    home_dir: Path | None
    issue_number: int | None = None


@dataclass(slots=True)
class CheckResult:
    """Lines to print plus whether the check passed."""

    lines: list[str]
    success: bool


class IssuePilotCliController:
    """Wires settings, the event context and the platform client for each command."""

    def __init__(self, platform_factory: PlatformFactory = GitHubClient) -> None:
        self._platform_factory = platform_factory

    def run(self, command: RunCommand) -> list[str]:
        settings = Settings.load(home_dir=command.home_dir)
        event = InboundEvent.from_env()
        pipeline = IssuePipeline(
            settings=settings,
            platform=self._platform_factory(event.repository),
        )
        return pipeline.run(event).to_lines()

    def preflight(self, command: PreflightCommand) -> CheckResult:
        runtime = RuntimeSettings.from_env(home_dir=command.home_dir)
        report = run_preflight(runtime)
        if report.ok:
            return CheckResult(lines=["Preflight passed: all checks OK."], success=True)
        lines = ["Preflight failed with the following errors:", ""]
        lines.extend(f"  ✗ {error}" for error in report.errors)
        lines.append("")
        lines.append(f"{len(report.errors)} error(s) found. Fix the above issues and try again.")
        return CheckResult(lines=lines, success=False)

    def check_enabled(self, command: CheckEnabledCommand) -> CheckResult:
        runtime = RuntimeSettings.from_env(home_dir=command.home_dir)
        if runtime.sentinel_path.exists():
            return CheckResult(lines=[f"Enabled: {runtime.sentinel_path} found."], success=True)
        return CheckResult(
            lines=[
                f"Disabled: {runtime.sentinel_path} is missing.",
                "Create the file to opt this repository in.",
            ],
            success=False,
        )

    def indicate(self, command: IndicateCommand) -> list[str]:
        """Add the in-progress reaction and record it for later cleanup.

        A failed reaction is logged, not fatal; the state file is written
        either way so cleanup knows there is nothing to remove.
        """

        runtime = RuntimeSettings.from_env(home_dir=command.home_dir)
        event = InboundEvent.from_env()
        platform = self._platform_factory(event.repository)
        target = "comment" if event.comment_id is not None else "issue"

        reaction_id: int | None = None
        try:
            reaction_id = platform.add_reaction(
                issue_number=event.issue_number,
                comment_id=event.comment_id,
            )
        except Exception:
            logger.exception("Failed to add in-progress reaction on issue #%s", event.issue_number)

        ReactionState(
            reaction_id=reaction_id,
            reaction_target=target,
            issue_number=event.issue_number,
            comment_id=event.comment_id,
            repository=event.repository,
        ).write(runtime.reaction_state_path)
        return [
            f"Reaction: target={target} issue=#{event.issue_number} "
            f"id={reaction_id if reaction_id is not None else '-'}",
            f"State: {runtime.reaction_state_path}",
        ]

    def parse(self, command: ParseCommandInput) -> list[str]:
        parsed = parse_command(command.text)
        return [
            f"command={parsed.command}",
            f"args={' '.join(parsed.args) if parsed.args else '-'}",
            f"known={'yes' if parsed.is_known else 'no'}",
            f"mutation={'yes' if is_mutation_invocation(parsed.command, parsed.args) else 'no'}",
        ]

    def usage(self, command: UsageSummaryCommand) -> list[str]:
        runtime = RuntimeSettings.from_env(home_dir=command.home_dir)
        records = UsageLog(runtime.usage_log_path).read()
        if command.issue_number is not None:
            records = [record for record in records if record.issue_number == command.issue_number]
        if not records:
            return [f"Usage: no records in {runtime.usage_log_path}"]

        totals: dict[int, list[int]] = defaultdict(lambda: [0, 0, 0])
        for record in records:
            bucket = totals[record.issue_number]
            bucket[0] += 1
            bucket[1] += record.tokens_used
            bucket[2] += record.tool_calls

        lines = [f"Usage: runs={len(records)} issues={len(totals)}"]
        lines.extend(
            f"  issue=#{issue} runs={runs} tokens={tokens} tool_calls={tool_calls}"
            for issue, (runs, tokens, tool_calls) in sorted(totals.items())
        )
        lines.append(
            f"Total: tokens={sum(record.tokens_used for record in records)} "
            f"tool_calls={sum(record.tool_calls for record in records)}",
        )
        return lines
