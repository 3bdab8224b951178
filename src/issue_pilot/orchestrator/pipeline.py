"""End-to-end orchestration for one inbound issue event.

Steps run strictly in order: trust, command classification, session restore,
engine run, usage accounting, session archive, commit/push, reply. Cleanup of
the in-progress reaction and the tool-policy override runs on every exit path.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import IO

from issue_pilot.config import Settings
from issue_pilot.events import InboundEvent
from issue_pilot.orchestrator.backend import AgentRunRequest, AgentRunResult, ProcessSupervisor
from issue_pilot.orchestrator.commands import (
    UNKNOWN_COMMAND,
    ParsedCommand,
    is_mutation_invocation,
    parse_command,
    render_help,
)
from issue_pilot.orchestrator.committer import StateCommitter
from issue_pilot.orchestrator.models import (
    Admission,
    AgentRunError,
    MissingCredentialsError,
    RunOutcome,
    RunReport,
    SessionResolution,
    TrustTier,
)
from issue_pilot.orchestrator.platform import IssuePlatform, ReactionState
from issue_pilot.orchestrator.replies import (
    SEMI_TRUSTED_TOOL_POLICY,
    access_denied_notice,
    agent_failure_notice,
    apply_read_only_directive,
    build_command_reply,
    build_reply,
    extract_reply_text,
    missing_api_key_notice,
    parse_engine_output,
    permission_denied_notice,
    read_only_notice,
    read_raw_output,
    required_key_for_provider,
    unknown_command_notice,
)
from issue_pilot.orchestrator.sessions import SessionStore
from issue_pilot.orchestrator.trust import decide_admission, resolve_trust_tier
from issue_pilot.orchestrator.usage import (
    UsageLog,
    check_budgets,
    record_usage,
    transcript_line_count,
)

logger = logging.getLogger(__name__)

STATE_DIR_ENV = "OPENCLAW_STATE_DIR"


class IssuePipeline:
    """Runs one event through the pipeline with injectable collaborators."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        platform: IssuePlatform,
        supervisor: ProcessSupervisor | None = None,
        committer: StateCommitter | None = None,
        session_store: SessionStore | None = None,
        environ: Mapping[str, str] | None = None,
        live_sink: IO[str] | int | None = None,
    ) -> None:
        runtime = settings.runtime
        self.settings = settings
        self.platform = platform
        self.supervisor = supervisor or ProcessSupervisor(
            capture_timeout_seconds=runtime.capture_timeout_seconds,
            exit_grace_seconds=runtime.exit_grace_seconds,
        )
        self.committer = committer or StateCommitter(runtime.repo_root)
        self.sessions = session_store or SessionStore(
            runtime.state_dir,
            runtime.working_sessions_dir,
        )
        self.environ = dict(os.environ if environ is None else environ)
        self.usage_log = UsageLog(runtime.usage_log_path)
        self.live_sink = live_sink

    def run(self, event: InboundEvent) -> RunReport:
        """Process ``event``. Cleanup runs whatever happens in between."""

        try:
            return self._run(event)
        finally:
            self._cleanup()

    def _run(self, event: InboundEvent) -> RunReport:
        policy = self.settings.trust_policy
        permission = self._actor_permission(event)
        tier = resolve_trust_tier(event.actor, permission, policy)
        admission = decide_admission(tier, policy)
        logger.info(
            "Issue #%s: actor=%s permission=%s trust=%s admission=%s",
            event.issue_number,
            event.actor,
            permission,
            tier.value,
            admission.value,
        )

        if admission is Admission.REJECT_BLOCKED:
            self.platform.post_comment(event.issue_number, access_denied_notice(event.actor))
            return RunReport(event.issue_number, RunOutcome.REJECTED, tier)
        if admission is Admission.REJECT_READ_ONLY:
            self.platform.post_comment(event.issue_number, read_only_notice(event.actor))
            return RunReport(event.issue_number, RunOutcome.REJECTED, tier)

        parsed = (
            parse_command(event.comment_body or "")
            if event.is_comment
            else ParsedCommand(command="agent")
        )
        if not parsed.is_agent_turn:
            return self._handle_command(event, parsed, tier)
        return self._handle_agent_turn(event, tier)

    def _actor_permission(self, event: InboundEvent) -> str:
        if event.actor_permission:
            return event.actor_permission
        if self.settings.trust_policy is None:
            return "none"
        return self.platform.get_actor_permission(event.actor)

    def _handle_command(
        self,
        event: InboundEvent,
        parsed: ParsedCommand,
        tier: TrustTier,
    ) -> RunReport:
        report = RunReport(
            event.issue_number,
            RunOutcome.COMMAND_HANDLED,
            tier,
            command=parsed.command,
        )
        if parsed.command == "help":
            self.platform.post_comment(event.issue_number, render_help())
            report.reply_posted = True
            return report
        if parsed.command == UNKNOWN_COMMAND or not parsed.is_known:
            self.platform.post_comment(event.issue_number, unknown_command_notice(parsed))
            report.reply_posted = True
            return report
        if tier is TrustTier.SEMI_TRUSTED and is_mutation_invocation(parsed.command, parsed.args):
            logger.info("Denied mutating /%s for semi-trusted %s", parsed.command, event.actor)
            self.platform.post_comment(
                event.issue_number,
                permission_denied_notice(event.actor, parsed),
            )
            report.outcome = RunOutcome.COMMAND_DENIED
            report.reply_posted = True
            return report

        runtime = self.settings.runtime
        result = self._supervise([*runtime.agent_command, parsed.command, *parsed.args])
        self._raise_on_failure(event, result)
        output = read_raw_output(result.raw_output_path)

        report.state_committed = self._commit(
            event,
            f"issue-pilot: /{parsed.command} on issue #{event.issue_number}",
        )
        self.platform.post_comment(event.issue_number, build_command_reply(parsed, output))
        report.reply_posted = True
        return report

    def _handle_agent_turn(self, event: InboundEvent, tier: TrustTier) -> RunReport:
        agent = self.settings.agent
        prompt = self._prompt(event)

        key_name = required_key_for_provider(agent.provider)
        if key_name is not None and not self.environ.get(key_name):
            self.platform.post_comment(
                event.issue_number,
                missing_api_key_notice(agent.provider, key_name),
            )
            raise MissingCredentialsError(
                f"{key_name} is not available to this run (provider {agent.provider}).",
            )

        if tier is TrustTier.SEMI_TRUSTED:
            prompt = apply_read_only_directive(prompt)
            self._write_tool_policy_override()

        session = self.sessions.resolve(event.issue_number)
        self.sessions.restore(session.session_id)
        transcript_path = self.sessions.working_transcript_path(session.session_id)
        prior_transcript_lines = transcript_line_count(transcript_path)

        result = self._supervise(self._agent_argv(prompt, session))
        # Must not be staged with the rest of the state subtree.
        _remove_quietly(
            self.settings.runtime.tool_policy_override_path,
            label="tool policy override",
        )
        self._raise_on_failure(event, result)

        raw_output = read_raw_output(result.raw_output_path)
        parsed_output = parse_engine_output(raw_output)
        reply_text = extract_reply_text(raw_output)

        usage = record_usage(
            issue_number=event.issue_number,
            actor=event.actor,
            parsed_output=parsed_output,
            transcript_path=transcript_path,
            transcript_start_line=prior_transcript_lines,
            elapsed_seconds=result.elapsed_seconds,
        )
        self.usage_log.append(usage)
        violations = check_budgets(usage, self.settings.limits)
        for violation in violations:
            logger.warning(
                "Budget exceeded on issue #%s: %s=%s (limit %s)",
                event.issue_number,
                violation.limit_name,
                violation.actual,
                violation.limit,
            )

        self.sessions.archive(session.session_id)
        self.sessions.persist_mapping(event.issue_number, session.session_id)
        committed = self._commit(event, f"issue-pilot: work on issue #{event.issue_number}")

        self.platform.post_comment(
            event.issue_number,
            build_reply(reply_text, event.repository),
        )
        for violation in violations:
            self.platform.post_comment(event.issue_number, violation.notice)

        return RunReport(
            event.issue_number,
            RunOutcome.COMPLETED,
            tier,
            session_id=session.session_id,
            session_mode=session.mode,
            state_committed=committed,
            reply_posted=True,
            violations=[
                f"{violation.limit_name} {violation.actual} > {violation.limit}"
                for violation in violations
            ],
        )

    def _prompt(self, event: InboundEvent) -> str:
        if event.is_comment:
            return event.comment_body or ""
        issue = self.platform.fetch_issue(event.issue_number)
        return f"{issue.title}\n\n{issue.body}"

    def _agent_argv(self, prompt: str, session: SessionResolution) -> list[str]:
        runtime = self.settings.runtime
        argv = [
            *runtime.agent_command,
            "agent",
            "--local",
            "--json",
            "--message",
            prompt,
            "--thinking",
            self.settings.agent.thinking_level,
            "--session-id",
            session.session_id,
        ]
        timeout_minutes = self.settings.limits.workflow_timeout_minutes
        if timeout_minutes is not None:
            argv.extend(["--timeout", str(timeout_minutes * 60)])
        return argv

    def _supervise(self, argv: list[str]) -> AgentRunResult:
        runtime = self.settings.runtime
        env = dict(self.environ)
        env[STATE_DIR_ENV] = str(runtime.state_dir)
        logger.info(
            "Running agent: %s (state dir %s)",
            " ".join(argv[: len(runtime.agent_command) + 1]),
            runtime.state_dir,
        )
        return self.supervisor.run(
            AgentRunRequest(
                argv=argv,
                env=env,
                workdir=runtime.repo_root,
                raw_output_path=runtime.raw_output_path,
                live_sink=self.live_sink,
            ),
        )

    def _raise_on_failure(self, event: InboundEvent, result: AgentRunResult) -> None:
        if result.ok:
            return
        reason = result.reason or f"Agent exited with code {result.exit_code}"
        logger.error("Agent run failed on issue #%s: %s", event.issue_number, reason)
        try:
            self.platform.post_comment(
                event.issue_number,
                agent_failure_notice(reason, event.repository),
            )
        except Exception:
            logger.exception("Could not post failure notice on issue #%s", event.issue_number)
        raise AgentRunError(reason, exit_code=result.exit_code)

    def _commit(self, event: InboundEvent, message: str) -> bool:
        runtime = self.settings.runtime
        self.committer.configure_identity(runtime.git_user_name, runtime.git_user_email)
        return self.committer.commit_and_push(
            runtime.state_dir,
            message,
            event.default_branch,
            max_attempts=runtime.push_max_attempts,
            remote=runtime.git_remote,
        )

    def _write_tool_policy_override(self) -> None:
        path = self.settings.runtime.tool_policy_override_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(SEMI_TRUSTED_TOOL_POLICY, indent=2) + "\n", "utf-8")
        logger.info("Wrote read-only tool policy override: %s", path)

    def _cleanup(self) -> None:
        runtime = self.settings.runtime
        try:
            state = ReactionState.read(runtime.reaction_state_path)
            if state is not None and state.reaction_id is not None:
                self.platform.remove_reaction(state)
        except Exception:
            logger.exception("Failed to remove in-progress reaction")
        _remove_quietly(runtime.tool_policy_override_path, label="tool policy override")


def _remove_quietly(path: Path, *, label: str) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove %s %s", label, path, exc_info=True)
    else:
        logger.debug("Removed %s %s", label, path)
