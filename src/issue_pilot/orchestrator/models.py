"""Domain models shared across the orchestration pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TrustTier(str, Enum):
    """Coarse authorization level, recomputed on every run."""

    TRUSTED = "trusted"
    SEMI_TRUSTED = "semi-trusted"
    UNTRUSTED = "untrusted"


class Admission(str, Enum):
    """Tagged outcome of the authorization step."""

    PROCEED = "proceed"
    REJECT_BLOCKED = "reject_blocked"
    REJECT_READ_ONLY = "reject_read_only"


class SessionMode(str, Enum):
    """Whether a run starts a conversation or continues one."""

    NEW = "new"
    RESUME = "resume"


class RunOutcome(str, Enum):
    """Terminal state of one pipeline run."""

    COMPLETED = "completed"
    REJECTED = "rejected"
    COMMAND_HANDLED = "command_handled"
    COMMAND_DENIED = "command_denied"


class AgentRunError(RuntimeError):
    """Engine hang or hard engine failure."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class AgentLaunchError(AgentRunError):
    """Engine executable could not be started."""


class MissingCredentialsError(RuntimeError):
    """The configured provider has no API key in the environment."""


@dataclass(slots=True)
class SessionResolution:
    """Session chosen for this run."""

    mode: SessionMode
    session_id: str


@dataclass(slots=True)
class RunReport:
    """Summary of one pipeline run for CLI output."""

    issue_number: int
    outcome: RunOutcome
    trust_tier: TrustTier
    command: str = "agent"
    session_id: str | None = None
    session_mode: SessionMode | None = None
    state_committed: bool | None = None
    reply_posted: bool = False
    violations: list[str] = field(default_factory=list)

    def to_lines(self) -> list[str]:
        lines = [
            f"Run finished: issue=#{self.issue_number} outcome={self.outcome.value} "
            f"trust={self.trust_tier.value} command={self.command}",
        ]
        if self.session_id is not None:
            mode = self.session_mode.value if self.session_mode is not None else "-"
            lines.append(f"Session: {self.session_id} ({mode})")
        if self.state_committed is not None:
            lines.append(
                "State: committed and pushed"
                if self.state_committed
                else "State: NOT pushed (will be retried by a later run)",
            )
        lines.extend(f"Budget: {violation}" for violation in self.violations)
        return lines
