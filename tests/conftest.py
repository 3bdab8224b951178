"""Shared test fixtures."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from issue_pilot.config import AgentSettings, RunLimits, RuntimeSettings, Settings, TrustPolicy
from issue_pilot.orchestrator.committer import GitResult
from issue_pilot.orchestrator.platform import IssueDetails, ReactionState

ECHO_AGENT_COMMAND: tuple[str, ...] = (
    sys.executable,
    "-m",
    "issue_pilot.orchestrator.backend.echo_agent",
)

_ECHO_AGENT_ENV = (
    "ECHO_AGENT_MODE",
    "ECHO_AGENT_EXIT_CODE",
    "ECHO_AGENT_SLEEP_SECONDS",
    "ECHO_AGENT_TOOL_CALLS",
    "ECHO_AGENT_INPUT_TOKENS",
    "ECHO_AGENT_OUTPUT_TOKENS",
)


@dataclass
class FakePlatform:
    """In-memory issue host recording every call."""

    issue: IssueDetails = field(
        default_factory=lambda: IssueDetails(number=7, title="Title", body="Body"),
    )
    permission: str = "none"
    comments: list[tuple[int, str]] = field(default_factory=list)
    removed_reactions: list[int | None] = field(default_factory=list)
    permission_lookups: list[str] = field(default_factory=list)
    fail_remove: bool = False
    next_reaction_id: int | None = 555

    def fetch_issue(self, issue_number: int) -> IssueDetails:
        return IssueDetails(number=issue_number, title=self.issue.title, body=self.issue.body)

    def post_comment(self, issue_number: int, body: str) -> None:
        self.comments.append((issue_number, body))

    def add_reaction(self, *, issue_number, comment_id, content="eyes"):
        return self.next_reaction_id

    def remove_reaction(self, state: ReactionState) -> None:
        if self.fail_remove:
            raise RuntimeError("reaction API unavailable")
        self.removed_reactions.append(state.reaction_id)

    def get_actor_permission(self, actor: str) -> str:
        self.permission_lookups.append(actor)
        return self.permission

    @property
    def bodies(self) -> list[str]:
        return [body for _, body in self.comments]


class FakeGit:
    """Scripted git runner: push fails ``push_failures`` times, then succeeds."""

    def __init__(self, *, dirty: bool = True, push_failures: int = 0) -> None:
        self.dirty = dirty
        self.push_failures = push_failures
        self.calls: list[tuple[str, ...]] = []

    def __call__(self, args, cwd: Path) -> GitResult:
        args = tuple(args)
        self.calls.append(args)
        if args[:3] == ("diff", "--cached", "--quiet"):
            return GitResult(exit_code=1 if self.dirty else 0)
        if args[0] == "push":
            if self.push_failures > 0:
                self.push_failures -= 1
                return GitResult(exit_code=1, stderr="! [rejected] (fetch first)")
            return GitResult(exit_code=0)
        return GitResult(exit_code=0)

    def count(self, command: str) -> int:
        return sum(1 for call in self.calls if call[0] == command)


@pytest.fixture(autouse=True)
def _clean_echo_agent_env(monkeypatch):
    for name in _ECHO_AGENT_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def fake_platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture()
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture()
def home_dir(tmp_path: Path) -> Path:
    """Minimal valid orchestrator home."""

    home = tmp_path / "repo" / ".issue-pilot"
    (home / "config").mkdir(parents=True)
    (home / "state").mkdir()
    (home / "config" / "settings.json").write_text(
        json.dumps({"defaultProvider": "anthropic", "defaultModel": "claude-test"}),
        "utf-8",
    )
    (home / "ENABLED.md").write_text("enabled\n", "utf-8")
    (home / "state" / ".gitignore").write_text("credentials/\n*.db\nagents/\n", "utf-8")
    (home / "state" / ".gitattributes").write_text("usage.log merge=union\n", "utf-8")
    return home


@pytest.fixture()
def make_settings(tmp_path: Path, home_dir: Path):
    """Build settings pointing at ``home_dir`` and the echo agent."""

    def _make(
        *,
        trust_policy: TrustPolicy | None = None,
        limits: RunLimits | None = None,
        provider: str = "anthropic",
        capture_timeout_seconds: float = 20.0,
        exit_grace_seconds: float = 5.0,
    ) -> Settings:
        return Settings(
            agent=AgentSettings(provider=provider, model="claude-test"),
            trust_policy=trust_policy,
            limits=limits or RunLimits(),
            runtime=RuntimeSettings(
                repo_root=home_dir.parent,
                home_dir=home_dir,
                agent_command=ECHO_AGENT_COMMAND,
                capture_timeout_seconds=capture_timeout_seconds,
                exit_grace_seconds=exit_grace_seconds,
                raw_output_path=tmp_path / "raw" / "agent-raw.json",
                reaction_state_path=tmp_path / "reaction-state.json",
            ),
        )

    return _make
