from __future__ import annotations

import json
import shlex
from pathlib import Path

import allure
from click.testing import CliRunner

from issue_pilot import __version__
from issue_pilot import main as cli_module
from issue_pilot.main import issue_pilot
from issue_pilot.orchestrator.usage import UsageLog

from conftest import ECHO_AGENT_COMMAND, FakePlatform

pytestmark = [
    allure.epic("CLI"),
    allure.feature("issue-pilot Commands"),
]


def _event_env(tmp_path: Path, monkeypatch, *, body: str = "hello") -> None:
    event_path = tmp_path / "event.json"
    event_path.write_text(
        json.dumps(
            {
                "issue": {"number": 7},
                "comment": {"id": 99, "body": body},
                "repository": {"default_branch": "main"},
            },
        ),
        "utf-8",
    )
    monkeypatch.setenv("GITHUB_EVENT_PATH", str(event_path))
    monkeypatch.setenv("GITHUB_EVENT_NAME", "issue_comment")
    monkeypatch.setenv("GITHUB_REPOSITORY", "octo/repo")
    monkeypatch.setenv("GITHUB_ACTOR", "alice")
    monkeypatch.setenv("ACTOR_PERMISSION", "admin")
    monkeypatch.setenv("ISSUE_PILOT_REACTION_STATE_PATH", str(tmp_path / "reaction.json"))
    monkeypatch.setenv("ISSUE_PILOT_RAW_OUTPUT_PATH", str(tmp_path / "raw.json"))


def test_version() -> None:
    result = CliRunner().invoke(issue_pilot, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_parse_command() -> None:
    result = CliRunner().invoke(issue_pilot, ["parse", "/config set provider openai"])

    assert result.exit_code == 0, result.output
    assert "command=config" in result.output
    assert "args=set provider openai" in result.output
    assert "mutation=yes" in result.output


def test_check_enabled(home_dir: Path) -> None:
    runner = CliRunner()

    enabled = runner.invoke(issue_pilot, ["check-enabled", "--home", str(home_dir)])
    (home_dir / "ENABLED.md").unlink()
    disabled = runner.invoke(issue_pilot, ["check-enabled", "--home", str(home_dir)])

    assert enabled.exit_code == 0
    assert disabled.exit_code != 0
    assert "Disabled" in disabled.output


def test_preflight(home_dir: Path) -> None:
    runner = CliRunner()

    ok = runner.invoke(issue_pilot, ["preflight", "--home", str(home_dir)])
    (home_dir / "state" / ".gitignore").write_text("", "utf-8")
    failed = runner.invoke(issue_pilot, ["preflight", "--home", str(home_dir)])

    assert ok.exit_code == 0, ok.output
    assert "Preflight passed" in ok.output
    assert failed.exit_code != 0
    assert "3 error(s) found" in failed.output


def test_usage_summary(home_dir: Path) -> None:
    log = UsageLog(home_dir / "state" / "usage.log")
    log.path.write_text(
        "\n".join(
            json.dumps({"issueNumber": issue, "tokensUsed": tokens, "toolCallCount": 1})
            for issue, tokens in ((1, 100), (2, 50), (1, 25))
        )
        + "\n",
        "utf-8",
    )

    result = CliRunner().invoke(issue_pilot, ["usage", "--home", str(home_dir)])
    filtered = CliRunner().invoke(issue_pilot, ["usage", "--home", str(home_dir), "--issue", "2"])

    assert result.exit_code == 0, result.output
    assert "issue=#1 runs=2 tokens=125 tool_calls=2" in result.output
    assert "Total: tokens=175 tool_calls=3" in result.output
    assert "runs=1 issues=1" in filtered.output


def test_indicate_writes_reaction_state(tmp_path: Path, home_dir: Path, monkeypatch) -> None:
    _event_env(tmp_path, monkeypatch)
    platform = FakePlatform(next_reaction_id=321)
    monkeypatch.setattr(cli_module.CONTROLLER, "_platform_factory", lambda repository: platform)

    result = CliRunner().invoke(issue_pilot, ["indicate", "--home", str(home_dir)])

    assert result.exit_code == 0, result.output
    state = json.loads((tmp_path / "reaction.json").read_text("utf-8"))
    assert state["reactionId"] == 321
    assert state["reactionTarget"] == "comment"
    assert state["commentId"] == 99


def test_run_end_to_end_with_echo_agent(tmp_path: Path, home_dir: Path, monkeypatch) -> None:
    _event_env(tmp_path, monkeypatch)
    monkeypatch.setenv("ISSUE_PILOT_AGENT_COMMAND", shlex.join(ECHO_AGENT_COMMAND))
    monkeypatch.setenv("ISSUE_PILOT_REPO_ROOT", str(home_dir.parent))
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    platform = FakePlatform()
    monkeypatch.setattr(cli_module.CONTROLLER, "_platform_factory", lambda repository: platform)

    result = CliRunner().invoke(issue_pilot, ["run", "--home", str(home_dir)])

    assert result.exit_code == 0, result.output
    assert "outcome=completed" in result.output
    assert platform.bodies == ["echo: hello"]


def test_run_reports_configuration_errors(tmp_path: Path, home_dir: Path, monkeypatch) -> None:
    _event_env(tmp_path, monkeypatch)
    (home_dir / "config" / "settings.json").write_text("{}", "utf-8")

    result = CliRunner().invoke(issue_pilot, ["run", "--home", str(home_dir)])

    assert result.exit_code != 0
    assert "Configuration error" in result.output


def test_run_missing_key_exits_non_zero(tmp_path: Path, home_dir: Path, monkeypatch) -> None:
    _event_env(tmp_path, monkeypatch)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    platform = FakePlatform()
    monkeypatch.setattr(cli_module.CONTROLLER, "_platform_factory", lambda repository: platform)

    result = CliRunner().invoke(issue_pilot, ["run", "--home", str(home_dir)])

    assert result.exit_code == 1
    assert "ANTHROPIC_API_KEY" in result.output
    assert "Missing API Key" in platform.bodies[0]
