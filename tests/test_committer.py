from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import allure
import pytest

from issue_pilot.orchestrator.committer import StateCommitter

from conftest import FakeGit

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("State Commit And Push"),
]


@pytest.mark.parametrize("conflicts", [0, 1, 2])
def test_push_succeeds_after_k_rebase_cycles(tmp_path: Path, conflicts: int) -> None:
    git = FakeGit(push_failures=conflicts)
    committer = StateCommitter(tmp_path, runner=git)

    assert committer.commit_and_push(Path("state"), "msg", "main", max_attempts=3) is True

    assert git.count("pull") == conflicts
    assert git.count("push") == conflicts + 1
    if conflicts:
        assert ("pull", "--rebase", "origin", "main") in git.calls


def test_exhausted_push_returns_false_without_force(tmp_path: Path) -> None:
    git = FakeGit(push_failures=10)
    committer = StateCommitter(tmp_path, runner=git)

    assert committer.commit_and_push(Path("state"), "msg", "main", max_attempts=3) is False

    assert git.count("push") == 3
    assert git.count("pull") == 2
    assert not any("--force" in call or "-f" in call for call in git.calls if call[0] == "push")


def test_empty_diff_skips_commit(tmp_path: Path) -> None:
    git = FakeGit(dirty=False)
    committer = StateCommitter(tmp_path, runner=git)

    assert committer.commit_and_push(Path("state"), "msg", "main") is True

    assert git.count("commit") == 0
    assert git.count("push") == 1


def test_only_the_subtree_is_staged(tmp_path: Path) -> None:
    git = FakeGit()
    StateCommitter(tmp_path, runner=git).commit_and_push(Path(".issue-pilot/state"), "m", "dev")

    adds = [call for call in git.calls if call[0] == "add"]
    assert adds == [("add", "--", ".issue-pilot/state")]
    assert ("push", "origin", "HEAD:dev") in git.calls


def test_configure_identity_sets_name_and_email(tmp_path: Path) -> None:
    git = FakeGit()
    StateCommitter(tmp_path, runner=git).configure_identity("bot", "bot@example.com")

    assert git.calls == [
        ("config", "user.name", "bot"),
        ("config", "user.email", "bot@example.com"),
    ]


def _git(cwd: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    ).stdout


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_real_git_commit_stages_state_only_and_rebases_over_sibling(tmp_path: Path) -> None:
    remote = tmp_path / "remote.git"
    _git(tmp_path, "init", "--bare", "-b", "main", str(remote))
    clones = []
    for name in ("one", "two"):
        clone = tmp_path / name
        _git(tmp_path, "clone", str(remote), str(clone))
        _git(clone, "config", "user.name", "t")
        _git(clone, "config", "user.email", "t@example.com")
        _git(clone, "checkout", "-B", "main")
        clones.append(clone)
    one, two = clones
    (one / "README.md").write_text("seed\n", "utf-8")
    _git(one, "add", "README.md")
    _git(one, "commit", "-m", "seed")
    _git(one, "push", "origin", "HEAD:main")
    _git(two, "pull", "origin", "main")

    (one / "state").mkdir()
    (one / "state" / "a.json").write_text("{}\n", "utf-8")
    assert StateCommitter(one).commit_and_push(Path("state"), "one", "main") is True

    (two / "state").mkdir()
    (two / "state" / "b.json").write_text("{}\n", "utf-8")
    (two / "unrelated.txt").write_text("do not stage\n", "utf-8")
    assert StateCommitter(two).commit_and_push(Path("state"), "two", "main") is True

    files = _git(two, "ls-tree", "-r", "--name-only", "origin/main").split()
    assert "state/a.json" in files
    assert "state/b.json" in files
    assert "unrelated.txt" not in files
