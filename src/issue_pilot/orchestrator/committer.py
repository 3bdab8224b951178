"""Commit the state subtree and push it with optimistic rebase-and-retry."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PUSH_ATTEMPTS = 3
_OUTPUT_PREVIEW_CHARS = 400


@dataclass(slots=True)
class GitResult:
    """Exit code and captured output of one git invocation."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


GitRunner = Callable[[Sequence[str], Path], GitResult]


def run_git(args: Sequence[str], cwd: Path) -> GitResult:
    """Run ``git <args>`` in ``cwd`` without raising on non-zero exit."""

    try:
        completed = subprocess.run(  # noqa: S603
            ["git", *args],  # noqa: S607
            cwd=cwd,
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError as error:
        return GitResult(exit_code=127, stderr=f"git failed to start: {error}")
    return GitResult(
        exit_code=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )


class StateCommitter:
    """Stages only the state subtree; the remote's fast-forward check is the only lock."""

    def __init__(self, repo_root: Path, runner: GitRunner = run_git) -> None:
        self.repo_root = repo_root
        self._runner = runner

    def _git(self, *args: str) -> GitResult:
        result = self._runner(args, self.repo_root)
        logger.debug("git %s -> exit %d", " ".join(args), result.exit_code)
        return result

    def configure_identity(self, name: str, email: str) -> None:
        for key, value in (("user.name", name), ("user.email", email)):
            result = self._git("config", key, value)
            if not result.ok:
                logger.warning("git config %s failed: %s", key, _preview(result.stderr))

    def commit_and_push(  # noqa: PLR0913
        self,
        subtree: Path,
        message: str,
        remote_branch: str,
        *,
        max_attempts: int = DEFAULT_PUSH_ATTEMPTS,
        remote: str = "origin",
    ) -> bool:
        """Return True when the remote branch holds our state, False on exhaustion.

        Nothing outside ``subtree`` is staged. When the staged diff is empty no
        commit is made and the push is a no-op check.
        """

        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        add = self._git("add", "--", str(subtree))
        if not add.ok:
            logger.warning("git add %s failed: %s", subtree, _preview(add.stderr))
            return False

        if self._git("diff", "--cached", "--quiet").ok:
            logger.info("No state changes under %s, skipping commit", subtree)
        else:
            commit = self._git("commit", "-m", message)
            if not commit.ok:
                logger.warning("git commit failed: %s", _preview(commit.stderr or commit.stdout))
                return False
            logger.info("Committed state: %s", message)

        for attempt in range(1, max_attempts + 1):
            push = self._git("push", remote, f"HEAD:{remote_branch}")
            if push.ok:
                logger.info("Pushed state to %s/%s (attempt %d)", remote, remote_branch, attempt)
                return True
            logger.info(
                "Push failed, rebasing and retrying (%d/%d): %s",
                attempt,
                max_attempts,
                _preview(push.stderr),
            )
            if attempt == max_attempts:
                break
            rebase = self._git("pull", "--rebase", remote, remote_branch)
            if not rebase.ok:
                logger.warning("git pull --rebase failed: %s", _preview(rebase.stderr))
                self._git("rebase", "--abort")

        logger.warning(
            "State was not pushed after %d attempts; a later run will carry it forward",
            max_attempts,
        )
        return False


def _preview(text: str) -> str:
    stripped = text.strip()
    if len(stripped) <= _OUTPUT_PREVIEW_CHARS:
        return stripped
    return stripped[:_OUTPUT_PREVIEW_CHARS] + "..."
