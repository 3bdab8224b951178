"""Issue host API access through the ``gh`` CLI, plus the reaction state file."""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

IN_PROGRESS_REACTION = "eyes"


class PlatformApiError(RuntimeError):
    """The host platform answered with an error. Hard failure."""


@dataclass(slots=True)
class IssueDetails:
    number: int
    title: str
    body: str


@dataclass(slots=True)
class ReactionState:
    """Written by the indicator step, read by cleanup."""

    reaction_id: int | None
    reaction_target: str
    issue_number: int
    comment_id: int | None = None
    repository: str = ""

    def to_payload(self) -> dict[str, object]:
        return {
            "reactionId": self.reaction_id,
            "reactionTarget": self.reaction_target,
            "issueNumber": self.issue_number,
            "commentId": self.comment_id,
            "repo": self.repository,
        }

    def write(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_payload(), indent=2) + "\n", "utf-8")

    @classmethod
    def read(cls, path: Path) -> ReactionState | None:
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Unreadable reaction state %s", path, exc_info=True)
            return None
        if not isinstance(payload, dict):
            return None
        return cls(
            reaction_id=_optional_int(payload.get("reactionId")),
            reaction_target=str(payload.get("reactionTarget") or "issue"),
            issue_number=_optional_int(payload.get("issueNumber")) or 0,
            comment_id=_optional_int(payload.get("commentId")),
            repository=str(payload.get("repo") or ""),
        )


class IssuePlatform(Protocol):
    """Operations the pipeline needs from the issue host."""

    def fetch_issue(self, issue_number: int) -> IssueDetails: ...

    def post_comment(self, issue_number: int, body: str) -> None: ...

    def add_reaction(
        self,
        *,
        issue_number: int,
        comment_id: int | None,
        content: str = IN_PROGRESS_REACTION,
    ) -> int | None: ...

    def remove_reaction(self, state: ReactionState) -> None: ...

    def get_actor_permission(self, actor: str) -> str: ...


CommandRunner = Callable[[Sequence[str]], subprocess.CompletedProcess[str]]


def run_gh(args: Sequence[str]) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(  # noqa: S603
            ["gh", *args],  # noqa: S607
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError as error:
        raise PlatformApiError(f"gh CLI failed to start: {error}") from error


class GitHubClient:
    """Thin wrapper over ``gh``; every non-zero exit raises ``PlatformApiError``."""

    def __init__(self, repository: str, runner: CommandRunner = run_gh) -> None:
        self.repository = repository
        self._runner = runner

    def _gh(self, *args: str) -> str:
        completed = self._runner(args)
        if completed.returncode != 0:
            raise PlatformApiError(
                f"gh {args[0] if args else ''} failed (exit {completed.returncode}): "
                f"{(completed.stderr or completed.stdout).strip()}",
            )
        return completed.stdout

    def _gh_json(self, *args: str) -> Any:
        output = self._gh(*args)
        try:
            return json.loads(output)
        except json.JSONDecodeError as error:
            raise PlatformApiError(f"gh returned non-JSON output: {output[:200]!r}") from error

    def fetch_issue(self, issue_number: int) -> IssueDetails:
        payload = self._gh_json(
            "issue",
            "view",
            str(issue_number),
            "--repo",
            self.repository,
            "--json",
            "title,body",
        )
        if not isinstance(payload, dict):
            raise PlatformApiError(f"gh issue view returned unexpected payload: {payload!r:.200}")
        return IssueDetails(
            number=issue_number,
            title=str(payload.get("title") or ""),
            body=str(payload.get("body") or ""),
        )

    def post_comment(self, issue_number: int, body: str) -> None:
        self._gh("issue", "comment", str(issue_number), "--repo", self.repository, "--body", body)
        logger.info("Posted comment on issue #%s (%d chars)", issue_number, len(body))

    def add_reaction(
        self,
        *,
        issue_number: int,
        comment_id: int | None,
        content: str = IN_PROGRESS_REACTION,
    ) -> int | None:
        if comment_id is not None:
            endpoint = f"repos/{self.repository}/issues/comments/{comment_id}/reactions"
        else:
            endpoint = f"repos/{self.repository}/issues/{issue_number}/reactions"
        payload = self._gh_json("api", endpoint, "-f", f"content={content}")
        reaction_id = payload.get("id") if isinstance(payload, dict) else None
        return _optional_int(reaction_id)

    def remove_reaction(self, state: ReactionState) -> None:
        if state.reaction_id is None:
            return
        if state.reaction_target == "comment" and state.comment_id is not None:
            endpoint = (
                f"repos/{self.repository}/issues/comments/{state.comment_id}"
                f"/reactions/{state.reaction_id}"
            )
        else:
            endpoint = (
                f"repos/{self.repository}/issues/{state.issue_number}"
                f"/reactions/{state.reaction_id}"
            )
        self._gh("api", endpoint, "-X", "DELETE")
        logger.info("Removed reaction %s", state.reaction_id)

    def get_actor_permission(self, actor: str) -> str:
        payload = self._gh_json(
            "api",
            f"repos/{self.repository}/collaborators/{actor}/permission",
        )
        if not isinstance(payload, dict):
            return "none"
        # ``permission`` folds maintain into write; ``role_name`` keeps it.
        role_name = payload.get("role_name")
        if role_name in {"maintain", "triage"}:
            return str(role_name)
        return str(payload.get("permission") or "none")


def _optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
