"""Inbound event context read from the CI environment."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from issue_pilot.config import ConfigError

ISSUE_COMMENT_EVENT = "issue_comment"
ISSUES_EVENT = "issues"
DEFAULT_BRANCH = "main"


@dataclass(slots=True)
class InboundEvent:
    """One triggering issue event."""

    event_name: str
    repository: str
    issue_number: int
    actor: str
    default_branch: str = DEFAULT_BRANCH
    comment_id: int | None = None
    comment_body: str | None = None
    actor_permission: str | None = None

    @property
    def is_comment(self) -> bool:
        return self.event_name == ISSUE_COMMENT_EVENT and self.comment_body is not None

    @classmethod
    def from_env(cls) -> InboundEvent:
        """Read ``GITHUB_*`` variables and the event payload file."""

        event_path = os.getenv("GITHUB_EVENT_PATH")
        if not event_path:
            raise ConfigError("GITHUB_EVENT_PATH is not set.")
        repository = os.getenv("GITHUB_REPOSITORY", "").strip()
        if not repository:
            raise ConfigError("GITHUB_REPOSITORY is not set.")

        payload = load_event_payload(Path(event_path))
        permission = os.getenv("ACTOR_PERMISSION")
        return cls.from_payload(
            payload,
            event_name=os.getenv("GITHUB_EVENT_NAME", ""),
            repository=repository,
            actor=os.getenv("GITHUB_ACTOR", ""),
            actor_permission=permission.strip() if permission and permission.strip() else None,
        )

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        *,
        event_name: str,
        repository: str,
        actor: str,
        actor_permission: str | None = None,
    ) -> InboundEvent:
        issue = payload.get("issue")
        if not isinstance(issue, dict) or not isinstance(issue.get("number"), int):
            raise ConfigError("Event payload has no issue number.")
        repo_info = payload.get("repository")
        default_branch = (
            repo_info.get("default_branch") if isinstance(repo_info, dict) else None
        ) or DEFAULT_BRANCH

        comment_id: int | None = None
        comment_body: str | None = None
        comment = payload.get("comment")
        if event_name == ISSUE_COMMENT_EVENT and isinstance(comment, dict):
            raw_id = comment.get("id")
            comment_id = raw_id if isinstance(raw_id, int) else None
            comment_body = str(comment.get("body") or "")

        if not actor:
            sender = payload.get("sender")
            actor = str(sender.get("login") or "") if isinstance(sender, dict) else ""

        return cls(
            event_name=event_name,
            repository=repository,
            issue_number=issue["number"],
            actor=actor,
            default_branch=str(default_branch),
            comment_id=comment_id,
            comment_body=comment_body,
            actor_permission=actor_permission,
        )


def load_event_payload(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Event payload not found: {path}")
    try:
        payload = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise ConfigError(f"Event payload {path} is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ConfigError(f"Event payload {path} must be a JSON object.")
    return payload
