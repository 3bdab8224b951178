"""Conversation-to-session mapping and transcript archive/restore.

The engine writes its transcript into a git-ignored working directory that
only lives for one CI run. The archive under ``state/sessions`` is the copy
committed to the repository; it is copied back before the engine runs so the
conversation can resume.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from issue_pilot.orchestrator.models import SessionMode, SessionResolution

logger = logging.getLogger(__name__)

TRANSCRIPT_SUFFIX = ".jsonl"


@dataclass(slots=True)
class ConversationMapping:
    """Issue number -> session id, overwritten on every turn."""

    issue_number: int
    session_id: str
    updated_at: str

    def to_payload(self) -> dict[str, object]:
        return {
            "issueNumber": self.issue_number,
            "sessionId": self.session_id,
            "updatedAt": self.updated_at,
        }


def session_id_for_issue(issue_number: int) -> str:
    """Deterministic id so concurrent first turns on one issue converge."""

    return f"issue-{issue_number}"


def is_safe_session_id(session_id: str) -> bool:
    """Session ids become file names; they must not reach outside their directory."""

    return "/" not in session_id and "\\" not in session_id and ".." not in session_id


class SessionStore:
    """Owns ``state/issues`` and ``state/sessions``."""

    def __init__(self, state_dir: Path, working_sessions_dir: Path) -> None:
        self.state_dir = state_dir
        self.issues_dir = state_dir / "issues"
        self.archive_dir = state_dir / "sessions"
        self.working_dir = working_sessions_dir

    def mapping_path(self, issue_number: int) -> Path:
        return self.issues_dir / f"{issue_number}.json"

    def archive_transcript_path(self, session_id: str) -> Path:
        return self.archive_dir / f"{session_id}{TRANSCRIPT_SUFFIX}"

    def working_transcript_path(self, session_id: str) -> Path:
        return self.working_dir / f"{session_id}{TRANSCRIPT_SUFFIX}"

    def read_mapping(self, issue_number: int) -> ConversationMapping | None:
        path = self.mapping_path(issue_number)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Unreadable session mapping %s, ignoring it", path, exc_info=True)
            return None
        if not isinstance(payload, dict):
            return None
        session_id = payload.get("sessionId")
        if not isinstance(session_id, str) or not session_id.strip():
            return None
        if not is_safe_session_id(session_id.strip()):
            logger.warning("Ignoring mapping %s with unsafe session id %r", path, session_id)
            return None
        return ConversationMapping(
            issue_number=issue_number,
            session_id=session_id.strip(),
            updated_at=str(payload.get("updatedAt") or ""),
        )

    def resolve(self, issue_number: int) -> SessionResolution:
        """Pick the session for this run: resume a live mapping or start fresh."""

        mapping = self.read_mapping(issue_number)
        if mapping is None:
            logger.info("No session mapping for issue #%s, starting fresh", issue_number)
            return SessionResolution(SessionMode.NEW, session_id_for_issue(issue_number))

        session_id = mapping.session_id
        if (
            self.archive_transcript_path(session_id).exists()
            or self.working_transcript_path(session_id).exists()
        ):
            logger.info("Resuming session %s for issue #%s", session_id, issue_number)
            return SessionResolution(SessionMode.RESUME, session_id)

        logger.info(
            "Mapped session %s for issue #%s has no transcript, starting fresh",
            session_id,
            issue_number,
        )
        return SessionResolution(SessionMode.NEW, session_id_for_issue(issue_number))

    def restore(self, session_id: str) -> bool:
        """Copy archive -> working copy. No-op if either side rules it out."""

        archive = self.archive_transcript_path(session_id)
        working = self.working_transcript_path(session_id)
        if not archive.exists() or working.exists():
            return False
        working.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(archive, working)
        logger.info("Restored transcript %s -> %s", archive, working)
        return True

    def archive(self, session_id: str) -> bool:
        """Copy working copy -> archive, replacing any prior archive."""

        working = self.working_transcript_path(session_id)
        if not working.exists():
            return False
        archive = self.archive_transcript_path(session_id)
        archive.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(working, archive)
        logger.info("Archived transcript %s -> %s", working, archive)
        return True

    def persist_mapping(self, issue_number: int, session_id: str) -> ConversationMapping:
        """Write (overwrite) the mapping; last writer wins."""

        mapping = ConversationMapping(
            issue_number=issue_number,
            session_id=session_id,
            updated_at=datetime.now(tz=UTC).isoformat(),
        )
        path = self.mapping_path(issue_number)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(mapping.to_payload(), indent=2) + "\n", "utf-8")
        logger.info("Saved mapping: issue #%s -> %s", issue_number, session_id)
        return mapping
