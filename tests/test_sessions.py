from __future__ import annotations

import json
from pathlib import Path

import allure

from issue_pilot.orchestrator.models import SessionMode
from issue_pilot.orchestrator.sessions import SessionStore, session_id_for_issue

pytestmark = [
    allure.epic("Sessions"),
    allure.feature("Session Store"),
]


def _store(tmp_path: Path) -> SessionStore:
    state = tmp_path / "state"
    return SessionStore(state, state / "agents" / "main" / "sessions")


def test_first_turn_gets_deterministic_session(tmp_path: Path) -> None:
    store = _store(tmp_path)

    first = store.resolve(42)
    second = store.resolve(42)

    assert first.mode is SessionMode.NEW
    assert first.session_id == "issue-42" == session_id_for_issue(42)
    assert second.session_id == first.session_id


def test_mapping_with_archive_resumes(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.persist_mapping(3, "sess-abc")
    archive = store.archive_transcript_path("sess-abc")
    archive.parent.mkdir(parents=True)
    archive.write_text('{"type":"message"}\n', "utf-8")

    resolution = store.resolve(3)

    assert resolution.mode is SessionMode.RESUME
    assert resolution.session_id == "sess-abc"


def test_mapping_without_transcript_degrades_to_new(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.persist_mapping(3, "sess-gone")

    resolution = store.resolve(3)

    assert resolution.mode is SessionMode.NEW
    assert resolution.session_id == "issue-3"


def test_unreadable_mapping_degrades_to_new(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.mapping_path(5).parent.mkdir(parents=True)
    store.mapping_path(5).write_text("{not json", "utf-8")

    assert store.resolve(5).mode is SessionMode.NEW


def test_restore_then_archive_round_trip_is_byte_identical(tmp_path: Path) -> None:
    store = _store(tmp_path)
    content = b'{"type":"message","text":"caf\xc3\xa9"}\r\n{"type":"tool_call"}\n'
    archive = store.archive_transcript_path("issue-9")
    archive.parent.mkdir(parents=True)
    archive.write_bytes(content)

    assert store.restore("issue-9") is True
    assert store.archive("issue-9") is True

    assert archive.read_bytes() == content
    assert store.working_transcript_path("issue-9").read_bytes() == content


def test_restore_does_not_overwrite_working_copy(tmp_path: Path) -> None:
    store = _store(tmp_path)
    archive = store.archive_transcript_path("s")
    working = store.working_transcript_path("s")
    archive.parent.mkdir(parents=True)
    working.parent.mkdir(parents=True)
    archive.write_text("old\n", "utf-8")
    working.write_text("newer\n", "utf-8")

    assert store.restore("s") is False
    assert working.read_text("utf-8") == "newer\n"


def test_archive_without_working_copy_is_noop(tmp_path: Path) -> None:
    store = _store(tmp_path)

    assert store.archive("missing") is False
    assert not store.archive_transcript_path("missing").exists()


def test_persist_mapping_overwrites(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.persist_mapping(8, "first")
    store.persist_mapping(8, "second")

    payload = json.loads(store.mapping_path(8).read_text("utf-8"))

    assert payload["issueNumber"] == 8
    assert payload["sessionId"] == "second"
    assert payload["updatedAt"]


def test_mapping_with_path_like_session_id_starts_fresh(tmp_path: Path) -> None:
    store = _store(tmp_path)
    outside = tmp_path / "outside.jsonl"
    outside.write_text('{"type":"message"}\n', "utf-8")
    for session_id in ("../../outside", "nested/id", "a..b"):
        mapping = store.mapping_path(5)
        mapping.parent.mkdir(parents=True, exist_ok=True)
        mapping.write_text(json.dumps({"issueNumber": 5, "sessionId": session_id}), "utf-8")

        resolution = store.resolve(5)

        assert resolution.mode is SessionMode.NEW
        assert resolution.session_id == "issue-5"
