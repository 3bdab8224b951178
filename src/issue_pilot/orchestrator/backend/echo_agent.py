"""Local deterministic engine used by integration tests.

Speaks the same command line as the real engine. Behaviour for tests is
selected with ``ECHO_AGENT_MODE``:

- ``reply`` (default): echo the message, append to the transcript, exit 0.
- ``linger``: reply, close stdout, then keep running.
- ``hang``: never write or close stdout.
- ``fail``: exit with ``ECHO_AGENT_EXIT_CODE`` (default 2) without output.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Run one fake engine invocation."""

    args = list(sys.argv[1:] if argv is None else argv)
    mode = os.getenv("ECHO_AGENT_MODE", "reply")

    if mode == "hang":
        time.sleep(float(os.getenv("ECHO_AGENT_SLEEP_SECONDS", "60")))
        return 0
    if mode == "fail":
        print("echo agent failure requested", file=sys.stderr)
        return int(os.getenv("ECHO_AGENT_EXIT_CODE", "2"))

    if not args or args[0] != "agent":
        sys.stdout.write(f"ran {' '.join(args)}\n")
        sys.stdout.flush()
        return 0

    parser = argparse.ArgumentParser(prog="echo-agent agent")
    parser.add_argument("--local", action="store_true")
    parser.add_argument("--json", action="store_true")
    parser.add_argument("--message", required=True)
    parser.add_argument("--thinking", default="high")
    parser.add_argument("--session-id", required=True)
    parser.add_argument("--timeout", type=int, default=None)
    parsed = parser.parse_args(args[1:])

    tool_calls = int(os.getenv("ECHO_AGENT_TOOL_CALLS", "0"))
    _append_transcript(session_id=parsed.session_id, message=parsed.message, tool_calls=tool_calls)

    payload = {
        "payloads": [{"text": f"echo: {parsed.message}"}],
        "meta": {
            "durationMs": 5,
            "stopReason": "end_turn",
            "agentMeta": {
                "sessionId": parsed.session_id,
                "usage": {
                    "input": int(os.getenv("ECHO_AGENT_INPUT_TOKENS", "10")),
                    "output": int(os.getenv("ECHO_AGENT_OUTPUT_TOKENS", "5")),
                    "cacheRead": 0,
                    "cacheWrite": 0,
                },
            },
        },
    }
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()

    if mode == "linger":
        os.close(sys.stdout.fileno())
        time.sleep(float(os.getenv("ECHO_AGENT_SLEEP_SECONDS", "60")))
    return 0


def _append_transcript(*, session_id: str, message: str, tool_calls: int) -> None:
    state_dir = os.getenv("OPENCLAW_STATE_DIR")
    if not state_dir:
        return
    sessions_dir = Path(state_dir) / os.getenv("ECHO_AGENT_SESSIONS_SUBDIR", "agents/main/sessions")
    sessions_dir.mkdir(parents=True, exist_ok=True)
    entries: list[dict[str, object]] = [
        {"type": "message", "message": {"role": "user", "content": message}},
    ]
    entries.extend(
        {"type": "tool_call", "name": "read", "id": f"call-{index}"} for index in range(tool_calls)
    )
    entries.append(
        {
            "type": "message",
            "message": {"role": "assistant", "content": [{"type": "text", "text": message}]},
        },
    )
    with (sessions_dir / f"{session_id}.jsonl").open("a", encoding="utf-8") as handle:
        for entry in entries:
            handle.write(json.dumps(entry) + "\n")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
