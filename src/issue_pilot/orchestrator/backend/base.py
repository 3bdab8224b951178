"""Engine run request/result types and supervisor states."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO


class SupervisorState(str, Enum):
    """Supervisor state machine.

    ``RUNNING -> CAPTURED -> EXITED -> DONE`` is the normal path.
    ``RUNNING -> TIMED_OUT -> DONE`` means the engine never closed its output.
    ``CAPTURED -> GRACE_TERMINATED -> DONE`` means output was fully captured but
    the engine did not exit within the grace window and was terminated.
    """

    RUNNING = "running"
    CAPTURED = "captured"
    EXITED = "exited"
    GRACE_TERMINATED = "grace_terminated"
    TIMED_OUT = "timed_out"
    DONE = "done"


@dataclass(slots=True)
class AgentRunRequest:
    """Inputs required to run the engine once."""

    argv: list[str]
    env: dict[str, str]
    workdir: Path
    raw_output_path: Path
    live_sink: IO[str] | int | None = None


@dataclass(slots=True)
class AgentRunResult:
    """Execution outcome from the supervisor."""

    exit_code: int | None
    raw_output_path: Path
    transitions: list[SupervisorState] = field(default_factory=list)
    duplicator_exit_code: int | None = None
    elapsed_seconds: float = 0.0
    reason: str | None = None

    @property
    def timed_out(self) -> bool:
        return SupervisorState.TIMED_OUT in self.transitions

    @property
    def terminated_after_capture(self) -> bool:
        return SupervisorState.GRACE_TERMINATED in self.transitions

    @property
    def duplicator_failed(self) -> bool:
        """The durable output file may be missing or truncated."""

        return self.duplicator_exit_code not in (None, 0)

    @property
    def ok(self) -> bool:
        """Success criterion for downstream steps.

        A grace-period termination counts as success: the output had already
        been captured in full. No other signal exit is treated this way.
        """

        if self.timed_out or self.duplicator_failed:
            return False
        if self.terminated_after_capture:
            return True
        return self.exit_code == 0
