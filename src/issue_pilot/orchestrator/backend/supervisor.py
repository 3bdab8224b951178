"""Subprocess supervisor for the reasoning engine."""

from __future__ import annotations

import logging
import subprocess
import time

from issue_pilot.orchestrator.backend.base import AgentRunRequest, AgentRunResult, SupervisorState
from issue_pilot.orchestrator.models import AgentLaunchError

logger = logging.getLogger(__name__)

DUPLICATOR_COMMAND = "tee"
_TERMINATE_WAIT_SECONDS = 2


class ProcessSupervisor:
    """Run the engine with its stdout duplicated to a live sink and a file.

    Two independent timeouts bound the run: the capture timeout (engine must
    close its output stream) and the exit grace (engine must exit after its
    output was captured).
    """

    def __init__(self, *, capture_timeout_seconds: float, exit_grace_seconds: float) -> None:
        self.capture_timeout_seconds = capture_timeout_seconds
        self.exit_grace_seconds = exit_grace_seconds

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        request.raw_output_path.parent.mkdir(parents=True, exist_ok=True)
        started = time.monotonic()
        engine, duplicator = self._spawn(request)
        transitions = [SupervisorState.RUNNING]

        try:
            duplicator.wait(timeout=self.capture_timeout_seconds)
        except subprocess.TimeoutExpired:
            transitions.append(SupervisorState.TIMED_OUT)
            logger.error(
                "Agent did not close its output after %.0fs, killing agent and duplicator",
                self.capture_timeout_seconds,
            )
            _terminate_process(engine)
            _terminate_process(duplicator)
            transitions.append(SupervisorState.DONE)
            return AgentRunResult(
                exit_code=engine.returncode,
                raw_output_path=request.raw_output_path,
                transitions=transitions,
                duplicator_exit_code=duplicator.returncode,
                elapsed_seconds=time.monotonic() - started,
                reason=(
                    f"Agent timed out: output stream still open after "
                    f"{self.capture_timeout_seconds:g}s"
                ),
            )

        transitions.append(SupervisorState.CAPTURED)
        try:
            exit_code = engine.wait(timeout=self.exit_grace_seconds)
            transitions.append(SupervisorState.EXITED)
        except subprocess.TimeoutExpired:
            logger.info(
                "Agent process did not exit %.0fs after output was captured, terminating it",
                self.exit_grace_seconds,
            )
            _terminate_process(engine)
            exit_code = engine.returncode
            transitions.append(SupervisorState.GRACE_TERMINATED)
        transitions.append(SupervisorState.DONE)

        result = AgentRunResult(
            exit_code=exit_code,
            raw_output_path=request.raw_output_path,
            transitions=transitions,
            duplicator_exit_code=duplicator.returncode,
            elapsed_seconds=time.monotonic() - started,
        )
        if result.duplicator_failed:
            result.reason = f"Output duplicator exited with code {duplicator.returncode}"
            logger.error("%s, raw output %s is unreliable", result.reason, request.raw_output_path)
        elif not result.ok:
            result.reason = f"Agent exited with code {exit_code}"
        return result

    def _spawn(
        self,
        request: AgentRunRequest,
    ) -> tuple[subprocess.Popen[bytes], subprocess.Popen[bytes]]:
        command_head = request.argv[0] if request.argv else "<empty>"
        try:
            engine = subprocess.Popen(  # noqa: S603
                request.argv,
                cwd=request.workdir,
                env=request.env,
                stdout=subprocess.PIPE,
            )
        except FileNotFoundError as error:
            raise AgentLaunchError(f"Agent command not found: {command_head}") from error
        except OSError as error:
            raise AgentLaunchError(f"Agent failed to start: {error}") from error

        assert engine.stdout is not None
        try:
            duplicator = subprocess.Popen(  # noqa: S603
                [DUPLICATOR_COMMAND, str(request.raw_output_path)],
                stdin=engine.stdout,
                stdout=request.live_sink,
            )
        except OSError as error:
            _terminate_process(engine)
            raise AgentLaunchError(f"Output duplicator failed to start: {error}") from error
        finally:
            # The duplicator owns the read end now; keeping ours open would hide EOF.
            engine.stdout.close()
        return engine, duplicator


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    if process.poll() is not None:
        return
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=_TERMINATE_WAIT_SECONDS)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=_TERMINATE_WAIT_SECONDS)
