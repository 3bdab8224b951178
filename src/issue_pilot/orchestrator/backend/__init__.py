"""Engine process supervision."""

from issue_pilot.orchestrator.backend.base import AgentRunRequest, AgentRunResult, SupervisorState
from issue_pilot.orchestrator.backend.supervisor import ProcessSupervisor

__all__ = [
    "AgentRunRequest",
    "AgentRunResult",
    "ProcessSupervisor",
    "SupervisorState",
]
