"""Single-shot issue conversation orchestrator for CI runners."""

__version__ = "0.4.0"
