"""Git snapshot and revert engine."""

from agentmux.checkpoint.engine import CheckpointEngine

__all__ = ["CheckpointEngine"]
