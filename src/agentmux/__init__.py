"""Agentmux - terminal agent driver with single-flight execution and git checkpoints.

This package drives an interactive AI agent CLI through GNU screen sessions,
serialises work per project with an in-process execution lock, and snapshots
the project's git working tree before every mutating run so it can be
reverted afterwards.
"""

__version__ = "0.1.0"
