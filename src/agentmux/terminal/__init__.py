"""Terminal multiplexer sessions and buffer cleaning."""

from agentmux.terminal.sampler import clean, drop_echo, strip_control
from agentmux.terminal.session import (
    EnsureResult,
    SessionHandle,
    SessionRegistry,
    derive_session_name,
    sanitize_name,
)

__all__ = [
    "clean",
    "drop_echo",
    "strip_control",
    "EnsureResult",
    "SessionHandle",
    "SessionRegistry",
    "derive_session_name",
    "sanitize_name",
]
