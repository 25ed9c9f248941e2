"""Agent driver: prompt delivery, stabilization and outcome detection."""

from agentmux.driver.agent import (
    AgentDriver,
    AgentResult,
    DriverState,
    InvalidTransitionError,
    StabilizationTracker,
)
from agentmux.driver.detection import (
    QuotaInfo,
    detect_auth_error,
    detect_failure,
    detect_quota_error,
)
from agentmux.driver.fix import (
    FixSuggestion,
    build_error_analysis_prompt,
    extract_fix_suggestion,
)

__all__ = [
    "AgentDriver",
    "AgentResult",
    "DriverState",
    "InvalidTransitionError",
    "StabilizationTracker",
    "QuotaInfo",
    "detect_auth_error",
    "detect_failure",
    "detect_quota_error",
    "FixSuggestion",
    "build_error_analysis_prompt",
    "extract_fix_suggestion",
]
