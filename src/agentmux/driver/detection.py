"""Signature detection over raw agent output.

The agent gives no structured exit status, so outcomes are inferred from
text. Each error class has exactly one detector here:

- ``detect_quota_error``: backend rate limiting / quota exhaustion, with
  retry and limit hints pulled from Google RPC style JSON payloads when the
  agent prints one.
- ``detect_auth_error``: credential or API key rejection.
- ``detect_failure``: everything else that looks like a failed run.

The driver runs them in that order; the first hit wins.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Iterable

from pydantic import BaseModel, Field

from agentmux.config import (
    DEFAULT_AUTH_SIGNATURES,
    DEFAULT_FAILURE_PATTERNS,
    DEFAULT_FAILURE_SIGNATURES,
    DEFAULT_QUOTA_PATTERNS,
    DEFAULT_QUOTA_SIGNATURES,
)
from agentmux.terminal.sampler import strip_control

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
QUOTA_FAILURE_TYPE = "type.googleapis.com/google.rpc.QuotaFailure"
DEFAULT_QUOTA_MESSAGE = "LLM API quota limit reached"

_JSON_SPAN = re.compile(r"\{[\s\S]*\}")
_RETRY_SECONDS = re.compile(r"(\d+(?:\.\d+)?)s?")


class QuotaInfo(BaseModel):
    """Rate-limit details extracted from agent output.

    Attributes:
        message: Human-readable summary of the limit that was hit
        details: Follow-up guidance (limit size, when to retry)
        retry_delay: Raw retry delay as reported by the backend (e.g. "20s")
        retry_after_seconds: retry_delay rounded up to whole seconds
        quota_limit: Quota value reported by the backend
        quota_metric: Quota metric name reported by the backend
    """

    message: str = Field(default=DEFAULT_QUOTA_MESSAGE)
    details: str = Field(default="Please try again later")
    retry_delay: str | None = Field(default=None)
    retry_after_seconds: int | None = Field(default=None)
    quota_limit: str | None = Field(default=None)
    quota_metric: str | None = Field(default=None)


def _load_json_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except ValueError:
        match = _JSON_SPAN.search(text)
        if match is None:
            return None
        try:
            parsed = json.loads(match.group(0))
        except ValueError:
            return None
    return parsed if isinstance(parsed, dict) else None


def _find_error_object(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Locate the error object in the payload shapes the agent emits.

    Either ``{"error": {...}}`` directly, or an envelope
    ``{"status": "error", "message": "<json>"}`` whose message decodes to
    ``[{"error": {...}}]`` or ``{"error": {...}}``.
    """
    if payload.get("status") == "error" and isinstance(payload.get("message"), str):
        try:
            inner = json.loads(payload["message"])
        except ValueError:
            inner = None
        if isinstance(inner, list) and inner and isinstance(inner[0], dict):
            error = inner[0].get("error")
            if isinstance(error, dict):
                return error
        elif isinstance(inner, dict) and isinstance(inner.get("error"), dict):
            return inner["error"]

    error = payload.get("error")
    return error if isinstance(error, dict) else None


def _is_quota_error_object(error: dict[str, Any]) -> bool:
    if error.get("code") == 429 or error.get("status") == "RESOURCE_EXHAUSTED":
        return True
    message = error.get("message")
    if not isinstance(message, str):
        return False
    lowered = message.lower()
    return "quota" in lowered or "rate limit" in lowered


def _quota_info_from_error(error: dict[str, Any]) -> QuotaInfo:
    retry_delay: str | None = None
    quota_limit: str | None = None
    quota_metric: str | None = None

    for detail in error.get("details") or []:
        if not isinstance(detail, dict):
            continue
        if detail.get("@type") == RETRY_INFO_TYPE and detail.get("retryDelay"):
            retry_delay = str(detail["retryDelay"])
        elif detail.get("@type") == QUOTA_FAILURE_TYPE:
            violations = detail.get("violations") or []
            if violations and isinstance(violations[0], dict):
                value = violations[0].get("quotaValue")
                quota_limit = str(value) if value is not None else None
                quota_metric = violations[0].get("quotaMetric")

    message = DEFAULT_QUOTA_MESSAGE
    if isinstance(error.get("message"), str):
        first_line = error["message"].split("\n")[0]
        if "quota" in first_line.lower():
            message = first_line

    details: list[str] = []
    if quota_limit:
        details.append(f"Daily limit: {quota_limit} requests")

    retry_after: int | None = None
    if retry_delay:
        match = _RETRY_SECONDS.search(retry_delay)
        if match:
            retry_after = math.ceil(float(match.group(1)))
            details.append(f"Please retry in approximately {retry_after} seconds")
        else:
            details.append("Please retry later")
    else:
        details.append("Please try again later")

    return QuotaInfo(
        message=message,
        details=". ".join(details),
        retry_delay=retry_delay,
        retry_after_seconds=retry_after,
        quota_limit=quota_limit,
        quota_metric=quota_metric,
    )


def _contains_any(lowered: str, signatures: Iterable[str]) -> str | None:
    for signature in signatures:
        if signature and signature.lower() in lowered:
            return signature
    return None


def _search_any(lowered: str, patterns: Iterable[str]) -> str | None:
    for pattern in patterns:
        match = re.search(pattern, lowered, re.IGNORECASE)
        if match:
            return match.group(0)
    return None


def detect_quota_error(
    text: str,
    signatures: Iterable[str] = DEFAULT_QUOTA_SIGNATURES,
    patterns: Iterable[str] = DEFAULT_QUOTA_PATTERNS,
) -> QuotaInfo | None:
    """Detect backend rate limiting in agent output.

    A structured JSON error payload is preferred because it carries retry
    and limit hints. Without one, plain-text markers such as ``Status: 429``
    or ``RESOURCE_EXHAUSTED`` still classify the output as a quota error.

    Args:
        text: Raw output to inspect
        signatures: Case-insensitive substrings that indicate a quota error
        patterns: Case-insensitive regexes that indicate a quota error

    Returns:
        QuotaInfo if the output looks rate limited, otherwise None.
    """
    if not text:
        return None

    payload = _load_json_object(text)
    if payload is not None:
        error = _find_error_object(payload)
        if error is not None and _is_quota_error_object(error):
            return _quota_info_from_error(error)

    lowered = strip_control(text).lower()
    if _contains_any(lowered, signatures) or _search_any(lowered, patterns):
        return QuotaInfo()
    return None


def detect_auth_error(
    text: str,
    signatures: Iterable[str] = DEFAULT_AUTH_SIGNATURES,
) -> str | None:
    """Detect an authentication failure in agent output.

    Returns:
        The matching signature, or None.
    """
    if not text:
        return None
    return _contains_any(strip_control(text).lower(), signatures)


def detect_failure(
    text: str,
    signatures: Iterable[str] = DEFAULT_FAILURE_SIGNATURES,
    patterns: Iterable[str] = DEFAULT_FAILURE_PATTERNS,
) -> str | None:
    """Scan raw output for generic failure signatures.

    The text is stripped of escape sequences and control characters and
    case-folded before matching.

    Returns:
        The first matching signature or pattern match, or None.
    """
    if not text:
        return None
    lowered = strip_control(text).lower()
    return _contains_any(lowered, signatures) or _search_any(lowered, patterns)
