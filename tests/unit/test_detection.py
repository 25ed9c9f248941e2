"""Unit tests for quota, authentication and failure detection."""

from __future__ import annotations

import json

from agentmux.driver.detection import (
    DEFAULT_QUOTA_MESSAGE,
    QuotaInfo,
    detect_auth_error,
    detect_failure,
    detect_quota_error,
)


def _rpc_error(retry_delay: str = "19.5s", quota_value: str = "250") -> dict:
    return {
        "error": {
            "code": 429,
            "message": "You exceeded your current quota, please check your plan.\nMore text",
            "status": "RESOURCE_EXHAUSTED",
            "details": [
                {
                    "@type": "type.googleapis.com/google.rpc.QuotaFailure",
                    "violations": [
                        {
                            "quotaMetric": "generativelanguage.googleapis.com/generate_requests",
                            "quotaValue": quota_value,
                        }
                    ],
                },
                {
                    "@type": "type.googleapis.com/google.rpc.RetryInfo",
                    "retryDelay": retry_delay,
                },
            ],
        }
    }


# =====================================================================
# Quota detection
# =====================================================================


def test_quota_structured_payload() -> None:
    """Test that a Google RPC error payload yields retry and limit hints."""
    text = "Request to model:\n" + json.dumps(_rpc_error())

    info = detect_quota_error(text)

    assert info is not None
    assert info.message == "You exceeded your current quota, please check your plan."
    assert info.retry_delay == "19.5s"
    assert info.retry_after_seconds == 20
    assert info.quota_limit == "250"
    assert info.quota_metric == "generativelanguage.googleapis.com/generate_requests"
    assert info.details == "Daily limit: 250 requests. Please retry in approximately 20 seconds"


def test_quota_status_envelope() -> None:
    """Test that an error envelope with a JSON-encoded message is unwrapped."""
    envelope = {"status": "error", "message": json.dumps([_rpc_error("7s")])}

    info = detect_quota_error(json.dumps(envelope))

    assert info is not None
    assert info.retry_after_seconds == 7


def test_quota_plain_status_marker() -> None:
    """Test that a bare 429 status line is classified without JSON."""
    info = detect_quota_error("Request failed. Status: 429")

    assert info == QuotaInfo()
    assert info.message == DEFAULT_QUOTA_MESSAGE


def test_quota_signature_case_insensitive() -> None:
    """Test that RESOURCE_EXHAUSTED matches the lowercase signature."""
    assert detect_quota_error("backend said RESOURCE_EXHAUSTED") is not None


def test_quota_non_quota_json_falls_through() -> None:
    """Test that an unrelated JSON error is not treated as quota."""
    text = json.dumps({"error": {"code": 500, "message": "internal"}})
    assert detect_quota_error(text) is None


def test_quota_none_on_clean_output() -> None:
    """Test that ordinary output is not classified as quota."""
    assert detect_quota_error("Wrote 3 files") is None
    assert detect_quota_error("") is None


# =====================================================================
# Auth detection
# =====================================================================


def test_auth_detects_api_key_rejection() -> None:
    """Test that an API key rejection is reported with its marker."""
    assert detect_auth_error("Header X-API-KEY missing") == "x-api-key"
    assert detect_auth_error("type: authentication_error") == "authentication_error"


def test_auth_custom_signatures() -> None:
    """Test that configured signatures replace the defaults."""
    assert detect_auth_error("token expired", ["token expired"]) == "token expired"
    assert detect_auth_error("x-api-key", ["token expired"]) is None


# =====================================================================
# Failure detection
# =====================================================================


def test_failure_signature_after_control_stripping() -> None:
    """Test that escape sequences do not hide a failure signature."""
    assert detect_failure("\x1b[31mTraceback\x1b[0m (most recent call last)") == "traceback"


def test_failure_exit_code_pattern() -> None:
    """Test that nonzero exit codes match and zero does not."""
    assert detect_failure("process finished, exit code: 2") == "exit code: 2"
    assert detect_failure("process finished, exit code: 0") is None


def test_failure_none_on_success_output() -> None:
    """Test that a normal completion message has no failure signature."""
    assert detect_failure("Created README.md and ran the build successfully") is None


def test_failure_empty_signature_ignored() -> None:
    """Test that blank signatures never match everything."""
    assert detect_failure("anything", ["", "nope"], []) is None
