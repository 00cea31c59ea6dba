"""Deterministic classification of provider failures for logs and telemetry."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from worksheet_gen.generation.errors import ProviderError

PROVIDER_FAILURE_CLASSIFIER_VERSION = 1


class FailureClass(str, Enum):
    """Normalized provider failure classes."""

    TIMEOUT = "timeout"
    BACKEND_TRANSIENT = "backend_transient"
    RATE_LIMITED = "rate_limited"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    MALFORMED_OUTPUT = "malformed_output"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"


_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "insufficient_quota",
    "quota",
    "resource_exhausted",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "incorrect api key",
    "authentication",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "model_not_found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "does not exist",
    "not available in your region",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "rate_limit",
    "try again later",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "overloaded",
    "connection reset",
    "connection refused",
    "network error",
    "name or service not known",
    "dns",
)
_TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 409, 500, 502, 503, 504})
_AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_PAYMENT_REQUIRED = 402


@dataclass(slots=True)
class ProviderFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_log_details(self) -> dict[str, object]:
        return {
            "classifier_version": PROVIDER_FAILURE_CLASSIFIER_VERSION,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_provider_failure(  # noqa: PLR0911
    error: ProviderError,
) -> ProviderFailureClassification:
    """Map a `ProviderError` to a failure class by code, HTTP status and message."""

    if error.code == "timeout":
        return _classification(FailureClass.TIMEOUT, "timeout_code")
    if error.code in {"malformed_output", "empty_reply"}:
        return _classification(FailureClass.MALFORMED_OUTPUT, f"{error.code}_code")

    haystack = error.message.lower()

    if error.status_code == _HTTP_TOO_MANY_REQUESTS:
        # Providers report both throttling and exhausted credit as 429.
        pattern = _first_match(haystack, _BILLING_OR_QUOTA_PATTERNS)
        if pattern is not None:
            return _classification(FailureClass.BILLING_OR_QUOTA, "billing_or_quota", pattern)
        return _classification(FailureClass.RATE_LIMITED, "status_429")
    if error.status_code == _HTTP_PAYMENT_REQUIRED:
        return _classification(FailureClass.BILLING_OR_QUOTA, "status_402")
    if error.status_code in _AUTH_STATUS_CODES:
        return _classification(FailureClass.ACCESS_OR_AUTH, f"status_{error.status_code}")

    rules: tuple[tuple[FailureClass, str, tuple[str, ...]], ...] = (
        (FailureClass.BILLING_OR_QUOTA, "billing_or_quota", _BILLING_OR_QUOTA_PATTERNS),
        (FailureClass.ACCESS_OR_AUTH, "access_or_auth", _ACCESS_OR_AUTH_PATTERNS),
        (FailureClass.MODEL_NOT_AVAILABLE, "model_not_available", _MODEL_NOT_AVAILABLE_PATTERNS),
        (FailureClass.RATE_LIMITED, "rate_limit", _RATE_LIMIT_PATTERNS),
        (FailureClass.BACKEND_TRANSIENT, "generic_transient", _GENERIC_TRANSIENT_PATTERNS),
    )
    for failure_class, rule, patterns in rules:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return _classification(failure_class, rule, pattern)

    if error.code == "transport_error":
        return _classification(FailureClass.BACKEND_TRANSIENT, "transport_error_code")
    if error.status_code is not None and error.status_code in _TRANSIENT_STATUS_CODES:
        return _classification(FailureClass.BACKEND_TRANSIENT, f"status_{error.status_code}")

    return _classification(FailureClass.BACKEND_NON_RETRYABLE, "fallback_non_retryable")


def _classification(
    failure_class: FailureClass,
    matched_rule: str,
    matched_pattern: str | None = None,
) -> ProviderFailureClassification:
    return ProviderFailureClassification(
        failure_class=failure_class,
        reason_code=f"provider_{failure_class.value}",
        matched_rule=matched_rule,
        matched_pattern=matched_pattern,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
