"""Error types shared by the dispatcher, the completion client and the worker loop."""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.exc import InterfaceError, OperationalError

# Substrings that mark an infrastructure problem rather than a bad job
CRITICAL_ERROR_MARKERS = ("connection", "network", "timeout", "timed out")


def build_error_payload(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload = {"error": {"code": code, "message": message}}
    if details is not None:
        payload["error"]["details"] = details
    return payload


class JobError(Exception):
    """Job-level failure. ``str(exc)`` is what ends up in the job's error column."""

    code = "job_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        return build_error_payload(self.code, self.message, self.details or None)


class UnknownJobTypeError(JobError):
    code = "unknown_job_type"

    def __init__(self, job_type: Any):
        super().__init__(f"Unknown job type: {job_type}", {"job_type": job_type})
        self.job_type = job_type


class PayloadValidationError(JobError):
    code = "invalid_payload"


class CompletionAPIError(JobError):
    """Translated completion API failure (timeout, HTTP error, unusable body)."""

    code = "completion_api_error"

    def __init__(self, message: str, kind: str, status_code: Optional[int] = None):
        super().__init__(message, {"kind": kind, "status_code": status_code})
        self.kind = kind
        self.status_code = status_code


class ConfigurationError(Exception):
    """Startup configuration is missing or invalid."""


def is_critical_error(exc: BaseException) -> bool:
    """True for store/network failures that warrant a longer backoff in the worker loop."""
    if isinstance(exc, (OperationalError, InterfaceError, OSError, TimeoutError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in CRITICAL_ERROR_MARKERS)
