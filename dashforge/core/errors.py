"""
Service error hierarchy and failure envelope rendering.

Services raise ServiceError subclasses carrying a machine-readable ErrorCode;
the FastAPI exception handlers registered in main.py turn them into the
standard failure envelope:

    {"ok": false, "error": {"code": ..., "message": ..., "details": ...}, "traceId": ...}

HTTP status mapping:
- VERSION_CONFLICT -> 409
- NOT_FOUND -> 404
- AUTH_FAILED -> 401
- FORBIDDEN -> 403
- RATE_LIMITED -> 429
- INTERNAL_ERROR, CONFIG_ERROR -> 500
- AI_ERROR -> 502
- everything else -> 400
"""

from typing import Any, Dict, Optional

from dashforge.models.enums import ErrorCode


STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.VERSION_CONFLICT: 409,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.AUTH_FAILED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.CONFIG_ERROR: 500,
    ErrorCode.AI_ERROR: 502,
}


def status_for(code: ErrorCode) -> int:
    """Return the HTTP status used for an error code (400 by default)."""
    return STATUS_BY_CODE.get(code, 400)


class ServiceError(Exception):
    """
    Base error raised by the service layer.

    Attributes:
        code: Machine-readable error code.
        message: Human-readable explanation.
        details: Optional structured payload (offending paths, versions...).
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return status_for(self.code)

    def to_error(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return error


class NotFoundError(ServiceError):
    """Unknown dashboard or version."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(ErrorCode.NOT_FOUND, message, details)


class VersionConflictError(ServiceError):
    """The caller's expected version is stale."""

    def __init__(self, expected_version: int, actual_version: int) -> None:
        super().__init__(
            ErrorCode.VERSION_CONFLICT,
            f"Expected version {expected_version} but current version is {actual_version}",
            {"expectedVersion": expected_version, "currentVersion": actual_version},
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


class ProposalParseError(ServiceError):
    """The AI collaborator returned something that is not a usable proposal."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(ErrorCode.PARSE_ERROR, message, details)


def error_envelope(
    code: ErrorCode,
    message: str,
    trace_id: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build a failure envelope."""
    error: Dict[str, Any] = {"code": code.value, "message": message}
    if details is not None:
        error["details"] = details
    return {"ok": False, "error": error, "traceId": trace_id}


def success_envelope(trace_id: str, **payload: Any) -> Dict[str, Any]:
    """Build a success envelope."""
    return {"ok": True, "traceId": trace_id, **payload}
