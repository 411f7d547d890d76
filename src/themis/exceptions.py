from __future__ import annotations

from dataclasses import dataclass
import enum


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    ANALYSIS = "analysis"
    TRANSIENT_FETCH = "transient_fetch"
    TIMEOUT = "timeout"
    MISSING_PREREQUISITE = "missing_prerequisite"
    TRIGGER = "trigger"
    CONFLICT = "conflict"
    INTERNAL = "internal"


_STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
}


@dataclass(frozen=True)
class ErrorDetail:
    kind: ErrorKind
    detail: str

    @property
    def status_code(self) -> int:
        return _STATUS_CODES.get(self.kind, 500)

    def to_payload(self) -> dict[str, str]:
        return {"error": self.detail, "kind": self.kind.value}

    @classmethod
    def from_payload(cls, payload, status: int | None = None) -> ErrorDetail:
        kind = ErrorKind.INTERNAL
        detail = ""
        if isinstance(payload, dict):
            try:
                kind = ErrorKind(payload.get("kind"))
            except ValueError:
                kind = _kind_for_status(status)
            detail = str(payload.get("error") or payload.get("details") or "")
        elif payload:
            kind = _kind_for_status(status)
            detail = str(payload)
        else:
            kind = _kind_for_status(status)
        if not detail and status is not None:
            detail = f"HTTP {status}"
        return cls(kind=kind, detail=detail)


def _kind_for_status(status: int | None) -> ErrorKind:
    for kind, code in _STATUS_CODES.items():
        if code == status:
            return kind
    return ErrorKind.INTERNAL


class ThemisError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    @property
    def error(self) -> ErrorDetail:
        return ErrorDetail(kind=self.kind, detail=self.detail)


class ValidationError(ThemisError):
    kind = ErrorKind.VALIDATION


class AuthError(ThemisError):
    kind = ErrorKind.AUTH


class NotFoundError(ThemisError):
    kind = ErrorKind.NOT_FOUND


class InvalidTransition(ThemisError):
    kind = ErrorKind.CONFLICT


class AnalysisErrorType(str, enum.Enum):
    MISSING_FILE = "MISSING_FILE"
    GITHUB_API_ERROR = "GITHUB_API_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    INVALID_CONTENT = "INVALID_CONTENT"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    UNKNOWN = "UNKNOWN"


class AnalysisError(ThemisError):
    kind = ErrorKind.ANALYSIS

    def __init__(
        self, detail: str, error_type: AnalysisErrorType = AnalysisErrorType.UNKNOWN
    ):
        super().__init__(detail)
        self.error_type = error_type


class TransientFetchError(ThemisError):
    kind = ErrorKind.TRANSIENT_FETCH


class PollTimeoutError(ThemisError):
    kind = ErrorKind.TIMEOUT


class MissingPrerequisiteError(ThemisError):
    kind = ErrorKind.MISSING_PREREQUISITE


class TriggerError(ThemisError):
    kind = ErrorKind.TRIGGER
