"""Error taxonomy shared by the REST service and the client.

Every error maps to one HTTP status and a machine-readable ``code``. The service renders
them as ``{"error": {"code", "message", "details"}}`` and the client turns that envelope
back into the same classes with :func:`error_from_payload`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True, frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class SipodiError(Exception):
    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = None,
        details: list[FieldError] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = list(details or [])

    def to_envelope(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = [item.to_dict() for item in self.details]
        return {"error": body}


class ValidationError(SipodiError):
    status_code = 422
    default_code = "VALIDATION_ERROR"

    @classmethod
    def for_field(cls, field: str, message: str) -> ValidationError:
        return cls("Validation failed", details=[FieldError(field, message)])


class AuthError(SipodiError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class PermissionDeniedError(SipodiError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(SipodiError):
    status_code = 404
    default_code = "NOT_FOUND"


class InvalidStateError(SipodiError):
    status_code = 409
    default_code = "INVALID_STATE"


class NetworkError(SipodiError):
    """Transport-level failure: no HTTP response was received."""

    status_code = 0
    default_code = "NETWORK_ERROR"


class UploadTransferError(NetworkError):
    """The direct write to a presigned URL failed (transport error or non-2xx)."""

    default_code = "UPLOAD_TRANSFER_FAILED"

    def __init__(self, message: str = "", *, status: int | None = None):
        super().__init__(message)
        self.status = status


class PartialBatchFailure(SipodiError):
    default_code = "PARTIAL_BATCH_FAILURE"

    def __init__(self, message: str, *, succeeded: int, failures: list[Any]):
        super().__init__(message)
        self.succeeded = succeeded
        self.failures = failures


_BY_STATUS: dict[int, type[SipodiError]] = {
    400: ValidationError,
    401: AuthError,
    403: PermissionDeniedError,
    404: NotFoundError,
    409: InvalidStateError,
    422: ValidationError,
}


def error_from_payload(status_code: int, payload: Any) -> SipodiError:
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        error = {}

    details = [
        FieldError(str(item.get("field", "")), str(item.get("message", "")))
        for item in error.get("details") or []
        if isinstance(item, dict)
    ]
    cls = _BY_STATUS.get(status_code, SipodiError)
    exc = cls(
        str(error.get("message") or f"HTTP {status_code}"),
        code=error.get("code"),
        details=details,
    )
    exc.status_code = status_code
    return exc
