import pytest

from sipodi.errors import (
    AuthError,
    FieldError,
    InvalidStateError,
    NotFoundError,
    PartialBatchFailure,
    SipodiError,
    ValidationError,
    error_from_payload,
)
from sipodi.types import BatchResult


def test_envelope_includes_details_only_when_present() -> None:
    assert NotFoundError("talent not found").to_envelope() == {
        "error": {"code": "NOT_FOUND", "message": "talent not found"}
    }
    envelope = ValidationError.for_field("size", "too big").to_envelope()
    assert envelope["error"]["details"] == [{"field": "size", "message": "too big"}]


def test_error_from_payload_maps_status_to_class() -> None:
    exc = error_from_payload(
        422,
        {"error": {"code": "VALIDATION_ERROR", "message": "Validation failed", "details": [{"field": "detail.organizer", "message": "Field required"}]}},
    )
    assert isinstance(exc, ValidationError)
    assert exc.details == [FieldError("detail.organizer", "Field required")]

    exc = error_from_payload(409, {"error": {"code": "INVALID_STATE", "message": "cannot approve: talent already rejected"}})
    assert isinstance(exc, InvalidStateError)
    assert "already rejected" in exc.message

    exc = error_from_payload(401, {"error": {"code": "TOKEN_EXPIRED", "message": "access token expired"}})
    assert isinstance(exc, AuthError)
    assert exc.code == "TOKEN_EXPIRED"


def test_error_from_payload_tolerates_non_envelope_bodies() -> None:
    exc = error_from_payload(502, "<html>Bad Gateway</html>")
    assert type(exc) is SipodiError
    assert exc.status_code == 502
    assert exc.message == "HTTP 502"


def test_batch_result_accepts_either_counter_name() -> None:
    approved = BatchResult.model_validate({"approved_count": 2, "failed_count": 0, "failed_ids": []})
    rejected = BatchResult.model_validate({"rejected_count": 1, "failed_count": 1, "failed_ids": [{"id": "b", "reason": "talent not found"}]})
    assert approved.succeeded == 2 and approved.ok
    assert rejected.succeeded == 1 and not rejected.ok

    approved.raise_for_failures()
    with pytest.raises(PartialBatchFailure) as info:
        rejected.raise_for_failures()
    assert info.value.succeeded == 1
    assert info.value.failures[0].id == "b"
