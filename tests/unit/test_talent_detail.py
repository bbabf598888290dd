from datetime import date

import pytest

from sipodi.errors import ValidationError
from sipodi.types import (
    CompetitionLevel,
    CompetitionParticipantDetail,
    InterestDetail,
    TalentRecord,
    TalentType,
    TrainingDetail,
    detail_model_for,
    dump_detail,
    parse_detail,
)


def _fields(exc: ValidationError) -> set[str]:
    return {item.field for item in exc.details}


def test_training_detail_parses_into_its_variant() -> None:
    detail = parse_detail(
        "peserta_pelatihan",
        {"activity_name": "Workshop A", "organizer": "Dinas", "start_date": "2024-01-10", "duration_days": 3},
    )
    assert isinstance(detail, TrainingDetail)
    assert detail.start_date == date(2024, 1, 10)
    assert dump_detail(detail)["start_date"] == "2024-01-10"


def test_every_kind_has_a_detail_model() -> None:
    for kind in TalentType:
        assert detail_model_for(kind) is not None


def test_missing_fields_are_reported_with_detail_paths() -> None:
    with pytest.raises(ValidationError) as info:
        parse_detail(TalentType.TRAINING, {"activity_name": "Workshop A"})
    assert {"detail.organizer", "detail.start_date", "detail.duration_days"} <= _fields(info.value)


def test_extra_fields_are_rejected_not_dropped() -> None:
    with pytest.raises(ValidationError) as info:
        parse_detail(TalentType.INTEREST, {"interest_name": "Catur", "description": "Klub catur", "level": "kota"})
    assert "detail.level" in _fields(info.value)


def test_blank_strings_and_zero_duration_are_invalid() -> None:
    with pytest.raises(ValidationError) as info:
        parse_detail(
            TalentType.TRAINING,
            {"activity_name": "   ", "organizer": "Dinas", "start_date": "2024-01-10", "duration_days": 0},
        )
    assert _fields(info.value) == {"detail.activity_name", "detail.duration_days"}


def test_competition_level_and_field_are_closed_sets() -> None:
    raw = {
        "competition_name": "OSN",
        "level": "galaksi",
        "organizer": "Kemdikbud",
        "field": "akademik",
        "start_date": "2024-05-01",
        "duration_days": 2,
        "competition_field": "Matematika",
        "achievement": "Juara 1",
    }
    with pytest.raises(ValidationError):
        parse_detail(TalentType.COMPETITION_PARTICIPANT, raw)

    detail = parse_detail(TalentType.COMPETITION_PARTICIPANT, {**raw, "level": "nasional"})
    assert isinstance(detail, CompetitionParticipantDetail)
    assert detail.level == CompetitionLevel.NATIONAL


def test_unknown_kind_is_a_validation_error() -> None:
    with pytest.raises(ValidationError) as info:
        parse_detail("lomba_makan", {})
    assert _fields(info.value) == {"talent_type"}


def test_detail_must_be_an_object() -> None:
    with pytest.raises(ValidationError):
        parse_detail(TalentType.INTEREST, ["Catur"])


def test_talent_record_parses_detail_by_talent_type() -> None:
    record = TalentRecord.model_validate(
        {
            "id": "t-1",
            "talent_type": "minat_bakat",
            "status": "pending",
            "detail": {"interest_name": "Catur", "description": "Klub catur sekolah"},
            "created_at": "2024-01-10T00:00:00Z",
            "updated_at": "2024-01-10T00:00:00Z",
        }
    )
    assert isinstance(record.detail, InterestDetail)
    assert record.is_pending
    assert record.decision is None
