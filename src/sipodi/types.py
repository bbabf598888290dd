from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, assert_never

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    StringConstraints,
    model_serializer,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from sipodi.errors import FieldError, PartialBatchFailure, ValidationError


class UserRole(StrEnum):
    SUPER_ADMIN = "super_admin"
    ADMIN_SEKOLAH = "admin_sekolah"
    GTK = "gtk"


class GTKType(StrEnum):
    GURU = "guru"
    TENDIK = "tendik"
    KEPALA_SEKOLAH = "kepala_sekolah"


class SchoolStatus(StrEnum):
    NEGERI = "negeri"
    SWASTA = "swasta"


class TalentType(StrEnum):
    TRAINING = "peserta_pelatihan"
    COMPETITION_MENTOR = "pembimbing_lomba"
    COMPETITION_PARTICIPANT = "peserta_lomba"
    INTEREST = "minat_bakat"


class TalentStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CompetitionLevel(StrEnum):
    CITY = "kota"
    PROVINCE = "provinsi"
    NATIONAL = "nasional"
    INTERNATIONAL = "internasional"


class TalentField(StrEnum):
    ACADEMIC = "akademik"
    INNOVATION = "inovasi"
    TECHNOLOGY = "teknologi"
    SOCIAL = "sosial"
    SPORTS = "olahraga"
    ARTS = "seni"
    LEADERSHIP = "kepemimpinan"


class UploadPurpose(StrEnum):
    PROFILE_PHOTO = "profile_photo"
    TALENT_CERTIFICATE = "talent_certificate"


class UploadStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ATTACHED = "attached"
    CANCELLED = "cancelled"


class ExportFormat(StrEnum):
    EXCEL = "excel"
    PDF = "pdf"


class NotificationType(StrEnum):
    TALENT_APPROVED = "talent_approved"
    TALENT_REJECTED = "talent_rejected"


TalentEventAction = Literal["created", "edited", "approved", "rejected", "deleted"]

NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
LongText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=5000)]


class _Detail(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class TrainingDetail(_Detail):
    activity_name: NonBlank
    organizer: NonBlank
    start_date: date
    duration_days: int = Field(ge=1)


class CompetitionMentorDetail(_Detail):
    competition_name: NonBlank
    level: CompetitionLevel
    organizer: NonBlank
    field: TalentField
    achievement: LongText


class CompetitionParticipantDetail(_Detail):
    competition_name: NonBlank
    level: CompetitionLevel
    organizer: NonBlank
    field: TalentField
    start_date: date
    duration_days: int = Field(ge=1)
    competition_field: NonBlank
    achievement: LongText


class InterestDetail(_Detail):
    interest_name: NonBlank
    description: LongText


TalentDetail = TrainingDetail | CompetitionMentorDetail | CompetitionParticipantDetail | InterestDetail


def detail_model_for(kind: TalentType) -> type[TalentDetail]:
    match kind:
        case TalentType.TRAINING:
            return TrainingDetail
        case TalentType.COMPETITION_MENTOR:
            return CompetitionMentorDetail
        case TalentType.COMPETITION_PARTICIPANT:
            return CompetitionParticipantDetail
        case TalentType.INTEREST:
            return InterestDetail
        case _:
            assert_never(kind)


def parse_detail(kind: TalentType | str, raw: Any) -> TalentDetail:
    """Validate ``raw`` against the payload shape required by ``kind``.

    Missing, blank and unknown fields are all reported; nothing is silently dropped.
    """
    try:
        kind = TalentType(kind)
    except ValueError as exc:
        raise ValidationError.for_field("talent_type", f"unknown talent type '{kind}'") from exc

    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        raise ValidationError.for_field("detail", "detail must be an object")

    model = detail_model_for(kind)
    try:
        return model.model_validate(raw)
    except PydanticValidationError as exc:
        details = [
            FieldError(
                ".".join(["detail", *(str(part) for part in item["loc"])]),
                item["msg"],
            )
            for item in exc.errors()
        ]
        raise ValidationError("Validation failed", details=details) from exc


def dump_detail(detail: TalentDetail) -> dict[str, Any]:
    return detail.model_dump(mode="json")


class UserRef(BaseModel):
    id: str
    full_name: str


class SchoolRef(BaseModel):
    id: str
    name: str
    npsn: str = ""
    status: SchoolStatus | None = None
    address: str = ""


class Submitter(BaseModel):
    id: str
    full_name: str
    school_name: str | None = None


class Decision(BaseModel):
    reviewer: UserRef | None = None
    decided_at: datetime
    reason: str | None = None

    @model_serializer(mode="wrap")
    def _omit_missing_reason(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        # approvals carry no reason field at all
        data = handler(self)
        if data.get("reason") is None:
            data.pop("reason", None)
        return data


class Attachment(BaseModel):
    upload_id: str
    file_url: str
    filename: str
    content_type: str
    size: int | None = None


class TalentRecord(BaseModel):
    id: str
    submitter: Submitter | None = None
    talent_type: TalentType
    status: TalentStatus
    detail: TalentDetail
    attachment: Attachment | None = None
    decision: Decision | None = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="before")
    @classmethod
    def _parse_detail_by_kind(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("detail"), dict) and data.get("talent_type"):
            data = {**data, "detail": parse_detail(data["talent_type"], data["detail"])}
        return data

    @property
    def is_pending(self) -> bool:
        return self.status == TalentStatus.PENDING


class TalentEventRecord(BaseModel):
    id: str
    talent_id: str
    actor: UserRef | None = None
    action: TalentEventAction
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class BatchFailure(BaseModel):
    id: str
    reason: str


class BatchResult(BaseModel):
    succeeded: int = Field(
        default=0,
        validation_alias=AliasChoices("succeeded", "approved_count", "rejected_count"),
    )
    failed_count: int = 0
    failed_ids: list[BatchFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_count == 0

    def raise_for_failures(self) -> None:
        if self.failed_ids:
            raise PartialBatchFailure(
                f"{self.succeeded} succeeded, {self.failed_count} failed",
                succeeded=self.succeeded,
                failures=list(self.failed_ids),
            )


class PresignedUpload(BaseModel):
    upload_id: str
    presigned_url: str
    method: str = "PUT"
    expires_in: int
    max_size: int
    allowed_types: list[str] = Field(default_factory=list)


class ConfirmedUpload(BaseModel):
    upload_id: str
    file_url: str
    filename: str
    file_size: int
    content_type: str


class UserProfile(BaseModel):
    id: str
    email: str
    role: UserRole
    full_name: str
    nip: str | None = None
    nuptk: str | None = None
    gtk_type: GTKType | None = None
    position: str | None = None
    photo_url: str | None = None
    is_active: bool = True
    school: SchoolRef | None = None
    created_at: datetime | None = None


class NotificationRecord(BaseModel):
    id: str
    type: NotificationType
    message: str
    talent_id: str | None = None
    is_read: bool = False
    created_at: datetime


class PageMeta(BaseModel):
    current_page: int
    per_page: int
    total_pages: int
    total_count: int
