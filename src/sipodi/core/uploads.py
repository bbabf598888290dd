from __future__ import annotations

import logging
import mimetypes
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import PurePath

from sqlalchemy.orm import Session

from sipodi.config import Settings, get_settings
from sipodi.core.access import Actor
from sipodi.core.storage import ObjectStorage, get_storage
from sipodi.db.base import as_utc, utcnow
from sipodi.db.models import Upload
from sipodi.db.repositories import Repository
from sipodi.errors import InvalidStateError, NotFoundError, ValidationError
from sipodi.types import ConfirmedUpload, PresignedUpload, UploadPurpose, UploadStatus

logger = logging.getLogger(__name__)

MIB = 1024 * 1024


@dataclass(slots=True, frozen=True)
class PurposeLimit:
    max_size: int
    allowed_types: tuple[str, ...]


PURPOSE_LIMITS: dict[UploadPurpose, PurposeLimit] = {
    UploadPurpose.PROFILE_PHOTO: PurposeLimit(2 * MIB, ("image/jpeg", "image/png", "image/webp")),
    UploadPurpose.TALENT_CERTIFICATE: PurposeLimit(10 * MIB, ("application/pdf", "image/jpeg", "image/png")),
}


def limits_for(purpose: UploadPurpose | str) -> PurposeLimit:
    try:
        return PURPOSE_LIMITS[UploadPurpose(purpose)]
    except ValueError as exc:
        raise ValidationError.for_field("upload_type", f"unknown upload type '{purpose}'") from exc


def object_key_for(purpose: UploadPurpose, filename: str, content_type: str, *, at: datetime | None = None) -> str:
    at = at or utcnow()
    ext = PurePath(filename).suffix.lower()
    if not ext or len(ext) > 10:
        ext = mimetypes.guess_extension(content_type) or ""
    return f"{purpose.value}/{at:%Y}/{at:%m}/{uuid.uuid4()}{ext}"


class UploadService:
    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        storage: ObjectStorage | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.storage = storage or get_storage(self.settings)
        self.repo = Repository(session)

    def presign(
        self,
        actor: Actor,
        *,
        filename: str,
        size: int,
        content_type: str,
        purpose: UploadPurpose | str,
    ) -> PresignedUpload:
        limits = limits_for(purpose)
        purpose = UploadPurpose(purpose)
        filename = (filename or "").strip()
        content_type = (content_type or "").split(";")[0].strip().lower()

        if not filename:
            raise ValidationError.for_field("filename", "filename is required")
        if size <= 0:
            raise ValidationError.for_field("size", "size must be positive")
        if size > limits.max_size:
            raise ValidationError.for_field("size", f"file exceeds the {limits.max_size} byte limit for {purpose.value}")
        if content_type not in limits.allowed_types:
            raise ValidationError.for_field(
                "content_type",
                f"{content_type or 'unknown'} is not allowed for {purpose.value}",
            )

        expires_in = self.settings.presign_expiry_sec
        key = object_key_for(purpose, filename, content_type)
        url = self.storage.presign_put(key, content_type=content_type, max_size=limits.max_size, expires_in=expires_in)
        upload = self.repo.create_upload(
            user_id=actor.id,
            purpose=purpose.value,
            object_key=key,
            filename=filename,
            content_type=content_type,
            declared_size=size,
            status=UploadStatus.PENDING.value,
            expires_at=utcnow() + timedelta(seconds=expires_in),
        )
        logger.info("Presigned upload id=%s purpose=%s user_id=%s", upload.id, purpose.value, actor.id)
        return PresignedUpload(
            upload_id=upload.id,
            presigned_url=url,
            method="PUT",
            expires_in=expires_in,
            max_size=limits.max_size,
            allowed_types=list(limits.allowed_types),
        )

    def _owned(self, actor: Actor, upload_id: str) -> Upload:
        upload = self.repo.get_upload(upload_id)
        if upload is None or upload.user_id != actor.id:
            raise NotFoundError("upload not found")
        return upload

    def confirm(self, actor: Actor, upload_id: str) -> ConfirmedUpload:
        upload = self._owned(actor, upload_id)
        if upload.status in {UploadStatus.CONFIRMED, UploadStatus.ATTACHED}:
            return self.serialize(upload)
        if upload.status == UploadStatus.CANCELLED:
            raise InvalidStateError("upload was cancelled")
        if as_utc(upload.expires_at) <= utcnow():
            raise InvalidStateError("upload expired; request a new upload URL", code="UPLOAD_EXPIRED")

        size = self.storage.object_size(upload.object_key)
        if size is None:
            raise InvalidStateError("file has not been uploaded", code="FILE_NOT_UPLOADED")
        limits = limits_for(upload.purpose)
        if size > limits.max_size:
            self.storage.delete(upload.object_key)
            self.repo.update_upload(upload, status=UploadStatus.CANCELLED.value)
            raise ValidationError.for_field("size", f"file exceeds the {limits.max_size} byte limit")

        upload = self.repo.update_upload(
            upload,
            size=size,
            status=UploadStatus.CONFIRMED.value,
            confirmed_at=utcnow(),
        )
        logger.info("Confirmed upload id=%s bytes=%s", upload.id, size)
        return self.serialize(upload)

    def cancel(self, actor: Actor, upload_id: str) -> None:
        upload = self._owned(actor, upload_id)
        if upload.status == UploadStatus.ATTACHED:
            raise InvalidStateError("upload is already attached")
        if upload.status == UploadStatus.CANCELLED:
            return

        self._delete_object(upload)
        self.repo.update_upload(upload, status=UploadStatus.CANCELLED.value)
        logger.info("Cancelled upload id=%s", upload.id)

    def ensure_writable(self, object_key: str) -> Upload:
        """Only a pending, unexpired upload accepts bytes at its presigned URL."""
        upload = self.repo.get_upload_by_key(object_key)
        if upload is None:
            raise NotFoundError("upload not found")
        if upload.status != UploadStatus.PENDING:
            raise InvalidStateError(f"upload is already {upload.status}")
        if as_utc(upload.expires_at) <= utcnow():
            raise InvalidStateError("upload expired; request a new upload URL", code="UPLOAD_EXPIRED")
        return upload

    def claim(self, actor: Actor, upload_id: str, *, purpose: UploadPurpose, field: str) -> Upload:
        """Attach a confirmed upload to an entity. Each upload can be claimed once."""
        upload = self.repo.get_upload(upload_id)
        if upload is None or upload.user_id != actor.id:
            raise ValidationError.for_field(field, "upload not found")
        if upload.purpose != purpose.value:
            raise ValidationError.for_field(field, f"upload is not a {purpose.value}")
        if upload.status != UploadStatus.CONFIRMED or not self.repo.set_upload_status(
            upload.id,
            expected=UploadStatus.CONFIRMED.value,
            status=UploadStatus.ATTACHED.value,
        ):
            raise ValidationError.for_field(field, f"upload is {upload.status}, expected confirmed")
        self.session.refresh(upload)
        return upload

    def release(self, upload_id: str) -> None:
        """Return an attached upload to ``confirmed`` so it can be claimed again."""
        self.repo.set_upload_status(upload_id, expected=UploadStatus.ATTACHED.value, status=UploadStatus.CONFIRMED.value)
        logger.info("Released upload id=%s", upload_id)

    @contextmanager
    def claiming(self, actor: Actor, upload_id: str, *, purpose: UploadPurpose, field: str) -> Iterator[Upload]:
        """Claim for the duration of the block; the claim is released if the block raises."""
        upload = self.claim(actor, upload_id, purpose=purpose, field=field)
        try:
            yield upload
        except Exception:
            self.session.rollback()
            self.release(upload.id)
            raise

    def expire_stale(self, now: datetime | None = None) -> int:
        stale = self.repo.list_expired_pending_uploads(now or utcnow())
        for upload in stale:
            self._delete_object(upload)
            self.repo.delete_upload(upload)
        if stale:
            logger.info("Expired %s pending uploads", len(stale))
        return len(stale)

    def _delete_object(self, upload: Upload) -> None:
        try:
            self.storage.delete(upload.object_key)
        except Exception as exc:
            logger.warning("Failed to delete object key=%s: %s", upload.object_key, exc)

    def file_url(self, upload: Upload) -> str:
        return self.storage.public_url(upload.object_key)

    def serialize(self, upload: Upload) -> ConfirmedUpload:
        return ConfirmedUpload(
            upload_id=upload.id,
            file_url=self.file_url(upload),
            filename=upload.filename,
            file_size=upload.size or 0,
            content_type=upload.content_type,
        )
