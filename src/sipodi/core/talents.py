from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from contextlib import nullcontext
from typing import Any

from sqlalchemy.orm import Session

from sipodi.config import Settings, get_settings
from sipodi.core import lifecycle
from sipodi.core.access import (
    Actor,
    TalentScope,
    can_create_talent,
    can_modify_talent,
    can_review,
    can_review_talent,
    can_view_talent,
    talent_scope,
)
from sipodi.core.storage import ObjectStorage
from sipodi.core.uploads import UploadService
from sipodi.db.base import as_utc
from sipodi.db.models import Talent, TalentEvent
from sipodi.db.repositories import Repository
from sipodi.errors import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    SipodiError,
    ValidationError,
)
from sipodi.types import (
    Attachment,
    BatchFailure,
    BatchResult,
    Decision,
    NotificationType,
    PageMeta,
    Submitter,
    TalentEventRecord,
    TalentRecord,
    TalentStatus,
    TalentType,
    UploadPurpose,
    UserRef,
    UserRole,
    dump_detail,
    parse_detail,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MAX_BATCH_SIZE = 100


def page_meta(page: int, limit: int, total: int) -> PageMeta:
    return PageMeta(
        current_page=page,
        per_page=limit,
        total_pages=math.ceil(total / limit) if limit else 0,
        total_count=total,
    )


def check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError.for_field("page", "page must be at least 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError.for_field("limit", f"limit must be between 1 and {MAX_PAGE_SIZE}")


def enum_filter(enum_cls: type, value: str | None, field: str) -> str | None:
    if not value:
        return None
    try:
        return enum_cls(value).value
    except ValueError as exc:
        raise ValidationError.for_field(field, f"unknown value '{value}'") from exc


class TalentService:
    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        storage: ObjectStorage | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.repo = Repository(session)
        self.uploads = UploadService(session, settings=self.settings, storage=storage)

    # submitter operations

    def create(
        self,
        actor: Actor,
        *,
        talent_type: TalentType | str,
        detail: Any,
        attachment_upload_id: str | None = None,
    ) -> TalentRecord:
        if not can_create_talent(actor):
            raise PermissionDeniedError("only GTK accounts can submit talents")

        parsed = parse_detail(talent_type, detail)
        talent_type = TalentType(talent_type)
        with self._claim_certificate(actor, attachment_upload_id):
            talent = self.repo.create_talent(
                user_id=actor.id,
                talent_type=talent_type.value,
                detail_json=dump_detail(parsed),
                attachment_upload_id=attachment_upload_id or None,
            )
        self.repo.append_talent_event(
            talent_id=talent.id,
            actor_id=actor.id,
            action="created",
            payload_json={"talent_type": talent_type.value},
        )
        logger.info("Talent created id=%s type=%s user_id=%s", talent.id, talent_type.value, actor.id)
        return self.serialize(talent)

    def edit(
        self,
        actor: Actor,
        talent_id: str,
        *,
        detail: Any = None,
        attachment_upload_id: str | None = None,
        remove_attachment: bool = False,
        talent_type: str | None = None,
    ) -> TalentRecord:
        talent = self._get_visible(actor, talent_id)
        if not can_modify_talent(actor, submitter_id=talent.user_id):
            raise PermissionDeniedError("only the submitter can edit this talent")
        lifecycle.ensure_mutable(talent.status)
        if talent_type is not None and talent_type != talent.talent_type:
            raise ValidationError.for_field("talent_type", "talent type cannot be changed")

        changed: list[str] = []
        detail_json = talent.detail_json
        if detail is not None:
            detail_json = dump_detail(parse_detail(talent.talent_type, detail))
            changed.append("detail")

        attachment_id = talent.attachment_upload_id
        new_attachment = None
        if remove_attachment:
            attachment_id = None
            changed.append("attachment")
        elif attachment_upload_id and attachment_upload_id != talent.attachment_upload_id:
            new_attachment = attachment_id = attachment_upload_id
            changed.append("attachment")

        # a decision landing after the load fails the conditional write and releases the claim
        with self._claim_certificate(actor, new_attachment):
            if not self.repo.update_talent_detail(talent.id, detail_json=detail_json, attachment_upload_id=attachment_id):
                raise InvalidStateError("cannot modify: talent already decided")

        self.repo.append_talent_event(
            talent_id=talent.id,
            actor_id=actor.id,
            action="edited",
            payload_json={"fields": changed},
        )
        return self.serialize(self.repo.get_talent(talent.id, fresh=True))

    def delete(self, actor: Actor, talent_id: str) -> None:
        talent = self._get_visible(actor, talent_id)
        if not can_modify_talent(actor, submitter_id=talent.user_id):
            raise PermissionDeniedError("only the submitter can delete this talent")
        lifecycle.ensure_pending(talent.status, action="delete")

        if not self.repo.delete_pending_talent(talent.id):
            raise InvalidStateError("cannot delete: talent already decided")
        self.repo.append_talent_event(
            talent_id=talent_id,
            actor_id=actor.id,
            action="deleted",
            payload_json={"talent_type": talent.talent_type},
        )
        logger.info("Talent deleted id=%s user_id=%s", talent_id, actor.id)

    def _claim_certificate(self, actor: Actor, upload_id: str | None):
        if not upload_id:
            return nullcontext()
        return self.uploads.claiming(
            actor,
            upload_id,
            purpose=UploadPurpose.TALENT_CERTIFICATE,
            field="attachment_upload_id",
        )

    # reads

    def _get_visible(self, actor: Actor, talent_id: str) -> Talent:
        talent = self.repo.get_talent(talent_id, fresh=True)
        if talent is None or not can_view_talent(
            actor,
            submitter_id=talent.user_id,
            submitter_school_id=talent.user.school_id,
        ):
            raise NotFoundError("talent not found")
        return talent

    def get(self, actor: Actor, talent_id: str) -> TalentRecord:
        return self.serialize(self._get_visible(actor, talent_id))

    def _list(
        self,
        scope: TalentScope,
        *,
        status: str | None,
        talent_type: str | None,
        school_id: str | None,
        user_id: str | None,
        page: int,
        limit: int,
        oldest_first: bool = False,
    ) -> tuple[list[TalentRecord], PageMeta]:
        check_paging(page, limit)
        rows, total = self.repo.list_talents(
            scope,
            status=enum_filter(TalentStatus, status, "status"),
            talent_type=enum_filter(TalentType, talent_type, "talent_type"),
            school_id=school_id,
            user_id=user_id,
            page=page,
            limit=limit,
            oldest_first=oldest_first,
        )
        return [self.serialize(row) for row in rows], page_meta(page, limit, total)

    def list(
        self,
        actor: Actor,
        *,
        status: str | None = None,
        talent_type: str | None = None,
        school_id: str | None = None,
        user_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[TalentRecord], PageMeta]:
        return self._list(
            talent_scope(actor),
            status=status,
            talent_type=talent_type,
            school_id=school_id,
            user_id=user_id,
            page=page,
            limit=limit,
        )

    def list_mine(
        self,
        actor: Actor,
        *,
        status: str | None = None,
        talent_type: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[TalentRecord], PageMeta]:
        return self._list(
            TalentScope(user_id=actor.id),
            status=status,
            talent_type=talent_type,
            school_id=None,
            user_id=None,
            page=page,
            limit=limit,
        )

    def pending_queue(
        self,
        actor: Actor,
        *,
        talent_type: str | None = None,
        school_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[TalentRecord], PageMeta]:
        if not can_review(actor):
            raise PermissionDeniedError("only reviewers can access the verification queue")
        return self._list(
            talent_scope(actor),
            status=TalentStatus.PENDING.value,
            talent_type=talent_type,
            school_id=school_id,
            user_id=None,
            page=page,
            limit=limit,
            oldest_first=True,
        )

    def history(self, actor: Actor, talent_id: str) -> list[TalentEventRecord]:
        talent = self.repo.get_talent(talent_id)
        if talent is None:
            # history outlives the talent, but only administrators can read orphaned logs
            if actor.role != UserRole.SUPER_ADMIN:
                raise NotFoundError("talent not found")
        else:
            self._get_visible(actor, talent_id)

        events = self.repo.list_talent_events(talent_id)
        if talent is None and not events:
            raise NotFoundError("talent not found")
        return [self.serialize_event(event) for event in events]

    # review

    def _get_reviewable(self, actor: Actor, talent_id: str) -> Talent:
        if not can_review(actor):
            raise PermissionDeniedError("only reviewers can verify talents")
        talent = self.repo.get_talent(talent_id, fresh=True)
        if talent is None:
            raise NotFoundError("talent not found")
        if not can_review_talent(actor, submitter_id=talent.user_id, submitter_school_id=talent.user.school_id):
            if actor.id == talent.user_id:
                raise PermissionDeniedError("submitters cannot review their own talent")
            raise PermissionDeniedError("talent belongs to another school")
        return talent

    def _record_decision(self, talent: Talent, decision: lifecycle.Decision, action: str) -> TalentRecord:
        if not self.repo.apply_decision(talent.id, decision):
            raise InvalidStateError(f"cannot {action}: talent already decided")

        if decision.status == TalentStatus.APPROVED:
            kind, message = NotificationType.TALENT_APPROVED, "Talenta Anda telah disetujui"
        else:
            kind, message = NotificationType.TALENT_REJECTED, f"Talenta Anda ditolak. Alasan: {decision.reason}"

        self.repo.append_talent_event(
            talent_id=talent.id,
            actor_id=decision.reviewer_id,
            action=decision.status.value,
            payload_json={"reason": decision.reason} if decision.reason else {},
        )
        self.repo.create_notification(
            user_id=talent.user_id,
            talent_id=talent.id,
            type=kind.value,
            message=message,
        )
        logger.info("Talent %s id=%s reviewer_id=%s", decision.status.value, talent.id, decision.reviewer_id)
        return self.serialize(self.repo.get_talent(talent.id, fresh=True))

    def approve(self, actor: Actor, talent_id: str) -> TalentRecord:
        talent = self._get_reviewable(actor, talent_id)
        decision = lifecycle.approve(talent.status, reviewer_id=actor.id)
        return self._record_decision(talent, decision, "approve")

    def reject(self, actor: Actor, talent_id: str, reason: str | None) -> TalentRecord:
        lifecycle.normalize_reason(reason)
        talent = self._get_reviewable(actor, talent_id)
        decision = lifecycle.reject(
            talent.status,
            reviewer_id=actor.id,
            reason=reason,
        )
        return self._record_decision(talent, decision, "reject")

    def _check_batch(self, actor: Actor, ids: Iterable[str]) -> list[str]:
        if not can_review(actor):
            raise PermissionDeniedError("only reviewers can verify talents")
        ids = list(ids)
        if not ids:
            raise ValidationError.for_field("ids", "at least one id is required")
        if len(ids) > MAX_BATCH_SIZE:
            raise ValidationError.for_field("ids", f"at most {MAX_BATCH_SIZE} ids per batch")
        return ids

    def _run_batch(self, ids: list[str], apply) -> BatchResult:
        succeeded = 0
        failures: list[BatchFailure] = []
        for talent_id in ids:
            try:
                apply(talent_id)
            except SipodiError as exc:
                failures.append(BatchFailure(id=talent_id, reason=exc.message))
            else:
                succeeded += 1
        return BatchResult(succeeded=succeeded, failed_count=len(failures), failed_ids=failures)

    def batch_approve(self, actor: Actor, ids: Iterable[str]) -> BatchResult:
        ids = self._check_batch(actor, ids)
        result = self._run_batch(ids, lambda talent_id: self.approve(actor, talent_id))
        logger.info("Batch approve reviewer_id=%s ok=%s failed=%s", actor.id, result.succeeded, result.failed_count)
        return result

    def batch_reject(self, actor: Actor, ids: Iterable[str], reason: str | None) -> BatchResult:
        reason = lifecycle.normalize_reason(reason)
        ids = self._check_batch(actor, ids)
        result = self._run_batch(ids, lambda talent_id: self.reject(actor, talent_id, reason))
        logger.info("Batch reject reviewer_id=%s ok=%s failed=%s", actor.id, result.succeeded, result.failed_count)
        return result

    # serialization

    def serialize(self, talent: Talent) -> TalentRecord:
        user = talent.user
        attachment = None
        if talent.attachment is not None:
            upload = talent.attachment
            attachment = Attachment(
                upload_id=upload.id,
                file_url=self.uploads.file_url(upload),
                filename=upload.filename,
                content_type=upload.content_type,
                size=upload.size,
            )

        decision = None
        if talent.status != TalentStatus.PENDING and talent.verified_at is not None:
            reviewer = talent.verifier
            decision = Decision(
                reviewer=UserRef(id=reviewer.id, full_name=reviewer.full_name) if reviewer else None,
                decided_at=as_utc(talent.verified_at),
                reason=talent.rejection_reason,
            )

        return TalentRecord.model_validate(
            {
                "id": talent.id,
                "submitter": Submitter(
                    id=user.id,
                    full_name=user.full_name,
                    school_name=user.school.name if user.school else None,
                ),
                "talent_type": talent.talent_type,
                "status": talent.status,
                "detail": talent.detail_json,
                "attachment": attachment,
                "decision": decision,
                "created_at": as_utc(talent.created_at),
                "updated_at": as_utc(talent.updated_at),
            }
        )

    def serialize_event(self, event: TalentEvent) -> TalentEventRecord:
        actor = event.actor
        return TalentEventRecord(
            id=event.id,
            talent_id=event.talent_id,
            actor=UserRef(id=actor.id, full_name=actor.full_name) if actor else None,
            action=event.action,
            payload=event.payload_json or {},
            created_at=as_utc(event.created_at),
        )
