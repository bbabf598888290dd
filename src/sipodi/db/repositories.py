from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any

from sqlalchemy import Select, delete, false, func, select, update
from sqlalchemy.orm import Session

from sipodi.core.access import TalentScope
from sipodi.core.lifecycle import Decision
from sipodi.db.base import utcnow
from sipodi.db.models import (
    Notification,
    RefreshToken,
    School,
    Talent,
    TalentEvent,
    Upload,
    User,
)


def hash_token(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _paginate(statement: Select, page: int, limit: int) -> Select:
    page = max(page, 1)
    return statement.offset((page - 1) * limit).limit(limit)


class Repository:
    def __init__(self, session: Session):
        self.session = session

    # schools

    def create_school(self, *, name: str, npsn: str, status: str = "negeri", address: str = "") -> School:
        school = School(name=name, npsn=npsn, status=status, address=address)
        self.session.add(school)
        self.session.commit()
        self.session.refresh(school)
        return school

    def get_school(self, school_id: str) -> School | None:
        return self.session.get(School, school_id)

    def get_school_by_npsn(self, npsn: str) -> School | None:
        return self.session.scalar(select(School).where(School.npsn == npsn))

    def list_schools(
        self,
        *,
        search: str = "",
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[School], int]:
        statement = select(School)
        if status:
            statement = statement.where(School.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            statement = statement.where(func.lower(School.name).like(pattern) | School.npsn.like(pattern))
        total = self.session.scalar(select(func.count()).select_from(statement.subquery())) or 0
        rows = self.session.scalars(_paginate(statement.order_by(School.name.asc()), page, limit)).all()
        return list(rows), total

    def count_schools(self) -> int:
        return self.session.scalar(select(func.count(School.id))) or 0

    # users

    def create_user(self, **values: Any) -> User:
        user = User(**values)
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_user(self, user_id: str) -> User | None:
        return self.session.get(User, user_id)

    def get_user_by_email(self, email: str) -> User | None:
        return self.session.scalar(select(User).where(func.lower(User.email) == email.strip().lower()))

    def update_user(self, user: User, values: dict[str, Any]) -> User:
        for key, value in values.items():
            setattr(user, key, value)
        self.session.commit()
        self.session.refresh(user)
        return user

    def list_users(
        self,
        *,
        role: str | None = None,
        school_id: str | None = None,
        gtk_type: str | None = None,
        is_active: bool | None = None,
        search: str = "",
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[User], int]:
        statement = select(User)
        if role:
            statement = statement.where(User.role == role)
        if gtk_type:
            statement = statement.where(User.gtk_type == gtk_type)
        if is_active is not None:
            statement = statement.where(User.is_active.is_(is_active))
        if school_id:
            statement = statement.where(User.school_id == school_id)
        if search:
            pattern = f"%{search.lower()}%"
            statement = statement.where(func.lower(User.full_name).like(pattern) | func.lower(User.email).like(pattern))
        total = self.session.scalar(select(func.count()).select_from(statement.subquery())) or 0
        rows = self.session.scalars(_paginate(statement.order_by(User.full_name.asc()), page, limit)).all()
        return list(rows), total

    def count_users_by_role(self) -> dict[str, int]:
        rows = self.session.execute(select(User.role, func.count(User.id)).group_by(User.role)).all()
        return {role: count for role, count in rows}

    def count_gtk_by_type(self, school_id: str | None = None) -> dict[str, int]:
        statement = select(User.gtk_type, func.count(User.id)).where(User.role == "gtk")
        if school_id:
            statement = statement.where(User.school_id == school_id)
        rows = self.session.execute(statement.group_by(User.gtk_type)).all()
        return {gtk_type or "unknown": count for gtk_type, count in rows}

    # refresh tokens

    def add_refresh_token(self, *, user_id: str, raw_token: str, expires_at: datetime) -> RefreshToken:
        token = RefreshToken(user_id=user_id, token_hash=hash_token(raw_token), expires_at=expires_at)
        self.session.add(token)
        self.session.commit()
        return token

    def get_refresh_token(self, raw_token: str) -> RefreshToken | None:
        return self.session.scalar(select(RefreshToken).where(RefreshToken.token_hash == hash_token(raw_token)))

    def delete_refresh_token(self, token_id: str) -> None:
        self.session.execute(delete(RefreshToken).where(RefreshToken.id == token_id))
        self.session.commit()

    def delete_refresh_tokens_for_user(self, user_id: str) -> int:
        result = self.session.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
        self.session.commit()
        return result.rowcount or 0

    # uploads

    def create_upload(self, **values: Any) -> Upload:
        upload = Upload(**values)
        self.session.add(upload)
        self.session.commit()
        self.session.refresh(upload)
        return upload

    def get_upload(self, upload_id: str) -> Upload | None:
        return self.session.get(Upload, upload_id)

    def get_upload_by_key(self, object_key: str) -> Upload | None:
        return self.session.scalar(select(Upload).where(Upload.object_key == object_key))

    def update_upload(self, upload: Upload, **values: Any) -> Upload:
        for key, value in values.items():
            setattr(upload, key, value)
        self.session.commit()
        self.session.refresh(upload)
        return upload

    def set_upload_status(self, upload_id: str, *, expected: str, status: str) -> bool:
        """Conditional status change; false when another request moved the row first."""
        result = self.session.execute(
            update(Upload).where(Upload.id == upload_id, Upload.status == expected).values(status=status)
        )
        self.session.commit()
        return bool(result.rowcount)

    def list_expired_pending_uploads(self, now: datetime) -> list[Upload]:
        statement = select(Upload).where(Upload.status == "pending", Upload.expires_at < now)
        return list(self.session.scalars(statement).all())

    def delete_upload(self, upload: Upload) -> None:
        self.session.delete(upload)
        self.session.commit()

    # talents

    def create_talent(
        self,
        *,
        user_id: str,
        talent_type: str,
        detail_json: dict[str, Any],
        attachment_upload_id: str | None = None,
    ) -> Talent:
        talent = Talent(
            user_id=user_id,
            talent_type=talent_type,
            status="pending",
            detail_json=detail_json,
            attachment_upload_id=attachment_upload_id,
        )
        self.session.add(talent)
        self.session.commit()
        self.session.refresh(talent)
        return talent

    def get_talent(self, talent_id: str, *, fresh: bool = False) -> Talent | None:
        return self.session.get(Talent, talent_id, populate_existing=fresh)

    def _scoped_talents(self, scope: TalentScope) -> Select:
        statement = select(Talent).join(User, Talent.user_id == User.id)
        if scope.empty:
            return statement.where(false())
        if scope.user_id is not None:
            statement = statement.where(Talent.user_id == scope.user_id)
        if scope.school_id is not None:
            statement = statement.where(User.school_id == scope.school_id)
        return statement

    def list_talents(
        self,
        scope: TalentScope,
        *,
        status: str | None = None,
        talent_type: str | None = None,
        school_id: str | None = None,
        user_id: str | None = None,
        page: int = 1,
        limit: int = 20,
        oldest_first: bool = False,
    ) -> tuple[list[Talent], int]:
        statement = self._scoped_talents(scope)
        if status:
            statement = statement.where(Talent.status == status)
        if talent_type:
            statement = statement.where(Talent.talent_type == talent_type)
        if school_id:
            statement = statement.where(User.school_id == school_id)
        if user_id:
            statement = statement.where(Talent.user_id == user_id)

        total = self.session.scalar(select(func.count()).select_from(statement.subquery())) or 0
        order = Talent.created_at.asc() if oldest_first else Talent.created_at.desc()
        rows = self.session.scalars(_paginate(statement.order_by(order), page, limit)).unique().all()
        return list(rows), total

    def update_talent_detail(
        self,
        talent_id: str,
        *,
        detail_json: dict[str, Any],
        attachment_upload_id: str | None,
    ) -> bool:
        """Rewrite the payload only if the talent is still pending."""
        result = self.session.execute(
            update(Talent)
            .where(Talent.id == talent_id, Talent.status == "pending")
            .values(detail_json=detail_json, attachment_upload_id=attachment_upload_id, updated_at=utcnow())
        )
        self.session.commit()
        return bool(result.rowcount)

    def apply_decision(self, talent_id: str, decision: Decision) -> bool:
        """Conditional write: only a row still pending accepts the decision."""
        result = self.session.execute(
            update(Talent)
            .where(Talent.id == talent_id, Talent.status == "pending")
            .values(
                status=decision.status.value,
                verified_by=decision.reviewer_id,
                verified_at=decision.decided_at,
                rejection_reason=decision.reason,
                updated_at=utcnow(),
            )
        )
        self.session.commit()
        return bool(result.rowcount)

    def delete_pending_talent(self, talent_id: str) -> bool:
        result = self.session.execute(delete(Talent).where(Talent.id == talent_id, Talent.status == "pending"))
        self.session.commit()
        return bool(result.rowcount)

    def count_talents_by_status(self, scope: TalentScope) -> dict[str, int]:
        base = self._scoped_talents(scope).subquery()
        rows = self.session.execute(select(base.c.status, func.count()).group_by(base.c.status)).all()
        return {status: count for status, count in rows}

    def count_talents_by_type(self, scope: TalentScope) -> dict[str, int]:
        base = self._scoped_talents(scope).subquery()
        rows = self.session.execute(select(base.c.talent_type, func.count()).group_by(base.c.talent_type)).all()
        return {talent_type: count for talent_type, count in rows}

    # talent history

    def append_talent_event(
        self,
        *,
        talent_id: str,
        actor_id: str | None,
        action: str,
        payload_json: dict[str, Any] | None = None,
    ) -> TalentEvent:
        event = TalentEvent(
            talent_id=talent_id,
            actor_id=actor_id,
            action=action,
            payload_json=payload_json or {},
        )
        self.session.add(event)
        self.session.commit()
        self.session.refresh(event)
        return event

    def list_talent_events(self, talent_id: str) -> list[TalentEvent]:
        statement = (
            select(TalentEvent)
            .where(TalentEvent.talent_id == talent_id)
            .order_by(TalentEvent.created_at.asc(), TalentEvent.id.asc())
        )
        return list(self.session.scalars(statement).unique().all())

    # notifications

    def create_notification(self, *, user_id: str, talent_id: str | None, type: str, message: str) -> Notification:
        notification = Notification(user_id=user_id, talent_id=talent_id, type=type, message=message)
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)
        return notification

    def list_notifications(self, user_id: str, *, page: int = 1, limit: int = 20) -> tuple[list[Notification], int]:
        statement = select(Notification).where(Notification.user_id == user_id)
        total = self.session.scalar(select(func.count()).select_from(statement.subquery())) or 0
        rows = self.session.scalars(_paginate(statement.order_by(Notification.created_at.desc()), page, limit)).all()
        return list(rows), total

    def count_unread_notifications(self, user_id: str) -> int:
        statement = select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.is_read.is_(False)
        )
        return self.session.scalar(statement) or 0

    def mark_notification_read(self, user_id: str, notification_id: str) -> bool:
        result = self.session.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .values(is_read=True)
        )
        self.session.commit()
        return bool(result.rowcount)

    def mark_all_notifications_read(self, user_id: str) -> int:
        result = self.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        self.session.commit()
        return result.rowcount or 0
