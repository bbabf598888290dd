from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from sipodi.config import Settings, get_settings
from sipodi.core.access import Actor, can_create_user, can_manage_schools, can_manage_user, can_view_user
from sipodi.core.auth import hash_password, verify_password
from sipodi.core.storage import ObjectStorage
from sipodi.core.talents import check_paging, page_meta
from sipodi.core.uploads import UploadService
from sipodi.db.base import as_utc
from sipodi.db.models import School, User
from sipodi.db.repositories import Repository
from sipodi.errors import AuthError, NotFoundError, PermissionDeniedError, ValidationError
from sipodi.types import (
    GTKType,
    NotificationRecord,
    PageMeta,
    SchoolRef,
    SchoolStatus,
    UploadPurpose,
    UserProfile,
    UserRole,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


class AccountService:
    """Schools, user accounts, profiles and notifications."""

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

    # schools

    def create_school(self, actor: Actor, *, name: str, npsn: str, status: str = "negeri", address: str = "") -> SchoolRef:
        if not can_manage_schools(actor):
            raise PermissionDeniedError("only super admins can manage schools")
        name, npsn = name.strip(), npsn.strip()
        if not name:
            raise ValidationError.for_field("name", "name is required")
        if not npsn:
            raise ValidationError.for_field("npsn", "npsn is required")
        try:
            status = SchoolStatus(status).value
        except ValueError as exc:
            raise ValidationError.for_field("status", f"unknown school status '{status}'") from exc
        if self.repo.get_school_by_npsn(npsn) is not None:
            raise ValidationError.for_field("npsn", "npsn already registered")

        school = self.repo.create_school(name=name, npsn=npsn, status=status, address=address.strip())
        logger.info("School created id=%s npsn=%s", school.id, npsn)
        return self.serialize_school(school)

    def get_school(self, actor: Actor, school_id: str) -> SchoolRef:
        school = self.repo.get_school(school_id)
        if school is None:
            raise NotFoundError("school not found")
        if not can_manage_schools(actor) and actor.school_id != school.id:
            raise PermissionDeniedError("school is outside your scope")
        return self.serialize_school(school)

    def list_schools(self, actor: Actor, *, search: str = "", page: int = 1, limit: int = 20) -> tuple[list[SchoolRef], PageMeta]:
        if not can_manage_schools(actor):
            raise PermissionDeniedError("only super admins can list schools")
        check_paging(page, limit)
        rows, total = self.repo.list_schools(search=search, page=page, limit=limit)
        return [self.serialize_school(row) for row in rows], page_meta(page, limit, total)

    # users

    def create_user(
        self,
        actor: Actor | None,
        *,
        email: str,
        password: str,
        role: str,
        full_name: str,
        school_id: str | None = None,
        nip: str | None = None,
        nuptk: str | None = None,
        gtk_type: str | None = None,
        position: str | None = None,
    ) -> UserProfile:
        """Create an account. ``actor=None`` is the operator CLI and bypasses role checks."""
        try:
            role = UserRole(role)
        except ValueError as exc:
            raise ValidationError.for_field("role", f"unknown role '{role}'") from exc
        if actor is not None and not can_create_user(actor, role=role, school_id=school_id):
            raise PermissionDeniedError("you cannot create this account")

        email = email.strip().lower()
        if "@" not in email:
            raise ValidationError.for_field("email", "invalid email address")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError.for_field("password", f"password must be at least {MIN_PASSWORD_LENGTH} characters")
        if not full_name.strip():
            raise ValidationError.for_field("full_name", "full name is required")
        if self.repo.get_user_by_email(email) is not None:
            raise ValidationError.for_field("email", "email already taken")

        if role == UserRole.SUPER_ADMIN:
            school_id = None
        elif not school_id:
            raise ValidationError.for_field("school_id", f"{role.value} accounts need a school")
        elif self.repo.get_school(school_id) is None:
            raise ValidationError.for_field("school_id", "school not found")

        if gtk_type:
            try:
                gtk_type = GTKType(gtk_type).value
            except ValueError as exc:
                raise ValidationError.for_field("gtk_type", f"unknown GTK type '{gtk_type}'") from exc
        elif role == UserRole.GTK:
            gtk_type = GTKType.GURU.value

        user = self.repo.create_user(
            email=email,
            password_hash=hash_password(password),
            role=role.value,
            full_name=full_name.strip(),
            school_id=school_id,
            nip=nip or None,
            nuptk=nuptk or None,
            gtk_type=gtk_type if role == UserRole.GTK else None,
            position=position or None,
        )
        logger.info("User created id=%s role=%s school_id=%s", user.id, role.value, school_id)
        return self.profile(user)

    def get_user(self, actor: Actor, user_id: str) -> UserProfile:
        user = self.repo.get_user(user_id)
        if user is None or not can_view_user(actor, user_id=user.id, user_school_id=user.school_id):
            raise NotFoundError("user not found")
        return self.profile(user)

    def list_users(
        self,
        actor: Actor,
        *,
        role: str | None = None,
        school_id: str | None = None,
        search: str = "",
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[UserProfile], PageMeta]:
        if actor.role == UserRole.GTK:
            raise PermissionDeniedError("only administrators can list users")
        if actor.role == UserRole.ADMIN_SEKOLAH:
            school_id = actor.school_id
        check_paging(page, limit)
        rows, total = self.repo.list_users(role=role, school_id=school_id, search=search, page=page, limit=limit)
        return [self.profile(row) for row in rows], page_meta(page, limit, total)

    def set_active(self, actor: Actor, user_id: str, active: bool) -> UserProfile:
        """Enable or disable an account. Disabling also ends every session it holds."""
        user = self.repo.get_user(user_id)
        if user is None or not can_view_user(actor, user_id=user.id, user_school_id=user.school_id):
            raise NotFoundError("user not found")
        if not can_manage_user(actor, user_id=user.id, user_role=UserRole(user.role), user_school_id=user.school_id):
            raise PermissionDeniedError("you cannot change this account")

        if user.is_active != active:
            user = self.repo.update_user(user, {"is_active": active})
            if not active:
                self.repo.delete_refresh_tokens_for_user(user.id)
            logger.info("User %s id=%s by=%s", "activated" if active else "deactivated", user.id, actor.id)
        return self.profile(user)

    # current user

    def me(self, actor: Actor) -> UserProfile:
        user = self.repo.get_user(actor.id)
        if user is None:
            raise AuthError("account no longer exists", code="INVALID_TOKEN")
        return self.profile(user)

    def update_profile(self, actor: Actor, values: dict[str, Any]) -> UserProfile:
        user = self.repo.get_user(actor.id)
        if user is None:
            raise AuthError("account no longer exists", code="INVALID_TOKEN")

        changes: dict[str, Any] = {}
        if "full_name" in values:
            full_name = (values["full_name"] or "").strip()
            if not full_name:
                raise ValidationError.for_field("full_name", "full name is required")
            changes["full_name"] = full_name
        if "position" in values:
            changes["position"] = (values["position"] or "").strip() or None
        photo_upload_id = values.get("photo_upload_id")
        if photo_upload_id and photo_upload_id != user.photo_upload_id:
            self.uploads.claim(actor, photo_upload_id, purpose=UploadPurpose.PROFILE_PHOTO, field="photo_upload_id")
            changes["photo_upload_id"] = photo_upload_id

        if changes:
            user = self.repo.update_user(user, changes)
        return self.profile(user)

    def change_password(self, actor: Actor, *, current_password: str, new_password: str) -> None:
        user = self.repo.get_user(actor.id)
        if user is None:
            raise AuthError("account no longer exists", code="INVALID_TOKEN")
        if not verify_password(current_password, user.password_hash):
            raise ValidationError.for_field("current_password", "current password is incorrect")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError.for_field(
                "new_password", f"password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        self.repo.update_user(user, {"password_hash": hash_password(new_password)})
        self.repo.delete_refresh_tokens_for_user(user.id)
        logger.info("Password changed user_id=%s", user.id)

    # notifications

    def notifications(self, actor: Actor, *, page: int = 1, limit: int = 20) -> tuple[list[NotificationRecord], PageMeta]:
        check_paging(page, limit)
        rows, total = self.repo.list_notifications(actor.id, page=page, limit=limit)
        records = [
            NotificationRecord(
                id=row.id,
                type=row.type,
                message=row.message,
                talent_id=row.talent_id,
                is_read=row.is_read,
                created_at=as_utc(row.created_at),
            )
            for row in rows
        ]
        return records, page_meta(page, limit, total)

    def unread_count(self, actor: Actor) -> int:
        return self.repo.count_unread_notifications(actor.id)

    def mark_read(self, actor: Actor, notification_id: str) -> None:
        if not self.repo.mark_notification_read(actor.id, notification_id):
            raise NotFoundError("notification not found")

    def mark_all_read(self, actor: Actor) -> int:
        return self.repo.mark_all_notifications_read(actor.id)

    # serialization

    def serialize_school(self, school: School) -> SchoolRef:
        return SchoolRef(
            id=school.id,
            name=school.name,
            npsn=school.npsn,
            status=school.status,
            address=school.address,
        )

    def profile(self, user: User) -> UserProfile:
        photo_url = None
        if user.photo_upload_id:
            upload = self.repo.get_upload(user.photo_upload_id)
            if upload is not None:
                photo_url = self.uploads.file_url(upload)
        return UserProfile(
            id=user.id,
            email=user.email,
            role=user.role,
            full_name=user.full_name,
            nip=user.nip,
            nuptk=user.nuptk,
            gtk_type=user.gtk_type,
            position=user.position,
            photo_url=photo_url,
            is_active=user.is_active,
            school=self.serialize_school(user.school) if user.school else None,
            created_at=as_utc(user.created_at),
        )
