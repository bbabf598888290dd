from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from sipodi.core.access import Actor, TalentScope, talent_scope
from sipodi.db.repositories import Repository
from sipodi.types import GTKType, TalentStatus, TalentType, UserRole


def _with_zeros(counts: dict[str, int], keys: list[str]) -> dict[str, int]:
    return {key: counts.get(key, 0) for key in keys}


def _status_counts(repo: Repository, scope: TalentScope) -> dict[str, int]:
    return _with_zeros(repo.count_talents_by_status(scope), [status.value for status in TalentStatus])


def build_summary(session: Session, actor: Actor) -> dict[str, Any]:
    """Aggregate counts for the dashboard landing page, shaped by the caller's role."""
    repo = Repository(session)
    scope = talent_scope(actor)

    if actor.role == UserRole.SUPER_ADMIN:
        users = repo.count_users_by_role()
        by_status = _status_counts(repo, scope)
        return {
            "role": actor.role.value,
            "total_schools": repo.count_schools(),
            "total_users": sum(users.values()),
            "total_gtk": users.get(UserRole.GTK.value, 0),
            "total_admin_sekolah": users.get(UserRole.ADMIN_SEKOLAH.value, 0),
            "gtk_by_type": _with_zeros(repo.count_gtk_by_type(), [kind.value for kind in GTKType]),
            "total_talents": sum(by_status.values()),
            "talents_by_status": by_status,
            "talents_by_type": _with_zeros(repo.count_talents_by_type(scope), [kind.value for kind in TalentType]),
        }

    if actor.role == UserRole.ADMIN_SEKOLAH:
        school = repo.get_school(actor.school_id) if actor.school_id else None
        counts = repo.count_gtk_by_type(actor.school_id) if actor.school_id else {}
        gtk_by_type = _with_zeros(counts, [kind.value for kind in GTKType])
        by_status = _status_counts(repo, scope)
        return {
            "role": actor.role.value,
            "school": {"id": school.id, "name": school.name} if school else None,
            "total_gtk": sum(gtk_by_type.values()),
            "gtk_by_type": gtk_by_type,
            "total_talents": sum(by_status.values()),
            "talents_by_status": by_status,
            "pending_verifications": by_status[TalentStatus.PENDING.value],
        }

    by_status = _status_counts(repo, scope)
    return {
        "role": actor.role.value,
        "my_talents": {"total": sum(by_status.values()), **by_status},
        "unread_notifications": repo.count_unread_notifications(actor.id),
    }
