from __future__ import annotations

from dataclasses import dataclass

from sipodi.types import UserRole

REVIEWER_ROLES = frozenset({UserRole.SUPER_ADMIN, UserRole.ADMIN_SEKOLAH})


@dataclass(slots=True, frozen=True)
class Actor:
    id: str
    role: UserRole
    school_id: str | None = None


@dataclass(slots=True, frozen=True)
class TalentScope:
    """Row filter a list query must apply for a given actor."""

    user_id: str | None = None
    school_id: str | None = None
    empty: bool = False


def talent_scope(actor: Actor) -> TalentScope:
    match actor.role:
        case UserRole.SUPER_ADMIN:
            return TalentScope()
        case UserRole.ADMIN_SEKOLAH:
            if actor.school_id is None:
                return TalentScope(empty=True)
            return TalentScope(school_id=actor.school_id)
        case UserRole.GTK:
            return TalentScope(user_id=actor.id)
    return TalentScope(empty=True)


def can_view_talent(actor: Actor, *, submitter_id: str, submitter_school_id: str | None) -> bool:
    scope = talent_scope(actor)
    if scope.empty:
        return False
    if scope.user_id is not None and scope.user_id != submitter_id:
        return False
    if scope.school_id is not None and scope.school_id != submitter_school_id:
        return False
    return True


def can_create_talent(actor: Actor) -> bool:
    return actor.role == UserRole.GTK


def can_modify_talent(actor: Actor, *, submitter_id: str) -> bool:
    return actor.id == submitter_id


def can_review(actor: Actor) -> bool:
    return actor.role in REVIEWER_ROLES


def can_review_talent(actor: Actor, *, submitter_id: str, submitter_school_id: str | None) -> bool:
    if not can_review(actor) or actor.id == submitter_id:
        return False
    return can_view_talent(actor, submitter_id=submitter_id, submitter_school_id=submitter_school_id)


def can_manage_schools(actor: Actor) -> bool:
    return actor.role == UserRole.SUPER_ADMIN


def can_create_user(actor: Actor, *, role: UserRole, school_id: str | None) -> bool:
    if actor.role == UserRole.SUPER_ADMIN:
        return True
    if actor.role == UserRole.ADMIN_SEKOLAH:
        return role == UserRole.GTK and school_id is not None and school_id == actor.school_id
    return False


def can_view_user(actor: Actor, *, user_id: str, user_school_id: str | None) -> bool:
    if actor.role == UserRole.SUPER_ADMIN or actor.id == user_id:
        return True
    if actor.role == UserRole.ADMIN_SEKOLAH:
        return actor.school_id is not None and actor.school_id == user_school_id
    return False


def can_manage_user(actor: Actor, *, user_id: str, user_role: UserRole, user_school_id: str | None) -> bool:
    """Activation changes: never on yourself; school admins only touch GTK of their school."""
    if actor.id == user_id:
        return False
    if actor.role == UserRole.SUPER_ADMIN:
        return True
    if actor.role == UserRole.ADMIN_SEKOLAH:
        return user_role == UserRole.GTK and actor.school_id is not None and actor.school_id == user_school_id
    return False


def can_export(actor: Actor) -> bool:
    return actor.role in REVIEWER_ROLES
