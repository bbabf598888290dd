"""Approval lifecycle of a talent submission.

``pending`` is the only state that accepts a transition; ``approved`` and ``rejected`` are
terminal. The functions here are pure: they take the current status and return the decision
to store, or raise without touching anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from sipodi.errors import InvalidStateError, ValidationError
from sipodi.types import TalentStatus

TERMINAL_STATUSES = frozenset({TalentStatus.APPROVED, TalentStatus.REJECTED})


@dataclass(slots=True, frozen=True)
class Decision:
    status: TalentStatus
    reviewer_id: str
    decided_at: datetime
    reason: str | None = None


def is_terminal(status: TalentStatus | str) -> bool:
    return TalentStatus(status) in TERMINAL_STATUSES


def ensure_pending(status: TalentStatus | str, *, action: str) -> None:
    if is_terminal(status):
        raise InvalidStateError(f"cannot {action}: talent already {TalentStatus(status).value}")


def ensure_mutable(status: TalentStatus | str) -> None:
    """Edit and delete are only open to pending submissions."""
    ensure_pending(status, action="modify")


def normalize_reason(reason: str | None) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError.for_field("rejection_reason", "rejection reason is required")
    return cleaned


def approve(
    status: TalentStatus | str,
    *,
    reviewer_id: str,
    at: datetime | None = None,
) -> Decision:
    ensure_pending(status, action="approve")
    return Decision(
        status=TalentStatus.APPROVED,
        reviewer_id=reviewer_id,
        decided_at=at or datetime.now(UTC),
    )


def reject(
    status: TalentStatus | str,
    *,
    reviewer_id: str,
    reason: str | None,
    at: datetime | None = None,
) -> Decision:
    cleaned = normalize_reason(reason)
    ensure_pending(status, action="reject")
    return Decision(
        status=TalentStatus.REJECTED,
        reviewer_id=reviewer_id,
        decided_at=at or datetime.now(UTC),
        reason=cleaned,
    )
