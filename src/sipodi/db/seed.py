from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from sipodi.config import Settings, get_settings
from sipodi.core.auth import hash_password
from sipodi.db.repositories import Repository
from sipodi.types import UserRole

logger = logging.getLogger(__name__)


def seed_super_admin(session: Session, settings: Settings | None = None) -> int:
    """Create the bootstrap super admin once. Returns the number of rows inserted."""
    settings = settings or get_settings()
    repo = Repository(session)
    if repo.get_user_by_email(settings.seed_admin_email) is not None:
        return 0

    repo.create_user(
        email=settings.seed_admin_email.strip().lower(),
        password_hash=hash_password(settings.seed_admin_password),
        role=UserRole.SUPER_ADMIN.value,
        full_name="Super Admin",
    )
    logger.info("Seeded super admin email=%s", settings.seed_admin_email)
    return 1
