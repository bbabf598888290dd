from __future__ import annotations

import logging
from pathlib import Path

from sipodi.config import Settings, get_settings
from sipodi.db.base import Base
from sipodi.db.session import SessionLocal, engine
from sipodi.db import models  # noqa: F401
from sipodi.db.seed import seed_super_admin

logger = logging.getLogger(__name__)


def ensure_data_directories(settings: Settings | None = None) -> list[Path]:
    settings = settings or get_settings()
    paths: list[Path] = [settings.data_dir]
    if settings.storage_backend == "local":
        paths.append(settings.upload_dir)
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)
    return paths


def init_database(*, reset: bool = False) -> dict[str, int]:
    """Create the schema and the bootstrap super admin. ``reset`` drops every table first."""
    settings = get_settings()
    ensure_data_directories(settings)
    if reset:
        logger.warning("Dropping all tables database_url=%s", engine.url.render_as_string(hide_password=True))
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as session:
        inserted = seed_super_admin(session, settings)
    return {"seeded_admins": inserted}
