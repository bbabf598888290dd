from __future__ import annotations

import logging

from sipodi.config import get_settings


_LOG_CONFIGURED = False

# presigned URLs carry their signature in the query string, which these libraries log at INFO/DEBUG
_QUIET_LOGGERS = ("httpx", "httpcore", "botocore", "boto3", "urllib3")


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once per process. ``level`` overrides ``LOG_LEVEL``."""
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if settings.app_env == "production":
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    _LOG_CONFIGURED = True
