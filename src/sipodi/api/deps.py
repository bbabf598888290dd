from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from sipodi.config import get_settings
from sipodi.core.access import Actor
from sipodi.core.auth import AuthService
from sipodi.core.storage import ObjectStorage, get_storage
from sipodi.db.session import get_db_session
from sipodi.errors import AuthError

bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    yield from get_db_session()


def get_object_storage() -> ObjectStorage:
    return get_storage(get_settings())


def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Actor:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthError("not authenticated")
    return AuthService(db).authenticate(credentials.credentials)
