from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

from sipodi.config import Settings, get_settings
from sipodi.core.access import Actor
from sipodi.db.base import as_utc, utcnow
from sipodi.db.models import User
from sipodi.db.repositories import Repository
from sipodi.errors import AuthError, PermissionDeniedError
from sipodi.types import UserRole

logger = logging.getLogger(__name__)

_ACCESS_TOKEN_TYPE = "access"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


@dataclass(slots=True)
class IssuedTokens:
    access_token: str
    expires_in: int
    refresh_token: str
    user: User


class AuthService:
    def __init__(self, session: Session, *, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.repo = Repository(session)

    def create_access_token(self, user: User) -> str:
        now = utcnow()
        claims = {
            "sub": user.id,
            "typ": _ACCESS_TOKEN_TYPE,
            "role": user.role,
            "school_id": user.school_id,
            "iat": now,
            "exp": now + timedelta(minutes=self.settings.access_token_ttl_min),
        }
        return jwt.encode(claims, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def decode_access_token(self, token: str) -> Actor:
        try:
            claims = jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except ExpiredSignatureError as exc:
            raise AuthError("access token expired", code="TOKEN_EXPIRED") from exc
        except JWTError as exc:
            raise AuthError("invalid access token", code="INVALID_TOKEN") from exc

        if claims.get("typ") != _ACCESS_TOKEN_TYPE or not claims.get("sub"):
            raise AuthError("invalid access token", code="INVALID_TOKEN")
        try:
            role = UserRole(claims.get("role"))
        except ValueError as exc:
            raise AuthError("invalid access token", code="INVALID_TOKEN") from exc
        return Actor(id=claims["sub"], role=role, school_id=claims.get("school_id"))

    def authenticate(self, token: str) -> Actor:
        """Resolve a bearer token to the current state of its account."""
        claims_actor = self.decode_access_token(token)
        user = self.repo.get_user(claims_actor.id)
        if user is None:
            raise AuthError("account no longer exists", code="INVALID_TOKEN")
        if not user.is_active:
            raise PermissionDeniedError("account is disabled", code="ACCOUNT_DISABLED")
        return Actor(id=user.id, role=UserRole(user.role), school_id=user.school_id)

    def _issue(self, user: User) -> IssuedTokens:
        raw = secrets.token_urlsafe(32)
        self.repo.add_refresh_token(
            user_id=user.id,
            raw_token=raw,
            expires_at=utcnow() + timedelta(days=self.settings.refresh_token_ttl_days),
        )
        return IssuedTokens(
            access_token=self.create_access_token(user),
            expires_in=self.settings.access_token_ttl_min * 60,
            refresh_token=raw,
            user=user,
        )

    def login(self, email: str, password: str) -> IssuedTokens:
        user = self.repo.get_user_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Login failed for email=%s", email.strip().lower())
            raise AuthError("invalid email or password", code="INVALID_CREDENTIALS")
        if not user.is_active:
            raise PermissionDeniedError("account is disabled", code="ACCOUNT_DISABLED")

        logger.info("Login user_id=%s role=%s", user.id, user.role)
        return self._issue(user)

    def refresh(self, raw_token: str | None) -> IssuedTokens:
        """Exchange a refresh token for a new access token, rotating the refresh token."""
        if not raw_token:
            raise AuthError("refresh token missing", code="INVALID_TOKEN")

        stored = self.repo.get_refresh_token(raw_token)
        if stored is None:
            logger.warning("Refresh with unknown token")
            raise AuthError("invalid refresh token", code="INVALID_TOKEN")

        self.repo.delete_refresh_token(stored.id)
        if as_utc(stored.expires_at) <= utcnow():
            raise AuthError("refresh token expired", code="TOKEN_EXPIRED")

        user = self.repo.get_user(stored.user_id)
        if user is None or not user.is_active:
            raise AuthError("account is no longer active", code="INVALID_TOKEN")
        return self._issue(user)

    def logout(self, raw_token: str | None) -> None:
        if not raw_token:
            return
        stored = self.repo.get_refresh_token(raw_token)
        if stored is not None:
            self.repo.delete_refresh_token(stored.id)

    def logout_all(self, user_id: str) -> int:
        removed = self.repo.delete_refresh_tokens_for_user(user_id)
        logger.info("Revoked %s refresh tokens user_id=%s", removed, user_id)
        return removed
