"""Object storage backends for presigned uploads.

``LocalStorage`` mimics an S3 presigned PUT: the URL carries a signed, time-limited token and
the service's own ``PUT /storage/{token}`` route accepts the bytes. ``S3Storage`` delegates to
boto3 against AWS or any S3-compatible endpoint (MinIO).
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Protocol

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError
from jose import ExpiredSignatureError, JWTError, jwt

from sipodi.config import Settings, get_settings
from sipodi.db.base import utcnow
from sipodi.errors import AuthError, InvalidStateError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

_UPLOAD_TOKEN_TYPE = "upload"


class ObjectStorage(Protocol):
    def presign_put(self, key: str, *, content_type: str, max_size: int, expires_in: int) -> str: ...

    def object_size(self, key: str) -> int | None: ...

    def delete(self, key: str) -> None: ...

    def public_url(self, key: str) -> str: ...


class LocalStorage:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.root = Path(self.settings.upload_dir)

    def _path(self, key: str) -> Path:
        root = self.root.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise PermissionDeniedError("object key escapes storage root")
        return path

    def presign_put(self, key: str, *, content_type: str, max_size: int, expires_in: int) -> str:
        claims = {
            "typ": _UPLOAD_TOKEN_TYPE,
            "key": key,
            "ct": content_type,
            "max": max_size,
            "exp": utcnow() + timedelta(seconds=expires_in),
        }
        token = jwt.encode(claims, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)
        base = self.settings.public_base_url.rstrip("/")
        return f"{base}{self.settings.api_prefix}/storage/{token}"

    def verify_token(self, token: str) -> dict:
        try:
            claims = jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except ExpiredSignatureError as exc:
            raise AuthError("upload URL expired", code="TOKEN_EXPIRED") from exc
        except JWTError as exc:
            raise AuthError("invalid upload URL", code="INVALID_TOKEN") from exc
        if claims.get("typ") != _UPLOAD_TOKEN_TYPE or not claims.get("key"):
            raise AuthError("invalid upload URL", code="INVALID_TOKEN")
        return claims

    def check_request(self, claims: dict, *, content_type: str | None, content_length: int | None = None) -> None:
        if (content_type or "").split(";")[0].strip().lower() != claims["ct"]:
            raise PermissionDeniedError("content type does not match the presigned request")
        if content_length is not None and content_length > int(claims["max"]):
            raise ValidationError.for_field("size", f"object exceeds {claims['max']} bytes")

    def write(self, token: str, data: bytes, *, content_type: str | None) -> str:
        """Store ``data`` under the key signed into ``token`` and return that key.

        A key is written at most once; a second PUT to the same URL is refused.
        """
        claims = self.verify_token(token)
        self.check_request(claims, content_type=content_type, content_length=len(data))

        path = self._path(claims["key"])
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with path.open("xb") as handle:
                handle.write(data)
        except FileExistsError as exc:
            raise InvalidStateError("object was already uploaded") from exc
        logger.info("Stored object key=%s bytes=%s", claims["key"], len(data))
        return claims["key"]

    def read_path(self, key: str) -> Path | None:
        path = self._path(key)
        return path if path.is_file() else None

    def object_size(self, key: str) -> int | None:
        path = self.read_path(key)
        return path.stat().st_size if path else None

    def delete(self, key: str) -> None:
        path = self._path(key)
        path.unlink(missing_ok=True)

    def public_url(self, key: str) -> str:
        base = self.settings.public_base_url.rstrip("/")
        return f"{base}{self.settings.api_prefix}/files/{key}"


class S3Storage:
    def __init__(self, settings: Settings | None = None, client=None):
        self.settings = settings or get_settings()
        self.bucket = self.settings.s3_bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=self.settings.s3_endpoint_url or None,
            aws_access_key_id=self.settings.s3_access_key or None,
            aws_secret_access_key=self.settings.s3_secret_key or None,
            region_name=self.settings.s3_region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )

    def presign_put(self, key: str, *, content_type: str, max_size: int, expires_in: int) -> str:
        # S3 cannot cap a presigned PUT body; confirm checks the stored size instead
        return self.client.generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=expires_in,
        )

    def object_size(self, key: str) -> int | None:
        try:
            head = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"404", "NoSuchKey", "NotFound"}:
                return None
            raise
        return int(head["ContentLength"])

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)

    def public_url(self, key: str) -> str:
        base = (self.settings.s3_public_url or self.settings.s3_endpoint_url).rstrip("/")
        if not base:
            base = f"https://{self.bucket}.s3.{self.settings.s3_region}.amazonaws.com"
            return f"{base}/{key}"
        return f"{base}/{self.bucket}/{key}"


def get_storage(settings: Settings | None = None) -> ObjectStorage:
    settings = settings or get_settings()
    if settings.storage_backend == "s3":
        return S3Storage(settings)
    return LocalStorage(settings)
