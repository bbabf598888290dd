"""Three-step presigned upload: presign, direct transfer, confirm.

Each step is one-shot and only reachable from the state the previous step left behind, so a
confirm can never be sent for bytes that did not arrive. A failed flow stays failed; callers
retry by starting a new flow from presign.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from enum import StrEnum
from typing import TYPE_CHECKING

import httpx

from sipodi.errors import InvalidStateError, SipodiError, UploadTransferError
from sipodi.types import ConfirmedUpload, PresignedUpload, UploadPurpose

if TYPE_CHECKING:
    from sipodi.client.api import UploadsAPI

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

DEFAULT_CHUNK_SIZE = 64 * 1024


class UploadState(StrEnum):
    IDLE = "idle"
    PRESIGNED = "presigned"
    TRANSFERRING = "transferring"
    TRANSFERRED = "transferred"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class UploadFlow:
    def __init__(
        self,
        uploads: UploadsAPI,
        *,
        data: bytes,
        filename: str,
        content_type: str,
        purpose: UploadPurpose | str,
        on_progress: ProgressCallback | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.uploads = uploads
        self.data = data
        self.filename = filename
        self.content_type = content_type
        self.purpose = UploadPurpose(purpose)
        self.on_progress = on_progress
        self.chunk_size = chunk_size

        self.state = UploadState.IDLE
        self.presigned: PresignedUpload | None = None
        self.result: ConfirmedUpload | None = None
        self.error: Exception | None = None
        self.bytes_sent = 0

    @property
    def upload_id(self) -> str | None:
        return self.presigned.upload_id if self.presigned else None

    def _expect(self, expected: UploadState, step: str) -> None:
        if self.state != expected:
            raise InvalidStateError(f"cannot {step} while upload is {self.state.value}")

    def _fail(self, exc: Exception) -> None:
        if self.state != UploadState.CANCELLED:
            self.state = UploadState.FAILED
        self.error = exc

    def presign(self) -> PresignedUpload:
        self._expect(UploadState.IDLE, "presign")
        try:
            self.presigned = self.uploads.presign(
                filename=self.filename,
                size=len(self.data),
                content_type=self.content_type,
                purpose=self.purpose,
            )
        except SipodiError as exc:
            self._fail(exc)
            raise
        self.state = UploadState.PRESIGNED
        return self.presigned

    def _chunks(self) -> Iterator[bytes]:
        total = len(self.data)
        for offset in range(0, total, self.chunk_size):
            if self.state == UploadState.CANCELLED:
                raise UploadTransferError("transfer cancelled")
            chunk = self.data[offset : offset + self.chunk_size]
            yield chunk
            self.bytes_sent += len(chunk)
            if self.on_progress is not None:
                self.on_progress(self.bytes_sent, total)

    def transfer(self) -> None:
        self._expect(UploadState.PRESIGNED, "transfer")
        assert self.presigned is not None
        self.state = UploadState.TRANSFERRING
        self.bytes_sent = 0

        # presigned URLs carry their own authorization; never forward the bearer token
        headers = {"Content-Type": self.content_type, "Content-Length": str(len(self.data))}
        try:
            response = self.uploads.transfer_client.request(
                self.presigned.method,
                self.presigned.presigned_url,
                content=self._chunks(),
                headers=headers,
            )
        except UploadTransferError as exc:
            self._fail(exc)
            raise
        except httpx.TransportError as exc:
            error = UploadTransferError(f"transfer failed: {exc}")
            self._fail(error)
            logger.warning("Upload transfer failed upload_id=%s: %s", self.upload_id, exc)
            raise error from exc

        if self.state == UploadState.CANCELLED:
            raise UploadTransferError("transfer cancelled")
        if not response.is_success:
            error = UploadTransferError(
                f"storage rejected the upload with HTTP {response.status_code}",
                status=response.status_code,
            )
            self._fail(error)
            logger.warning("Upload transfer rejected upload_id=%s status=%s", self.upload_id, response.status_code)
            raise error
        self.state = UploadState.TRANSFERRED

    def confirm(self) -> ConfirmedUpload:
        self._expect(UploadState.TRANSFERRED, "confirm")
        assert self.presigned is not None
        try:
            self.result = self.uploads.confirm(self.presigned.upload_id)
        except SipodiError as exc:
            self._fail(exc)
            raise
        self.state = UploadState.CONFIRMED
        return self.result

    def run(self) -> ConfirmedUpload:
        self.presign()
        self.transfer()
        return self.confirm()

    def cancel(self) -> None:
        """Abandon the flow. Server-side cleanup is attempted but never raises."""
        if self.state in {UploadState.CONFIRMED, UploadState.CANCELLED}:
            return
        self.state = UploadState.CANCELLED
        if self.presigned is None:
            return
        try:
            self.uploads.cancel(self.presigned.upload_id)
        except SipodiError as exc:
            logger.warning("Upload cancel failed upload_id=%s: %s", self.presigned.upload_id, exc)
