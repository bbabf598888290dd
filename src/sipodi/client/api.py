from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import httpx

from sipodi.client.session import AuthSession
from sipodi.client.upload import ProgressCallback, UploadFlow
from sipodi.core.lifecycle import normalize_reason
from sipodi.types import (
    BatchResult,
    ConfirmedUpload,
    NotificationRecord,
    PageMeta,
    PresignedUpload,
    TalentDetail,
    TalentEventRecord,
    TalentRecord,
    TalentType,
    UploadPurpose,
    UserProfile,
    dump_detail,
    parse_detail,
)


def _params(**values: Any) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _page(body: dict[str, Any], model: type) -> tuple[list[Any], PageMeta]:
    return [model.model_validate(item) for item in body["data"]], PageMeta.model_validate(body["meta"])


class TalentsAPI:
    def __init__(self, session: AuthSession):
        self.session = session

    def create(
        self,
        talent_type: TalentType | str,
        detail: TalentDetail | dict[str, Any],
        *,
        attachment_upload_id: str | None = None,
    ) -> TalentRecord:
        # validated locally so a malformed payload never reaches the server
        parsed = parse_detail(talent_type, detail)
        body = self.session.request(
            "POST",
            "/talents",
            json=_params(
                talent_type=TalentType(talent_type).value,
                detail=dump_detail(parsed),
                attachment_upload_id=attachment_upload_id,
            ),
        )
        return TalentRecord.model_validate(body["data"])

    def update(
        self,
        talent_id: str,
        *,
        detail: TalentDetail | dict[str, Any] | None = None,
        attachment_upload_id: str | None = None,
        remove_attachment: bool = False,
    ) -> TalentRecord:
        if detail is not None and not isinstance(detail, dict):
            detail = dump_detail(detail)
        payload = _params(detail=detail, attachment_upload_id=attachment_upload_id)
        if remove_attachment:
            payload["remove_attachment"] = True
        body = self.session.request("PUT", f"/talents/{talent_id}", json=payload)
        return TalentRecord.model_validate(body["data"])

    def delete(self, talent_id: str) -> None:
        self.session.request("DELETE", f"/talents/{talent_id}")

    def get(self, talent_id: str) -> TalentRecord:
        body = self.session.request("GET", f"/talents/{talent_id}")
        return TalentRecord.model_validate(body["data"])

    def list(
        self,
        *,
        status: str | None = None,
        talent_type: str | None = None,
        school_id: str | None = None,
        user_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[TalentRecord], PageMeta]:
        params = _params(
            status=status,
            talent_type=talent_type,
            school_id=school_id,
            user_id=user_id,
            page=page,
            limit=limit,
        )
        return _page(self.session.request("GET", "/talents", params=params), TalentRecord)

    def list_mine(
        self,
        *,
        status: str | None = None,
        talent_type: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[TalentRecord], PageMeta]:
        params = _params(status=status, talent_type=talent_type, page=page, limit=limit)
        return _page(self.session.request("GET", "/me/talents", params=params), TalentRecord)

    def history(self, talent_id: str) -> list[TalentEventRecord]:
        body = self.session.request("GET", f"/talents/{talent_id}/history")
        return [TalentEventRecord.model_validate(item) for item in body["data"]]


class VerificationsAPI:
    def __init__(self, session: AuthSession):
        self.session = session

    def pending(
        self,
        *,
        talent_type: str | None = None,
        school_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[TalentRecord], PageMeta]:
        params = _params(talent_type=talent_type, school_id=school_id, page=page, limit=limit)
        return _page(self.session.request("GET", "/verifications/talents", params=params), TalentRecord)

    def approve(self, talent_id: str) -> TalentRecord:
        body = self.session.request("POST", f"/verifications/talents/{talent_id}/approve")
        return TalentRecord.model_validate(body["data"])

    def reject(self, talent_id: str, reason: str) -> TalentRecord:
        reason = normalize_reason(reason)
        body = self.session.request(
            "POST",
            f"/verifications/talents/{talent_id}/reject",
            json={"rejection_reason": reason},
        )
        return TalentRecord.model_validate(body["data"])

    def batch_approve(self, ids: Iterable[str]) -> BatchResult:
        body = self.session.request("POST", "/verifications/talents/batch/approve", json={"ids": list(ids)})
        return BatchResult.model_validate(body["data"])

    def batch_reject(self, ids: Iterable[str], reason: str) -> BatchResult:
        reason = normalize_reason(reason)
        body = self.session.request(
            "POST",
            "/verifications/talents/batch/reject",
            json={"ids": list(ids), "rejection_reason": reason},
        )
        return BatchResult.model_validate(body["data"])


class UploadsAPI:
    def __init__(self, session: AuthSession):
        self.session = session

    @property
    def transfer_client(self) -> httpx.Client:
        return self.session.http

    def presign(
        self,
        *,
        filename: str,
        size: int,
        content_type: str,
        purpose: UploadPurpose | str,
    ) -> PresignedUpload:
        body = self.session.request(
            "POST",
            "/uploads/presign",
            json={
                "filename": filename,
                "size": size,
                "content_type": content_type,
                "upload_type": UploadPurpose(purpose).value,
            },
        )
        return PresignedUpload.model_validate(body["data"])

    def confirm(self, upload_id: str) -> ConfirmedUpload:
        body = self.session.request("POST", f"/uploads/{upload_id}/confirm")
        return ConfirmedUpload.model_validate(body["data"])

    def cancel(self, upload_id: str) -> None:
        self.session.request("DELETE", f"/uploads/{upload_id}")

    def flow(
        self,
        data: bytes,
        *,
        filename: str,
        content_type: str,
        purpose: UploadPurpose | str,
        on_progress: ProgressCallback | None = None,
    ) -> UploadFlow:
        return UploadFlow(
            self,
            data=data,
            filename=filename,
            content_type=content_type,
            purpose=purpose,
            on_progress=on_progress,
        )

    def upload(
        self,
        source: bytes | str | Path,
        *,
        content_type: str,
        purpose: UploadPurpose | str,
        filename: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ConfirmedUpload:
        if isinstance(source, bytes):
            data = source
            filename = filename or "upload"
        else:
            path = Path(source)
            data = path.read_bytes()
            filename = filename or path.name
        flow = self.flow(data, filename=filename, content_type=content_type, purpose=purpose, on_progress=on_progress)
        return flow.run()


class SipodiClient:
    """Typed facade over the SIPODI REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        http: httpx.Client | None = None,
        api_prefix: str = "/api/v1",
    ):
        self.auth = AuthSession(base_url, http=http, api_prefix=api_prefix)
        self.talents = TalentsAPI(self.auth)
        self.verifications = VerificationsAPI(self.auth)
        self.uploads = UploadsAPI(self.auth)

    def login(self, email: str, password: str) -> UserProfile:
        return UserProfile.model_validate(self.auth.login(email, password))

    def me(self) -> UserProfile:
        return UserProfile.model_validate(self.auth.request("GET", "/me")["data"])

    def update_me(
        self,
        *,
        full_name: str | None = None,
        position: str | None = None,
        photo_upload_id: str | None = None,
    ) -> UserProfile:
        payload = _params(full_name=full_name, position=position, photo_upload_id=photo_upload_id)
        return UserProfile.model_validate(self.auth.request("PATCH", "/me", json=payload)["data"])

    def notifications(self, *, page: int = 1, limit: int = 20) -> tuple[list[NotificationRecord], PageMeta]:
        body = self.auth.request("GET", "/me/notifications", params={"page": page, "limit": limit})
        return _page(body, NotificationRecord)

    def dashboard(self) -> dict[str, Any]:
        return self.auth.request("GET", "/dashboard/summary")["data"]

    def close(self) -> None:
        self.auth.close()

    def __enter__(self) -> SipodiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
