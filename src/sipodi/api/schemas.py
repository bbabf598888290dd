from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from sipodi.types import BatchResult, PageMeta, UserProfile


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserProfile | None = None


class CreateTalentRequest(BaseModel):
    talent_type: str
    detail: dict[str, Any]
    attachment_upload_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("attachment_upload_id", "upload_id"),
    )


class UpdateTalentRequest(BaseModel):
    talent_type: str | None = None
    detail: dict[str, Any] | None = None
    attachment_upload_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("attachment_upload_id", "upload_id"),
    )
    remove_attachment: bool = False


class RejectTalentRequest(BaseModel):
    rejection_reason: str = ""


class BatchApproveRequest(BaseModel):
    ids: list[str]


class BatchRejectRequest(BaseModel):
    ids: list[str]
    rejection_reason: str = ""


class PresignRequest(BaseModel):
    filename: str
    size: int
    content_type: str
    upload_type: str = Field(validation_alias=AliasChoices("upload_type", "purpose"))


class SchoolCreateRequest(BaseModel):
    name: str
    npsn: str
    status: str = "negeri"
    address: str = ""


class UserCreateRequest(BaseModel):
    email: str
    password: str
    role: str
    full_name: str
    school_id: str | None = None
    nip: str | None = None
    nuptk: str | None = None
    gtk_type: str | None = None
    position: str | None = None


class ProfileUpdateRequest(BaseModel):
    full_name: str | None = None
    position: str | None = None
    photo_upload_id: str | None = None


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str


def envelope(data: Any, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"data": data}
    if message:
        body["message"] = message
    return body


def paged(items: list[Any], meta: PageMeta) -> dict[str, Any]:
    return {"data": items, "meta": meta}


def batch_body(result: BatchResult, *, counter: str) -> dict[str, Any]:
    return {
        counter: result.succeeded,
        "failed_count": result.failed_count,
        "failed_ids": [item.model_dump() for item in result.failed_ids],
    }
