from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from sipodi.api.deps import get_current_actor, get_db, get_object_storage
from sipodi.api.schemas import (
    BatchApproveRequest,
    BatchRejectRequest,
    CreateTalentRequest,
    LoginRequest,
    PasswordChangeRequest,
    PresignRequest,
    ProfileUpdateRequest,
    RejectTalentRequest,
    SchoolCreateRequest,
    TokenResponse,
    UpdateTalentRequest,
    UserCreateRequest,
    batch_body,
    envelope,
    paged,
)
from sipodi.config import get_settings
from sipodi.core.access import Actor
from sipodi.core.accounts import AccountService
from sipodi.core.auth import AuthService, IssuedTokens
from sipodi.core.dashboard import build_summary
from sipodi.core.exports import ExportFile, ExportService
from sipodi.core.storage import LocalStorage, ObjectStorage
from sipodi.core.talents import TalentService
from sipodi.core.uploads import UploadService
from sipodi.errors import NotFoundError, ValidationError

settings = get_settings()
router = APIRouter(prefix=settings.api_prefix, tags=["api"])


def _set_refresh_cookie(response: Response, raw_token: str) -> None:
    response.set_cookie(
        settings.refresh_cookie_name,
        raw_token,
        max_age=settings.refresh_token_ttl_days * 24 * 3600,
        path=settings.refresh_cookie_path,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        settings.refresh_cookie_name,
        path=settings.refresh_cookie_path,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _token_body(tokens: IssuedTokens, accounts: AccountService | None = None) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        expires_in=tokens.expires_in,
        user=accounts.profile(tokens.user) if accounts else None,
    )


# auth


@router.post("/auth/login")
def login(
    payload: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    tokens = AuthService(db).login(payload.email, payload.password)
    _set_refresh_cookie(response, tokens.refresh_token)
    return envelope(_token_body(tokens, AccountService(db, storage=storage)), "Login successful")


@router.post("/auth/refresh")
def refresh(request: Request, response: Response, db: Session = Depends(get_db)) -> dict:
    tokens = AuthService(db).refresh(request.cookies.get(settings.refresh_cookie_name))
    _set_refresh_cookie(response, tokens.refresh_token)
    return envelope(_token_body(tokens))


@router.post("/auth/logout")
def logout(request: Request, response: Response, db: Session = Depends(get_db)) -> dict:
    AuthService(db).logout(request.cookies.get(settings.refresh_cookie_name))
    _clear_refresh_cookie(response)
    return envelope(None, "Logged out")


@router.post("/auth/logout-all")
def logout_all(
    response: Response,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    removed = AuthService(db).logout_all(actor.id)
    _clear_refresh_cookie(response)
    return envelope({"revoked_sessions": removed}, "Logged out from all devices")


# current user


@router.get("/me")
def get_me(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    return envelope(AccountService(db, storage=storage).me(actor))


@router.patch("/me")
def update_me(
    payload: ProfileUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    values = payload.model_dump(exclude_unset=True)
    profile = AccountService(db, storage=storage).update_profile(actor, values)
    return envelope(profile, "Profile updated")


@router.patch("/me/password")
@router.put("/me/password")
def change_password(
    payload: PasswordChangeRequest,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    AccountService(db).change_password(
        actor,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    _clear_refresh_cookie(response)
    return envelope(None, "Password changed")


@router.get("/me/talents")
def list_my_talents(
    status: str | None = None,
    talent_type: str | None = None,
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    items, meta = TalentService(db, storage=storage).list_mine(
        actor, status=status, talent_type=talent_type, page=page, limit=limit
    )
    return paged(items, meta)


@router.get("/me/notifications")
def list_notifications(
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    items, meta = AccountService(db).notifications(actor, page=page, limit=limit)
    return paged(items, meta)


@router.get("/me/notifications/unread-count")
def unread_notifications(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)) -> dict:
    return envelope({"count": AccountService(db).unread_count(actor)})


@router.patch("/me/notifications/read-all")
def read_all_notifications(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)) -> dict:
    updated = AccountService(db).mark_all_read(actor)
    return envelope({"updated": updated}, "All notifications marked as read")


@router.patch("/me/notifications/{notification_id}/read")
def read_notification(
    notification_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    AccountService(db).mark_read(actor, notification_id)
    return envelope(None, "Notification marked as read")


# talents


@router.post("/talents", status_code=201)
@router.post("/me/talents", status_code=201)
def create_talent(
    payload: CreateTalentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    talent = TalentService(db, storage=storage).create(
        actor,
        talent_type=payload.talent_type,
        detail=payload.detail,
        attachment_upload_id=payload.attachment_upload_id,
    )
    return envelope(talent, "Talent submitted")


@router.get("/talents")
def list_talents(
    status: str | None = None,
    talent_type: str | None = None,
    school_id: str | None = None,
    user_id: str | None = None,
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    items, meta = TalentService(db, storage=storage).list(
        actor,
        status=status,
        talent_type=talent_type,
        school_id=school_id,
        user_id=user_id,
        page=page,
        limit=limit,
    )
    return paged(items, meta)


@router.get("/talents/{talent_id}")
@router.get("/me/talents/{talent_id}")
def get_talent(
    talent_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    return envelope(TalentService(db, storage=storage).get(actor, talent_id))


@router.put("/talents/{talent_id}")
@router.put("/me/talents/{talent_id}")
def update_talent(
    talent_id: str,
    payload: UpdateTalentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    talent = TalentService(db, storage=storage).edit(
        actor,
        talent_id,
        detail=payload.detail,
        attachment_upload_id=payload.attachment_upload_id,
        remove_attachment=payload.remove_attachment,
        talent_type=payload.talent_type,
    )
    return envelope(talent, "Talent updated")


@router.delete("/talents/{talent_id}")
@router.delete("/me/talents/{talent_id}")
def delete_talent(
    talent_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    TalentService(db).delete(actor, talent_id)
    return envelope(None, "Talent deleted")


@router.get("/talents/{talent_id}/history")
def talent_history(
    talent_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    return envelope(TalentService(db).history(actor, talent_id))


# verifications


@router.get("/verifications/talents")
def verification_queue(
    talent_type: str | None = None,
    school_id: str | None = None,
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    items, meta = TalentService(db, storage=storage).pending_queue(
        actor, talent_type=talent_type, school_id=school_id, page=page, limit=limit
    )
    return paged(items, meta)


@router.post("/verifications/talents/batch/approve")
def batch_approve(
    payload: BatchApproveRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    result = TalentService(db).batch_approve(actor, payload.ids)
    return envelope(batch_body(result, counter="approved_count"))


@router.post("/verifications/talents/batch/reject")
def batch_reject(
    payload: BatchRejectRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    result = TalentService(db).batch_reject(actor, payload.ids, payload.rejection_reason)
    return envelope(batch_body(result, counter="rejected_count"))


@router.post("/verifications/talents/{talent_id}/approve")
def approve_talent(
    talent_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    return envelope(TalentService(db, storage=storage).approve(actor, talent_id), "Talent approved")


@router.post("/verifications/talents/{talent_id}/reject")
def reject_talent(
    talent_id: str,
    payload: RejectTalentRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    talent = TalentService(db, storage=storage).reject(actor, talent_id, payload.rejection_reason)
    return envelope(talent, "Talent rejected")


# uploads


@router.post("/uploads/presign")
def presign_upload(
    payload: PresignRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    presigned = UploadService(db, storage=storage).presign(
        actor,
        filename=payload.filename,
        size=payload.size,
        content_type=payload.content_type,
        purpose=payload.upload_type,
    )
    return envelope(presigned)


@router.post("/uploads/{upload_id}/confirm")
def confirm_upload(
    upload_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    return envelope(UploadService(db, storage=storage).confirm(actor, upload_id), "Upload confirmed")


@router.delete("/uploads/{upload_id}")
def cancel_upload(
    upload_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    UploadService(db, storage=storage).cancel(actor, upload_id)
    return envelope(None, "Upload cancelled")


def _local_storage(storage: ObjectStorage) -> LocalStorage:
    if not isinstance(storage, LocalStorage):
        raise NotFoundError("local storage is disabled")
    return storage


def _declared_length(request: Request) -> int | None:
    value = request.headers.get("content-length", "")
    return int(value) if value.isdigit() else None


async def _read_capped(request: Request, limit: int) -> bytes:
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise ValidationError.for_field("size", f"object exceeds {limit} bytes")
    return bytes(body)


@router.put("/storage/{token}")
async def put_object(
    token: str,
    request: Request,
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    local = _local_storage(storage)
    claims = local.verify_token(token)
    content_type = request.headers.get("content-type")
    local.check_request(claims, content_type=content_type, content_length=_declared_length(request))
    await run_in_threadpool(UploadService(db, storage=local).ensure_writable, claims["key"])

    data = await _read_capped(request, int(claims["max"]))
    await run_in_threadpool(local.write, token, data, content_type=content_type)
    return Response(status_code=200)


@router.get("/files/{object_key:path}")
def get_object(object_key: str, storage: ObjectStorage = Depends(get_object_storage)) -> FileResponse:
    path = _local_storage(storage).read_path(object_key)
    if path is None:
        raise NotFoundError("file not found")
    return FileResponse(path)


# schools and users


@router.post("/schools", status_code=201)
def create_school(
    payload: SchoolCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    school = AccountService(db).create_school(
        actor,
        name=payload.name,
        npsn=payload.npsn,
        status=payload.status,
        address=payload.address,
    )
    return envelope(school, "School created")


@router.get("/schools")
def list_schools(
    search: str = "",
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    items, meta = AccountService(db).list_schools(actor, search=search, page=page, limit=limit)
    return paged(items, meta)


@router.get("/schools/{school_id}")
def get_school(school_id: str, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)) -> dict:
    return envelope(AccountService(db).get_school(actor, school_id))


@router.post("/users", status_code=201)
def create_user(
    payload: UserCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    user = AccountService(db, storage=storage).create_user(actor, **payload.model_dump())
    return envelope(user, "User created")


@router.get("/users")
def list_users(
    role: str | None = None,
    school_id: str | None = None,
    search: str = "",
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    items, meta = AccountService(db, storage=storage).list_users(
        actor, role=role, school_id=school_id, search=search, page=page, limit=limit
    )
    return paged(items, meta)


@router.get("/users/{user_id}")
def get_user(
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    return envelope(AccountService(db, storage=storage).get_user(actor, user_id))


# dashboard


@router.get("/dashboard/summary")
def dashboard_summary(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)) -> dict:
    return envelope(build_summary(db, actor))


@router.patch("/users/{user_id}/activate")
def activate_user(
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    return envelope(AccountService(db, storage=storage).set_active(actor, user_id, True), "User activated")


@router.patch("/users/{user_id}/deactivate")
def deactivate_user(
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict:
    return envelope(AccountService(db, storage=storage).set_active(actor, user_id, False), "User deactivated")


# exports


def _download(export: ExportFile) -> Response:
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.get("/exports/talents")
def export_talents(
    fmt: str = Query("excel", alias="format"),
    status: str | None = None,
    talent_type: str | None = None,
    school_id: str | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> Response:
    export = ExportService(db).talents(actor, fmt=fmt, status=status, talent_type=talent_type, school_id=school_id)
    return _download(export)


@router.get("/exports/gtk")
def export_gtk(
    fmt: str = Query("excel", alias="format"),
    gtk_type: str | None = None,
    school_id: str | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> Response:
    return _download(ExportService(db).gtk(actor, fmt=fmt, gtk_type=gtk_type, school_id=school_id))


@router.get("/exports/schools")
def export_schools(
    fmt: str = Query("excel", alias="format"),
    status: str | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> Response:
    return _download(ExportService(db).schools(actor, fmt=fmt, status=status))
