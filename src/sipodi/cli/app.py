from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any

import typer
import uvicorn
from pydantic import BaseModel

from sipodi.api.app import create_app
from sipodi.config import get_settings
from sipodi.core.access import Actor
from sipodi.core.accounts import AccountService
from sipodi.core.talents import TalentService
from sipodi.core.uploads import UploadService
from sipodi.db.init import init_database
from sipodi.db.repositories import Repository
from sipodi.db.session import SessionLocal
from sipodi.errors import SipodiError
from sipodi.logging_config import configure_logging
from sipodi.types import UserRole

app = typer.Typer(help="SIPODI CLI")
school_app = typer.Typer(help="Manage schools")
user_app = typer.Typer(help="Manage user accounts")
talent_app = typer.Typer(help="Review talent submissions")
uploads_app = typer.Typer(help="Upload maintenance")

app.add_typer(school_app, name="school")
app.add_typer(user_app, name="user")
app.add_typer(talent_app, name="talent")
app.add_typer(uploads_app, name="uploads")

_INITIALIZED = False

# commands run by an operator act with full administrative scope
OPERATOR = Actor(id="cli-operator", role=UserRole.SUPER_ADMIN)


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


def _echo(payload: Any) -> None:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    elif isinstance(payload, list):
        payload = [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in payload]
    typer.echo(json.dumps(payload, indent=2))


@contextmanager
def _session():
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            yield db
        except SipodiError as exc:
            typer.echo(json.dumps(exc.to_envelope(), indent=2), err=True)
            raise typer.Exit(code=1) from exc


def _reviewer(db, email: str) -> Actor:
    user = Repository(db).get_user_by_email(email)
    if user is None:
        raise typer.BadParameter(f"no user with email {email}")
    return Actor(id=user.id, role=UserRole(user.role), school_id=user.school_id)


@app.callback()
def main(
    log_level: str | None = typer.Option(None, "--log-level", help="Overrides LOG_LEVEL for this run"),
) -> None:
    configure_logging(log_level)


@app.command("init")
def init_cmd(
    reset: bool = typer.Option(False, "--reset", help="Drop every table before creating the schema"),
) -> None:
    """Initialize database, directories, and the bootstrap super admin."""
    global _INITIALIZED
    result = init_database(reset=reset)
    _INITIALIZED = True
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@school_app.command("create")
def school_create(
    name: str = typer.Option(..., "--name"),
    npsn: str = typer.Option(..., "--npsn"),
    status: str = typer.Option("negeri", "--status"),
    address: str = typer.Option("", "--address"),
) -> None:
    with _session() as db:
        _echo(AccountService(db).create_school(OPERATOR, name=name, npsn=npsn, status=status, address=address))


@school_app.command("list")
def school_list(
    search: str = typer.Option("", "--search"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    with _session() as db:
        schools, _ = AccountService(db).list_schools(OPERATOR, search=search, limit=limit)
        _echo(schools)


@user_app.command("create")
def user_create(
    email: str = typer.Option(..., "--email"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    role: str = typer.Option("gtk", "--role"),
    full_name: str = typer.Option(..., "--full-name"),
    school_id: str | None = typer.Option(None, "--school-id"),
    gtk_type: str | None = typer.Option(None, "--gtk-type"),
    nip: str | None = typer.Option(None, "--nip"),
    position: str | None = typer.Option(None, "--position"),
) -> None:
    with _session() as db:
        user = AccountService(db).create_user(
            None,
            email=email,
            password=password,
            role=role,
            full_name=full_name,
            school_id=school_id,
            gtk_type=gtk_type,
            nip=nip,
            position=position,
        )
        _echo(user)


@user_app.command("list")
def user_list(
    role: str | None = typer.Option(None, "--role"),
    school_id: str | None = typer.Option(None, "--school-id"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    with _session() as db:
        users, _ = AccountService(db).list_users(OPERATOR, role=role, school_id=school_id, limit=limit)
        _echo(users)


@talent_app.command("list")
def talent_list(
    status: str | None = typer.Option("pending", "--status"),
    talent_type: str | None = typer.Option(None, "--type"),
    school_id: str | None = typer.Option(None, "--school-id"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    with _session() as db:
        talents, meta = TalentService(db).list(
            OPERATOR,
            status=status,
            talent_type=talent_type,
            school_id=school_id,
            limit=limit,
        )
        _echo({"data": [talent.model_dump(mode="json") for talent in talents], "meta": meta.model_dump()})


@talent_app.command("approve")
def talent_approve(
    talent_ids: list[str] = typer.Argument(...),
    reviewer: str = typer.Option(..., "--reviewer", help="Email of the reviewing account"),
) -> None:
    with _session() as db:
        result = TalentService(db).batch_approve(_reviewer(db, reviewer), talent_ids)
        _echo(result)


@talent_app.command("reject")
def talent_reject(
    talent_ids: list[str] = typer.Argument(...),
    reason: str = typer.Option(..., "--reason"),
    reviewer: str = typer.Option(..., "--reviewer", help="Email of the reviewing account"),
) -> None:
    with _session() as db:
        result = TalentService(db).batch_reject(_reviewer(db, reviewer), talent_ids, reason)
        _echo(result)


@uploads_app.command("expire")
def uploads_expire() -> None:
    """Drop pending uploads whose presigned URL has expired."""
    with _session() as db:
        removed = UploadService(db).expire_stale()
        typer.echo(json.dumps({"expired": removed}, indent=2))


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)
