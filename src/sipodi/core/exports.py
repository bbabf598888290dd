"""Spreadsheet and PDF exports of talent, GTK and school records.

Exports apply the same role scope as the list endpoints: a school admin only ever gets rows
of their own school, whatever filters were asked for.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from xml.sax.saxutils import escape

from openpyxl import Workbook
from openpyxl.styles import Font
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy.orm import Session

from sipodi.core.access import Actor, can_export, can_manage_schools, talent_scope
from sipodi.core.talents import enum_filter
from sipodi.db.base import as_utc, utcnow
from sipodi.db.models import Talent, User
from sipodi.db.repositories import Repository
from sipodi.errors import PermissionDeniedError, ValidationError
from sipodi.types import ExportFormat, GTKType, SchoolStatus, TalentStatus, TalentType, UserRole

logger = logging.getLogger(__name__)

EXPORT_ROW_LIMIT = 10_000
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MEDIA_TYPE = "application/pdf"

TALENT_HEADERS = (
    "No",
    "Nama GTK",
    "Sekolah",
    "Jenis Talenta",
    "Kegiatan",
    "Status",
    "Tanggal Dibuat",
    "Tanggal Diverifikasi",
    "Verifikator",
    "Alasan Penolakan",
)
GTK_HEADERS = ("No", "Nama Lengkap", "Email", "NUPTK", "NIP", "Jenis GTK", "Jabatan", "Sekolah", "Status")
SCHOOL_HEADERS = ("No", "Nama Sekolah", "NPSN", "Status", "Alamat")


@dataclass(slots=True, frozen=True)
class ExportTable:
    title: str
    headers: tuple[str, ...]
    rows: list[tuple[Any, ...]]


@dataclass(slots=True, frozen=True)
class ExportFile:
    filename: str
    media_type: str
    content: bytes


def _timestamp(value: datetime | None) -> str:
    return as_utc(value).strftime("%Y-%m-%d %H:%M:%S") if value else ""


def talent_headline(detail: dict[str, Any]) -> str:
    for key in ("activity_name", "competition_name", "interest_name"):
        if detail.get(key):
            return str(detail[key])
    return ""


def render_xlsx(table: ExportTable) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    # sheet titles are capped at 31 characters
    sheet.title = table.title[:31]
    sheet.append(list(table.headers))
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for row in table.rows:
        sheet.append(["" if value is None else value for value in row])
    sheet.freeze_panes = "A2"

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def render_pdf(table: ExportTable, *, generated_at: datetime) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        leftMargin=36,
        rightMargin=36,
        topMargin=36,
        bottomMargin=36,
        title=table.title,
    )
    styles = getSampleStyleSheet()
    cell_style = ParagraphStyle("ExportCell", parent=styles["Normal"], fontSize=8, leading=10)
    head_style = ParagraphStyle("ExportHead", parent=cell_style, fontName="Helvetica-Bold", textColor=colors.white)

    data = [[Paragraph(escape(header), head_style) for header in table.headers]]
    for row in table.rows:
        data.append([Paragraph(escape("" if value is None else str(value)), cell_style) for value in row])

    grid = Table(data, repeatRows=1)
    grid.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1f4e79")),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f2f2f2")]),
            ]
        )
    )
    elements = [
        Paragraph(escape(table.title), styles["Heading1"]),
        Paragraph(f"Dicetak {generated_at:%Y-%m-%d %H:%M} UTC, {len(table.rows)} baris", styles["Normal"]),
        Spacer(1, 12),
        grid,
    ]
    doc.build(elements)
    return buffer.getvalue()


def export_format(value: str | None) -> ExportFormat:
    try:
        return ExportFormat((value or ExportFormat.EXCEL.value).lower())
    except ValueError as exc:
        raise ValidationError.for_field("format", f"unknown export format '{value}'") from exc


class ExportService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = Repository(session)

    def _school_scope(self, actor: Actor, school_id: str | None) -> str | None:
        if actor.role == UserRole.ADMIN_SEKOLAH:
            if actor.school_id is None:
                raise PermissionDeniedError("account is not assigned to a school")
            return actor.school_id
        return school_id

    def _render(self, table: ExportTable, fmt: ExportFormat, stem: str, at: datetime | None) -> ExportFile:
        at = at or utcnow()
        if fmt == ExportFormat.PDF:
            content, media_type, ext = render_pdf(table, generated_at=at), PDF_MEDIA_TYPE, "pdf"
        else:
            content, media_type, ext = render_xlsx(table), XLSX_MEDIA_TYPE, "xlsx"
        logger.info("Export %s rows=%s format=%s", stem, len(table.rows), fmt.value)
        return ExportFile(filename=f"{stem}_{at:%Y%m%d_%H%M%S}.{ext}", media_type=media_type, content=content)

    def talents(
        self,
        actor: Actor,
        *,
        fmt: str | None = None,
        status: str | None = None,
        talent_type: str | None = None,
        school_id: str | None = None,
        at: datetime | None = None,
    ) -> ExportFile:
        if not can_export(actor):
            raise PermissionDeniedError("only administrators can export data")
        fmt = export_format(fmt)
        rows, _ = self.repo.list_talents(
            talent_scope(actor),
            status=enum_filter(TalentStatus, status, "status"),
            talent_type=enum_filter(TalentType, talent_type, "talent_type"),
            school_id=school_id,
            page=1,
            limit=EXPORT_ROW_LIMIT,
            oldest_first=True,
        )
        table = ExportTable(
            title="Data Talenta",
            headers=TALENT_HEADERS,
            rows=[self._talent_row(index, talent) for index, talent in enumerate(rows, start=1)],
        )
        return self._render(table, fmt, "data_talenta", at)

    def _talent_row(self, index: int, talent: Talent) -> tuple[Any, ...]:
        user = talent.user
        return (
            index,
            user.full_name,
            user.school.name if user.school else "",
            talent.talent_type,
            talent_headline(talent.detail_json or {}),
            talent.status,
            _timestamp(talent.created_at),
            _timestamp(talent.verified_at),
            talent.verifier.full_name if talent.verifier else "",
            talent.rejection_reason or "",
        )

    def gtk(
        self,
        actor: Actor,
        *,
        fmt: str | None = None,
        gtk_type: str | None = None,
        school_id: str | None = None,
        at: datetime | None = None,
    ) -> ExportFile:
        if not can_export(actor):
            raise PermissionDeniedError("only administrators can export data")
        fmt = export_format(fmt)
        users, _ = self.repo.list_users(
            role=UserRole.GTK.value,
            gtk_type=enum_filter(GTKType, gtk_type, "gtk_type"),
            school_id=self._school_scope(actor, school_id),
            page=1,
            limit=EXPORT_ROW_LIMIT,
        )
        table = ExportTable(
            title="Data GTK",
            headers=GTK_HEADERS,
            rows=[self._gtk_row(index, user) for index, user in enumerate(users, start=1)],
        )
        return self._render(table, fmt, "data_gtk", at)

    def _gtk_row(self, index: int, user: User) -> tuple[Any, ...]:
        return (
            index,
            user.full_name,
            user.email,
            user.nuptk or "",
            user.nip or "",
            user.gtk_type or "",
            user.position or "",
            user.school.name if user.school else "",
            "Aktif" if user.is_active else "Nonaktif",
        )

    def schools(
        self,
        actor: Actor,
        *,
        fmt: str | None = None,
        status: str | None = None,
        at: datetime | None = None,
    ) -> ExportFile:
        if not can_manage_schools(actor):
            raise PermissionDeniedError("only super admins can export schools")
        fmt = export_format(fmt)
        schools, _ = self.repo.list_schools(
            status=enum_filter(SchoolStatus, status, "status"),
            page=1,
            limit=EXPORT_ROW_LIMIT,
        )
        table = ExportTable(
            title="Data Sekolah",
            headers=SCHOOL_HEADERS,
            rows=[
                (index, school.name, school.npsn, school.status, school.address)
                for index, school in enumerate(schools, start=1)
            ],
        )
        return self._render(table, fmt, "data_sekolah", at)
