from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sipodi.api.routes import router as api_router
from sipodi.config import get_settings
from sipodi.db.init import init_database
from sipodi.errors import FieldError, SipodiError, ValidationError
from sipodi.logging_config import configure_logging

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}

_REQUEST_SECTIONS = {"body", "query", "path", "header", "cookie"}


def _field_path(loc: tuple) -> str:
    parts = [str(part) for part in loc]
    if parts and parts[0] in _REQUEST_SECTIONS:
        parts = parts[1:]
    return ".".join(parts) or "body"


async def _sipodi_error(request: Request, exc: SipodiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.exception("Unhandled service error on %s %s", request.method, request.url.path)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope(), headers=headers)


async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [FieldError(_field_path(tuple(item.get("loc", ()))), item.get("msg", "invalid")) for item in exc.errors()]
    error = ValidationError("Validation failed", details=details)
    return JSONResponse(status_code=error.status_code, content=error.to_envelope())


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
    body = {"error": {"code": code, "message": str(exc.detail)}}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()

    app = FastAPI(title=settings.app_name)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SipodiError, _sipodi_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)

    @app.on_event("startup")
    def _startup() -> None:
        init_database()

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(api_router)
    return app
