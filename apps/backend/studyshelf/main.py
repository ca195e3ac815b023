from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from .config import settings
from .errors import (
    BulkActionTooLargeError,
    ContentNotFoundError,
    ContentWriteConflictError,
    EmptyImportError,
    ImportItemTooLongError,
    InvalidActionError,
)
from .logging import configure_logging, logger
from .middleware import AccessLogAndMetricsMiddleware, RequestIDMiddleware
from .routers import auth as auth_router
from .routers import content, health


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def _content_not_found(request: Request, exc: ContentNotFoundError) -> JSONResponse:
    logger.info(
        "content_not_found",
        content_id=exc.content_id,
        path=request.url.path,
        request_id=_request_id(request),
    )
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": "Content not found"},
    )


async def _write_conflict(request: Request, exc: ContentWriteConflictError) -> JSONResponse:
    logger.warning(
        "content_write_conflict",
        content_id=exc.content_id,
        path=request.url.path,
        request_id=_request_id(request),
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc)},
    )


async def _bad_request(request: Request, exc: ValueError) -> JSONResponse:
    """Domain validation errors (unknown action, oversized bulk, empty import) → 400."""

    logger.info(
        "bad_request",
        error_type=exc.__class__.__name__,
        detail=str(exc),
        path=request.url.path,
        request_id=_request_id(request),
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc)},
    )


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema violations are reported as 400 with the pydantic error list.

    なぜ: クライアントは 400 を「入力が不正」として扱う前提のため、FastAPI 既定の
    422 ではなく 400 に揃える。
    """

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request data", "errors": jsonable_encoder(exc.errors())},
    )


async def _unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=exc.__class__.__name__,
        request_id=request_id,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "request_id": request_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    configure_logging()
    app = FastAPI(title="StudyShelf API", version="0.1.0")

    configured_origins = list(settings.allowed_cors_origins)
    allow_credentials = bool(configured_origins)
    if not configured_origins:
        configured_origins = ["*"]

    # なぜ: ワイルドカード許可のまま資格情報を有効にするとセッション Cookie が
    # 任意オリジンへ送られるため、オリジンを明示したときだけ credentials を許可する。
    app.add_middleware(
        CORSMiddleware,
        allow_origins=configured_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Starlette では後から追加したミドルウェアが外側で実行される。
    # AccessLog → RequestID → CORS の順に内側へ入る。
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(AccessLogAndMetricsMiddleware)

    app.add_exception_handler(ContentNotFoundError, _content_not_found)
    app.add_exception_handler(InvalidActionError, _bad_request)
    app.add_exception_handler(BulkActionTooLargeError, _bad_request)
    app.add_exception_handler(EmptyImportError, _bad_request)
    app.add_exception_handler(ImportItemTooLongError, _bad_request)
    app.add_exception_handler(ContentWriteConflictError, _write_conflict)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _unhandled_exception)

    if settings.disable_session_auth:
        logger.warning(
            "session_auth_disabled",
            reason="config_flag",
            dev_user_id=settings.dev_user_id,
        )

    app.include_router(auth_router.router)
    app.include_router(content.router, prefix="/api/content")
    app.include_router(health.router)

    return app


app = create_app()
