from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..config import settings
from ..logging import logger

router = APIRouter(tags=["auth"])


@router.post("/api/auth/logout")
async def logout(request: Request) -> JSONResponse:
    """Clear the session cookie.

    セッションは署名付きトークンのみで完結しサーバー側に状態を持たないため、
    Cookie を消すだけでログアウトになる。
    """

    response = JSONResponse(content={"message": "Logged out"})
    response.delete_cookie(
        key=settings.session_cookie_name or "ss_session",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    logger.info(
        "session_logout",
        request_id=getattr(request.state, "request_id", None),
    )
    return response
