from __future__ import annotations

import uuid
from datetime import UTC, datetime

from fastapi import HTTPException, Request, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .config import settings
from .logging import logger

_SESSION_SALT = "studyshelf.session"
_DEV_USER_HEADER = "x-user-id"


def _build_serializer() -> URLSafeTimedSerializer:
    """Construct a serializer for signing and verifying session tokens."""

    secret = settings.session_secret_key.strip()
    if not secret:
        raise RuntimeError("SESSION_SECRET_KEY is not configured")
    return URLSafeTimedSerializer(secret, salt=_SESSION_SALT)


def session_max_age() -> int:
    """Return the configured session lifetime in seconds (at least one minute)."""

    try:
        max_age = int(settings.session_max_age_seconds)
    except (TypeError, ValueError):
        max_age = 0
    return max(60, max_age or 60 * 60 * 24 * 14)


def issue_session_token(user_id: str) -> str:
    """Generate a signed session token whose subject is the owner id.

    外部の ID プロバイダ（およびデモ用シードやテスト）が同じ形式のトークンを
    発行できるよう公開している。
    """

    serializer = _build_serializer()
    payload = {
        "sid": uuid.uuid4().hex,
        "sub": user_id,
        "issued_at": datetime.now(UTC).replace(microsecond=0).isoformat(),
    }
    return serializer.dumps(payload)


def verify_session_token(token: str) -> dict:
    """Decode a signed session token and return the embedded payload."""

    serializer = _build_serializer()
    return serializer.loads(token, max_age=session_max_age())


def _session_log_context(
    request: Request, *, reason: str, user_id: str | None
) -> dict[str, object]:
    """Compose structured log context aligned with the access log fields.

    なぜ: セッション検証失敗を request_complete と同じキー
    （path/client_ip/user_agent/request_id）で突合できるようにする。
    """

    client_ip = request.client.host if request.client else "unknown"
    return {
        "user_id": user_id,
        "reason": reason,
        "path": request.url.path,
        "client_ip": client_ip,
        "user_agent": request.headers.get("user-agent"),
        "request_id": getattr(request.state, "request_id", None),
    }


def read_session_cookie(request: Request, cookie_name: str) -> str | None:
    """Read the session cookie even when other cookies are not RFC compliant.

    なぜ: 値に JSON をそのまま含む Cookie が混ざると `request.cookies` が空になる
    ことがある。その場合は生の Cookie ヘッダーを `;` 区切りで分解して探す。
    """

    value = request.cookies.get(cookie_name)
    if value:
        return value

    raw_header = request.headers.get("cookie")
    if not raw_header:
        return None
    for part in raw_header.split(";"):
        part = part.strip()
        if not part or "=" not in part:
            continue
        name, raw_value = part.split("=", 1)
        if name.strip() == cookie_name:
            return raw_value.strip()
    return None


def _unauthorized(request: Request, *, reason: str, detail: str) -> HTTPException:
    logger.warning(
        "session_validation_failed",
        **_session_log_context(request, reason=reason, user_id=None),
    )
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_user(request: Request) -> str:
    """Resolve the owner id of the request from its session cookie.

    認証を無効化した開発環境では `X-User-Id` ヘッダー、無ければ
    `settings.dev_user_id` を所有者として扱う。
    """

    if settings.disable_session_auth:
        owner_id = (request.headers.get(_DEV_USER_HEADER) or "").strip() or settings.dev_user_id
        request.state.user_id = owner_id
        return owner_id

    cookie_name = settings.session_cookie_name or "ss_session"
    raw_token = read_session_cookie(request, cookie_name)
    if not raw_token:
        raise _unauthorized(request, reason="missing_cookie", detail="Session cookie is missing")

    try:
        payload = verify_session_token(raw_token)
    except SignatureExpired as exc:
        raise _unauthorized(request, reason="expired", detail="Session expired") from exc
    except BadSignature as exc:
        raise _unauthorized(
            request, reason="bad_signature", detail="Invalid session token"
        ) from exc
    except RuntimeError as exc:
        logger.error(
            "session_validation_failed",
            **_session_log_context(request, reason="configuration_error", user_id=None),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Session configuration error",
        ) from exc

    sub = payload.get("sub") if isinstance(payload, dict) else None
    if not sub or not isinstance(sub, str):
        raise _unauthorized(request, reason="missing_sub", detail="Invalid session payload")

    request.state.user_id = sub
    return sub
