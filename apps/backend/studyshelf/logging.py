"""structlog の初期化とログのマスキング。

所有者 ID はセッション Cookie の署名だけで保証されるため、Cookie の値や
署名鍵がログに残ると第三者がセッションを偽造できる。レンダリング直前の
プロセッサで該当フィールドを伏せ字にする。
"""

from typing import Any

import logging
import structlog
from structlog import contextvars as structlog_contextvars
from .config import settings


_SENSITIVE_KEY_PARTS = ("token", "secret", "authorization", "password", "cookie", "key")
_MASK = "***"


def _mask(raw: object) -> str:
    """Keep the first and last four characters of long values, hide the rest."""

    text = "" if raw is None else str(raw).strip()
    if len(text) <= 8:
        return _MASK
    return f"{text[:4]}…{text[-4:]}"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if lowered == (settings.session_cookie_name or "").lower():
        return True
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


def _scrub(value: Any, *, sensitive: bool, secrets: tuple[str, ...]) -> Any:
    if isinstance(value, dict):
        return {
            key: _scrub(item, sensitive=_is_sensitive_key(str(key)), secrets=secrets)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_scrub(item, sensitive=sensitive, secrets=secrets) for item in value]
    if sensitive:
        return _mask(value)
    if isinstance(value, str):
        for secret in secrets:
            value = value.replace(secret, _mask(secret))
    return value


def _mask_sensitive_fields(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Mask secret-looking keys (nested too) and any literal session secret.

    `event` 自体はイベント名なので対象外。
    """

    secrets = tuple(secret for secret in (settings.session_secret_key,) if secret)
    for key, value in list(event_dict.items()):
        if key == "event":
            continue
        event_dict[key] = _scrub(value, sensitive=_is_sensitive_key(str(key)), secrets=secrets)
    return event_dict


def _init_sentry() -> None:
    if not settings.sentry_dsn:
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration
    except ImportError:
        # sentry 追加依存を入れていない環境ではログだけで運用する
        structlog.get_logger().warning("sentry_sdk_not_installed")
        return
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
    )


def configure_logging() -> None:
    """Route structlog through stdlib logging as one JSON object per line.

    force=True で uvicorn などが先に付けたハンドラを置き換え、出力形式を揃える。
    """

    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog_contextvars.merge_contextvars,
            _mask_sensitive_fields,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    _init_sentry()


logger = structlog.get_logger()
