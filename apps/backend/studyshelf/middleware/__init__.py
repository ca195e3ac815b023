from __future__ import annotations

import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from structlog import contextvars as structlog_contextvars

from ..logging import logger
from ..metrics import registry

__all__ = [
    "AccessLogAndMetricsMiddleware",
    "RequestIDMiddleware",
]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a request ID to each incoming request and expose it in headers.

    - Sets `request.state.request_id`
    - Adds `X-Request-ID` to the response headers
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        # 外側のアクセスログで採番済みならそれを引き継ぐ
        request_id = getattr(request.state, "request_id", None) or uuid.uuid4().hex
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def _route_template(request: Request) -> str:
    """`/api/content/{content_id}` のようなルートテンプレートを返す。

    FastAPI のバージョンによって `scope["route"].path` は include_router の prefix を
    含む場合と含まない場合がある。ルートの正規表現が一致する URL の末尾を探し、
    その手前を prefix として補う。ルーティング前に失敗したリクエストは生のパスで記録する。
    """

    path = request.url.path
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    path_regex = getattr(route, "path_regex", None)
    if template is None or path_regex is None:
        return path

    # "/" の位置ごとに末尾を試す。prefix 付きのテンプレートなら先頭 (index 0) で一致する
    boundaries = [index for index, char in enumerate(path) if char == "/"]
    boundaries.append(len(path))
    for index in boundaries:
        if path_regex.match(path[index:]):
            return f"{path[:index]}{template}"
    return template or path


class AccessLogAndMetricsMiddleware(BaseHTTPMiddleware):
    """Emit one structured `request_complete` log and record latency per request.

    なぜ: すべてのリクエストに `request_id` を紐付けてログとメトリクスへ
    遅延・エラー有無を残すことで、運用時に失敗リクエストをすぐ特定できる。
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:  # type: ignore[override]
        start = time.perf_counter()
        method = request.method
        request_id = getattr(request.state, "request_id", None)
        if not request_id:
            request_id = uuid.uuid4().hex
            request.state.request_id = request_id
        structlog_contextvars.bind_contextvars(request_id=request_id)
        client_ip = request.client.host if request.client else "unknown"
        ua = request.headers.get("user-agent", "-")
        is_error = False
        status_code: int | None = None
        error_type: str | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            is_error = status_code >= 500
            return response
        except Exception as exc:
            is_error = True
            status_code = 500
            error_type = exc.__class__.__name__
            raise
        finally:
            latency_ms = (time.perf_counter() - start) * 1000
            route = _route_template(request)
            registry.record(route, latency_ms, is_error=is_error)
            # エラー時は severity=ERROR で拾えるよう logger.error を使う
            log_method = logger.error if is_error else logger.info
            log_method(
                "request_complete",
                path=request.url.path,
                route=route,
                method=method,
                latency_ms=round(latency_ms, 2),
                is_error=is_error,
                status_code=status_code,
                error_type=error_type,
                request_id=request_id,
                client_ip=client_ip,
                user_agent=ua,
            )
            structlog_contextvars.unbind_contextvars("request_id")
