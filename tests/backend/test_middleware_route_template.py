"""メトリクスのキーになるルートテンプレート解決のテスト。"""

from pathlib import Path
import re
import sys
from types import SimpleNamespace

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "apps" / "backend"))

from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route

from studyshelf.middleware import _route_template


def _endpoint(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok")


def _request(path: str, route: object | None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "path": path,
        "root_path": "",
        "query_string": b"",
        "headers": [],
    }
    if route is not None:
        scope["route"] = route
    return Request(scope)


@pytest.mark.parametrize(
    ("route_path", "url_path", "expected"),
    [
        # include_router の prefix を含まないルート
        ("/{content_id}", "/api/content/abc", "/api/content/{content_id}"),
        ("/{content_id}/review", "/api/content/abc/review", "/api/content/{content_id}/review"),
        ("/import", "/api/content/import", "/api/content/import"),
        # prefix 込みのルート
        ("/api/content/{content_id}", "/api/content/abc", "/api/content/{content_id}"),
        ("/healthz", "/healthz", "/healthz"),
    ],
)
def test_route_template_restores_router_prefix(
    route_path: str, url_path: str, expected: str
) -> None:
    route = Route(route_path, _endpoint)
    assert _route_template(_request(url_path, route)) == expected


def test_route_template_falls_back_to_raw_path_without_route() -> None:
    assert _route_template(_request("/nope/123", None)) == "/nope/123"


def test_route_template_handles_empty_router_path() -> None:
    # APIRouter は prefix 直下のルートを空文字のパスで持つ
    route = SimpleNamespace(path="", path_regex=re.compile("^$"))
    assert _route_template(_request("/api/content", route)) == "/api/content"
