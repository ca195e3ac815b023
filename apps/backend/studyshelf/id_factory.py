"""ID 生成ユーティリティ。

コンテンツの document ID は Firestore のパス制約（`/` を含まない、`.` と `..` 以外、
1500 バイト以下）に抵触しない UUID の hex 表記に統一する。
"""

from __future__ import annotations

import uuid

_MAX_DOCUMENT_ID_BYTES = 1500


def generate_content_id() -> str:
    """新規コンテンツの ID を生成する。"""

    return uuid.uuid4().hex


def is_valid_document_id(raw: object) -> bool:
    """Return True when ``raw`` can be used as a Firestore document id.

    クライアントから渡された ID をそのまま `collection.document()` に渡すと、
    `/` を含む値で ValueError になる。ここで弾いた ID は「存在しない」として扱う。
    """

    if not isinstance(raw, str):
        return False
    candidate = raw.strip()
    if not candidate or candidate in {".", ".."}:
        return False
    if "/" in candidate:
        return False
    if candidate.startswith("__") and candidate.endswith("__"):
        return False
    return len(candidate.encode("utf-8")) <= _MAX_DOCUMENT_ID_BYTES
