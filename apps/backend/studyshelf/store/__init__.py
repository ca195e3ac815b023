from __future__ import annotations

import os

from google.cloud import firestore

from ..config import settings
from .firestore_store import AppFirestoreStore, FirestoreContentStore

_DEFAULT_EMULATOR_HOST = "127.0.0.1:8080"


def _normalize_emulator_host(raw_host: str | None) -> str | None:
    """FIRESTORE_EMULATOR_HOST で受け取ったホスト文字列を正規化する。

    スキームなしの `localhost:8080` でもクライアントオプションに渡せるよう
    http:// を補う。空文字や None は未設定として扱う。
    """

    host = (raw_host or "").strip()
    if not host:
        return None
    if host.startswith(("http://", "https://")):
        return host
    return f"http://{host}"


def _build_firestore_client() -> firestore.Client:
    """Firestore クライアントを構築する。

    - 設定または環境変数にエミュレータのホストがあればそちらへ接続する。
    - production 以外ではホスト未指定でも 127.0.0.1:8080 のエミュレータを使う。
    - production では Cloud Firestore へ接続する。
    """

    environment_name = (settings.environment or "").strip().lower()
    emulator_host = _normalize_emulator_host(
        settings.firestore_emulator_host
        or os.environ.get("FIRESTORE_EMULATOR_HOST")
        or (_DEFAULT_EMULATOR_HOST if environment_name != "production" else None)
    )
    project_id = settings.firestore_project_id or settings.gcp_project_id
    if emulator_host:
        # クライアントは FIRESTORE_EMULATOR_HOST を見て匿名認証へ切り替える
        bare_host = emulator_host.split("://", 1)[-1]
        os.environ.setdefault("FIRESTORE_EMULATOR_HOST", bare_host)
        return firestore.Client(
            project=project_id or "studyshelf-local",
            client_options={"api_endpoint": emulator_host},
        )
    return firestore.Client(project=project_id)


def _create_store() -> AppFirestoreStore:
    """アプリ全体で共有する Firestore ベースのストアを初期化する。"""

    client = _build_firestore_client()
    return AppFirestoreStore(client=client, collection_name=settings.contents_collection)


store = _create_store()

__all__ = [
    "AppFirestoreStore",
    "FirestoreContentStore",
    "store",
]
