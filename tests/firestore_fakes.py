"""Firestore をテストで再現するための簡易フェイク実装。"""

from __future__ import annotations

from typing import Any

from google.api_core import exceptions as gexc
from google.cloud import firestore


class FakeDocumentSnapshot:
    def __init__(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any] | None,
        update_time: int | None = None,
    ) -> None:
        self._collection = collection
        self.id = doc_id
        self._data = data
        # 本物は DatetimeWithNanoseconds だが、ストアは不透明な値として扱うので版番号で代用する
        self.update_time = update_time

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> dict[str, Any] | None:
        return None if self._data is None else dict(self._data)


class FakeLastUpdateOption:
    """`client.write_option(last_update_time=...)` が返す前提条件。"""

    def __init__(self, last_update_time: Any) -> None:
        self.last_update_time = last_update_time


class FakeDocumentReference:
    def __init__(self, client: "FakeFirestoreClient", collection: str, doc_id: str) -> None:
        if not doc_id or "/" in doc_id:
            # 本物のクライアントも不正なパスは ValueError で拒否する
            raise ValueError(f"invalid document id: {doc_id!r}")
        self._client = client
        self._collection = collection
        self.id = doc_id

    @property
    def _key(self) -> tuple[str, str]:
        return (self._collection, self.id)

    def _check_option(self, option: FakeLastUpdateOption | None) -> None:
        if option is None:
            return
        current = self._client._update_times.get(self._key)
        if current != option.last_update_time:
            raise gexc.FailedPrecondition(
                f"document {self._collection}/{self.id} changed since it was read"
            )

    def _touch(self) -> None:
        self._client._clock += 1
        self._client._update_times[self._key] = self._client._clock
        self._client.writes += 1

    def set(self, data: dict[str, Any], merge: bool = False) -> None:
        bucket = self._client._data.setdefault(self._collection, {})
        if merge and self.id in bucket:
            bucket[self.id].update(data)
        else:
            bucket[self.id] = dict(data)
        self._touch()

    def update(self, data: dict[str, Any], option: FakeLastUpdateOption | None = None) -> None:
        bucket = self._client._data.setdefault(self._collection, {})
        if self.id not in bucket:
            raise gexc.NotFound(f"document {self._collection}/{self.id} not found")
        self._check_option(option)
        bucket[self.id].update(data)
        self._touch()

    def get(self) -> FakeDocumentSnapshot:
        bucket = self._client._data.setdefault(self._collection, {})
        payload = dict(bucket[self.id]) if self.id in bucket else None
        return FakeDocumentSnapshot(
            self._collection,
            self.id,
            payload,
            self._client._update_times.get(self._key),
        )


class FakeCollectionReference:
    def __init__(self, client: "FakeFirestoreClient", name: str) -> None:
        self._client = client
        self._name = name

    def document(self, doc_id: str) -> FakeDocumentReference:
        return FakeDocumentReference(self._client, self._name, doc_id)

    def _all_snapshots(self) -> list[FakeDocumentSnapshot]:
        bucket = self._client._data.setdefault(self._name, {})
        return [
            FakeDocumentSnapshot(self._name, doc_id, dict(data))
            for doc_id, data in bucket.items()
        ]

    def where(self, field_path: str, op_string: str, value: Any) -> "FakeQuery":
        return FakeQuery(self).where(field_path, op_string, value)

    def order_by(self, field_path: str, direction=firestore.Query.ASCENDING) -> "FakeQuery":
        return FakeQuery(self).order_by(field_path, direction)

    def stream(self):
        return FakeQuery(self).stream()


class FakeQuery:
    def __init__(
        self,
        collection: FakeCollectionReference,
        *,
        orderings: list[tuple[str, bool]] | None = None,
        filters: list[tuple[str, str, Any]] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> None:
        self._collection = collection
        self._orderings: list[tuple[str, bool]] = list(orderings or [])
        self._filters: list[tuple[str, str, Any]] = list(filters or [])
        self._limit: int | None = limit
        self._offset = offset

    def _clone(self, **kwargs: Any) -> "FakeQuery":
        """Return a shallow copy with updated attributes."""

        params = {
            "orderings": self._orderings,
            "filters": self._filters,
            "limit": self._limit,
            "offset": self._offset,
        }
        params.update(kwargs)
        return FakeQuery(self._collection, **params)

    def order_by(self, field_path: str, direction=firestore.Query.ASCENDING) -> "FakeQuery":
        updated = list(self._orderings)
        updated.append((field_path, direction == firestore.Query.DESCENDING))
        return self._clone(orderings=updated)

    def where(self, field_path: str, op_string: str, value: Any) -> "FakeQuery":
        updated = list(self._filters)
        updated.append((field_path, op_string, value))
        return self._clone(filters=updated)

    def limit(self, value: int) -> "FakeQuery":
        return self._clone(limit=max(0, int(value)))

    def offset(self, value: int) -> "FakeQuery":
        return self._clone(offset=max(0, int(value)))

    def _matching_snapshots(self) -> list[FakeDocumentSnapshot]:
        docs = self._collection._all_snapshots()
        for field_path, op_string, expected in self._filters:
            docs = [
                doc
                for doc in docs
                if self._matches_filter(doc, field_path, op_string, expected)
            ]
        # 後ろのキーから安定ソートを重ねて複合キーの並びを再現する
        for field_path, descending in reversed(self._orderings):
            docs.sort(
                key=lambda snap, fp=field_path: self._order_value(snap, fp),
                reverse=descending,
            )
        if self._offset:
            docs = docs[self._offset :]
        if self._limit is not None:
            docs = docs[: self._limit]
        return docs

    def stream(self):
        self._collection._client.queries.append(
            {"filters": list(self._filters), "orderings": list(self._orderings)}
        )
        for snapshot in self._matching_snapshots():
            yield snapshot

    def count(self, alias: str | None = None) -> "FakeAggregationQuery":
        return FakeAggregationQuery(self, alias or "count")

    @staticmethod
    def _matches_filter(
        snapshot: FakeDocumentSnapshot,
        field_path: str,
        op_string: str,
        expected: Any,
    ) -> bool:
        data = snapshot.to_dict() or {}
        actual = data.get(field_path)
        if op_string == "==":
            return actual == expected
        if actual is None:
            # Firestore の範囲フィルタはフィールドを持たない文書を返さない
            return False
        if op_string == ">=":
            return actual >= expected
        if op_string == "<=":
            return actual <= expected
        if op_string == ">":
            return actual > expected
        if op_string == "<":
            return actual < expected
        raise NotImplementedError(f"unsupported operator: {op_string}")

    @staticmethod
    def _order_value(snapshot: FakeDocumentSnapshot, field_path: str) -> Any:
        if field_path == "__name__":
            return snapshot.id
        data = snapshot.to_dict() or {}
        value = data.get(field_path)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        return str(value or "")


class FakeAggregationQuery:
    def __init__(self, query: FakeQuery, alias: str) -> None:
        self._query = query
        self._alias = alias

    def get(self) -> list[list["FakeAggregationResult"]]:
        # google-cloud-firestore と同じく [[AggregationResult]] の形で返す
        total = len(self._query._matching_snapshots())
        return [[FakeAggregationResult(self._alias, total)]]


class FakeAggregationResult:
    def __init__(self, alias: str, value: int) -> None:
        self.alias = alias
        self.value = value


class FakeWriteBatch:
    """Firestore の WriteBatch API を模した簡易フェイク。commit するまで書き込まない。"""

    def __init__(self, client: "FakeFirestoreClient") -> None:
        self._client = client
        self._operations: list[
            tuple[str, FakeDocumentReference, dict[str, Any], FakeLastUpdateOption | None]
        ] = []

    def set(self, doc_ref: FakeDocumentReference, data: dict[str, Any]) -> None:
        self._operations.append(("set", doc_ref, data, None))

    def update(
        self,
        doc_ref: FakeDocumentReference,
        data: dict[str, Any],
        option: FakeLastUpdateOption | None = None,
    ) -> None:
        self._operations.append(("update", doc_ref, data, option))

    def commit(self) -> None:
        # 本物と同じく、前提条件が 1 つでも崩れていればバッチ全体を書き込まない
        for _action, ref, _data, option in self._operations:
            ref._check_option(option)
        self._client.batch_commits += 1
        for action, ref, data, _option in list(self._operations):
            if action == "set":
                ref.set(data)
            else:
                ref.update(data)


def ensure_firestore_test_env(monkeypatch) -> None:
    """テスト用に Firestore 接続先をエミュレータ/フェイクへ固定する環境変数を設定する。

    なぜ: studyshelf.store._create_store は環境変数を参照して Firestore クライアントを
    初期化するため、ここで事前に値を上書きしておくと実際の GCP へ向かう誤配を防げる。
    """

    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("FIRESTORE_EMULATOR_HOST", "localhost:8080")
    monkeypatch.setenv("FIRESTORE_PROJECT_ID", "test-project")
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "test-project")


def use_fake_firestore_client(
    monkeypatch, client: "FakeFirestoreClient | None" = None
) -> "FakeFirestoreClient":
    """google.cloud.firestore.Client をフェイクに差し替え、同一インスタンスを返す。

    返却したフェイククライアントは永続層の状態を保持するため、同一テスト内で何度
    import/reload を行ってもデータが失われない。
    """

    instance = client or FakeFirestoreClient()
    monkeypatch.setattr(firestore, "Client", lambda *args, **kwargs: instance)
    return instance


class FakeFirestoreClient:
    """google.cloud.firestore.Client 互換の最小フェイク。

    - collection/batch だけを実装し、AppFirestoreStore が依存するクエリ・件数集計・
      一括書き込みを再現する。
    - _data は collection ごとに {doc_id: payload} を保持し、テスト毎に新規インスタンスで分離する。
    - writes / batch_commits / queries で書き込み回数やクエリ内容を検証できる。
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self.writes = 0
        self.batch_commits = 0
        self.queries: list[dict[str, Any]] = []
        # ドキュメントごとの最終更新「時刻」。単調増加の版番号で表す。
        self._update_times: dict[tuple[str, str], int] = {}
        self._clock = 0

    def collection(self, name: str) -> FakeCollectionReference:
        return FakeCollectionReference(self, name)

    def batch(self) -> FakeWriteBatch:
        return FakeWriteBatch(self)

    def write_option(self, **kwargs: Any) -> FakeLastUpdateOption:
        if set(kwargs) != {"last_update_time"}:
            raise TypeError(f"unsupported write option: {sorted(kwargs)}")
        return FakeLastUpdateOption(kwargs["last_update_time"])

    def documents(self, collection: str = "contents") -> dict[str, dict[str, Any]]:
        """保存済みドキュメントのコピーを返す（テストの検証用）。"""

        return {doc_id: dict(data) for doc_id, data in self._data.get(collection, {}).items()}

    def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """ストアを経由せずにドキュメントを直接置く（前提データの用意用）。"""

        self._data.setdefault(collection, {})[doc_id] = dict(data)
