from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from google.api_core import exceptions as gexc
from google.cloud import firestore

from ..coerce import now_iso, to_iso
from ..errors import ContentWriteConflictError
from ..id_factory import generate_content_id, is_valid_document_id
from ..logging import logger

# 既存ドキュメントの内容から更新フィールドを組み立てる関数、または固定の更新内容
ContentUpdates = Mapping[str, Any] | Callable[[Mapping[str, Any]], Mapping[str, Any]]

# 前提条件付き書き込みが競合したときに読み直す回数の上限
_MAX_WRITE_ATTEMPTS = 5


def _extract_count_from_aggregation(
    aggregation: Sequence[Any] | None,
) -> int:
    """Extracts the numeric count from Firestore aggregation results."""

    if not aggregation:
        return 0
    result = aggregation[0]
    # google-cloud-firestore は [[AggregationResult]] を返すため1段ほどく
    if isinstance(result, Sequence) and not isinstance(result, (str, bytes)):
        if not result:
            return 0
        result = result[0]
    count_value: Any | None = None
    try:
        count_value = result["count"]  # type: ignore[index]
    except (TypeError, KeyError):
        aggregate_fields = getattr(result, "aggregate_fields", None)
        if isinstance(aggregate_fields, Mapping):
            count_value = aggregate_fields.get("count")
    if count_value is None and getattr(result, "alias", None) == "count":
        count_value = getattr(result, "value", None)
    return int(count_value or 0)


def _snapshot_to_document(snapshot: firestore.DocumentSnapshot) -> dict[str, Any]:
    """Flatten a snapshot into a plain dict carrying its document id under ``id``."""

    data = dict(snapshot.to_dict() or {})
    data["id"] = snapshot.id
    return data


def _is_visible_to(data: Mapping[str, Any] | None, owner_id: str) -> bool:
    """所有者が一致し、かつ論理削除されていないドキュメントだけを操作対象にする。"""

    if not data:
        return False
    return data.get("owner_id") == owner_id and data.get("is_active") is True


def _resolve_updates(updates: ContentUpdates, current: Mapping[str, Any]) -> dict[str, Any]:
    resolved = updates(current) if callable(updates) else updates
    return dict(resolved)


class FirestoreBaseStore:
    """Firestore クライアント共通のヘルパー。"""

    def __init__(self, client: firestore.Client):
        self._client = client


class FirestoreContentStore(FirestoreBaseStore):
    """学習コンテンツを Firestore の単一コレクションで管理する。

    すべての読み書きは `owner_id` と `is_active == True` を条件に含める。
    他ユーザーのドキュメントや論理削除済みドキュメントは「存在しない」ものとして扱い、
    呼び出し側にはマッチ件数 0 として返す。
    """

    def __init__(self, client: firestore.Client, collection_name: str = "contents"):
        super().__init__(client)
        self._contents = client.collection(collection_name)

    # --- queries ---
    def _scoped_query(
        self,
        owner_id: str,
        filters: Mapping[str, Any] | None = None,
    ) -> firestore.Query:
        """Build the owner + active query with additional equality filters."""

        query = self._contents.where("owner_id", "==", owner_id).where(
            "is_active", "==", True
        )
        for field_path, value in (filters or {}).items():
            query = query.where(field_path, "==", value)
        return query

    def stream_contents(
        self,
        owner_id: str,
        filters: Mapping[str, Any] | None = None,
    ) -> Iterator[dict[str, Any]]:
        for snapshot in self._scoped_query(owner_id, filters).stream():
            yield _snapshot_to_document(snapshot)

    def list_contents(
        self,
        owner_id: str,
        *,
        filters: Mapping[str, Any] | None = None,
        order_by: str = "created_at",
        descending: bool = True,
        offset: int = 0,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        """Firestore 側で order_by + offset/limit を適用したページを返す。

        同じ値が並んだときの順序を固定するため、ドキュメント ID を第2キーにする。
        """

        normalized_limit = max(0, int(limit))
        normalized_offset = max(0, int(offset))
        if normalized_limit == 0:
            return []
        direction = (
            firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
        )
        query = (
            self._scoped_query(owner_id, filters)
            .order_by(order_by, direction=direction)
            .order_by("__name__", direction=direction)
        )
        if normalized_offset:
            query = query.offset(normalized_offset)
        query = query.limit(normalized_limit)
        return [_snapshot_to_document(snapshot) for snapshot in query.stream()]

    def count_contents(
        self,
        owner_id: str,
        *,
        filters: Mapping[str, Any] | None = None,
    ) -> int:
        query = self._scoped_query(owner_id, filters)
        try:
            aggregation = query.count().get()
        except AttributeError:
            aggregation = None
        else:
            return _extract_count_from_aggregation(aggregation)
        return sum(1 for _ in query.stream())

    def list_due_contents(
        self,
        owner_id: str,
        *,
        as_of: str,
    ) -> list[dict[str, Any]]:
        """アーカイブされていない `next_review_at <= as_of` の項目を古い順に返す。"""

        query = (
            self._scoped_query(owner_id, {"archived": False})
            .where("next_review_at", "<=", as_of)
            .order_by("next_review_at", direction=firestore.Query.ASCENDING)
        )
        return [_snapshot_to_document(snapshot) for snapshot in query.stream()]

    def get_active_content(self, owner_id: str, content_id: str) -> dict[str, Any] | None:
        if not is_valid_document_id(content_id):
            return None
        snapshot = self._contents.document(content_id).get()
        if not snapshot.exists:
            return None
        data = snapshot.to_dict() or {}
        if not _is_visible_to(data, owner_id):
            return None
        return _snapshot_to_document(snapshot)

    # --- writes ---
    def create_content(
        self,
        owner_id: str,
        fields: Mapping[str, Any],
        *,
        now: datetime | None = None,
    ) -> str:
        """Insert a new active item and return its generated id.

        作成直後は daily 段階・レビュー回数 0・次回復習日時=作成時刻。
        `fields` に review_stage があればそれを優先する（編集と同じく直接指定可能）。
        """

        created_at = to_iso(now or datetime.now(UTC))
        content_id = generate_content_id()
        payload: dict[str, Any] = {
            "review_stage": "daily",
            "tags": [],
            **dict(fields),
            "owner_id": owner_id,
            "review_count": 0,
            "next_review_at": created_at,
            "created_at": created_at,
            "updated_at": created_at,
            "is_active": True,
            "archived": False,
        }
        self._contents.document(content_id).set(payload)
        return content_id

    def insert_many_contents(
        self,
        owner_id: str,
        rows: Iterable[Mapping[str, Any]],
        *,
        now: datetime | None = None,
    ) -> list[str]:
        """Insert several items with a single write batch."""

        created_at = to_iso(now or datetime.now(UTC))
        batch = self._client.batch()
        ids: list[str] = []
        for fields in rows:
            content_id = generate_content_id()
            batch.set(
                self._contents.document(content_id),
                {
                    "review_stage": "daily",
                    "tags": [],
                    **dict(fields),
                    "owner_id": owner_id,
                    "review_count": 0,
                    "next_review_at": created_at,
                    "created_at": created_at,
                    "updated_at": created_at,
                    "is_active": True,
                    "archived": False,
                },
            )
            ids.append(content_id)
        if ids:
            batch.commit()
        return ids

    def update_active_content(
        self,
        owner_id: str,
        content_id: str,
        updates: ContentUpdates,
    ) -> int:
        """Apply ``updates`` when the item is owned and active; return the matched count.

        書き込みは読み取った時点の update_time を前提条件にする。間に別の書き込みが
        入った場合は読み直して所有者・有効フラグを再確認し、更新内容も作り直す。
        これによりレビュー回数の取りこぼしや、削除済み項目への書き込みが起きない。
        """

        if not is_valid_document_id(content_id):
            return 0
        doc_ref = self._contents.document(content_id)
        for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
            snapshot = doc_ref.get()
            data = snapshot.to_dict() if snapshot.exists else None
            if not _is_visible_to(data, owner_id):
                return 0
            try:
                doc_ref.update(
                    _resolve_updates(updates, data or {}),
                    option=self._client.write_option(last_update_time=snapshot.update_time),
                )
            except gexc.FailedPrecondition:
                self._log_write_conflict(owner_id, [content_id], attempt)
                continue
            return 1
        raise ContentWriteConflictError(content_id)

    def update_many_active_content(
        self,
        owner_id: str,
        content_ids: Iterable[str],
        updates: ContentUpdates,
    ) -> int:
        """Apply the same predicate + update to a set of ids in one write batch.

        存在しない/他人の/論理削除済みの ID は黙ってスキップする。各更新は読み取り時の
        update_time を前提条件に持ち、どれか 1 件でも崩れればバッチ全体が失敗するので、
        その場合は全件を読み直して組み立て直す。
        """

        unique_ids: list[str] = []
        seen: set[str] = set()
        for content_id in content_ids:
            if content_id in seen or not is_valid_document_id(content_id):
                continue
            seen.add(content_id)
            unique_ids.append(content_id)

        for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
            batch = self._client.batch()
            matched = 0
            for content_id in unique_ids:
                doc_ref = self._contents.document(content_id)
                snapshot = doc_ref.get()
                data = snapshot.to_dict() if snapshot.exists else None
                if not _is_visible_to(data, owner_id):
                    continue
                batch.update(
                    doc_ref,
                    _resolve_updates(updates, data or {}),
                    option=self._client.write_option(last_update_time=snapshot.update_time),
                )
                matched += 1
            if matched:
                try:
                    batch.commit()
                except gexc.FailedPrecondition:
                    self._log_write_conflict(owner_id, unique_ids, attempt)
                    continue
            logger.info(
                "firestore_bulk_update",
                owner_id=owner_id,
                requested=len(unique_ids),
                matched=matched,
            )
            return matched
        raise ContentWriteConflictError(None)

    @staticmethod
    def _log_write_conflict(owner_id: str, content_ids: Sequence[str], attempt: int) -> None:
        logger.info(
            "firestore_write_conflict",
            owner_id=owner_id,
            content_ids=list(content_ids),
            attempt=attempt,
            max_attempts=_MAX_WRITE_ATTEMPTS,
        )


class AppFirestoreStore:
    """Firestore 版のアプリ永続化ストア。"""

    def __init__(
        self,
        *,
        client: firestore.Client | None = None,
        collection_name: str = "contents",
    ) -> None:
        self._client = client or firestore.Client()
        self.contents = FirestoreContentStore(self._client, collection_name)

    def stream_contents(
        self, owner_id: str, filters: Mapping[str, Any] | None = None
    ) -> Iterator[dict[str, Any]]:
        return self.contents.stream_contents(owner_id, filters)

    def list_contents(self, owner_id: str, **kwargs: Any) -> list[dict[str, Any]]:
        return self.contents.list_contents(owner_id, **kwargs)

    def count_contents(
        self, owner_id: str, *, filters: Mapping[str, Any] | None = None
    ) -> int:
        return self.contents.count_contents(owner_id, filters=filters)

    def list_due_contents(
        self, owner_id: str, *, as_of: str | None = None
    ) -> list[dict[str, Any]]:
        return self.contents.list_due_contents(owner_id, as_of=as_of or now_iso())

    def get_active_content(self, owner_id: str, content_id: str) -> dict[str, Any] | None:
        return self.contents.get_active_content(owner_id, content_id)

    def create_content(
        self, owner_id: str, fields: Mapping[str, Any], *, now: datetime | None = None
    ) -> str:
        return self.contents.create_content(owner_id, fields, now=now)

    def insert_many_contents(
        self,
        owner_id: str,
        rows: Iterable[Mapping[str, Any]],
        *,
        now: datetime | None = None,
    ) -> list[str]:
        return self.contents.insert_many_contents(owner_id, rows, now=now)

    def update_active_content(
        self, owner_id: str, content_id: str, updates: ContentUpdates
    ) -> int:
        return self.contents.update_active_content(owner_id, content_id, updates)

    def update_many_active_content(
        self, owner_id: str, content_ids: Iterable[str], updates: ContentUpdates
    ) -> int:
        return self.contents.update_many_active_content(owner_id, content_ids, updates)
