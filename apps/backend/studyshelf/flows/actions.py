from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..config import settings
from ..coerce import to_iso
from ..errors import (
    BulkActionTooLargeError,
    EmptyImportError,
    ImportItemTooLongError,
    InvalidActionError,
)
from ..logging import logger
from ..models.common import ContentAction, ReviewStage
from ..models.content import (
    CONTENT_MAX_LENGTH,
    DEFAULT_TITLE,
    TITLE_MAX_LENGTH,
    ContentCreateRequest,
    ContentImportRequest,
    ContentUpdateRequest,
    ContentWriteRequest,
)
from ..srs import record_review
from ..store import AppFirestoreStore, store
from ..store.firestore_store import ContentUpdates
from ..text import ImportedChunk, split_import_text

COPY_SUFFIX = " (Copy)"

# 応答メッセージ用の過去形
_PAST_TENSE: dict[ContentAction, str] = {
    ContentAction.reviewed: "reviewed",
    ContentAction.archive: "archived",
    ContentAction.delete: "deleted",
}

# 複製時に引き継ぐフィールド
_COPIED_FIELDS = (
    "content",
    "subject_name",
    "subject_color",
    "tags",
    "difficulty",
    "estimated_time",
)


def parse_action(raw: Any) -> ContentAction:
    """Parse an action name at the boundary; unknown names raise ``InvalidActionError``."""

    if isinstance(raw, ContentAction):
        return raw
    try:
        return ContentAction(raw)
    except ValueError as exc:
        raise InvalidActionError(raw) from exc


def past_tense(action: ContentAction) -> str:
    return _PAST_TENSE[action]


@dataclass(frozen=True)
class ActionResult:
    matched_count: int
    modified_count: int
    # 単一操作で実際に書き込んだフィールド（review 応答で使う）
    applied: dict[str, Any] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.matched_count > 0


def _write_fields(payload: ContentWriteRequest) -> dict[str, Any]:
    """Flatten a create/edit payload into stored document fields."""

    return {
        "title": payload.title,
        "content": payload.content,
        "subject_name": payload.subject.name,
        "subject_color": payload.subject.color,
        "tags": list(payload.tags),
        "difficulty": payload.difficulty.value,
        "review_stage": payload.review_stage.value,
        "estimated_time": payload.estimated_time,
    }


def _check_chunk_lengths(chunks: Sequence[ImportedChunk]) -> None:
    """Apply the create-time title/body limits to every imported chunk before writing."""

    for position, chunk in enumerate(chunks, start=1):
        if chunk.title is not None and len(chunk.title) > TITLE_MAX_LENGTH:
            raise ImportItemTooLongError(position, "title", TITLE_MAX_LENGTH)
        if len(chunk.body) > CONTENT_MAX_LENGTH:
            raise ImportItemTooLongError(position, "content", CONTENT_MAX_LENGTH)


class ContentActionDispatcher:
    """Owner-scoped state transitions of content items.

    すべての書き込みは「所有者一致かつ is_active」のドキュメントだけに効く。
    マッチしなかった場合はマッチ件数 0 を返し、404 への変換はルーター側で行う。
    """

    def __init__(
        self,
        content_store: AppFirestoreStore | None = None,
        *,
        bulk_limit: int | None = None,
        import_limit: int | None = None,
    ) -> None:
        self._store = content_store or store
        self._bulk_limit = bulk_limit or settings.bulk_action_max_items
        self._import_limit = import_limit or settings.import_max_items

    def _updates_for(
        self, action: ContentAction, now: datetime, applied: dict[str, Any]
    ) -> ContentUpdates:
        timestamp = to_iso(now)
        if action is ContentAction.reviewed:

            def _review(doc: Mapping[str, Any]) -> Mapping[str, Any]:
                updates = record_review(doc, now=now)
                applied.update(updates)
                return updates

            return _review
        if action is ContentAction.archive:
            updates = {"archived": True, "updated_at": timestamp}
        else:
            updates = {"is_active": False, "updated_at": timestamp}
        applied.update(updates)
        return updates

    def apply(
        self,
        owner_id: str,
        action: ContentAction | str,
        content_id: str,
        *,
        now: datetime | None = None,
    ) -> ActionResult:
        parsed = parse_action(action)
        applied: dict[str, Any] = {}
        updates = self._updates_for(parsed, now or datetime.now(UTC), applied)
        matched = self._store.update_active_content(owner_id, content_id, updates)
        logger.info(
            "content_action_applied",
            owner_id=owner_id,
            content_id=content_id,
            action=parsed.value,
            matched_count=matched,
        )
        return ActionResult(
            matched_count=matched,
            modified_count=matched,
            applied=applied if matched else {},
        )

    def apply_bulk(
        self,
        owner_id: str,
        action: ContentAction | str,
        content_ids: Sequence[str],
        *,
        now: datetime | None = None,
    ) -> ActionResult:
        """Apply one action to many ids in a single write batch.

        なぜ: 操作名の検証と件数上限の確認をストアへ触れる前に行うことで、
        不正なリクエストでは一切書き込みが起きないようにする。
        """

        parsed = parse_action(action)
        if len(content_ids) > self._bulk_limit:
            raise BulkActionTooLargeError(len(content_ids), self._bulk_limit)
        updates = self._updates_for(parsed, now or datetime.now(UTC), {})
        matched = self._store.update_many_active_content(owner_id, content_ids, updates)
        logger.info(
            "bulk_action_applied",
            owner_id=owner_id,
            action=parsed.value,
            requested=len(content_ids),
            modified_count=matched,
        )
        return ActionResult(matched_count=matched, modified_count=matched)

    def create(
        self,
        owner_id: str,
        payload: ContentCreateRequest,
        *,
        now: datetime | None = None,
    ) -> str:
        content_id = self._store.create_content(owner_id, _write_fields(payload), now=now)
        logger.info("content_created", owner_id=owner_id, content_id=content_id)
        return content_id

    def update(
        self,
        owner_id: str,
        content_id: str,
        payload: ContentUpdateRequest,
        *,
        now: datetime | None = None,
    ) -> ActionResult:
        fields = _write_fields(payload)
        fields["updated_at"] = to_iso(now or datetime.now(UTC))
        matched = self._store.update_active_content(owner_id, content_id, fields)
        logger.info(
            "content_updated",
            owner_id=owner_id,
            content_id=content_id,
            matched_count=matched,
        )
        return ActionResult(matched_count=matched, modified_count=matched)

    def duplicate(
        self,
        owner_id: str,
        content_id: str,
        *,
        now: datetime | None = None,
    ) -> str | None:
        """Copy an item as a fresh daily item; returns the new id or None when not found."""

        original = self._store.get_active_content(owner_id, content_id)
        if original is None:
            return None
        fields: dict[str, Any] = {name: original.get(name) for name in _COPIED_FIELDS}
        fields["tags"] = list(original.get("tags") or [])
        fields["title"] = f"{original.get('title') or DEFAULT_TITLE}{COPY_SUFFIX}"
        fields["review_stage"] = ReviewStage.daily.value
        new_id = self._store.create_content(owner_id, fields, now=now)
        logger.info(
            "content_duplicated",
            owner_id=owner_id,
            source_id=content_id,
            content_id=new_id,
        )
        return new_id

    def import_text(
        self,
        owner_id: str,
        request: ContentImportRequest,
        *,
        now: datetime | None = None,
    ) -> list[str]:
        chunks = split_import_text(request.text)
        if not chunks:
            raise EmptyImportError("No items found in the import text")
        if len(chunks) > self._import_limit:
            raise BulkActionTooLargeError(len(chunks), self._import_limit)
        _check_chunk_lengths(chunks)
        rows = [
            {
                "title": chunk.title,
                "content": chunk.body,
                "subject_name": request.subject.name,
                "subject_color": request.subject.color,
                "tags": list(request.tags),
                "difficulty": request.difficulty.value,
                "estimated_time": request.estimated_time,
            }
            for chunk in chunks
        ]
        ids = self._store.insert_many_contents(owner_id, rows, now=now)
        logger.info("content_imported", owner_id=owner_id, imported_count=len(ids))
        return ids
