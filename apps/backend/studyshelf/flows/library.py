from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import anyio

from ..coerce import calendar_day, normalize_non_negative_int, now_iso
from ..logging import logger
from ..models.common import Difficulty, ReviewStage
from ..models.content import (
    DEFAULT_ESTIMATED_TIME,
    DEFAULT_SUBJECT_COLOR,
    DEFAULT_TITLE,
    ContentDetailResponse,
    ContentListItem,
    DifficultyCounts,
    LibraryStats,
    Pagination,
    ReviewStageCounts,
    Subject,
    TodayItem,
    TodayResponse,
)
from ..srs import is_due
from ..store import AppFirestoreStore, store
from ..text import export_documents, parse_estimated_minutes, render_content_html

# API の sortBy 値 → 保存フィールド。未知の値は created_at へフォールバックする。
SORT_FIELDS: dict[str, str] = {
    "createdAt": "created_at",
    "title": "title",
    "subject": "subject_name",
    "nextReview": "next_review_at",
    "difficulty": "difficulty",
    "reviewStage": "review_stage",
}
DEFAULT_SORT_FIELD = "created_at"

# 画面のセレクトボックスが送る「絞り込みなし」の値
ALL_FILTER_VALUE = "All"

_SEARCHED_FIELDS = ("title", "content", "subject_name")


def _active_filter(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    if not trimmed or trimmed == ALL_FILTER_VALUE:
        return None
    return trimmed


@dataclass(frozen=True)
class LibraryQuery:
    """Filters, sort and paging of one library listing."""

    owner_id: str
    subject: str | None = None
    review_stage: str | None = None
    difficulty: str | None = None
    search: str | None = None
    sort_by: str = "createdAt"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20

    def equality_filters(self) -> dict[str, str]:
        filters: dict[str, str] = {}
        for field_path, raw in (
            ("subject_name", self.subject),
            ("review_stage", self.review_stage),
            ("difficulty", self.difficulty),
        ):
            value = _active_filter(raw)
            if value is not None:
                filters[field_path] = value
        return filters

    @property
    def search_term(self) -> str | None:
        term = (self.search or "").strip()
        return term.casefold() or None

    @property
    def order_field(self) -> str:
        return SORT_FIELDS.get(self.sort_by, DEFAULT_SORT_FIELD)

    @property
    def descending(self) -> bool:
        return self.sort_order == "desc"

    @property
    def offset(self) -> int:
        return (max(1, self.page) - 1) * self.limit


@dataclass
class LibraryPage:
    items: list[ContentListItem]
    total: int
    page: int
    limit: int
    stats: LibraryStats = field(default_factory=LibraryStats)

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)

    def pagination(self) -> Pagination:
        return Pagination(page=self.page, limit=self.limit, total=self.total, pages=self.pages)


def _enum_or_default(enum_cls: type, raw: Any, default: Any) -> Any:
    try:
        return enum_cls(raw)
    except ValueError:
        return default


def _subject_of(doc: Mapping[str, Any]) -> Subject:
    name = str(doc.get("subject_name") or "").strip() or "General"
    color = str(doc.get("subject_color") or "").strip() or DEFAULT_SUBJECT_COLOR
    return Subject(name=name, color=color)


def _row_fields(doc: Mapping[str, Any], *, as_of: str) -> dict[str, Any]:
    """Read-time defaults shared by list rows and the today queue."""

    created_at = doc.get("created_at")
    return {
        "id": str(doc.get("id")),
        "title": str(doc.get("title") or "").strip() or DEFAULT_TITLE,
        "content": str(doc.get("content") or ""),
        "subject": _subject_of(doc),
        "review_stage": _enum_or_default(ReviewStage, doc.get("review_stage"), ReviewStage.daily),
        "next_review": calendar_day(doc.get("next_review_at"), fallback=as_of),
        "date_added": calendar_day(created_at) if created_at else "",
        "difficulty": _enum_or_default(Difficulty, doc.get("difficulty"), Difficulty.medium),
        "tags": [str(tag) for tag in doc.get("tags") or []],
        "review_count": normalize_non_negative_int(doc.get("review_count")),
        "estimated_time": str(doc.get("estimated_time") or "").strip() or DEFAULT_ESTIMATED_TIME,
        "archived": bool(doc.get("archived", False)),
    }


def build_list_item(doc: Mapping[str, Any], *, as_of: str | None = None) -> ContentListItem:
    return ContentListItem(**_row_fields(doc, as_of=as_of or now_iso()))


def build_detail(doc: Mapping[str, Any], *, as_of: str | None = None) -> ContentDetailResponse:
    """詳細表示用。一覧と違い日時はタイムスタンプのまま返す。"""

    row = _row_fields(doc, as_of=as_of or now_iso())
    return ContentDetailResponse(
        id=row["id"],
        title=row["title"],
        content=row["content"],
        subject=row["subject"],
        tags=row["tags"],
        difficulty=row["difficulty"],
        review_stage=row["review_stage"],
        review_count=row["review_count"],
        estimated_time=row["estimated_time"],
        next_review_date=str(doc.get("next_review_at") or as_of or now_iso()),
        archived=row["archived"],
        created_at=str(doc.get("created_at") or ""),
        updated_at=str(doc.get("updated_at") or doc.get("created_at") or ""),
    )


def matches_search(doc: Mapping[str, Any], term: str) -> bool:
    """大文字小文字を無視した部分一致。タイトル/本文/タグ/科目名のいずれかに当たれば True。"""

    needle = term.casefold()
    for field_path in _SEARCHED_FIELDS:
        if needle in str(doc.get(field_path) or "").casefold():
            return True
    return any(needle in str(tag).casefold() for tag in doc.get("tags") or [])


def sort_documents(
    docs: Iterable[Mapping[str, Any]], *, order_field: str, descending: bool
) -> list[Mapping[str, Any]]:
    """Sort by the stored string value with the document id as tie-breaker."""

    return sorted(
        docs,
        key=lambda doc: (str(doc.get(order_field) or ""), str(doc.get("id") or "")),
        reverse=descending,
    )


def compute_stats(docs: Iterable[Mapping[str, Any]], *, as_of: str) -> LibraryStats:
    """Fold the owner's active documents into library statistics.

    段階・難易度は保存値をそのまま数える（値が無い文書を daily や medium に寄せない）。
    """

    stages = {stage.value: 0 for stage in ReviewStage}
    difficulties = {level.value: 0 for level in Difficulty}
    subjects: dict[str, int] = {}
    total = 0
    due = 0
    for doc in docs:
        total += 1
        if is_due(doc, as_of):
            due += 1
        stage = doc.get("review_stage")
        if stage in stages:
            stages[stage] += 1
        level = doc.get("difficulty")
        if level in difficulties:
            difficulties[level] += 1
        subject_name = doc.get("subject_name")
        if subject_name:
            subjects[subject_name] = subjects.get(subject_name, 0) + 1
    return LibraryStats(
        total_items=total,
        due_today_count=due,
        review_stages=ReviewStageCounts(**stages),
        difficulties=DifficultyCounts(**difficulties),
        subjects=subjects,
    )


class LibraryQueryFlow:
    """Library listing, statistics, today queue and export.

    Firestore クライアントは同期 API のため、読み取りはすべて
    `anyio.to_thread.run_sync` でスレッドへ逃がす。一覧・件数・統計は互いに独立した
    読み取りなのでタスクグループで同時に走らせ、3つ揃ってから返す。
    """

    def __init__(self, content_store: AppFirestoreStore | None = None) -> None:
        self._store = content_store or store

    def _search_candidates(self, query: LibraryQuery) -> list[Mapping[str, Any]]:
        term = query.search_term
        candidates = self._store.stream_contents(query.owner_id, query.equality_filters())
        matched = [doc for doc in candidates if term is None or matches_search(doc, term)]
        return sort_documents(matched, order_field=query.order_field, descending=query.descending)

    def _read_stats(self, owner_id: str, as_of: str) -> LibraryStats:
        return compute_stats(self._store.stream_contents(owner_id), as_of=as_of)

    async def run(self, query: LibraryQuery) -> LibraryPage:
        as_of = now_iso()
        results: dict[str, Any] = {}

        async def _page() -> None:
            results["docs"] = await anyio.to_thread.run_sync(
                partial(
                    self._store.list_contents,
                    query.owner_id,
                    filters=query.equality_filters(),
                    order_by=query.order_field,
                    descending=query.descending,
                    offset=query.offset,
                    limit=query.limit,
                )
            )

        async def _total() -> None:
            results["total"] = await anyio.to_thread.run_sync(
                partial(
                    self._store.count_contents,
                    query.owner_id,
                    filters=query.equality_filters(),
                )
            )

        async def _searched() -> None:
            matched = await anyio.to_thread.run_sync(self._search_candidates, query)
            results["total"] = len(matched)
            results["docs"] = matched[query.offset : query.offset + query.limit]

        async def _stats() -> None:
            results["stats"] = await anyio.to_thread.run_sync(
                self._read_stats, query.owner_id, as_of
            )

        async with anyio.create_task_group() as tg:
            if query.search_term is None:
                tg.start_soon(_page)
                tg.start_soon(_total)
            else:
                # 部分一致は Firestore 側で表現できないため候補を読み出して絞り込む
                tg.start_soon(_searched)
            tg.start_soon(_stats)

        items = [build_list_item(doc, as_of=as_of) for doc in results["docs"]]
        logger.info(
            "library_listed",
            owner_id=query.owner_id,
            page=query.page,
            limit=query.limit,
            total=results["total"],
            searched=query.search_term is not None,
        )
        return LibraryPage(
            items=items,
            total=results["total"],
            page=query.page,
            limit=query.limit,
            stats=results["stats"],
        )

    async def today(self, owner_id: str) -> TodayResponse:
        """今日復習すべき項目（アーカイブ済みを除く）を期限の古い順に返す。"""

        as_of = now_iso()
        docs = await anyio.to_thread.run_sync(
            partial(self._store.list_due_contents, owner_id, as_of=as_of)
        )
        items = [
            TodayItem(
                **_row_fields(doc, as_of=as_of),
                content_html=render_content_html(str(doc.get("content") or "")),
            )
            for doc in docs
        ]
        total_minutes = sum(parse_estimated_minutes(item.estimated_time) for item in items)
        return TodayResponse(
            contents=items,
            count=len(items),
            total_estimated_minutes=total_minutes,
        )

    async def export(self, query: LibraryQuery) -> str:
        """Filtered + sorted items in the import text format, without paging."""

        docs = await anyio.to_thread.run_sync(self._search_candidates, query)
        return export_documents(docs)

    async def detail(self, owner_id: str, content_id: str) -> ContentDetailResponse | None:
        doc = await anyio.to_thread.run_sync(
            self._store.get_active_content, owner_id, content_id
        )
        if doc is None:
            return None
        return build_detail(doc)
