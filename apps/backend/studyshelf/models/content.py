from __future__ import annotations

from pydantic import Field, field_validator

from .common import CamelModel, Difficulty, ReviewStage

DEFAULT_TITLE = "Untitled"
DEFAULT_SUBJECT_COLOR = "bg-gray-500"
DEFAULT_ESTIMATED_TIME = "5 min"

# 本文の上限。Firestore の 1 ドキュメント 1MiB 制限に余裕を持たせる。
CONTENT_MAX_LENGTH: int = 100_000
TITLE_MAX_LENGTH: int = 200
TAG_MAX_LENGTH: int = 50
TAGS_MAX_ITEMS: int = 50


class Subject(CamelModel):
    """Display category of an item (not a normalized entity)."""

    name: str = Field(min_length=1, max_length=100)
    color: str = Field(default=DEFAULT_SUBJECT_COLOR, max_length=64)


def _normalise_tags(raw: list[str]) -> list[str]:
    """Reject over-long tags, then trim and drop blanks/duplicates in first-seen order.

    作成・編集・インポートで同じ検証を通す。
    """

    for tag in raw:
        if len(tag) > TAG_MAX_LENGTH:
            raise ValueError(f"tag must be at most {TAG_MAX_LENGTH} characters")
    normalised: list[str] = []
    seen: set[str] = set()
    for candidate in raw:
        trimmed = candidate.strip()
        if not trimmed or trimmed in seen:
            continue
        seen.add(trimmed)
        normalised.append(trimmed)
    return normalised


class ContentWriteRequest(CamelModel):
    """Editable fields shared by create and update.

    作成と編集で同じフィールド集合を上書きするため、共通モデルにまとめる。
    """

    title: str | None = Field(default=None, max_length=TITLE_MAX_LENGTH)
    content: str = Field(min_length=1, max_length=CONTENT_MAX_LENGTH)
    subject: Subject
    tags: list[str] = Field(default_factory=list, max_length=TAGS_MAX_ITEMS)
    difficulty: Difficulty = Difficulty.medium
    review_stage: ReviewStage = ReviewStage.daily
    estimated_time: str = Field(default=DEFAULT_ESTIMATED_TIME, max_length=32)

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: list[str]) -> list[str]:
        return _normalise_tags(value)

    @field_validator("title")
    @classmethod
    def _blank_title_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class ContentCreateRequest(ContentWriteRequest):
    pass


class ContentUpdateRequest(ContentWriteRequest):
    pass


class ContentImportRequest(CamelModel):
    """Plain-text import; items are separated by `---` lines."""

    text: str = Field(min_length=1, max_length=CONTENT_MAX_LENGTH * 5)
    subject: Subject = Field(default_factory=lambda: Subject(name="General"))
    difficulty: Difficulty = Difficulty.medium
    estimated_time: str = Field(default=DEFAULT_ESTIMATED_TIME, max_length=32)
    tags: list[str] = Field(default_factory=list, max_length=TAGS_MAX_ITEMS)

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: list[str]) -> list[str]:
        return _normalise_tags(value)


class ContentActionRequest(CamelModel):
    """Single action request (`{"action": "reviewed", "contentId": "..."}`)."""

    action: str
    content_id: str = Field(min_length=1)


class BulkActionRequest(CamelModel):
    """Bulk action request (`{"action": "archive", "itemIds": [...]}`)."""

    action: str
    item_ids: list[str]


class ContentListItem(CamelModel):
    """Row of the library list. Dates are calendar days (YYYY-MM-DD)."""

    id: str
    title: str
    content: str
    subject: Subject
    review_stage: ReviewStage
    next_review: str
    date_added: str
    difficulty: Difficulty
    tags: list[str]
    review_count: int
    estimated_time: str
    archived: bool = False


class TodayItem(ContentListItem):
    content_html: str


class ContentDetailResponse(CamelModel):
    id: str
    title: str
    content: str
    subject: Subject
    tags: list[str]
    difficulty: Difficulty
    review_stage: ReviewStage
    review_count: int
    estimated_time: str
    next_review_date: str
    archived: bool
    created_at: str
    updated_at: str


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class ReviewStageCounts(CamelModel):
    daily: int = 0
    weekly: int = 0
    monthly: int = 0
    yearly: int = 0


class DifficultyCounts(CamelModel):
    easy: int = 0
    medium: int = 0
    hard: int = 0


class LibraryStats(CamelModel):
    """Statistics over every active item of the owner, regardless of list filters."""

    total_items: int = 0
    due_today_count: int = 0
    review_stages: ReviewStageCounts = Field(default_factory=ReviewStageCounts)
    difficulties: DifficultyCounts = Field(default_factory=DifficultyCounts)
    subjects: dict[str, int] = Field(default_factory=dict)


class ContentListResponse(CamelModel):
    contents: list[ContentListItem]
    pagination: Pagination
    stats: LibraryStats


class TodayResponse(CamelModel):
    contents: list[TodayItem]
    count: int
    total_estimated_minutes: int


class ContentCreatedResponse(CamelModel):
    id: str
    message: str


class ContentImportResponse(CamelModel):
    ids: list[str]
    imported_count: int
    message: str


class ContentActionResponse(CamelModel):
    message: str
    action: str


class BulkActionResponse(CamelModel):
    message: str
    modified_count: int


class ReviewRecordedResponse(CamelModel):
    message: str
    review_count: int
    review_stage: ReviewStage
    next_review_date: str
