from __future__ import annotations

from functools import partial

import anyio
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse

from ..auth import get_current_user
from ..config import settings
from ..errors import ContentNotFoundError
from ..flows.actions import ContentActionDispatcher, parse_action, past_tense
from ..flows.library import LibraryQuery, LibraryQueryFlow
from ..models.common import MessageResponse, ReviewStage
from ..models.content import (
    BulkActionRequest,
    BulkActionResponse,
    ContentActionRequest,
    ContentActionResponse,
    ContentCreatedResponse,
    ContentCreateRequest,
    ContentDetailResponse,
    ContentImportRequest,
    ContentImportResponse,
    ContentListResponse,
    ContentUpdateRequest,
    ReviewRecordedResponse,
    TodayResponse,
)

router = APIRouter(tags=["content"])

_library = LibraryQueryFlow()
_actions = ContentActionDispatcher()


def _library_query(
    owner_id: str = Depends(get_current_user),
    subject: str | None = Query(default=None),
    review_stage: str | None = Query(default=None, alias="reviewStage"),
    difficulty: str | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1, le=settings.max_page_size),
) -> LibraryQuery:
    return LibraryQuery(
        owner_id=owner_id,
        subject=subject,
        review_stage=review_stage,
        difficulty=difficulty,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit or settings.default_page_size,
    )


@router.get("/all", response_model=ContentListResponse, response_model_by_alias=True)
async def list_contents(query: LibraryQuery = Depends(_library_query)) -> ContentListResponse:
    """Filtered/sorted/paged library with statistics over the whole library.

    統計はフィルタを無視して所有者の全有効項目から計算する。
    """

    result = await _library.run(query)
    return ContentListResponse(
        contents=result.items,
        pagination=result.pagination(),
        stats=result.stats,
    )


@router.get("/today", response_model=TodayResponse, response_model_by_alias=True)
async def list_today(owner_id: str = Depends(get_current_user)) -> TodayResponse:
    return await _library.today(owner_id)


@router.get("/export", response_class=PlainTextResponse)
async def export_contents(query: LibraryQuery = Depends(_library_query)) -> PlainTextResponse:
    """ページングなしで、インポートと同じ `---` 区切りのテキストを返す。"""

    body = await _library.export(query)
    return PlainTextResponse(content=body)


@router.post(
    "",
    response_model=ContentCreatedResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_content(
    req: ContentCreateRequest,
    owner_id: str = Depends(get_current_user),
) -> ContentCreatedResponse:
    content_id = await anyio.to_thread.run_sync(partial(_actions.create, owner_id, req))
    return ContentCreatedResponse(id=content_id, message="Content created successfully")


@router.post(
    "/import",
    response_model=ContentImportResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def import_contents(
    req: ContentImportRequest,
    owner_id: str = Depends(get_current_user),
) -> ContentImportResponse:
    ids = await anyio.to_thread.run_sync(partial(_actions.import_text, owner_id, req))
    return ContentImportResponse(
        ids=ids,
        imported_count=len(ids),
        message=f"{len(ids)} items imported successfully",
    )


@router.post("/actions", response_model=ContentActionResponse)
async def apply_action(
    req: ContentActionRequest,
    owner_id: str = Depends(get_current_user),
) -> ContentActionResponse:
    action = parse_action(req.action)
    result = await anyio.to_thread.run_sync(
        partial(_actions.apply, owner_id, action, req.content_id)
    )
    if not result.found:
        raise ContentNotFoundError(req.content_id)
    return ContentActionResponse(
        message=f"Content {past_tense(action)} successfully",
        action=action.value,
    )


@router.post("/bulk-actions", response_model=BulkActionResponse, response_model_by_alias=True)
async def apply_bulk_action(
    req: BulkActionRequest,
    owner_id: str = Depends(get_current_user),
) -> BulkActionResponse:
    """同じ操作を複数 ID へ一括適用する。見つからない ID は件数に含めない。"""

    action = parse_action(req.action)
    result = await anyio.to_thread.run_sync(
        partial(_actions.apply_bulk, owner_id, action, req.item_ids)
    )
    return BulkActionResponse(
        message=f"{result.modified_count} items {past_tense(action)} successfully",
        modified_count=result.modified_count,
    )


@router.get("/{content_id}", response_model=ContentDetailResponse, response_model_by_alias=True)
async def get_content(
    content_id: str,
    owner_id: str = Depends(get_current_user),
) -> ContentDetailResponse:
    detail = await _library.detail(owner_id, content_id)
    if detail is None:
        raise ContentNotFoundError(content_id)
    return detail


@router.put("/{content_id}", response_model=MessageResponse)
async def update_content(
    content_id: str,
    req: ContentUpdateRequest,
    owner_id: str = Depends(get_current_user),
) -> MessageResponse:
    result = await anyio.to_thread.run_sync(
        partial(_actions.update, owner_id, content_id, req)
    )
    if not result.found:
        raise ContentNotFoundError(content_id)
    return MessageResponse(message="Content updated successfully")


@router.delete("/{content_id}", response_model=MessageResponse)
async def delete_content(
    content_id: str,
    owner_id: str = Depends(get_current_user),
) -> MessageResponse:
    """論理削除。以後この項目はどの読み取りにも現れない。"""

    result = await anyio.to_thread.run_sync(
        partial(_actions.apply, owner_id, "delete", content_id)
    )
    if not result.found:
        raise ContentNotFoundError(content_id)
    return MessageResponse(message="Content deleted successfully")


@router.post("/{content_id}/archive", response_model=MessageResponse)
async def archive_content(
    content_id: str,
    owner_id: str = Depends(get_current_user),
) -> MessageResponse:
    result = await anyio.to_thread.run_sync(
        partial(_actions.apply, owner_id, "archive", content_id)
    )
    if not result.found:
        raise ContentNotFoundError(content_id)
    return MessageResponse(message="Content archived successfully")


@router.post(
    "/{content_id}/review",
    response_model=ReviewRecordedResponse,
    response_model_by_alias=True,
)
async def review_content(
    content_id: str,
    owner_id: str = Depends(get_current_user),
) -> ReviewRecordedResponse:
    result = await anyio.to_thread.run_sync(
        partial(_actions.apply, owner_id, "reviewed", content_id)
    )
    if not result.found:
        raise ContentNotFoundError(content_id)
    applied = result.applied
    return ReviewRecordedResponse(
        message="Review recorded",
        review_count=applied["review_count"],
        review_stage=ReviewStage(applied["review_stage"]),
        next_review_date=applied["next_review_at"],
    )


@router.post(
    "/{content_id}/duplicate",
    response_model=ContentCreatedResponse,
    response_model_by_alias=True,
)
async def duplicate_content(
    content_id: str,
    owner_id: str = Depends(get_current_user),
) -> ContentCreatedResponse:
    new_id = await anyio.to_thread.run_sync(partial(_actions.duplicate, owner_id, content_id))
    if new_id is None:
        raise ContentNotFoundError(content_id)
    return ContentCreatedResponse(id=new_id, message="Content duplicated successfully")
