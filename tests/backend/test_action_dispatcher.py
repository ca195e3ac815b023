"""ContentActionDispatcher の状態遷移と入力検証のテスト。"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
import sys

import pytest
from pydantic import ValidationError

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "apps" / "backend"))

from studyshelf.errors import (  # noqa: E402
    BulkActionTooLargeError,
    EmptyImportError,
    ImportItemTooLongError,
    InvalidActionError,
)
from studyshelf.flows.actions import ContentActionDispatcher, parse_action  # noqa: E402
from studyshelf.models.common import ContentAction  # noqa: E402
from studyshelf.models.content import ContentImportRequest, ContentUpdateRequest  # noqa: E402
from studyshelf.store.firestore_store import AppFirestoreStore  # noqa: E402
from tests.firestore_fakes import FakeDocumentReference, FakeFirestoreClient  # noqa: E402

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def fake_client() -> FakeFirestoreClient:
    return FakeFirestoreClient()


@pytest.fixture()
def content_store(fake_client: FakeFirestoreClient) -> AppFirestoreStore:
    return AppFirestoreStore(client=fake_client)


@pytest.fixture()
def dispatcher(content_store: AppFirestoreStore) -> ContentActionDispatcher:
    return ContentActionDispatcher(content_store, bulk_limit=5, import_limit=3)


def _seed(content_store: AppFirestoreStore, owner_id: str = "u1", **fields: object) -> str:
    payload: dict[str, object] = {
        "title": "Seed",
        "content": "body",
        "subject_name": "Math",
        "subject_color": "bg-blue-500",
        "difficulty": "hard",
        "estimated_time": "7 min",
        "tags": ["t1"],
    }
    payload.update(fields)
    return content_store.create_content(owner_id, payload, now=NOW)


def test_parse_action_rejects_unknown_names() -> None:
    assert parse_action("archive") is ContentAction.archive
    with pytest.raises(InvalidActionError):
        parse_action("explode")


def test_review_updates_count_stage_and_next_review(
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
) -> None:
    content_id = _seed(content_store)
    fake_client._data["contents"][content_id]["review_count"] = 1

    later = datetime(2025, 3, 5, 8, 0, tzinfo=UTC)
    result = dispatcher.apply("u1", "reviewed", content_id, now=later)

    stored = fake_client.documents()[content_id]
    assert result.matched_count == result.modified_count == 1
    assert stored["review_count"] == 2
    assert stored["review_stage"] == "weekly"
    assert stored["next_review_at"] == "2025-03-05T08:00:00+00:00"
    assert result.applied["review_count"] == 2


def test_archive_is_idempotent(
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
) -> None:
    content_id = _seed(content_store)

    first = dispatcher.apply("u1", ContentAction.archive, content_id)
    second = dispatcher.apply("u1", ContentAction.archive, content_id)

    assert first.found and second.found
    assert fake_client.documents()[content_id]["archived"] is True


def test_delete_hides_item_from_subsequent_actions(
    dispatcher: ContentActionDispatcher, content_store: AppFirestoreStore
) -> None:
    content_id = _seed(content_store)

    assert dispatcher.apply("u1", "delete", content_id).found
    assert not dispatcher.apply("u1", "reviewed", content_id).found
    assert content_store.get_active_content("u1", content_id) is None


def test_foreign_owner_matches_nothing(
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
) -> None:
    content_id = _seed(content_store, owner_id="u1")
    before = fake_client.documents()[content_id]

    result = dispatcher.apply("u2", "delete", content_id)

    assert result.matched_count == 0
    assert result.applied == {}
    assert fake_client.documents()[content_id] == before


def test_bulk_counts_only_matched_ids(
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
) -> None:
    x = _seed(content_store)
    z = _seed(content_store)

    result = dispatcher.apply_bulk("u1", "archive", [x, "missing-y", z])

    assert result.modified_count == 2
    assert fake_client.batch_commits == 1
    docs = fake_client.documents()
    assert docs[x]["archived"] and docs[z]["archived"]


def test_bulk_review_advances_each_item_from_its_own_count(
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
) -> None:
    fresh = _seed(content_store)
    veteran = _seed(content_store)
    fake_client._data["contents"][veteran]["review_count"] = 7

    dispatcher.apply_bulk("u1", "reviewed", [fresh, veteran])

    docs = fake_client.documents()
    assert (docs[fresh]["review_count"], docs[fresh]["review_stage"]) == (1, "daily")
    assert (docs[veteran]["review_count"], docs[veteran]["review_stage"]) == (8, "yearly")


def test_bulk_validates_before_touching_the_store(
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
) -> None:
    content_id = _seed(content_store)
    writes_before = fake_client.writes

    with pytest.raises(InvalidActionError):
        dispatcher.apply_bulk("u1", "explode", [content_id])
    with pytest.raises(BulkActionTooLargeError):
        dispatcher.apply_bulk("u1", "archive", [content_id] * 6)

    assert fake_client.writes == writes_before
    assert fake_client.batch_commits == 0


def test_duplicate_resets_schedule_and_copies_fields(
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
) -> None:
    source = _seed(content_store)
    fake_client._data["contents"][source].update(
        {"review_stage": "yearly", "review_count": 9}
    )

    new_id = dispatcher.duplicate("u1", source, now=datetime(2025, 4, 1, tzinfo=UTC))

    assert new_id is not None and new_id != source
    copy = fake_client.documents()[new_id]
    assert copy["title"] == "Seed (Copy)"
    assert copy["review_stage"] == "daily"
    assert copy["review_count"] == 0
    assert copy["next_review_at"] == "2025-04-01T00:00:00+00:00"
    for field_name in ("content", "subject_name", "subject_color", "tags", "difficulty", "estimated_time"):
        assert copy[field_name] == fake_client.documents()[source][field_name]
    assert dispatcher.duplicate("u2", source) is None


def test_update_overwrites_editable_fields(
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
) -> None:
    content_id = _seed(content_store)
    payload = ContentUpdateRequest.model_validate(
        {
            "title": "Renamed",
            "content": "new body",
            "subject": {"name": "Physics", "color": "bg-red-500"},
            "tags": [" a ", "a", "b"],
            "difficulty": "easy",
            "reviewStage": "monthly",
            "estimatedTime": "2 min",
        }
    )

    assert dispatcher.update("u1", content_id, payload).found
    assert not dispatcher.update("u2", content_id, payload).found

    stored = fake_client.documents()[content_id]
    assert stored["title"] == "Renamed"
    assert stored["subject_name"] == "Physics"
    assert stored["tags"] == ["a", "b"]
    assert stored["review_stage"] == "monthly"
    assert stored["review_count"] == 0


def test_import_text_creates_items_and_enforces_limits(
    dispatcher: ContentActionDispatcher, fake_client: FakeFirestoreClient
) -> None:
    ids = dispatcher.import_text("u1", ContentImportRequest(text="a\n---\n# T\nb"))

    docs = fake_client.documents()
    assert len(ids) == 2
    assert docs[ids[0]]["title"] is None
    assert docs[ids[1]]["title"] == "T"
    assert docs[ids[1]]["content"] == "b"

    with pytest.raises(EmptyImportError):
        dispatcher.import_text("u1", ContentImportRequest(text="\n---\n"))
    with pytest.raises(BulkActionTooLargeError):
        dispatcher.import_text("u1", ContentImportRequest(text="1\n---\n2\n---\n3\n---\n4"))


def _run_between_read_and_write(
    monkeypatch: pytest.MonkeyPatch, content_id: str, intervening
) -> None:
    """対象ドキュメントを最初に読んだ直後に、別リクエストの操作を 1 度だけ割り込ませる。"""

    original_get = FakeDocumentReference.get
    fired = False

    def _get(self: FakeDocumentReference):
        nonlocal fired
        snapshot = original_get(self)
        if self.id == content_id and not fired:
            fired = True
            intervening()
        return snapshot

    monkeypatch.setattr(FakeDocumentReference, "get", _get)


def test_concurrent_reviews_each_increment_the_count(
    monkeypatch: pytest.MonkeyPatch,
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
) -> None:
    content_id = _seed(content_store)
    _run_between_read_and_write(
        monkeypatch, content_id, lambda: dispatcher.apply("u1", "reviewed", content_id)
    )

    result = dispatcher.apply("u1", "reviewed", content_id)

    stored = fake_client.documents()[content_id]
    assert result.matched_count == 1
    assert stored["review_count"] == 2
    assert stored["review_stage"] == "weekly"
    assert result.applied["review_count"] == 2


def test_review_racing_a_delete_matches_nothing(
    monkeypatch: pytest.MonkeyPatch,
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
) -> None:
    content_id = _seed(content_store)
    _run_between_read_and_write(
        monkeypatch, content_id, lambda: dispatcher.apply("u1", "delete", content_id)
    )

    result = dispatcher.apply("u1", "reviewed", content_id)

    stored = fake_client.documents()[content_id]
    assert not result.found
    assert stored["is_active"] is False
    assert stored["review_count"] == 0


@pytest.mark.parametrize("review_count", [8, 9])
def test_duplicate_of_yearly_item_starts_over(
    dispatcher: ContentActionDispatcher,
    content_store: AppFirestoreStore,
    fake_client: FakeFirestoreClient,
    review_count: int,
) -> None:
    source = _seed(content_store)
    fake_client._data["contents"][source].update(
        {"review_stage": "yearly", "review_count": review_count}
    )

    copy = fake_client.documents()[dispatcher.duplicate("u1", source)]

    assert (copy["review_count"], copy["review_stage"]) == (0, "daily")


def test_import_rejects_chunks_longer_than_create_allows(
    dispatcher: ContentActionDispatcher, fake_client: FakeFirestoreClient
) -> None:
    with pytest.raises(ImportItemTooLongError) as exc:
        dispatcher.import_text("u1", ContentImportRequest(text=f"ok\n---\n# {'x' * 201}\nbody"))

    assert exc.value.position == 2
    assert exc.value.field_name == "title"
    assert fake_client.documents() == {}


def test_import_request_rejects_long_tags() -> None:
    with pytest.raises(ValidationError):
        ContentImportRequest(text="body", tags=["t" * 51])
