from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .store.firestore_store import AppFirestoreStore
from .text import split_import_text


@dataclass(frozen=True)
class DemoContent:
    """デモ用コンテンツ 1 件分。保存時に review_count 等の初期値が補われる。"""

    title: str | None
    content: str
    subject_name: str
    subject_color: str = "bg-gray-500"
    difficulty: str = "medium"
    estimated_time: str = "5 min"
    tags: list[str] = field(default_factory=list)

    def to_fields(self) -> dict[str, object]:
        return {
            "title": self.title,
            "content": self.content,
            "subject_name": self.subject_name,
            "subject_color": self.subject_color,
            "difficulty": self.difficulty,
            "estimated_time": self.estimated_time,
            "tags": list(self.tags),
        }


DEMO_CONTENTS: tuple[DemoContent, ...] = (
    DemoContent(
        title="Quadratic formula",
        content="For **ax² + bx + c = 0**, x = (-b ± √(b² - 4ac)) / 2a.\n\n• The *discriminant* is `b² - 4ac`",
        subject_name="Math",
        subject_color="bg-blue-500",
        difficulty="easy",
        estimated_time="3 min",
        tags=["algebra", "formula"],
    ),
    DemoContent(
        title="Photosynthesis",
        content="6CO₂ + 6H₂O → C₆H₁₂O₆ + 6O₂\n\n==Light reactions== happen in the thylakoid membrane.",
        subject_name="Biology",
        subject_color="bg-green-500",
        tags=["plants"],
    ),
    DemoContent(
        title="Big-O of binary search",
        content="Binary search halves the range each step: **O(log n)** comparisons.",
        subject_name="Computer Science",
        subject_color="bg-purple-500",
        difficulty="hard",
        estimated_time="10 min",
        tags=["algorithms"],
    ),
)


def load_demo_contents(
    text_path: Path,
    *,
    subject_name: str = "General",
    subject_color: str = "bg-gray-500",
) -> list[DemoContent]:
    """Read demo items from a text file in the import format (`---` separated)."""

    if not text_path.exists():
        msg = f"Demo text file not found: {text_path}"
        raise FileNotFoundError(msg)
    chunks = split_import_text(text_path.read_text(encoding="utf-8"))
    return [
        DemoContent(
            title=chunk.title,
            content=chunk.body,
            subject_name=subject_name,
            subject_color=subject_color,
        )
        for chunk in chunks
    ]


def seed_demo_contents(
    store: AppFirestoreStore,
    owner_id: str,
    contents: tuple[DemoContent, ...] | list[DemoContent] = DEMO_CONTENTS,
) -> list[str]:
    """デモ項目を 1 回のバッチで投入し、採番された ID を返す。"""

    return store.insert_many_contents(owner_id, [item.to_fields() for item in contents])


def seed_demo_contents_if_empty(
    store: AppFirestoreStore,
    owner_id: str,
    contents: tuple[DemoContent, ...] | list[DemoContent] = DEMO_CONTENTS,
) -> list[str]:
    """所有者がまだ項目を持っていない場合だけデモ項目を投入する。"""

    if store.count_contents(owner_id) > 0:
        return []
    return seed_demo_contents(store, owner_id, contents)
