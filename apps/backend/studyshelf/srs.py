"""Review-stage ladder for content items.

レビュー回数だけで段階を決める単純な階段モデル:

    review_count <  2  → daily
    review_count <  5  → weekly
    review_count <  8  → monthly
    それ以上          → yearly

段階は回数の増加に伴って進むだけで、復習の失敗や遅延で戻ることはない。
次回復習日時は「今」を起点として保存し、段階ごとの実際の間隔は呼び出し側の
ポリシーに委ねる。
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from .coerce import normalize_non_negative_int, to_iso
from .models.common import ReviewStage

# (上限未満の回数, 段階) を昇順で並べたしきい値表
_STAGE_THRESHOLDS: tuple[tuple[int, ReviewStage], ...] = (
    (2, ReviewStage.daily),
    (5, ReviewStage.weekly),
    (8, ReviewStage.monthly),
)


def stage_for_count(review_count: Any) -> ReviewStage:
    """Map an accumulated review count to its review stage.

    不正値・負値は 0 とみなすため、どんな入力でも4段階のいずれかを返す。
    """

    count = normalize_non_negative_int(review_count)
    for upper_bound, stage in _STAGE_THRESHOLDS:
        if count < upper_bound:
            return stage
    return ReviewStage.yearly


def record_review(document: Mapping[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
    """Return the field updates produced by one "reviewed" event.

    回数を 1 増やし、新しい回数から段階を再計算し、次回復習日時を現在時刻に
    置き換える。同じ入力で2回呼べば2回進む（冪等ではない）ので、1回の復習に
    つき1回だけ呼ぶこと。
    """

    reviewed_at = to_iso(now or datetime.now(UTC))
    next_count = normalize_non_negative_int(document.get("review_count")) + 1
    return {
        "review_count": next_count,
        "review_stage": stage_for_count(next_count).value,
        "next_review_at": reviewed_at,
        "updated_at": reviewed_at,
    }


def is_due(document: Mapping[str, Any], as_of: datetime | str) -> bool:
    """True when the item's next review timestamp is at or before ``as_of``.

    `next_review_at` が未設定の場合は読み取り時点の「今」とみなすので常に due。
    """

    as_of_iso = as_of if isinstance(as_of, str) else to_iso(as_of)
    next_review_at = document.get("next_review_at")
    if not next_review_at:
        return True
    return str(next_review_at) <= as_of_iso
