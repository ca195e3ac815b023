"""Value coercion helpers shared by the store, the scheduler and the flows.

タイムスタンプは秒精度の UTC ISO 文字列（`YYYY-MM-DDTHH:MM:SS+00:00`）で保存する。
書式を固定しておけば辞書順比較がそのまま時刻順になり、Firestore の範囲フィルタや
order_by にも文字列のまま使える。
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


def normalize_non_negative_int(value: Any) -> int:
    """与えられた値を非負整数に正規化する（不正値/負値は 0）。"""

    try:
        ivalue = int(value)
    except (TypeError, ValueError):
        return 0
    return ivalue if ivalue >= 0 else 0


def to_iso(moment: datetime) -> str:
    """Format ``moment`` as a second-precision UTC ISO string.

    タイムゾーン無しの datetime は UTC とみなす。
    """

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).replace(microsecond=0).isoformat()


def now_iso() -> str:
    return to_iso(datetime.now(UTC))


def calendar_day(value: Any, *, fallback: str | None = None) -> str:
    """Return the `YYYY-MM-DD` part of a stored timestamp.

    値が空なら ``fallback``（未指定なら今日）を使う。
    """

    text = str(value or "").strip()
    if not text:
        text = fallback or now_iso()
    return text.split("T", 1)[0]
