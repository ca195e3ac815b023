"""Flow 層。ルーターとストアの間で、一覧クエリと状態遷移をまとめる。"""

from .actions import ActionResult, ContentActionDispatcher, parse_action
from .library import LibraryPage, LibraryQuery, LibraryQueryFlow

__all__ = [
    "ActionResult",
    "ContentActionDispatcher",
    "LibraryPage",
    "LibraryQuery",
    "LibraryQueryFlow",
    "parse_action",
]
