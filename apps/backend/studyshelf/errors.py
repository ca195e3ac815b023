"""Domain exceptions mapped to HTTP responses in ``main.create_app``."""

from __future__ import annotations


class ContentNotFoundError(LookupError):
    """The content id is missing, owned by someone else, or soft-deleted.

    3つのケースを区別しないことで、他ユーザーの ID を探る試行と
    単なる存在しない ID が呼び出し側から見分けられないようにする。
    """

    def __init__(self, content_id: str | None = None) -> None:
        super().__init__("Content not found")
        self.content_id = content_id


class InvalidActionError(ValueError):
    """An action name outside the closed set of content actions."""

    def __init__(self, action: object) -> None:
        super().__init__("Invalid action")
        self.action = action


class BulkActionTooLargeError(ValueError):
    def __init__(self, requested: int, limit: int) -> None:
        super().__init__(f"Too many items: {requested} > {limit}")
        self.requested = requested
        self.limit = limit


class EmptyImportError(ValueError):
    """Import text did not contain any item."""


class ContentWriteConflictError(RuntimeError):
    """Concurrent writes kept invalidating the read-before-write precondition."""

    def __init__(self, content_id: str | None = None) -> None:
        super().__init__("Content was modified concurrently")
        self.content_id = content_id


class ImportItemTooLongError(ValueError):
    """An imported chunk exceeds the title or body length accepted on create."""

    def __init__(self, position: int, field_name: str, limit: int) -> None:
        super().__init__(f"Item {position}: {field_name} must be at most {limit} characters")
        self.position = position
        self.field_name = field_name
        self.limit = limit
