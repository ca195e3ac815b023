"""Router package exports."""

from . import auth, content, health

__all__ = [
    "auth",
    "content",
    "health",
]
