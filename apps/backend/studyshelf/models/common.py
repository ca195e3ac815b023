from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model exposing camelCase JSON keys while keeping snake_case attributes.

    フロントエンドは `reviewStage` / `nextReviewDate` のような camelCase を前提にしているため、
    API 境界のモデルはすべてこのクラスを継承する。
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Difficulty(str, Enum):
    easy = "easy"
    medium = "medium"
    hard = "hard"


class ReviewStage(str, Enum):
    """How often an item is expected to resurface."""

    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class ContentAction(str, Enum):
    """Closed set of state transitions accepted by the action endpoints."""

    reviewed = "reviewed"
    archive = "archive"
    delete = "delete"


class MessageResponse(BaseModel):
    message: str
