from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from ..clock import ensure_utc
from .card import Card, CardStatus


class ReviewResult(BaseModel):
    """Outcome of processing one graded review."""

    card: Card
    next_review: datetime
    interval_days: int
    previous_status: CardStatus
    leech_tagged: bool = False


class ReviewLogEntry(BaseModel):
    """Append-only history row written for every processed review.

    復習履歴 1 件分。スケジューリング計算には使わず、分析・監査用に保存する。
    """

    card_id: str
    user_id: str
    reviewed_at: datetime
    quality: int = Field(ge=0, le=5)
    time_spent_ms: int = Field(default=0, ge=0)
    previous_status: CardStatus
    new_status: CardStatus
    previous_interval: int
    new_interval: int
    ease_factor: float
    next_review: datetime

    @field_validator("reviewed_at", "next_review")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
