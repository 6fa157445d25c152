from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..clock import ensure_utc


class CardStatus(str, Enum):
    """Lifecycle state of a card."""

    new = "new"
    learning = "learning"
    review = "review"
    relearning = "relearning"
    suspended = "suspended"


class Quality(IntEnum):
    """0-5 recall grade of a single review attempt.

    0 = 完全に思い出せない / 1 = 誤答だが答えを見て思い出した / 2 = 誤答だが見覚えあり
    3 = 苦労して正答 / 4 = ためらい後に正答 / 5 = 即答
    """

    BLACKOUT = 0
    WRONG_REMEMBERED = 1
    WRONG_FAMILIAR = 2
    HARD = 3
    GOOD = 4
    EASY = 5

    @property
    def is_success(self) -> bool:
        return self >= Quality.HARD


class Card(BaseModel):
    """The unit of spaced repetition: opaque payload plus scheduling state.

    front/back は不透明なペイロード（文字列または JSON 互換の dict）として扱い、
    スケジューラは中身を解釈しない。tags は挿入順を保った集合として扱う。
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    type: str
    front: Any
    back: Any
    source_type: str = "custom"
    source_id: str = "custom"
    level: str = "A1"
    tags: list[str] = Field(default_factory=list)

    status: CardStatus = CardStatus.new
    ease_factor: float = 2.5
    interval: int = 0
    learning_step: int = 0
    repetitions: int = 0
    lapses: int = 0
    next_review: datetime | None = None
    last_reviewed: datetime | None = None
    created_at: datetime

    total_reviews: int = 0
    correct_reviews: int = 0
    last_time_spent_ms: int = 0
    total_time_spent_ms: int = 0

    @field_validator("next_review", "last_reviewed", "created_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return None if value is None else ensure_utc(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _dedupe_tags(cls, raw: object) -> object:
        if raw is None:
            return []
        if isinstance(raw, (list, tuple, set, frozenset)):
            return merge_tags([], [str(tag) for tag in raw])
        return raw

    def is_due(self, now: datetime) -> bool:
        """True when the card is selectable for review at ``now``."""

        if self.status is CardStatus.suspended:
            return False
        return self.next_review is None or self.next_review <= now

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    @property
    def average_recall_ms(self) -> float:
        if self.total_reviews <= 0:
            return 0.0
        return self.total_time_spent_ms / self.total_reviews


class CardDraft(BaseModel):
    """Caller-supplied fields for a new card."""

    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    front: Any
    back: Any
    source_type: str = "custom"
    source_id: str = "custom"
    level: str = "A1"
    tags: list[str] = Field(default_factory=list)

    @field_validator("front", "back")
    @classmethod
    def _require_payload(cls, value: Any) -> Any:
        if value is None or value == "" or value == {}:
            raise ValueError("card faces must not be empty")
        return value


class VocabularyItem(BaseModel):
    """Minimal vocabulary entry consumed by the vocabulary card factory."""

    term: str = Field(min_length=1)
    translation: str = Field(min_length=1)
    ipa: str = ""
    example: str = ""
    level: str = "A1"


def merge_tags(existing: list[str], extra: list[str]) -> list[str]:
    """Set-union of tags keeping first-seen order."""

    merged: list[str] = []
    seen: set[str] = set()
    for tag in [*existing, *extra]:
        cleaned = tag.strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        merged.append(cleaned)
    return merged
