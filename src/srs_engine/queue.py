from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from .models.card import Card, CardStatus


# 小さいほど先に出題する。再学習・学習中カードを新規カードより優先する。
STATUS_PRIORITY: dict[CardStatus, int] = {
    CardStatus.relearning: 0,
    CardStatus.learning: 1,
    CardStatus.review: 2,
    CardStatus.new: 3,
}

_EARLIEST = datetime.min.replace(tzinfo=UTC)

_BASE_SECONDS_BY_TYPE: dict[str, float] = {
    "speaking": 20,
    "l1_to_l2": 15,
    "audio_recognition": 15,
    "cloze": 12,
}
_DEFAULT_BASE_SECONDS = 10.0
_DIFFICULTY_MULTIPLIER = {"hard": 1.5, "very_hard": 2.0}


def due_sort_key(card: Card) -> tuple[int, datetime, str]:
    """Priority first, then ``next_review`` ascending (missing values first)."""

    return (
        STATUS_PRIORITY.get(card.status, len(STATUS_PRIORITY)),
        card.next_review or _EARLIEST,
        card.id,
    )


def new_sort_key(card: Card) -> tuple[datetime, str]:
    return (card.created_at, card.id)


def next_review_sort_key(card: Card) -> tuple[datetime, str]:
    return (card.next_review or _EARLIEST, card.id)


def filter_by_types(cards: Iterable[Card], card_types: Iterable[str] | None) -> list[Card]:
    """Keep cards whose ``type`` is listed; ``None`` or empty keeps everything."""

    wanted = {t for t in (card_types or ()) if t}
    if not wanted:
        return list(cards)
    return [card for card in cards if card.type in wanted]


def difficulty_label(ease_factor: float, lapses: int) -> str:
    if lapses >= 5:
        return "very_hard"
    if ease_factor < 1.5 or lapses >= 3:
        return "hard"
    if ease_factor < 2.0:
        return "medium"
    return "easy"


def estimate_review_minutes(cards: Iterable[Card]) -> float:
    """Rough time needed to review ``cards``, in minutes (one decimal)."""

    seconds = 0.0
    for card in cards:
        base = _BASE_SECONDS_BY_TYPE.get(card.type, _DEFAULT_BASE_SECONDS)
        label = difficulty_label(card.ease_factor, card.lapses)
        seconds += base * _DIFFICULTY_MULTIPLIER.get(label, 1.0)
    return round(seconds / 60, 1)
