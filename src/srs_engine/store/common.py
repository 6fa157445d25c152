from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from ..models.card import Card
from ..models.review import ReviewLogEntry

# 更新を許可しないフィールド（ID と所有者は不変）
IMMUTABLE_FIELDS = frozenset({"id", "user_id", "created_at"})


def to_iso(value: datetime | None) -> str | None:
    """UTC ISO-8601 with fixed microsecond precision so strings sort chronologically."""

    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def normalize_non_negative_int(value: Any) -> int:
    """与えられた値を非負整数に正規化する。

    レビュー回数・回答時間などのカウンタは負値になり得ないため、
    保存前にゼロ以上へ矯正しておく。"""

    try:
        ivalue = int(value)
    except (TypeError, ValueError):
        return 0
    return ivalue if ivalue >= 0 else 0


def apply_fields(card: Card, fields: Mapping[str, Any]) -> Card:
    """Return a validated copy of ``card`` with ``fields`` applied."""

    unknown = set(fields) - set(Card.model_fields)
    if unknown:
        raise ValueError(f"unknown card fields: {sorted(unknown)}")
    frozen = IMMUTABLE_FIELDS.intersection(fields)
    if frozen:
        raise ValueError(f"immutable card fields: {sorted(frozen)}")
    payload = card.model_dump()
    payload.update(fields)
    return Card.model_validate(payload)


def card_to_document(card: Card) -> dict[str, Any]:
    """Serialise a card to a JSON-compatible mapping (datetimes as ISO strings)."""

    data = card.model_dump(mode="json", exclude={"id"})
    for key in ("next_review", "last_reviewed", "created_at"):
        data[key] = to_iso(getattr(card, key))
    return data


def card_from_document(card_id: str, data: Mapping[str, Any]) -> Card:
    payload = dict(data)
    payload["id"] = card_id
    return Card.model_validate(payload)


def review_to_document(entry: ReviewLogEntry) -> dict[str, Any]:
    data = entry.model_dump(mode="json")
    data["reviewed_at"] = to_iso(entry.reviewed_at)
    data["next_review"] = to_iso(entry.next_review)
    return data
