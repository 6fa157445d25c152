"""テスト用のカード生成ヘルパー。"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from srs_engine.models.card import Card, CardStatus

START = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def make_card(card_id: str = "card_1", **overrides: Any) -> Card:
    """Build a card with sensible defaults; scheduling fields can be overridden."""

    payload: dict[str, Any] = {
        "id": card_id,
        "user_id": "u1",
        "type": "l2_to_l1",
        "front": {"text": "apple"},
        "back": {"text": "りんご"},
        "status": CardStatus.new,
        "next_review": START,
        "created_at": START,
    }
    payload.update(overrides)
    return Card(**payload)
