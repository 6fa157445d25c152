from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from ..models.card import Card, CardStatus
from ..models.review import ReviewLogEntry
from ..queue import due_sort_key, new_sort_key, next_review_sort_key


CardMutator = Callable[[Card], Mapping[str, Any]]
# (更新前, 更新後) から同一トランザクションで書き込む履歴を組み立てる
ReviewBuilder = Callable[[Card, Card], ReviewLogEntry]


class CardOrder(str, Enum):
    none = "none"
    due_priority = "due_priority"
    created_at = "created_at"
    next_review = "next_review"
    lapses_desc = "lapses_desc"


@dataclass(frozen=True)
class CardQuery:
    """User-scoped card filter understood by every store.

    - statuses: 指定時はこのステータスのみ
    - exclude_statuses: 除外するステータス
    - due_at: next_review が未設定、または指定時刻以前
    - review_window: start <= next_review < end
    - tag: 指定タグを含むカードのみ
    """

    statuses: frozenset[CardStatus] | None = None
    exclude_statuses: frozenset[CardStatus] = frozenset()
    due_at: datetime | None = None
    review_window: tuple[datetime, datetime] | None = None
    tag: str | None = None
    order: CardOrder = CardOrder.none
    limit: int | None = None

    def matches(self, card: Card) -> bool:
        if self.statuses is not None and card.status not in self.statuses:
            return False
        if card.status in self.exclude_statuses:
            return False
        if self.due_at is not None and card.next_review is not None and card.next_review > self.due_at:
            return False
        if self.review_window is not None:
            start, end = self.review_window
            if card.next_review is None or not (start <= card.next_review < end):
                return False
        if self.tag is not None and self.tag not in card.tags:
            return False
        return True

    def apply(self, cards: Iterable[Card]) -> list[Card]:
        """Filter, order and truncate ``cards`` in memory."""

        selected = [card for card in cards if self.matches(card)]
        if self.order is CardOrder.due_priority:
            selected.sort(key=due_sort_key)
        elif self.order is CardOrder.created_at:
            selected.sort(key=new_sort_key)
        elif self.order is CardOrder.next_review:
            selected.sort(key=next_review_sort_key)
        elif self.order is CardOrder.lapses_desc:
            selected.sort(key=lambda card: (-card.lapses, card.id))
        if self.limit is not None:
            selected = selected[: max(0, self.limit)]
        return selected


class CardStore(Protocol):
    """Persistent keyed card storage consumed by the scheduler.

    実装は 1 枚のカードに対する読み込み→計算→書き込みを atomic_update で直列化する
    必要がある（別カード間のロックは不要）。review を渡された場合は履歴 1 件も
    同じ単位で書き込み、カードと履歴の片方だけが残ることはない。
    永続層の障害は StoreUnavailableError へ変換して送出し、リトライは行わない。
    """

    def get(self, card_id: str) -> Card:  # pragma: no cover - protocol
        ...

    def insert(self, card: Card) -> None:  # pragma: no cover - protocol
        ...

    def update(self, card_id: str, fields: Mapping[str, Any]) -> Card:  # pragma: no cover - protocol
        ...

    def atomic_update(
        self, card_id: str, mutate: CardMutator, review: ReviewBuilder | None = None
    ) -> Card:  # pragma: no cover - protocol
        ...

    def query_by_user(self, user_id: str, query: CardQuery) -> list[Card]:  # pragma: no cover - protocol
        ...

    def record_review(self, entry: ReviewLogEntry) -> None:  # pragma: no cover - protocol
        ...

    def list_reviews(self, card_id: str, limit: int = 50) -> list[ReviewLogEntry]:  # pragma: no cover - protocol
        ...
