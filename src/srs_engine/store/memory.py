from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping
from threading import Lock
from typing import Any

from ..errors import CardNotFoundError
from ..models.card import Card
from ..models.review import ReviewLogEntry
from .base import CardMutator, CardQuery, ReviewBuilder
from .common import apply_fields


class InMemoryCardStore:
    """Process-local card store.

    カード毎に threading.Lock を持ち、同一カードへの読み込み→計算→書き込みを直列化する。
    別カードの更新は互いにブロックしない。
    """

    def __init__(self) -> None:
        self._cards: dict[str, Card] = {}
        self._reviews: dict[str, list[ReviewLogEntry]] = defaultdict(list)
        self._card_locks: dict[str, Lock] = {}
        # カード辞書とロック辞書そのものを守るロック
        self._registry_lock = Lock()

    def _lock_for(self, card_id: str) -> Lock:
        with self._registry_lock:
            lock = self._card_locks.get(card_id)
            if lock is None:
                lock = Lock()
                self._card_locks[card_id] = lock
            return lock

    def _load(self, card_id: str) -> Card:
        with self._registry_lock:
            card = self._cards.get(card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        return card

    def _save(self, card: Card) -> None:
        with self._registry_lock:
            self._cards[card.id] = card

    def get(self, card_id: str) -> Card:
        return self._load(card_id).model_copy(deep=True)

    def insert(self, card: Card) -> None:
        with self._registry_lock:
            if card.id in self._cards:
                raise ValueError(f"card already exists: {card.id}")
            self._cards[card.id] = card.model_copy(deep=True)

    def update(self, card_id: str, fields: Mapping[str, Any]) -> Card:
        with self._lock_for(card_id):
            updated = apply_fields(self._load(card_id), fields)
            self._save(updated)
            return updated.model_copy(deep=True)

    def atomic_update(
        self, card_id: str, mutate: CardMutator, review: ReviewBuilder | None = None
    ) -> Card:
        with self._lock_for(card_id):
            current = self._load(card_id)
            fields = mutate(current.model_copy(deep=True))
            updated = apply_fields(current, fields)
            # 履歴を先に書き、失敗時はカードを更新しない
            if review is not None:
                self.record_review(review(current, updated))
            self._save(updated)
            return updated.model_copy(deep=True)

    def query_by_user(self, user_id: str, query: CardQuery) -> list[Card]:
        with self._registry_lock:
            owned = [card for card in self._cards.values() if card.user_id == user_id]
        return [card.model_copy(deep=True) for card in query.apply(owned)]

    def record_review(self, entry: ReviewLogEntry) -> None:
        with self._registry_lock:
            self._reviews[entry.card_id].append(entry)

    def list_reviews(self, card_id: str, limit: int = 50) -> list[ReviewLogEntry]:
        with self._registry_lock:
            entries = list(self._reviews.get(card_id, ()))
        entries.sort(key=lambda entry: entry.reviewed_at, reverse=True)
        return entries[: max(0, limit)]
