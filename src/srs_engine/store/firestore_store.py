from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from google.api_core import exceptions as gexc
from google.cloud import firestore

from ..errors import CardNotFoundError, StoreUnavailableError
from ..logging import logger
from ..models.card import Card
from ..models.review import ReviewLogEntry
from .base import CardMutator, CardQuery, ReviewBuilder
from .common import apply_fields, card_from_document, card_to_document, review_to_document


def _coerce_firestore_snapshot(
    candidate: Any,
) -> firestore.DocumentSnapshot | None:
    """Normalize Firestore transaction.get results (snapshot or generator) into a snapshot."""

    if candidate is None:
        return None
    if hasattr(candidate, "exists"):
        return candidate  # type: ignore[return-value]
    if isinstance(candidate, Iterator):
        return next(candidate, None)
    if isinstance(candidate, Iterable) and not isinstance(candidate, (str, bytes, Mapping)):
        iterator = iter(candidate)
        return next(iterator, None)
    return None


class FirestoreCardStore:
    """Firestore 上のカードとレビュー履歴を管理する。

    - カードは ``collection/{card_id}``、履歴は ``reviews_collection`` に 1 件 1 ドキュメントで保存する
    - atomic_update は Firestore トランザクションで読み込み→計算→書き込みを行う
      （履歴ドキュメントも同じトランザクションでコミットする）
    - クエリは user_id（と単一ステータス/タグ）で Firestore 側を絞り込み、残りの条件と
      並び替え・件数制限は取得後に適用する
    """

    def __init__(
        self,
        client: firestore.Client,
        collection: str = "srs_cards",
        reviews_collection: str = "srs_reviews",
    ) -> None:
        self._client = client
        self._cards = client.collection(collection)
        self._reviews = client.collection(reviews_collection)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except gexc.AlreadyExists as exc:
            raise ValueError(f"card already exists: {exc}") from exc
        except (gexc.GoogleAPICallError, gexc.RetryError) as exc:
            logger.error(
                "store_unavailable",
                backend="firestore",
                operation=operation,
                error=str(exc),
                error_class=exc.__class__.__name__,
            )
            raise StoreUnavailableError(f"firestore {operation} failed: {exc}") from exc

    def get(self, card_id: str) -> Card:
        with self._guard("get"):
            snapshot = self._cards.document(card_id).get()
        if not snapshot.exists:
            raise CardNotFoundError(card_id)
        return card_from_document(card_id, snapshot.to_dict() or {})

    def insert(self, card: Card) -> None:
        with self._guard("insert"):
            self._cards.document(card.id).create(card_to_document(card))

    def update(self, card_id: str, fields: Mapping[str, Any]) -> Card:
        return self.atomic_update(card_id, lambda _card: fields)

    def atomic_update(
        self, card_id: str, mutate: CardMutator, review: ReviewBuilder | None = None
    ) -> Card:
        doc_ref = self._cards.document(card_id)
        with self._guard("atomic_update"):
            transaction = self._client.transaction()
            transaction._begin()
            try:
                snapshot = _coerce_firestore_snapshot(transaction.get(doc_ref))
                if snapshot is None or not snapshot.exists:
                    raise CardNotFoundError(card_id)
                current = card_from_document(card_id, snapshot.to_dict() or {})
                updated = apply_fields(current, mutate(current))
                transaction.set(doc_ref, card_to_document(updated))
                if review is not None:
                    transaction.set(self._new_review_ref(), review_to_document(review(current, updated)))
                transaction._commit()
                return updated
            except BaseException:
                if transaction.in_progress:
                    transaction._rollback()
                raise

    def query_by_user(self, user_id: str, query: CardQuery) -> list[Card]:
        fs_query = self._cards.where("user_id", "==", user_id)
        # Firestore 側は等価条件のみに留め、複合インデックスを要求しない
        if query.statuses is not None and len(query.statuses) == 1:
            (status,) = tuple(query.statuses)
            fs_query = fs_query.where("status", "==", status.value)
        if query.tag is not None:
            fs_query = fs_query.where("tags", "array_contains", query.tag)
        with self._guard("query"):
            cards = [card_from_document(snap.id, snap.to_dict() or {}) for snap in fs_query.stream()]
        return query.apply(cards)

    def _new_review_ref(self) -> firestore.DocumentReference:
        return self._reviews.document(uuid.uuid4().hex)

    def record_review(self, entry: ReviewLogEntry) -> None:
        with self._guard("record_review"):
            self._new_review_ref().set(review_to_document(entry))

    def list_reviews(self, card_id: str, limit: int = 50) -> list[ReviewLogEntry]:
        with self._guard("list_reviews"):
            snapshots = list(self._reviews.where("card_id", "==", card_id).stream())
        entries = [ReviewLogEntry.model_validate(snap.to_dict() or {}) for snap in snapshots]
        entries.sort(key=lambda entry: entry.reviewed_at, reverse=True)
        return entries[: max(0, limit)]
