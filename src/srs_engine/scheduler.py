"""Scheduler service.

カードストア・スケジューリング設定・時計をコンストラクタで受け取り、呼び出し側に
公開する全操作（作成・出題選択・採点処理・一時停止・リーチ・統計・予測）を提供する。
1 枚のカードへの読み込み→計算→書き込みは必ずストアの atomic_update 内で行う。
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from .clock import Clock, SystemClock
from .config import SchedulerConfig
from .errors import InvalidInputError
from .factory import build_card, generate_card_id, vocabulary_drafts
from .logging import logger
from .models.card import Card, CardDraft, CardStatus, Quality, VocabularyItem, merge_tags
from .models.review import ReviewLogEntry, ReviewResult
from .models.stats import ForecastDay, UserStats
from .queue import estimate_review_minutes, filter_by_types
from .scheduling import compute_transition
from .stats import compute_forecast, compute_stats, day_starts
from .store.base import CardOrder, CardQuery, CardStore


_SUSPENDED = frozenset({CardStatus.suspended})


def _require_non_negative_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"{name} must be an integer: {value!r}")
    if value < 0:
        raise InvalidInputError(f"{name} must be >= 0: {value}")
    return int(value)


def _coerce_quality(value: Any) -> Quality:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"quality must be an integer between 0 and 5: {value!r}")
    try:
        return Quality(value)
    except ValueError as exc:
        raise InvalidInputError(f"quality must be between 0 and 5: {value}") from exc


class Scheduler:
    """Spaced-repetition scheduler over an injected card store.

    - store: CardStore 実装（memory/sqlite/firestore）
    - config: 不変の SchedulerConfig（未指定時は既定値）
    - clock: 現在時刻の供給元（未指定時は SystemClock）
    """

    def __init__(
        self,
        store: CardStore,
        config: SchedulerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._config = config or SchedulerConfig()
        self._clock = clock or SystemClock()

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    # --- creation ---
    def create_card(
        self,
        user_id: str,
        card_type: str,
        front: Any,
        back: Any,
        *,
        source_type: str = "custom",
        source_id: str = "custom",
        level: str = "A1",
        tags: Iterable[str] | None = None,
    ) -> Card:
        """Create a ``new`` card that is selectable immediately."""

        try:
            draft = CardDraft(
                user_id=user_id,
                type=card_type,
                front=front,
                back=back,
                source_type=source_type,
                source_id=source_id,
                level=level,
                tags=list(tags or []),
            )
        except ValidationError as exc:
            raise InvalidInputError(str(exc)) from exc
        return self._insert_draft(draft)

    def create_vocabulary_cards(
        self,
        user_id: str,
        vocabulary_id: str,
        item: VocabularyItem | Mapping[str, Any],
    ) -> list[Card]:
        """Create the production/recognition/listening (and cloze) cards for one word."""

        if not (user_id or "").strip() or not (vocabulary_id or "").strip():
            raise InvalidInputError("user_id and vocabulary_id are required")
        try:
            vocabulary = item if isinstance(item, VocabularyItem) else VocabularyItem.model_validate(item)
            drafts = vocabulary_drafts(user_id, vocabulary_id, vocabulary)
        except ValidationError as exc:
            raise InvalidInputError(str(exc)) from exc
        return [self._insert_draft(draft) for draft in drafts]

    def _insert_draft(self, draft: CardDraft) -> Card:
        card = build_card(
            draft, card_id=generate_card_id(), now=self._clock.now(), config=self._config
        )
        self._store.insert(card)
        logger.info(
            "card_created",
            card_id=card.id,
            user_id=card.user_id,
            card_type=card.type,
            source_type=card.source_type,
        )
        return card

    def get_card(self, card_id: str) -> Card:
        return self._store.get(card_id)

    # --- selection ---
    def get_due_cards(
        self,
        user_id: str,
        limit: int = 50,
        card_types: Iterable[str] | None = None,
    ) -> list[Card]:
        """Due cards ordered relearning → learning → review → new, then by next_review.

        card_types による絞り込みは件数制限の後に適用する（並び順には影響しない）。
        """

        limit = _require_non_negative_int("limit", limit)
        query = CardQuery(
            exclude_statuses=_SUSPENDED,
            due_at=self._clock.now(),
            order=CardOrder.due_priority,
            limit=limit,
        )
        return filter_by_types(self._store.query_by_user(user_id, query), card_types)

    def get_new_cards(self, user_id: str, limit: int = 20) -> list[Card]:
        """Never-reviewed cards, oldest first."""

        limit = _require_non_negative_int("limit", limit)
        query = CardQuery(
            statuses=frozenset({CardStatus.new}),
            order=CardOrder.created_at,
            limit=limit,
        )
        return self._store.query_by_user(user_id, query)

    # --- review processing ---
    def process_review(self, card_id: str, quality: int, time_spent_ms: int = 0) -> ReviewResult:
        """Apply one graded attempt to a card and persist the new scheduling state.

        入力検証（quality 0-5 の整数、time_spent_ms >= 0）はストアに触れる前に行う。
        リーチ閾値に達したカードにはタグを付与し（冪等）、leech_action="suspend" の
        場合はタグ付与と同じ採点で一時停止する。
        """

        grade = _coerce_quality(quality)
        spent = _require_non_negative_int("time_spent_ms", time_spent_ms)
        now = self._clock.now()
        config = self._config
        before: dict[str, Any] = {}

        def mutate(card: Card) -> dict[str, Any]:
            if card.status is CardStatus.suspended:
                raise InvalidInputError(f"card is suspended: {card.id}")
            try:
                transition = compute_transition(card, grade, now, config)
            except Exception:
                logger.exception("review_computation_failed", card_id=card.id, quality=int(grade))
                raise
            before.update(status=card.status, leech_tagged=False)
            fields = transition.as_fields()
            fields.update(
                total_reviews=card.total_reviews + 1,
                correct_reviews=card.correct_reviews + (1 if grade.is_success else 0),
                last_reviewed=now,
                last_time_spent_ms=spent,
                total_time_spent_ms=card.total_time_spent_ms + spent,
            )
            if transition.lapses >= config.leech_threshold and not card.has_tag(config.leech_tag):
                fields["tags"] = merge_tags(card.tags, [config.leech_tag])
                before["leech_tagged"] = True
                if config.leech_action == "suspend":
                    fields["status"] = CardStatus.suspended
            return fields

        def log_entry(current: Card, updated: Card) -> ReviewLogEntry:
            return ReviewLogEntry(
                card_id=updated.id,
                user_id=updated.user_id,
                reviewed_at=now,
                quality=int(grade),
                time_spent_ms=spent,
                previous_status=current.status,
                new_status=updated.status,
                previous_interval=current.interval,
                new_interval=updated.interval,
                ease_factor=updated.ease_factor,
                next_review=updated.next_review,
            )

        # カード更新と履歴 1 件を同じ単位で書き込む（失敗時はどちらも残らない）
        updated = self._store.atomic_update(card_id, mutate, review=log_entry)
        previous_status: CardStatus = before["status"]

        logger.info(
            "review_processed",
            card_id=updated.id,
            user_id=updated.user_id,
            quality=int(grade),
            previous_status=previous_status.value,
            status=updated.status.value,
            interval=updated.interval,
            ease_factor=round(updated.ease_factor, 4),
            time_spent_ms=spent,
        )
        if not grade.is_success:
            logger.info(
                "card_lapsed",
                card_id=updated.id,
                user_id=updated.user_id,
                lapses=updated.lapses,
            )
        if before["leech_tagged"]:
            logger.warning(
                "leech_tagged",
                card_id=updated.id,
                user_id=updated.user_id,
                lapses=updated.lapses,
                action=config.leech_action,
            )
            if updated.status is CardStatus.suspended:
                logger.info("card_suspended", card_id=updated.id, user_id=updated.user_id, reason="leech")

        return ReviewResult(
            card=updated,
            next_review=updated.next_review,
            interval_days=updated.interval,
            previous_status=previous_status,
            leech_tagged=before["leech_tagged"],
        )

    # --- lifecycle ---
    def suspend_card(self, card_id: str) -> Card:
        """Exclude a card from selection; suspending twice is a no-op."""

        changed: list[bool] = []

        def mutate(card: Card) -> dict[str, Any]:
            if card.status is CardStatus.suspended:
                return {}
            changed.append(True)
            return {"status": CardStatus.suspended}

        updated = self._store.atomic_update(card_id, mutate)
        if changed:
            logger.info("card_suspended", card_id=updated.id, user_id=updated.user_id, reason="manual")
        return updated

    def unsuspend_card(self, card_id: str) -> Card:
        """Return a suspended card to ``review``, due immediately.

        Ease・lapses はそのまま。interval が 0 のカードは review 状態の不変条件を
        満たすため 1 日に引き上げる。停止中でないカードには何もしない。
        """

        now = self._clock.now()
        changed: list[bool] = []

        def mutate(card: Card) -> dict[str, Any]:
            if card.status is not CardStatus.suspended:
                return {}
            changed.append(True)
            return {
                "status": CardStatus.review,
                "next_review": now,
                "interval": max(1, card.interval),
            }

        updated = self._store.atomic_update(card_id, mutate)
        if changed:
            logger.info("card_unsuspended", card_id=updated.id, user_id=updated.user_id)
        return updated

    def mark_leech(self, card_id: str) -> Card:
        """Add the leech tag by hand (idempotent)."""

        tag = self._config.leech_tag
        changed: list[bool] = []

        def mutate(card: Card) -> dict[str, Any]:
            if card.has_tag(tag):
                return {}
            changed.append(True)
            return {"tags": merge_tags(card.tags, [tag])}

        updated = self._store.atomic_update(card_id, mutate)
        if changed:
            logger.warning(
                "leech_tagged",
                card_id=updated.id,
                user_id=updated.user_id,
                lapses=updated.lapses,
                action="manual",
            )
        return updated

    def get_leeches(self, user_id: str, limit: int = 50) -> list[Card]:
        """Leech-tagged cards, most lapses first."""

        limit = _require_non_negative_int("limit", limit)
        query = CardQuery(tag=self._config.leech_tag, order=CardOrder.lapses_desc, limit=limit)
        return self._store.query_by_user(user_id, query)

    def get_review_history(self, card_id: str, limit: int = 50) -> list[ReviewLogEntry]:
        limit = _require_non_negative_int("limit", limit)
        self._store.get(card_id)
        return self._store.list_reviews(card_id, limit=limit)

    # --- aggregates ---
    def get_stats(self, user_id: str) -> UserStats:
        cards = self._store.query_by_user(user_id, CardQuery())
        return compute_stats(cards, self._clock.now(), self._config)

    def get_forecast(self, user_id: str, days: int = 7) -> list[ForecastDay]:
        """Per-day workload for ``days`` local calendar days starting today."""

        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise InvalidInputError(f"days must be a positive integer: {days!r}")
        now = self._clock.now()
        tz = self._config.tzinfo
        boundaries = day_starts(now, days, tz)
        query = CardQuery(
            exclude_statuses=_SUSPENDED,
            review_window=(boundaries[0], boundaries[-1]),
            order=CardOrder.next_review,
        )
        cards = self._store.query_by_user(user_id, query)
        return compute_forecast(cards, now, days, tz)

    @staticmethod
    def estimate_review_minutes(cards: Iterable[Card]) -> float:
        return estimate_review_minutes(cards)
