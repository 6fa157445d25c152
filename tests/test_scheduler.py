from __future__ import annotations

import threading
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from srs_engine import scheduler as scheduler_module
from srs_engine.clock import FixedClock
from srs_engine.config import SchedulerConfig
from srs_engine.errors import CardNotFoundError, InvalidInputError, StoreUnavailableError
from srs_engine.models.card import CardStatus
from srs_engine.scheduler import Scheduler
from srs_engine.scheduling import round_half_up
from srs_engine.store.memory import InMemoryCardStore

from tests.builders import START, make_card


def _create(scheduler: Scheduler, user_id: str = "u1", card_type: str = "l2_to_l1"):
    return scheduler.create_card(user_id, card_type, {"text": "apple"}, {"text": "りんご"})


def test_create_card_starts_new_and_is_immediately_due(scheduler, store):
    card = scheduler.create_card(
        "u1",
        "l1_to_l2",
        "りんご",
        "apple",
        source_type="vocabulary",
        source_id="vocab-1",
        level="A2",
        tags=["fruit", "fruit"],
    )

    assert card.id.startswith("card_")
    assert card.status is CardStatus.new
    assert card.ease_factor == 2.5
    assert card.interval == 0
    assert card.next_review == START
    assert card.created_at == START
    assert card.tags == ["fruit"]
    assert store.get(card.id) == card
    assert [c.id for c in scheduler.get_due_cards("u1")] == [card.id]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"user_id": "", "card_type": "cloze", "front": "a", "back": "b"},
        {"user_id": "u1", "card_type": "", "front": "a", "back": "b"},
        {"user_id": "u1", "card_type": "cloze", "front": "", "back": "b"},
        {"user_id": "u1", "card_type": "cloze", "front": "a", "back": None},
    ],
)
def test_create_card_rejects_missing_fields(scheduler, store, kwargs):
    with pytest.raises(InvalidInputError):
        scheduler.create_card(**kwargs)
    assert scheduler.get_stats("u1").total_cards == 0


def test_process_review_unknown_card_raises_not_found(scheduler):
    with pytest.raises(CardNotFoundError) as excinfo:
        scheduler.process_review("missing", 4)
    assert excinfo.value.card_id == "missing"


@pytest.mark.parametrize("quality", [-1, 6, True, "4", 3.0, None])
def test_invalid_quality_is_rejected_without_mutation(scheduler, quality):
    card = _create(scheduler)

    with pytest.raises(InvalidInputError):
        scheduler.process_review(card.id, quality)

    assert scheduler.get_card(card.id) == card
    assert scheduler.get_review_history(card.id) == []


def test_negative_time_spent_is_rejected(scheduler):
    card = _create(scheduler)

    with pytest.raises(InvalidInputError):
        scheduler.process_review(card.id, 4, time_spent_ms=-5)


def test_first_perfect_review_graduates(scheduler):
    card = _create(scheduler)

    result = scheduler.process_review(card.id, 5, time_spent_ms=1200)

    assert result.previous_status is CardStatus.new
    assert result.card.status is CardStatus.review
    assert result.interval_days == 4
    assert result.next_review == START + timedelta(days=4)
    assert result.card.ease_factor == 2.5
    assert result.leech_tagged is False


def test_review_updates_counters_and_time_spent(scheduler, clock):
    card = _create(scheduler)

    scheduler.process_review(card.id, 4, time_spent_ms=1000)
    clock.advance(minutes=15)
    result = scheduler.process_review(card.id, 1, time_spent_ms=3000)

    updated = result.card
    assert updated.total_reviews == 2
    assert updated.correct_reviews == 1
    assert updated.last_reviewed == clock.now()
    assert updated.last_time_spent_ms == 3000
    assert updated.total_time_spent_ms == 4000
    assert updated.average_recall_ms == 2000


def test_review_history_is_recorded_newest_first(scheduler, clock):
    card = _create(scheduler)

    scheduler.process_review(card.id, 4)
    clock.advance(minutes=10)
    scheduler.process_review(card.id, 2)

    history = scheduler.get_review_history(card.id)
    assert [entry.quality for entry in history] == [2, 4]
    assert history[0].previous_status is CardStatus.learning
    assert history[0].new_status is CardStatus.learning
    assert history[1].previous_status is CardStatus.new
    assert history[0].reviewed_at == clock.now()


def test_review_history_of_unknown_card_raises(scheduler):
    with pytest.raises(CardNotFoundError):
        scheduler.get_review_history("nope")


def test_leech_is_tagged_on_reaching_threshold_and_stays_tagged(scheduler, store, clock):
    store.insert(make_card(status=CardStatus.review, interval=5, lapses=7, tags=["verbs"]))

    first = scheduler.process_review("card_1", 1)

    assert first.card.lapses == 8
    assert first.leech_tagged is True
    assert first.card.tags == ["verbs", "leech"]
    assert first.card.status is CardStatus.relearning

    clock.advance(minutes=10)
    second = scheduler.process_review("card_1", 0)

    assert second.card.lapses == 9
    assert second.leech_tagged is False
    assert second.card.tags.count("leech") == 1

    clock.advance(minutes=10)
    third = scheduler.process_review("card_1", 4)
    assert "leech" in third.card.tags


def test_leech_below_threshold_is_not_tagged(scheduler, store):
    store.insert(make_card(status=CardStatus.review, interval=5, lapses=5))

    result = scheduler.process_review("card_1", 0)

    assert result.card.lapses == 6
    assert "leech" not in result.card.tags


def test_leech_suspend_policy_suspends_the_tagging_review(store, clock):
    scheduler = Scheduler(store, SchedulerConfig(leech_threshold=2, leech_action="suspend"), clock)
    card = _create(scheduler)

    scheduler.process_review(card.id, 0)
    clock.advance(minutes=1)
    result = scheduler.process_review(card.id, 0)

    assert result.leech_tagged is True
    assert result.card.status is CardStatus.suspended
    clock.advance(days=30)
    assert scheduler.get_due_cards("u1") == []


def test_ease_floor_and_lapse_accounting_over_long_sequences(scheduler, clock):
    card = _create(scheduler)
    qualities = [5, 4, 0, 3, 1, 2, 4, 5, 0, 0, 3, 2, 1, 4, 4, 5, 0, 2, 3, 1] * 3

    previous = scheduler.get_card(card.id)
    for quality in qualities:
        result = scheduler.process_review(card.id, quality)
        current = result.card
        assert current.ease_factor >= 1.3
        if quality < 3:
            assert current.lapses == previous.lapses + 1
            assert current.repetitions == 0
        else:
            assert current.lapses == previous.lapses
            assert current.repetitions == previous.repetitions + 1
        if current.status is CardStatus.review:
            assert current.interval >= 1
        previous = current
        clock.set(current.next_review)


def test_repeated_good_reviews_grow_interval_by_ease(scheduler, store, clock):
    store.insert(make_card(status=CardStatus.review, interval=1, ease_factor=2.5, repetitions=1))

    previous = scheduler.get_card("card_1")
    for _ in range(6):
        result = scheduler.process_review("card_1", 4)
        current = result.card
        assert current.interval == round_half_up(previous.interval * previous.ease_factor)
        assert current.interval >= previous.interval
        previous = current
        clock.set(current.next_review)


def test_concurrent_reviews_of_one_card_are_not_lost(store):
    scheduler = Scheduler(store, SchedulerConfig(), FixedClock(START))
    card = _create(scheduler)
    workers = 16

    barrier = threading.Barrier(workers)

    def review() -> None:
        barrier.wait()
        scheduler.process_review(card.id, 4, time_spent_ms=10)

    threads = [threading.Thread(target=review) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    final = scheduler.get_card(card.id)
    assert final.total_reviews == workers
    assert final.total_time_spent_ms == workers * 10
    assert len(scheduler.get_review_history(card.id)) == workers


class _ReviewLogDown(InMemoryCardStore):
    def __init__(self) -> None:
        super().__init__()
        self.log_available = False

    def record_review(self, entry):
        if not self.log_available:
            raise StoreUnavailableError("review log unavailable")
        super().record_review(entry)


def test_failed_review_log_write_leaves_card_unchanged(clock):
    store = _ReviewLogDown()
    scheduler = Scheduler(store, SchedulerConfig(), clock)
    card = _create(scheduler)

    with pytest.raises(StoreUnavailableError):
        scheduler.process_review(card.id, 4, time_spent_ms=500)

    assert store.get(card.id) == card
    assert store.list_reviews(card.id) == []

    store.log_available = True
    result = scheduler.process_review(card.id, 4, time_spent_ms=500)

    assert result.card.total_reviews == 1
    assert result.card.total_time_spent_ms == 500
    assert len(store.list_reviews(card.id)) == 1


def test_computation_failure_is_logged_and_nothing_is_written(scheduler, store, monkeypatch):
    card = _create(scheduler)

    def broken_transition(*args, **kwargs):
        raise ArithmeticError("interval overflow")

    monkeypatch.setattr(scheduler_module, "compute_transition", broken_transition)

    with capture_logs() as logs:
        with pytest.raises(ArithmeticError):
            scheduler.process_review(card.id, 3)

    failures = [entry for entry in logs if entry["event"] == "review_computation_failed"]
    assert failures and failures[0]["card_id"] == card.id
    assert failures[0]["quality"] == 3
    assert failures[0]["log_level"] == "error"
    assert not [entry for entry in logs if entry["event"] == "review_processed"]
    assert store.get(card.id) == card
    assert store.list_reviews(card.id) == []


def test_suspended_card_is_excluded_and_frozen(scheduler, clock):
    keep = _create(scheduler)
    paused = _create(scheduler)

    suspended = scheduler.suspend_card(paused.id)
    assert suspended.status is CardStatus.suspended
    assert suspended.next_review == paused.next_review

    clock.advance(days=3)
    assert [c.id for c in scheduler.get_due_cards("u1")] == [keep.id]
    assert [c.id for c in scheduler.get_new_cards("u1")] == [keep.id]
    with pytest.raises(InvalidInputError):
        scheduler.process_review(paused.id, 4)
    assert scheduler.get_card(paused.id) == suspended


def test_suspend_twice_is_a_noop(scheduler):
    card = _create(scheduler)

    first = scheduler.suspend_card(card.id)
    second = scheduler.suspend_card(card.id)

    assert first == second


def test_unsuspend_makes_card_due_now_without_touching_ease(scheduler, store, clock):
    store.insert(
        make_card(status=CardStatus.review, interval=12, ease_factor=1.9, lapses=3, next_review=START + timedelta(days=12))
    )
    scheduler.suspend_card("card_1")
    clock.advance(hours=5)

    card = scheduler.unsuspend_card("card_1")

    assert card.status is CardStatus.review
    assert card.next_review == clock.now()
    assert card.interval == 12
    assert card.ease_factor == 1.9
    assert card.lapses == 3
    assert [c.id for c in scheduler.get_due_cards("u1")] == ["card_1"]


def test_unsuspend_new_card_raises_interval_to_one_day(scheduler):
    card = _create(scheduler)
    scheduler.suspend_card(card.id)

    restored = scheduler.unsuspend_card(card.id)

    assert restored.status is CardStatus.review
    assert restored.interval == 1


def test_unsuspend_active_card_is_a_noop(scheduler):
    card = _create(scheduler)

    assert scheduler.unsuspend_card(card.id) == card


@pytest.mark.parametrize("operation", ["suspend_card", "unsuspend_card", "mark_leech", "get_card"])
def test_per_card_operations_raise_not_found(scheduler, operation):
    with pytest.raises(CardNotFoundError):
        getattr(scheduler, operation)("missing")


def test_mark_leech_is_idempotent_and_listed_by_lapses(scheduler, store):
    store.insert(make_card("card_a", lapses=2))
    store.insert(make_card("card_b", lapses=9))
    store.insert(make_card("card_c", lapses=4))

    for card_id in ("card_a", "card_b", "card_a"):
        scheduler.mark_leech(card_id)

    assert scheduler.get_card("card_a").tags == ["leech"]
    assert [c.id for c in scheduler.get_leeches("u1")] == ["card_b", "card_a"]
    assert [c.id for c in scheduler.get_leeches("u1", limit=1)] == ["card_b"]


def test_create_vocabulary_cards_builds_all_presentations(scheduler):
    cards = scheduler.create_vocabulary_cards(
        "u1",
        "vocab-7",
        {"term": "Apple", "translation": "りんご", "ipa": "/ˈæp.əl/", "example": "An apple a day.", "level": "A1"},
    )

    assert [c.type for c in cards] == ["l1_to_l2", "l2_to_l1", "audio_recognition", "cloze"]
    assert {c.source_id for c in cards} == {"vocab-7"}
    assert {c.source_type for c in cards} == {"vocabulary"}
    assert cards[3].front == {"text": "An [...] a day."}
    assert cards[0].front == {"text": "りんご", "hint": "/ˈæp.əl/"}


def test_create_vocabulary_cards_without_example_skips_cloze(scheduler):
    cards = scheduler.create_vocabulary_cards("u1", "vocab-8", {"term": "pear", "translation": "梨"})

    assert [c.type for c in cards] == ["l1_to_l2", "l2_to_l1", "audio_recognition"]


@pytest.mark.parametrize(
    "item",
    [{"term": "", "translation": "梨"}, {"term": "pear", "translation": ""}, {"translation": "梨"}],
)
def test_create_vocabulary_cards_requires_term_and_translation(scheduler, item):
    with pytest.raises(InvalidInputError):
        scheduler.create_vocabulary_cards("u1", "vocab-9", item)


def test_users_are_isolated(scheduler):
    _create(scheduler, user_id="u1")
    _create(scheduler, user_id="u2")

    assert len(scheduler.get_due_cards("u1")) == 1
    assert scheduler.get_stats("u2").total_cards == 1


def test_scheduler_defaults_are_usable():
    scheduler = Scheduler(InMemoryCardStore())

    assert scheduler.config == SchedulerConfig()
    card = scheduler.create_card("u1", "cloze", "a", "b")
    assert card.next_review is not None
