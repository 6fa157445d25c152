from __future__ import annotations

from datetime import timedelta

import pytest

from srs_engine.errors import InvalidInputError
from srs_engine.models.card import CardStatus
from srs_engine.queue import due_sort_key, filter_by_types

from tests.builders import START, make_card


def _seed_mixed(store) -> None:
    store.insert(make_card("new_old", status=CardStatus.new, next_review=START - timedelta(days=3)))
    store.insert(make_card("review_late", status=CardStatus.review, interval=3, next_review=START - timedelta(hours=1)))
    store.insert(make_card("review_early", status=CardStatus.review, interval=3, next_review=START - timedelta(days=2)))
    store.insert(make_card("learning", status=CardStatus.learning, next_review=START - timedelta(minutes=5)))
    store.insert(make_card("relearning", status=CardStatus.relearning, interval=1, next_review=START))
    store.insert(make_card("future", status=CardStatus.review, interval=3, next_review=START + timedelta(minutes=1)))
    store.insert(make_card("paused", status=CardStatus.suspended, next_review=START - timedelta(days=9)))
    store.insert(make_card("other_user", user_id="u2", status=CardStatus.relearning, next_review=START))


def test_due_cards_are_ordered_by_priority_then_next_review(scheduler, store):
    _seed_mixed(store)

    due = scheduler.get_due_cards("u1")

    assert [c.id for c in due] == ["relearning", "learning", "review_early", "review_late", "new_old"]


def test_due_cards_are_truncated_to_limit(scheduler, store):
    _seed_mixed(store)

    assert [c.id for c in scheduler.get_due_cards("u1", limit=2)] == ["relearning", "learning"]
    assert scheduler.get_due_cards("u1", limit=0) == []


def test_type_filter_is_applied_after_truncation(scheduler, store):
    store.insert(make_card("a", type="cloze", status=CardStatus.relearning))
    store.insert(make_card("b", type="l2_to_l1", status=CardStatus.learning))
    store.insert(make_card("c", type="cloze", status=CardStatus.review, interval=2))

    assert [c.id for c in scheduler.get_due_cards("u1", limit=2, card_types=["cloze"])] == ["a"]
    assert [c.id for c in scheduler.get_due_cards("u1", limit=3, card_types=["cloze"])] == ["a", "c"]


def test_card_due_exactly_now_is_selected(scheduler, store):
    store.insert(make_card("edge", status=CardStatus.review, interval=1, next_review=START))

    assert [c.id for c in scheduler.get_due_cards("u1")] == ["edge"]


def test_card_without_next_review_is_due(scheduler, store):
    store.insert(make_card("unscheduled", status=CardStatus.learning, next_review=None))

    assert [c.id for c in scheduler.get_due_cards("u1")] == ["unscheduled"]


def test_negative_limit_is_rejected(scheduler):
    with pytest.raises(InvalidInputError):
        scheduler.get_due_cards("u1", limit=-1)
    with pytest.raises(InvalidInputError):
        scheduler.get_new_cards("u1", limit=-1)


def test_new_cards_are_oldest_first(scheduler, store):
    store.insert(make_card("second", created_at=START - timedelta(days=1)))
    store.insert(make_card("third", created_at=START))
    store.insert(make_card("first", created_at=START - timedelta(days=5)))
    store.insert(make_card("learning", status=CardStatus.learning, created_at=START - timedelta(days=9)))

    assert [c.id for c in scheduler.get_new_cards("u1")] == ["first", "second", "third"]
    assert [c.id for c in scheduler.get_new_cards("u1", limit=1)] == ["first"]


def test_new_cards_ignore_next_review(scheduler, store):
    store.insert(make_card("later", next_review=START + timedelta(days=3)))

    assert [c.id for c in scheduler.get_new_cards("u1")] == ["later"]


def test_due_sort_key_puts_missing_next_review_first():
    scheduled = make_card("scheduled", status=CardStatus.review, next_review=START)
    unscheduled = make_card("unscheduled", status=CardStatus.review, next_review=None)

    assert sorted([scheduled, unscheduled], key=due_sort_key)[0].id == "unscheduled"


def test_filter_by_types_without_types_keeps_everything():
    cards = [make_card("a", type="cloze"), make_card("b", type="speaking")]

    assert filter_by_types(cards, None) == cards
    assert filter_by_types(cards, []) == cards
    assert [c.id for c in filter_by_types(cards, ["speaking"])] == ["b"]
