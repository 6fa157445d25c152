"""Statistics fold and forecast bucketing over a user's cards.

どちらも読み取り専用の純粋関数で、ストアから取得したカード列と現在時刻だけで
結果が決まる（カード間の整合性は要求しない）。
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, tzinfo

from .config import SchedulerConfig
from .models.card import Card, CardStatus
from .models.stats import ForecastDay, UserStats
from .queue import estimate_review_minutes


RETENTION_WINDOW = timedelta(days=7)


def compute_stats(cards: Iterable[Card], now: datetime, config: SchedulerConfig) -> UserStats:
    """Single-pass aggregate of status counts, due count, retention and mean ease."""

    counts = {status: 0 for status in CardStatus}
    due_now = 0
    correct = 0
    reviewed = 0
    ease_sum = 0.0
    active = 0
    retention_since = now - RETENTION_WINDOW

    for card in cards:
        counts[card.status] += 1
        if card.last_reviewed is not None and card.last_reviewed >= retention_since and card.total_reviews > 0:
            correct += card.correct_reviews
            reviewed += card.total_reviews
        if card.status is CardStatus.suspended:
            continue
        active += 1
        ease_sum += card.ease_factor
        if card.is_due(now):
            due_now += 1

    return UserStats(
        new_count=counts[CardStatus.new],
        learning_count=counts[CardStatus.learning],
        review_count=counts[CardStatus.review],
        relearning_count=counts[CardStatus.relearning],
        suspended_count=counts[CardStatus.suspended],
        total_cards=sum(counts.values()),
        due_now=due_now,
        retention_7_days=(correct / reviewed) if reviewed else 0.0,
        average_ease=round(ease_sum / active, 2) if active else config.starting_ease,
    )


def day_starts(now: datetime, days: int, tz: tzinfo) -> list[datetime]:
    """Local midnights for today and the following days, plus the end boundary.

    Returns ``days + 1`` aware datetimes; day ``i`` spans ``[starts[i], starts[i + 1])``.
    """

    today = now.astimezone(tz).date()
    return [
        datetime.combine(today + timedelta(days=offset), time.min, tzinfo=tz)
        for offset in range(days + 1)
    ]


def compute_forecast(
    cards: Iterable[Card], now: datetime, days: int, tz: tzinfo
) -> list[ForecastDay]:
    """Bucket non-suspended cards by the local calendar day of ``next_review``.

    Every requested day gets an entry, including days with nothing scheduled.
    """

    boundaries = day_starts(now, days, tz)
    dates: list[date] = [start.date() for start in boundaries[:-1]]
    buckets: dict[date, list[Card]] = {d: [] for d in dates}
    window_start, window_end = boundaries[0], boundaries[-1]

    for card in cards:
        if card.status is CardStatus.suspended or card.next_review is None:
            continue
        if not (window_start <= card.next_review < window_end):
            continue
        local_day = card.next_review.astimezone(tz).date()
        if local_day in buckets:
            buckets[local_day].append(card)

    forecast: list[ForecastDay] = []
    for day in dates:
        scheduled = buckets[day]
        new_cards = sum(1 for card in scheduled if card.status is CardStatus.new)
        forecast.append(
            ForecastDay(
                date=day,
                new_cards=new_cards,
                other_cards=len(scheduled) - new_cards,
                total_cards=len(scheduled),
                estimated_minutes=estimate_review_minutes(scheduled),
            )
        )
    return forecast
