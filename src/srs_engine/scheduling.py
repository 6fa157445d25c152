"""Review state machine (SM-2 variant with sub-day learning steps).

1 回の採点結果からカードの次状態を計算する純粋関数群。永続化や時計の取得は
行わず、現在のカード状態・評価値・現在時刻・設定値だけから結果が決まる。

- 失敗 (quality < 3): lapses+1 / repetitions=0 / Ease を固定量減算（下限あり）。
  review/relearning からは relearning（interval=1 日、relearning_delay 分後）へ、
  それ以外は learning の先頭ステップへ。
- 成功 (quality >= 3):
  - new/learning: 学習ステップを 1 つ進める。最終ステップか quality=5 なら review へ卒業。
  - review/relearning: 直前の interval から Hard/Good/Easy の倍率で再計算し、
    SM-2 の連続式で Ease を更新する。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from .config import SchedulerConfig
from .models.card import Card, CardStatus, Quality


@dataclass(frozen=True)
class Transition:
    status: CardStatus
    ease_factor: float
    interval: int
    learning_step: int
    repetitions: int
    lapses: int
    next_review: datetime

    def as_fields(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "ease_factor": self.ease_factor,
            "interval": self.interval,
            "learning_step": self.learning_step,
            "repetitions": self.repetitions,
            "lapses": self.lapses,
            "next_review": self.next_review,
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def sm2_ease(ease: float, quality: int, minimum: float) -> float:
    """Continuous SM-2 ease update, floored at ``minimum``."""

    miss = 5 - quality
    return max(minimum, ease + (0.1 - miss * (0.08 + miss * 0.02)))


def step_delay(steps: tuple[int, ...], index: int) -> timedelta:
    """Minute offset of ``steps[index]``; indexes past the end use the last step."""

    clamped = min(max(index, 0), len(steps) - 1)
    return timedelta(minutes=steps[clamped])


def compute_transition(
    card: Card, quality: Quality, now: datetime, config: SchedulerConfig
) -> Transition:
    """Return the scheduling state after grading ``card`` with ``quality`` at ``now``."""

    if card.status is CardStatus.suspended:
        raise ValueError("suspended cards cannot be reviewed")
    if quality.is_success:
        return _on_success(card, quality, now, config)
    return _on_failure(card, now, config)


def _on_failure(card: Card, now: datetime, config: SchedulerConfig) -> Transition:
    ease = max(config.minimum_ease, card.ease_factor - config.lapse_ease_penalty)
    if card.status in (CardStatus.review, CardStatus.relearning):
        return Transition(
            status=CardStatus.relearning,
            ease_factor=ease,
            interval=1,
            learning_step=0,
            repetitions=0,
            lapses=card.lapses + 1,
            next_review=now + timedelta(minutes=config.relearning_delay_minutes),
        )
    return Transition(
        status=CardStatus.learning,
        ease_factor=ease,
        interval=card.interval,
        learning_step=0,
        repetitions=0,
        lapses=card.lapses + 1,
        next_review=now + step_delay(config.learning_steps, 0),
    )


def _on_success(
    card: Card, quality: Quality, now: datetime, config: SchedulerConfig
) -> Transition:
    repetitions = card.repetitions + 1
    if card.status in (CardStatus.new, CardStatus.learning):
        last_step = len(config.learning_steps) - 1
        if quality is Quality.EASY or card.learning_step >= last_step:
            interval = (
                config.easy_interval if quality is Quality.EASY else config.graduating_interval
            )
            return _graduate(card, card.ease_factor, interval, repetitions, now)
        next_step = card.learning_step + 1
        return Transition(
            status=CardStatus.learning,
            ease_factor=card.ease_factor,
            interval=card.interval,
            learning_step=next_step,
            repetitions=repetitions,
            lapses=card.lapses,
            next_review=now + step_delay(config.learning_steps, next_step),
        )

    previous = card.interval
    if quality is Quality.HARD:
        interval = round_half_up(previous * config.hard_interval_modifier)
    elif quality is Quality.GOOD:
        interval = round_half_up(previous * card.ease_factor)
    else:
        interval = round_half_up(previous * card.ease_factor * config.easy_bonus)
    ease = sm2_ease(card.ease_factor, int(quality), config.minimum_ease)
    return _graduate(card, ease, interval, repetitions, now)


def _graduate(
    card: Card, ease: float, interval: int, repetitions: int, now: datetime
) -> Transition:
    days = max(1, interval)
    return Transition(
        status=CardStatus.review,
        ease_factor=ease,
        interval=days,
        learning_step=0,
        repetitions=repetitions,
        lapses=card.lapses,
        next_review=now + timedelta(days=days),
    )
