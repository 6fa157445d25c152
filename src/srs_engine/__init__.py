"""Spaced-repetition scheduling engine.

学習カードごとの次回出題日時・難易度（Ease）・リーチ判定を管理する SRS エンジン。
"""

from .clock import Clock, FixedClock, SystemClock
from .config import SchedulerConfig, Settings
from .errors import CardNotFoundError, InvalidInputError, SchedulerError, StoreUnavailableError
from .models import (
    Card,
    CardDraft,
    CardStatus,
    ForecastDay,
    Quality,
    ReviewLogEntry,
    ReviewResult,
    UserStats,
    VocabularyItem,
)
from .scheduler import Scheduler

__all__ = [
    "Card",
    "CardDraft",
    "CardNotFoundError",
    "CardStatus",
    "Clock",
    "FixedClock",
    "ForecastDay",
    "InvalidInputError",
    "Quality",
    "ReviewLogEntry",
    "ReviewResult",
    "Scheduler",
    "SchedulerConfig",
    "SchedulerError",
    "Settings",
    "StoreUnavailableError",
    "SystemClock",
    "UserStats",
    "VocabularyItem",
]
