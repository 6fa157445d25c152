from .card import Card, CardDraft, CardStatus, Quality, VocabularyItem, merge_tags
from .review import ReviewLogEntry, ReviewResult
from .stats import ForecastDay, UserStats

__all__ = [
    "Card",
    "CardDraft",
    "CardStatus",
    "ForecastDay",
    "Quality",
    "ReviewLogEntry",
    "ReviewResult",
    "UserStats",
    "VocabularyItem",
    "merge_tags",
]
