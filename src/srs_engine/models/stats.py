import datetime

from pydantic import BaseModel, Field


class UserStats(BaseModel):
    """Aggregate progress numbers for one user.

    - retention_7_days: 直近7日以内にレビューしたカードの正答数/総レビュー数（0〜1）
    - average_ease: 一時停止中を除くカードの平均 Ease
    """

    new_count: int = 0
    learning_count: int = 0
    review_count: int = 0
    relearning_count: int = 0
    suspended_count: int = 0
    total_cards: int = 0
    due_now: int = 0
    retention_7_days: float = Field(default=0.0, ge=0.0, le=1.0)
    average_ease: float = 2.5


class ForecastDay(BaseModel):
    """Workload projected for one calendar day."""

    date: datetime.date
    new_cards: int = 0
    other_cards: int = 0
    total_cards: int = 0
    estimated_minutes: float = 0.0
