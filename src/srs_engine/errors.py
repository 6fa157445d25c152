"""Error taxonomy shared by the scheduler, the card stores and the HTTP adapter.

スケジューラ/ストア/HTTP 層で共通に扱う例外の定義。
- CardNotFoundError: 未知のカード ID（呼び出し元へ必ず伝播させる）
- InvalidInputError: 評価値や件数などの入力不正（状態変更前に拒否）
- StoreUnavailableError: 永続層が読み書きを完了できない（リトライはしない）
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for every error raised by the scheduling engine."""

    code = "INTERNAL_ERROR"


class CardNotFoundError(SchedulerError, LookupError):
    """Raised when a per-card operation references an unknown card id."""

    code = "NOT_FOUND"

    def __init__(self, card_id: str) -> None:
        super().__init__(f"card not found: {card_id}")
        self.card_id = card_id


class InvalidInputError(SchedulerError, ValueError):
    """Raised before any mutation when caller input is out of range."""

    code = "VALIDATION_ERROR"


class StoreUnavailableError(SchedulerError):
    """Raised when the card store cannot complete a read or write."""

    code = "STORE_UNAVAILABLE"
