from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..config import settings
from ..dependencies import get_scheduler, get_user_id
from ..errors import CardNotFoundError
from ..models.card import Card, CardStatus
from ..models.review import ReviewLogEntry, ReviewResult
from ..models.stats import ForecastDay, UserStats
from ..queue import difficulty_label
from ..scheduler import Scheduler

router = APIRouter(tags=["srs"])


class DueCard(Card):
    difficulty: str = Field(description="easy | medium | hard | very_hard")


class DueCounts(BaseModel):
    new: int = 0
    learning: int = 0
    review: int = 0
    relearning: int = 0


class DueCardsResponse(BaseModel):
    cards: list[DueCard]
    counts: DueCounts
    total: int
    estimated_minutes: float


class CardListResponse(BaseModel):
    cards: list[Card]
    total: int


class ReviewRequest(BaseModel):
    card_id: str = Field(min_length=1, description="Card id / 採点対象カードID")
    # 範囲チェックは Scheduler 側で行い、エラーコードを統一する
    quality: int = Field(description="Recall grade 0-5 / 想起の評価（0〜5）")
    time_spent_ms: int = Field(default=0, description="Response time in ms / 回答時間（ミリ秒）")


class CreateCardRequest(BaseModel):
    type: str = Field(description="Presentation mode / 出題形式 (l1_to_l2, cloze, ...)")
    front: Any
    back: Any
    source_type: str = "custom"
    source_id: str = "custom"
    level: str = "A1"
    tags: list[str] = Field(default_factory=list)


class CreateVocabularyCardsRequest(BaseModel):
    vocabulary_id: str = Field(description="Originating vocabulary id / 語彙ID")
    term: str = Field(description="Target-language term / 学習語")
    translation: str = Field(description="Native-language meaning / 訳語")
    ipa: str = ""
    example: str = Field(default="", description="Example sentence used for cloze / 穴埋め用例文")
    level: str = "A1"


class ForecastResponse(BaseModel):
    days: list[ForecastDay]


class ReviewHistoryResponse(BaseModel):
    card_id: str
    reviews: list[ReviewLogEntry]


def _owned_card(scheduler: Scheduler, card_id: str, user_id: str) -> Card:
    """Load a card, hiding cards that belong to other users as not found."""

    card = scheduler.get_card(card_id)
    if card.user_id != user_id:
        raise CardNotFoundError(card_id)
    return card


def _split_types(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    return [part.strip() for part in raw.split(",") if part.strip()] or None


@router.get("/due", response_model=DueCardsResponse)
def get_due_cards(
    limit: int | None = Query(default=None, ge=0, description="Max cards / 最大件数"),
    types: str | None = Query(default=None, description="Comma-separated card types / カード種別（カンマ区切り）"),
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> DueCardsResponse:
    """期限到来カードを優先度順に返す（難易度ラベルと所要時間の目安付き）。"""

    effective_limit = settings.default_due_limit if limit is None else limit
    cards = scheduler.get_due_cards(user_id, effective_limit, _split_types(types))
    counts = DueCounts()
    for card in cards:
        if card.status is not CardStatus.suspended:
            setattr(counts, card.status.value, getattr(counts, card.status.value) + 1)
    return DueCardsResponse(
        cards=[
            DueCard(**card.model_dump(), difficulty=difficulty_label(card.ease_factor, card.lapses))
            for card in cards
        ],
        counts=counts,
        total=len(cards),
        estimated_minutes=scheduler.estimate_review_minutes(cards),
    )


@router.get("/new", response_model=CardListResponse)
def get_new_cards(
    limit: int | None = Query(default=None, ge=0),
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> CardListResponse:
    effective_limit = settings.default_new_limit if limit is None else limit
    cards = scheduler.get_new_cards(user_id, effective_limit)
    return CardListResponse(cards=cards, total=len(cards))


@router.post("/review", response_model=ReviewResult)
def post_review(
    req: ReviewRequest,
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> ReviewResult:
    """1 回分の採点結果を反映し、次回出題日時を返す。"""

    _owned_card(scheduler, req.card_id, user_id)
    return scheduler.process_review(req.card_id, req.quality, req.time_spent_ms)


@router.get("/stats", response_model=UserStats)
def get_stats(
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> UserStats:
    return scheduler.get_stats(user_id)


@router.get("/forecast", response_model=ForecastResponse)
def get_forecast(
    days: int | None = Query(default=None, ge=1, le=settings.max_forecast_days),
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> ForecastResponse:
    effective_days = settings.default_forecast_days if days is None else days
    return ForecastResponse(days=scheduler.get_forecast(user_id, effective_days))


@router.post("/cards", response_model=Card, status_code=201)
def create_card(
    req: CreateCardRequest,
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> Card:
    return scheduler.create_card(
        user_id,
        req.type,
        req.front,
        req.back,
        source_type=req.source_type,
        source_id=req.source_id,
        level=req.level,
        tags=req.tags,
    )


@router.post("/cards/vocabulary", response_model=CardListResponse, status_code=201)
def create_vocabulary_cards(
    req: CreateVocabularyCardsRequest,
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> CardListResponse:
    """語彙 1 件から産出・認識・聴解（例文があれば穴埋め）カードをまとめて作成する。"""

    cards = scheduler.create_vocabulary_cards(
        user_id,
        req.vocabulary_id,
        req.model_dump(exclude={"vocabulary_id"}),
    )
    return CardListResponse(cards=cards, total=len(cards))


@router.get("/cards/{card_id}", response_model=Card)
def get_card(
    card_id: str,
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> Card:
    return _owned_card(scheduler, card_id, user_id)


@router.get("/cards/{card_id}/reviews", response_model=ReviewHistoryResponse)
def get_review_history(
    card_id: str,
    limit: int = Query(default=50, ge=0, le=500),
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> ReviewHistoryResponse:
    _owned_card(scheduler, card_id, user_id)
    return ReviewHistoryResponse(card_id=card_id, reviews=scheduler.get_review_history(card_id, limit))


@router.post("/cards/{card_id}/suspend", response_model=Card)
def suspend_card(
    card_id: str,
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> Card:
    _owned_card(scheduler, card_id, user_id)
    return scheduler.suspend_card(card_id)


@router.post("/cards/{card_id}/unsuspend", response_model=Card)
def unsuspend_card(
    card_id: str,
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> Card:
    _owned_card(scheduler, card_id, user_id)
    return scheduler.unsuspend_card(card_id)


@router.post("/cards/{card_id}/leech", response_model=Card)
def mark_leech(
    card_id: str,
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> Card:
    _owned_card(scheduler, card_id, user_id)
    return scheduler.mark_leech(card_id)


@router.get("/leeches", response_model=CardListResponse)
def get_leeches(
    limit: int = Query(default=50, ge=0, le=500),
    user_id: str = Depends(get_user_id),
    scheduler: Scheduler = Depends(get_scheduler),
) -> CardListResponse:
    cards = scheduler.get_leeches(user_id, limit)
    return CardListResponse(cards=cards, total=len(cards))
