"""Card factory.

カード ID の採番、新規カードの初期状態の構築、および語彙 1 件から
複数の提示形式（産出・認識・聴解・穴埋め）のカード下書きを作る処理をまとめる。
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime

from .config import SchedulerConfig
from .models.card import Card, CardDraft, CardStatus, VocabularyItem, merge_tags

CLOZE_PLACEHOLDER = "[...]"


def generate_card_id() -> str:
    """Return a new card id (``card_`` prefix + UUID4 hex)."""

    return f"card_{uuid.uuid4().hex}"


def build_card(draft: CardDraft, *, card_id: str, now: datetime, config: SchedulerConfig) -> Card:
    """Materialise a draft as a ``new`` card that is immediately selectable."""

    return Card(
        id=card_id,
        user_id=draft.user_id,
        type=draft.type,
        front=draft.front,
        back=draft.back,
        source_type=draft.source_type,
        source_id=draft.source_id,
        level=draft.level,
        tags=merge_tags([], draft.tags),
        status=CardStatus.new,
        ease_factor=config.starting_ease,
        interval=0,
        learning_step=0,
        next_review=now,
        created_at=now,
    )


def vocabulary_drafts(user_id: str, vocabulary_id: str, item: VocabularyItem) -> list[CardDraft]:
    """Drafts for one vocabulary entry, hardest presentation first.

    - l1_to_l2: 訳語 → 学習語（産出）
    - l2_to_l1: 学習語 → 訳語（認識）
    - audio_recognition: 音声のみ提示
    - cloze: 例文中の学習語を伏せ字にする（例文に学習語が含まれる場合のみ）
    """

    common = {
        "user_id": user_id,
        "source_type": "vocabulary",
        "source_id": vocabulary_id,
        "level": item.level,
    }
    front_hint = {"text": item.translation}
    if item.ipa:
        front_hint["hint"] = item.ipa
    drafts = [
        CardDraft(
            type="l1_to_l2",
            front=front_hint,
            back={"text": item.term, "audio": True},
            tags=["vocabulary", "production"],
            **common,
        ),
        CardDraft(
            type="l2_to_l1",
            front={"text": item.term, "audio": True},
            back={"text": item.translation},
            tags=["vocabulary", "recognition"],
            **common,
        ),
        CardDraft(
            type="audio_recognition",
            front={"audio": True, "text": "Listen"},
            back={"text": f"{item.term} - {item.translation}"},
            tags=["vocabulary", "listening"],
            **common,
        ),
    ]
    cloze = cloze_text(item.example, item.term)
    if cloze is not None:
        drafts.append(
            CardDraft(
                type="cloze",
                front={"text": cloze},
                back={"text": item.term, "context": item.example},
                tags=["vocabulary", "context"],
                **common,
            )
        )
    return drafts


def cloze_text(example: str, term: str) -> str | None:
    """Blank the first case-insensitive occurrence of ``term``; None when absent."""

    if not example.strip() or not term.strip():
        return None
    pattern = re.compile(re.escape(term.strip()), re.IGNORECASE)
    if not pattern.search(example):
        return None
    return pattern.sub(CLOZE_PLACEHOLDER, example, count=1)
