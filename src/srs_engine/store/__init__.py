from __future__ import annotations

import os

from google.cloud import firestore

from ..config import Settings
from ..logging import logger
from .base import CardMutator, CardOrder, CardQuery, CardStore
from .firestore_store import FirestoreCardStore
from .memory import InMemoryCardStore
from .sqlite_store import SQLiteCardStore

_DEFAULT_EMULATOR_HOST = "127.0.0.1:8080"


def _normalize_emulator_host(raw_host: str | None) -> str | None:
    """FIRESTORE_EMULATOR_HOST で受け取ったホスト文字列を正規化する。

    スキームなしの `localhost:8080` にも http:// を付与する。空文字や None は未設定扱い。
    """

    host = (raw_host or "").strip()
    if not host:
        return None
    if host.startswith(("http://", "https://")):
        return host
    return f"http://{host}"


def build_firestore_client(settings: Settings) -> firestore.Client:
    """Firestore クライアントを構築する。

    - エミュレータ指定（設定値または FIRESTORE_EMULATOR_HOST）があればそちらへ接続
    - 開発環境ではホスト未指定でも 127.0.0.1:8080 のエミュレータを使う
    - production では Cloud Firestore へ接続する
    """

    environment_name = (settings.environment or "").strip().lower()
    emulator_host = _normalize_emulator_host(
        settings.firestore_emulator_host
        or os.environ.get("FIRESTORE_EMULATOR_HOST")
        or (_DEFAULT_EMULATOR_HOST if environment_name != "production" else None)
    )
    project_id = settings.firestore_project_id
    if emulator_host:
        # google-cloud-firestore は FIRESTORE_EMULATOR_HOST を検知して匿名認証へ切り替える。
        os.environ.setdefault(
            "FIRESTORE_EMULATOR_HOST",
            emulator_host.replace("http://", "").replace("https://", ""),
        )
        return firestore.Client(project=project_id, client_options={"api_endpoint": emulator_host})
    return firestore.Client(project=project_id)


def create_store(settings: Settings) -> CardStore:
    """Build the card store selected by ``settings.store_backend``."""

    backend = settings.store_backend
    if backend == "memory":
        store: CardStore = InMemoryCardStore()
    elif backend == "sqlite":
        store = SQLiteCardStore(settings.srs_db_path)
    elif backend == "firestore":
        store = FirestoreCardStore(
            build_firestore_client(settings),
            collection=settings.firestore_collection,
        )
    else:  # pragma: no cover - Literal で弾かれる
        raise ValueError(f"unknown store backend: {backend}")
    logger.info("card_store_initialized", backend=backend)
    return store


__all__ = [
    "CardMutator",
    "CardOrder",
    "CardQuery",
    "CardStore",
    "FirestoreCardStore",
    "InMemoryCardStore",
    "SQLiteCardStore",
    "build_firestore_client",
    "create_store",
]
