from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Any

from ..errors import CardNotFoundError, StoreUnavailableError
from ..logging import logger
from ..models.card import Card, CardStatus
from ..models.review import ReviewLogEntry
from .base import CardMutator, CardOrder, CardQuery, ReviewBuilder
from .common import apply_fields, normalize_non_negative_int, to_iso


_CARD_COLUMNS = (
    "id",
    "user_id",
    "type",
    "front",
    "back",
    "source_type",
    "source_id",
    "level",
    "tags",
    "status",
    "ease_factor",
    "interval_days",
    "learning_step",
    "repetitions",
    "lapses",
    "next_review",
    "last_reviewed",
    "created_at",
    "total_reviews",
    "correct_reviews",
    "last_time_spent_ms",
    "total_time_spent_ms",
)
_MUTABLE_COLUMNS = tuple(c for c in _CARD_COLUMNS if c not in ("id", "user_id", "created_at"))

_ORDER_SQL = {
    CardOrder.none: "",
    CardOrder.due_priority: (
        " ORDER BY CASE status"
        " WHEN 'relearning' THEN 0 WHEN 'learning' THEN 1"
        " WHEN 'review' THEN 2 WHEN 'new' THEN 3 ELSE 4 END,"
        " next_review ASC, id ASC"
    ),
    CardOrder.created_at: " ORDER BY created_at ASC, id ASC",
    CardOrder.next_review: " ORDER BY next_review ASC, id ASC",
    CardOrder.lapses_desc: " ORDER BY lapses DESC, id ASC",
}


def _card_to_row(card: Card) -> dict[str, Any]:
    return {
        "id": card.id,
        "user_id": card.user_id,
        "type": card.type,
        "front": json.dumps(card.front, ensure_ascii=False),
        "back": json.dumps(card.back, ensure_ascii=False),
        "source_type": card.source_type,
        "source_id": card.source_id,
        "level": card.level,
        "tags": json.dumps(card.tags, ensure_ascii=False),
        "status": card.status.value,
        "ease_factor": float(card.ease_factor),
        "interval_days": int(card.interval),
        "learning_step": int(card.learning_step),
        "repetitions": int(card.repetitions),
        "lapses": int(card.lapses),
        "next_review": to_iso(card.next_review),
        "last_reviewed": to_iso(card.last_reviewed),
        "created_at": to_iso(card.created_at),
        "total_reviews": int(card.total_reviews),
        "correct_reviews": int(card.correct_reviews),
        "last_time_spent_ms": int(card.last_time_spent_ms),
        "total_time_spent_ms": int(card.total_time_spent_ms),
    }


def _row_to_card(row: sqlite3.Row) -> Card:
    return Card(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        front=json.loads(row["front"]),
        back=json.loads(row["back"]),
        source_type=row["source_type"],
        source_id=row["source_id"],
        level=row["level"],
        tags=json.loads(row["tags"] or "[]"),
        status=CardStatus(row["status"]),
        ease_factor=float(row["ease_factor"]),
        interval=normalize_non_negative_int(row["interval_days"]),
        learning_step=normalize_non_negative_int(row["learning_step"]),
        repetitions=normalize_non_negative_int(row["repetitions"]),
        lapses=normalize_non_negative_int(row["lapses"]),
        next_review=row["next_review"],
        last_reviewed=row["last_reviewed"],
        created_at=row["created_at"],
        total_reviews=normalize_non_negative_int(row["total_reviews"]),
        correct_reviews=normalize_non_negative_int(row["correct_reviews"]),
        last_time_spent_ms=normalize_non_negative_int(row["last_time_spent_ms"]),
        total_time_spent_ms=normalize_non_negative_int(row["total_time_spent_ms"]),
    )


class SQLiteCardStore:
    """SQLite-backed card store.

    - カードとレビュー履歴を srs_cards / srs_reviews に保存する
    - atomic_update は BEGIN IMMEDIATE で書き込みロックを先取りし、同一カードの
      読み込み→計算→書き込みを直列化する
    - 絞り込み・並び替え・件数制限は SQL 側で行う
    - ":memory:" 指定時は単一接続を共有する
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._shared_conn: sqlite3.Connection | None = None
        self._shared_lock = RLock()
        if db_path == ":memory:":
            self._shared_conn = self._open()
        else:
            self._ensure_dirs()
        self._init_db()

    # --- low-level helpers ---
    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10.0, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    def _ensure_dirs(self) -> None:
        p = Path(self.db_path)
        if p.parent and not p.parent.exists():
            p.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            if self._shared_conn is not None:
                with self._shared_lock:
                    yield self._shared_conn
                return
            conn = self._open()
            try:
                yield conn
            finally:
                conn.close()
        except sqlite3.IntegrityError as exc:
            raise ValueError(str(exc)) from exc
        except sqlite3.Error as exc:
            logger.error("store_unavailable", backend="sqlite", error=repr(exc))
            raise StoreUnavailableError(f"sqlite store failure: {exc}") from exc

    def _init_db(self) -> None:
        with self._connection() as conn:
            with conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS srs_cards (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        type TEXT NOT NULL,
                        front TEXT NOT NULL,
                        back TEXT NOT NULL,
                        source_type TEXT NOT NULL,
                        source_id TEXT NOT NULL,
                        level TEXT NOT NULL,
                        tags TEXT NOT NULL DEFAULT '[]',
                        status TEXT NOT NULL DEFAULT 'new',
                        ease_factor REAL NOT NULL DEFAULT 2.5,
                        interval_days INTEGER NOT NULL DEFAULT 0,
                        learning_step INTEGER NOT NULL DEFAULT 0,
                        repetitions INTEGER NOT NULL DEFAULT 0,
                        lapses INTEGER NOT NULL DEFAULT 0,
                        next_review TEXT,
                        last_reviewed TEXT,
                        created_at TEXT NOT NULL,
                        total_reviews INTEGER NOT NULL DEFAULT 0,
                        correct_reviews INTEGER NOT NULL DEFAULT 0,
                        last_time_spent_ms INTEGER NOT NULL DEFAULT 0,
                        total_time_spent_ms INTEGER NOT NULL DEFAULT 0
                    );
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS srs_reviews (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        card_id TEXT NOT NULL,
                        user_id TEXT NOT NULL,
                        reviewed_at TEXT NOT NULL,
                        quality INTEGER NOT NULL,
                        time_spent_ms INTEGER NOT NULL,
                        previous_status TEXT NOT NULL,
                        new_status TEXT NOT NULL,
                        previous_interval INTEGER NOT NULL,
                        new_interval INTEGER NOT NULL,
                        ease_factor REAL NOT NULL,
                        next_review TEXT NOT NULL,
                        FOREIGN KEY(card_id) REFERENCES srs_cards(id) ON DELETE CASCADE
                    );
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_srs_cards_user_status ON srs_cards(user_id, status);")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_srs_cards_user_next ON srs_cards(user_id, next_review);")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_srs_reviews_card ON srs_reviews(card_id, reviewed_at);")

    @staticmethod
    def _fetch(conn: sqlite3.Connection, card_id: str) -> Card:
        row = conn.execute("SELECT * FROM srs_cards WHERE id = ?;", (card_id,)).fetchone()
        if row is None:
            raise CardNotFoundError(card_id)
        return _row_to_card(row)

    @staticmethod
    def _write(conn: sqlite3.Connection, card: Card) -> None:
        row = _card_to_row(card)
        assignments = ", ".join(f"{col} = :{col}" for col in _MUTABLE_COLUMNS)
        conn.execute(f"UPDATE srs_cards SET {assignments} WHERE id = :id;", row)

    # --- public API ---
    def get(self, card_id: str) -> Card:
        with self._connection() as conn:
            return self._fetch(conn, card_id)

    def insert(self, card: Card) -> None:
        columns = ", ".join(_CARD_COLUMNS)
        placeholders = ", ".join(f":{col}" for col in _CARD_COLUMNS)
        with self._connection() as conn:
            with conn:
                conn.execute(
                    f"INSERT INTO srs_cards ({columns}) VALUES ({placeholders});",
                    _card_to_row(card),
                )

    def update(self, card_id: str, fields: Mapping[str, Any]) -> Card:
        return self.atomic_update(card_id, lambda _card: fields)

    def atomic_update(
        self, card_id: str, mutate: CardMutator, review: ReviewBuilder | None = None
    ) -> Card:
        with self._connection() as conn:
            # BEGIN IMMEDIATE to avoid concurrent writers on the same row
            conn.execute("BEGIN IMMEDIATE;")
            try:
                current = self._fetch(conn, card_id)
                updated = apply_fields(current, mutate(current))
                self._write(conn, updated)
                if review is not None:
                    self._insert_review(conn, review(current, updated))
                conn.execute("COMMIT;")
                return updated
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK;")
                raise

    def query_by_user(self, user_id: str, query: CardQuery) -> list[Card]:
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if query.statuses is not None:
            if not query.statuses:
                return []
            clauses.append(f"status IN ({', '.join('?' for _ in query.statuses)})")
            params.extend(sorted(s.value for s in query.statuses))
        if query.exclude_statuses:
            clauses.append(f"status NOT IN ({', '.join('?' for _ in query.exclude_statuses)})")
            params.extend(sorted(s.value for s in query.exclude_statuses))
        if query.due_at is not None:
            clauses.append("(next_review IS NULL OR next_review <= ?)")
            params.append(to_iso(query.due_at))
        if query.review_window is not None:
            start, end = query.review_window
            clauses.append("next_review >= ? AND next_review < ?")
            params.extend([to_iso(start), to_iso(end)])
        if query.tag is not None:
            clauses.append("EXISTS (SELECT 1 FROM json_each(srs_cards.tags) WHERE json_each.value = ?)")
            params.append(query.tag)
        sql = f"SELECT * FROM srs_cards WHERE {' AND '.join(clauses)}{_ORDER_SQL[query.order]}"
        if query.limit is not None:
            sql += " LIMIT ?"
            params.append(max(0, query.limit))
        with self._connection() as conn:
            return [_row_to_card(row) for row in conn.execute(sql + ";", params).fetchall()]

    @staticmethod
    def _insert_review(conn: sqlite3.Connection, entry: ReviewLogEntry) -> None:
        conn.execute(
            """
            INSERT INTO srs_reviews(
                card_id, user_id, reviewed_at, quality, time_spent_ms, previous_status,
                new_status, previous_interval, new_interval, ease_factor, next_review
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                entry.card_id,
                entry.user_id,
                to_iso(entry.reviewed_at),
                entry.quality,
                entry.time_spent_ms,
                entry.previous_status.value,
                entry.new_status.value,
                entry.previous_interval,
                entry.new_interval,
                entry.ease_factor,
                to_iso(entry.next_review),
            ),
        )

    def record_review(self, entry: ReviewLogEntry) -> None:
        with self._connection() as conn:
            with conn:
                self._insert_review(conn, entry)

    def list_reviews(self, card_id: str, limit: int = 50) -> list[ReviewLogEntry]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM srs_reviews
                WHERE card_id = ?
                ORDER BY reviewed_at DESC, id DESC
                LIMIT ?;
                """,
                (card_id, max(0, limit)),
            ).fetchall()
        return [
            ReviewLogEntry(
                card_id=row["card_id"],
                user_id=row["user_id"],
                reviewed_at=row["reviewed_at"],
                quality=row["quality"],
                time_spent_ms=row["time_spent_ms"],
                previous_status=CardStatus(row["previous_status"]),
                new_status=CardStatus(row["new_status"]),
                previous_interval=row["previous_interval"],
                new_interval=row["new_interval"],
                ease_factor=row["ease_factor"],
                next_review=row["next_review"],
            )
            for row in rows
        ]
