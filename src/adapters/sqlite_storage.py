"""SQLite storage adapter.

Implements every core storage port (cursor store, leases, subscriptions,
alert backlog, user directory) on a single SQLite database. Used for local
runs and tests; production deployments use the Supabase adapter.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from core.feed_ids import Cursor
from core.lease import FIREHOSE_RESOURCE, utc_now
from core.models import (
    FAILED,
    PENDING,
    PROCESSING,
    AlertRecord,
    Keyword,
    PostData,
    Subscription,
    check_transition,
)

GLOBAL_CURSOR_NAME = FIREHOSE_RESOURCE


def _ts(value: datetime) -> str:
    # Fixed-width UTC strings compare correctly as text.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the storage port contracts."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - keywords: watched terms with their cursor and lease
        - subscriptions: (user, keyword) pairs with matching preferences
        - alert_queue: the alert backlog
        - global_cursor: firehose cursor and lease
        - users: user id to email directory
        """

        with self._connect() as conn:
            # keywords.last_item_id holds an encoded core.feed_ids.Cursor;
            # locked_until is the lease expiry (NULL when free).
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS keywords (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    term TEXT NOT NULL UNIQUE,
                    last_item_id TEXT,
                    locked_until TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    user_id TEXT NOT NULL,
                    keyword_id INTEGER NOT NULL REFERENCES keywords(id),
                    is_active INTEGER NOT NULL DEFAULT 1,
                    whole_word_enabled INTEGER NOT NULL DEFAULT 0,
                    match_posts INTEGER NOT NULL DEFAULT 1,
                    match_comments INTEGER NOT NULL DEFAULT 1,
                    PRIMARY KEY (user_id, keyword_id)
                )
                """
            )
            # alert_queue is append-only apart from status; post_data is JSON
            # with title/url/preview.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS alert_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    keyword_term TEXT NOT NULL,
                    post_data TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS alert_queue_status ON alert_queue (status, id)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS global_cursor (
                    name TEXT PRIMARY KEY,
                    cursor TEXT,
                    locked_until TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT
                )
                """
            )
        self.ensure_global_cursor()

    def ensure_global_cursor(self) -> None:
        """Create the firehose row that carries the global cursor and lease."""

        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO global_cursor (name, cursor, locked_until) VALUES (?, NULL, NULL)",
                (GLOBAL_CURSOR_NAME,),
            )

    # Leases

    @staticmethod
    def _lease_target(resource: str) -> tuple[str, str, object]:
        if resource == FIREHOSE_RESOURCE:
            return "global_cursor", "name", GLOBAL_CURSOR_NAME
        if resource.startswith("keyword:"):
            return "keywords", "id", int(resource.split(":", 1)[1])
        raise ValueError(f"Unknown lease resource: {resource}")

    def try_acquire_lease(self, resource: str, now: datetime, until: datetime) -> bool:
        """Set locked_until only if the row is free or its lease has expired."""

        table, column, key = self._lease_target(resource)
        with self._connect() as conn:
            cur = conn.execute(
                f"""
                UPDATE {table} SET locked_until = ?
                WHERE {column} = ? AND (locked_until IS NULL OR locked_until <= ?)
                """,
                (_ts(until), key, _ts(now)),
            )
            return cur.rowcount == 1

    def release_lease(self, resource: str) -> None:
        table, column, key = self._lease_target(resource)
        with self._connect() as conn:
            conn.execute(f"UPDATE {table} SET locked_until = NULL WHERE {column} = ?", (key,))

    # Keywords and cursors

    @staticmethod
    def _keyword_from_row(row: sqlite3.Row) -> Keyword:
        return Keyword(
            id=int(row["id"]),
            term=row["term"],
            last_item_id=row["last_item_id"],
            locked_until=_parse_ts(row["locked_until"]),
        )

    def list_keywords(self) -> list[Keyword]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM keywords ORDER BY id").fetchall()
        return [self._keyword_from_row(row) for row in rows]

    def ensure_keyword(self, term: str) -> Keyword:
        """Insert a keyword if missing and return its row."""

        with self._connect() as conn:
            conn.execute("INSERT OR IGNORE INTO keywords (term) VALUES (?)", (term,))
            row = conn.execute("SELECT * FROM keywords WHERE term = ?", (term,)).fetchone()
        return self._keyword_from_row(row)

    def read_cursor(self, keyword_id: int) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT last_item_id FROM keywords WHERE id = ?", (keyword_id,)).fetchone()
        return row["last_item_id"] if row else None

    def _advance(self, select_sql: str, update_sql: str, key: object, new_cursor: Cursor) -> str:
        conn = self._connect()
        try:
            # BEGIN IMMEDIATE makes the read-compare-write a single writer section.
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(select_sql, (key,)).fetchone()
            stored = Cursor.decode(row[0] if row else None)
            if not new_cursor.is_newer_than(stored):
                conn.rollback()
                return stored.encode()
            merged = stored.merge(new_cursor).encode()
            conn.execute(update_sql, (merged, key))
            conn.commit()
            return merged
        finally:
            conn.close()

    def advance_cursor(self, keyword_id: int, new_cursor: Cursor) -> str:
        """Move the keyword cursor forward; older or equal cursors are ignored."""

        return self._advance(
            "SELECT last_item_id FROM keywords WHERE id = ?",
            "UPDATE keywords SET last_item_id = ? WHERE id = ?",
            keyword_id,
            new_cursor,
        )

    def read_global_cursor(self) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT cursor FROM global_cursor WHERE name = ?", (GLOBAL_CURSOR_NAME,)).fetchone()
        return row["cursor"] if row else None

    def advance_global_cursor(self, new_cursor: Cursor) -> str:
        return self._advance(
            "SELECT cursor FROM global_cursor WHERE name = ?",
            "UPDATE global_cursor SET cursor = ? WHERE name = ?",
            GLOBAL_CURSOR_NAME,
            new_cursor,
        )

    # Subscriptions

    def add_subscription(self, subscription: Subscription) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO subscriptions (
                    user_id, keyword_id, is_active, whole_word_enabled, match_posts, match_comments
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, keyword_id) DO UPDATE SET
                    is_active = excluded.is_active,
                    whole_word_enabled = excluded.whole_word_enabled,
                    match_posts = excluded.match_posts,
                    match_comments = excluded.match_comments
                """,
                (
                    subscription.user_id,
                    subscription.keyword_id,
                    int(subscription.is_active),
                    int(subscription.whole_word_enabled),
                    int(subscription.match_posts),
                    int(subscription.match_comments),
                ),
            )

    def list_active_subscriptions(self, keyword_id: int) -> list[Subscription]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM subscriptions WHERE keyword_id = ? AND is_active = 1 ORDER BY user_id",
                (keyword_id,),
            ).fetchall()
        return [
            Subscription(
                user_id=row["user_id"],
                keyword_id=int(row["keyword_id"]),
                is_active=bool(row["is_active"]),
                whole_word_enabled=bool(row["whole_word_enabled"]),
                match_posts=bool(row["match_posts"]),
                match_comments=bool(row["match_comments"]),
            )
            for row in rows
        ]

    def keyword_ids_with_subscribers(self) -> set[int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT DISTINCT keyword_id FROM subscriptions WHERE is_active = 1").fetchall()
        return {int(row["keyword_id"]) for row in rows}

    # Alert backlog

    def insert_alerts(self, records: Sequence[AlertRecord]) -> int:
        now = _ts(utc_now())
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO alert_queue (user_id, keyword_term, post_data, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        record.user_id,
                        record.keyword_term,
                        json.dumps(record.post_data.as_dict()),
                        PENDING,
                        now,
                        now,
                    )
                    for record in records
                ],
            )
        return len(records)

    @staticmethod
    def _alert_from_row(row: sqlite3.Row) -> AlertRecord:
        return AlertRecord(
            id=int(row["id"]),
            user_id=row["user_id"],
            keyword_term=row["keyword_term"],
            post_data=PostData.from_dict(json.loads(row["post_data"])),
            status=row["status"],
            created_at=_parse_ts(row["created_at"]),
        )

    def claim_pending(self, limit: int) -> list[AlertRecord]:
        """Flip up to ``limit`` pending rows to processing and return them."""

        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute(
                "SELECT * FROM alert_queue WHERE status = ? ORDER BY id LIMIT ?",
                (PENDING, limit),
            ).fetchall()
            if not rows:
                conn.rollback()
                return []
            ids = [int(row["id"]) for row in rows]
            placeholders = ",".join("?" for _ in ids)
            conn.execute(
                f"UPDATE alert_queue SET status = ?, updated_at = ? WHERE status = ? AND id IN ({placeholders})",
                (PROCESSING, _ts(utc_now()), PENDING, *ids),
            )
            conn.commit()
        finally:
            conn.close()
        return [
            AlertRecord(
                id=record.id,
                user_id=record.user_id,
                keyword_term=record.keyword_term,
                post_data=record.post_data,
                status=PROCESSING,
                created_at=record.created_at,
            )
            for record in (self._alert_from_row(row) for row in rows)
        ]

    def transition(self, ids: Iterable[int], from_status: str, to_status: str) -> list[int]:
        """Move rows still in ``from_status`` to ``to_status``; return moved ids."""

        check_transition(from_status, to_status)
        ids = list(ids)
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute(
                f"SELECT id FROM alert_queue WHERE status = ? AND id IN ({placeholders})",
                (from_status, *ids),
            ).fetchall()
            moved = [int(row["id"]) for row in rows]
            if moved:
                marks = ",".join("?" for _ in moved)
                conn.execute(
                    f"UPDATE alert_queue SET status = ?, updated_at = ? WHERE id IN ({marks})",
                    (to_status, _ts(utc_now()), *moved),
                )
            conn.commit()
        finally:
            conn.close()
        return moved

    def reap_stuck(self, older_than: datetime) -> int:
        """Fail processing rows untouched since ``older_than``."""

        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE alert_queue SET status = ?, updated_at = ? WHERE status = ? AND updated_at < ?",
                (FAILED, _ts(utc_now()), PROCESSING, _ts(older_than)),
            )
            return cur.rowcount

    def count_by_status(self) -> dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS n FROM alert_queue GROUP BY status").fetchall()
        return {row["status"]: int(row["n"]) for row in rows}

    def list_alerts(self, status: Optional[str] = None) -> list[AlertRecord]:
        with self._connect() as conn:
            if status is None:
                rows = conn.execute("SELECT * FROM alert_queue ORDER BY id").fetchall()
            else:
                rows = conn.execute("SELECT * FROM alert_queue WHERE status = ? ORDER BY id", (status,)).fetchall()
        return [self._alert_from_row(row) for row in rows]

    # User directory

    def upsert_user(self, user_id: str, email: Optional[str]) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO users (id, email) VALUES (?, ?) ON CONFLICT(id) DO UPDATE SET email = excluded.email",
                (user_id, email),
            )

    def lookup_emails(self, user_ids: Iterable[str]) -> dict[str, str]:
        ids = list(user_ids)
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(f"SELECT id, email FROM users WHERE id IN ({placeholders})", ids).fetchall()
        return {row["id"]: row["email"] for row in rows if row["email"]}

    def lookup_email(self, user_id: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT email FROM users WHERE id = ?", (user_id,)).fetchone()
        return row["email"] if row and row["email"] else None
