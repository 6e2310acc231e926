"""Supabase storage adapter.

Implements the same storage ports as ``SQLiteStorage`` on the production
Postgres tables through the Supabase client. Every operation is row-level
atomic; none is transactional across tables. Leases and cursor advances
use filtered updates as compare-and-set primitives.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from supabase import create_client as _create_client

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

LOGGER = logging.getLogger(__name__)

GLOBAL_CURSOR_NAME = FIREHOSE_RESOURCE
_CAS_ATTEMPTS = 3


def create_client(url: Optional[str] = None, key: Optional[str] = None):
    """Build a service-role client; user emails need admin access."""

    url = url or os.getenv("SUPABASE_URL")
    key = key or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")
    if not url or not key:
        missing = []
        if not url:
            missing.append("SUPABASE_URL")
        if not key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY or SUPABASE_KEY")
        raise RuntimeError(f"Missing {', '.join(missing)}")
    return _create_client(url, key)


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class SupabaseStorage:
    """Storage ports over Supabase tables.

    Tables: keywords, subscriptions, alert_queue, global_cursor, profiles.
    """

    def __init__(self, client) -> None:
        self._sb = client

    # Leases

    def _lease_query(self, resource: str):
        if resource == FIREHOSE_RESOURCE:
            return "global_cursor", "name", GLOBAL_CURSOR_NAME
        if resource.startswith("keyword:"):
            return "keywords", "id", int(resource.split(":", 1)[1])
        raise ValueError(f"Unknown lease resource: {resource}")

    def try_acquire_lease(self, resource: str, now: datetime, until: datetime) -> bool:
        table, column, key = self._lease_query(resource)
        res = (
            self._sb.table(table)
            .update({"locked_until": _ts(until)})
            .eq(column, key)
            .or_(f"locked_until.is.null,locked_until.lte.{_ts(now)}")
            .execute()
        )
        return bool(res.data)

    def release_lease(self, resource: str) -> None:
        table, column, key = self._lease_query(resource)
        self._sb.table(table).update({"locked_until": None}).eq(column, key).execute()

    # Keywords and cursors

    @staticmethod
    def _keyword_from_row(row: dict) -> Keyword:
        return Keyword(
            id=int(row["id"]),
            term=row["term"],
            last_item_id=row.get("last_item_id"),
            locked_until=_parse_ts(row.get("locked_until")),
        )

    def list_keywords(self) -> list[Keyword]:
        rows = self._sb.table("keywords").select("*").order("id").execute().data or []
        return [self._keyword_from_row(row) for row in rows]

    def ensure_keyword(self, term: str) -> Keyword:
        rows = self._sb.table("keywords").select("*").eq("term", term).limit(1).execute().data
        if not rows:
            rows = self._sb.table("keywords").insert({"term": term}).execute().data
        return self._keyword_from_row(rows[0])

    def read_cursor(self, keyword_id: int) -> Optional[str]:
        rows = self._sb.table("keywords").select("last_item_id").eq("id", keyword_id).limit(1).execute().data
        return rows[0].get("last_item_id") if rows else None

    def _compare_and_set(self, table: str, column: str, key: object, field: str, new_cursor: Cursor) -> str:
        for _ in range(_CAS_ATTEMPTS):
            rows = self._sb.table(table).select(field).eq(column, key).limit(1).execute().data
            raw = rows[0].get(field) if rows else None
            stored = Cursor.decode(raw)
            if not new_cursor.is_newer_than(stored):
                return stored.encode()
            merged = stored.merge(new_cursor).encode()
            query = self._sb.table(table).update({field: merged}).eq(column, key)
            query = query.is_(field, "null") if raw is None else query.eq(field, raw)
            if query.execute().data:
                return merged
            LOGGER.info("Cursor on %s changed concurrently; retrying", table)
        raise RuntimeError(f"Could not advance cursor on {table} after {_CAS_ATTEMPTS} attempts")

    def advance_cursor(self, keyword_id: int, new_cursor: Cursor) -> str:
        return self._compare_and_set("keywords", "id", keyword_id, "last_item_id", new_cursor)

    def read_global_cursor(self) -> Optional[str]:
        rows = (
            self._sb.table("global_cursor").select("cursor").eq("name", GLOBAL_CURSOR_NAME).limit(1).execute().data
        )
        return rows[0].get("cursor") if rows else None

    def advance_global_cursor(self, new_cursor: Cursor) -> str:
        return self._compare_and_set("global_cursor", "name", GLOBAL_CURSOR_NAME, "cursor", new_cursor)

    def ensure_global_cursor(self) -> None:
        """Create the firehose row; without it the global lease can never be taken."""

        (
            self._sb.table("global_cursor")
            .upsert({"name": GLOBAL_CURSOR_NAME}, on_conflict="name", ignore_duplicates=True)
            .execute()
        )

    # Subscriptions

    def list_active_subscriptions(self, keyword_id: int) -> list[Subscription]:
        rows = (
            self._sb.table("subscriptions")
            .select("*")
            .eq("keyword_id", keyword_id)
            .eq("is_active", True)
            .execute()
            .data
            or []
        )
        return [
            Subscription(
                user_id=str(row["user_id"]),
                keyword_id=int(row["keyword_id"]),
                is_active=bool(row.get("is_active", True)),
                whole_word_enabled=bool(row.get("whole_word_enabled", False)),
                match_posts=bool(row.get("match_posts", True)),
                match_comments=bool(row.get("match_comments", True)),
            )
            for row in rows
        ]

    def keyword_ids_with_subscribers(self) -> set[int]:
        rows = self._sb.table("subscriptions").select("keyword_id").eq("is_active", True).execute().data or []
        return {int(row["keyword_id"]) for row in rows}

    # Alert backlog

    def insert_alerts(self, records: Sequence[AlertRecord]) -> int:
        if not records:
            return 0
        now = _ts(utc_now())
        payload = [
            {
                "user_id": record.user_id,
                "keyword_term": record.keyword_term,
                "post_data": record.post_data.as_dict(),
                "status": PENDING,
                "created_at": now,
                "updated_at": now,
            }
            for record in records
        ]
        self._sb.table("alert_queue").insert(payload).execute()
        return len(payload)

    @staticmethod
    def _alert_from_row(row: dict) -> AlertRecord:
        return AlertRecord(
            id=int(row["id"]),
            user_id=str(row["user_id"]),
            keyword_term=row["keyword_term"],
            post_data=PostData.from_dict(row.get("post_data")),
            status=row["status"],
            created_at=_parse_ts(row.get("created_at")),
        )

    def claim_pending(self, limit: int) -> list[AlertRecord]:
        rows = (
            self._sb.table("alert_queue")
            .select("id")
            .eq("status", PENDING)
            .order("id")
            .limit(limit)
            .execute()
            .data
            or []
        )
        ids = [int(row["id"]) for row in rows]
        if not ids:
            return []
        # Only rows still pending are flipped, so a racing dispatcher gets the rest.
        claimed = (
            self._sb.table("alert_queue")
            .update({"status": PROCESSING, "updated_at": _ts(utc_now())})
            .in_("id", ids)
            .eq("status", PENDING)
            .execute()
            .data
            or []
        )
        return sorted((self._alert_from_row(row) for row in claimed), key=lambda record: record.id)

    def transition(self, ids: Iterable[int], from_status: str, to_status: str) -> list[int]:
        check_transition(from_status, to_status)
        ids = list(ids)
        if not ids:
            return []
        rows = (
            self._sb.table("alert_queue")
            .update({"status": to_status, "updated_at": _ts(utc_now())})
            .in_("id", ids)
            .eq("status", from_status)
            .execute()
            .data
            or []
        )
        return [int(row["id"]) for row in rows]

    def reap_stuck(self, older_than: datetime) -> int:
        rows = (
            self._sb.table("alert_queue")
            .update({"status": FAILED, "updated_at": _ts(utc_now())})
            .eq("status", PROCESSING)
            .lt("updated_at", _ts(older_than))
            .execute()
            .data
            or []
        )
        return len(rows)

    # User directory

    def lookup_emails(self, user_ids: Iterable[str]) -> dict[str, str]:
        ids = list(user_ids)
        if not ids:
            return {}
        rows = self._sb.table("profiles").select("id,email").in_("id", ids).execute().data or []
        return {str(row["id"]): row["email"] for row in rows if row.get("email")}

    def lookup_email(self, user_id: str) -> Optional[str]:
        # Direct mode reads the auth table, which needs the service role key.
        response = self._sb.auth.admin.get_user_by_id(user_id)
        user = getattr(response, "user", None)
        return getattr(user, "email", None) or None
