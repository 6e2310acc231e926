"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, feed, directory and
notification adapters so that the core can be reused with different
backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from core.feed_ids import Cursor
from core.models import AlertRecord, FetchResult, Keyword, Subscription


class DeliveryError(RuntimeError):
    """Raised by notifiers when the transport rejects or fails a send."""


class LeaseStorePort(Protocol):
    """Conditional update primitive backing ``core.lease.Lease``."""

    def try_acquire_lease(self, resource: str, now: datetime, until: datetime) -> bool:
        ...

    def release_lease(self, resource: str) -> None:
        ...


class CursorStorePort(LeaseStorePort, Protocol):
    """Keyword rows, per-keyword cursors and the global firehose cursor."""

    def list_keywords(self) -> list[Keyword]:
        ...

    def ensure_keyword(self, term: str) -> Keyword:
        ...

    def read_cursor(self, keyword_id: int) -> Optional[str]:
        ...

    def advance_cursor(self, keyword_id: int, new_cursor: Cursor) -> str:
        ...

    def read_global_cursor(self) -> Optional[str]:
        ...

    def advance_global_cursor(self, new_cursor: Cursor) -> str:
        ...

    def ensure_global_cursor(self) -> None:
        """Create the global cursor row if it is missing (idempotent)."""
        ...


class SubscriptionPort(Protocol):
    """Read-only view of subscriptions."""

    def list_active_subscriptions(self, keyword_id: int) -> list[Subscription]:
        ...

    def keyword_ids_with_subscribers(self) -> set[int]:
        ...


class AlertBacklogPort(Protocol):
    """The durable alert queue."""

    def insert_alerts(self, records: Sequence[AlertRecord]) -> int:
        ...

    def claim_pending(self, limit: int) -> list[AlertRecord]:
        ...

    def transition(self, ids: Iterable[int], from_status: str, to_status: str) -> list[int]:
        ...

    def reap_stuck(self, older_than: datetime) -> int:
        ...


class UserDirectoryPort(Protocol):
    """Resolve user ids to delivery addresses."""

    def lookup_emails(self, user_ids: Iterable[str]) -> dict[str, str]:
        ...

    def lookup_email(self, user_id: str) -> Optional[str]:
        ...


class FeedPort(Protocol):
    """Feed operations required by the scanners."""

    def fetch_since(self, term: str, kind: str, after: Optional[int], page_size: int) -> FetchResult:
        ...

    async def fetch_firehose(self, cursor: Cursor, batches: int, batch_size: int) -> FetchResult:
        ...

    def fetch_latest_ids(self) -> Cursor:
        ...


class NotifierPort(Protocol):
    """Notification operations required by the dispatcher."""

    async def send(self, to_address: str, keyword_term: str, records: Sequence[AlertRecord]) -> None:
        ...
