"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any storage or feed specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

POST = "post"
COMMENT = "comment"
ITEM_KINDS = (POST, COMMENT)

PENDING = "pending"
PROCESSING = "processing"
SENT = "sent"
FAILED = "failed"
ALERT_STATUSES = (PENDING, PROCESSING, SENT, FAILED)

# Status only moves forward: pending -> processing -> {sent, failed}.
ALLOWED_TRANSITIONS = {
    (PENDING, PROCESSING),
    (PROCESSING, SENT),
    (PROCESSING, FAILED),
}


def check_transition(from_status: str, to_status: str) -> None:
    if (from_status, to_status) not in ALLOWED_TRANSITIONS:
        raise ValueError(f"Illegal alert status transition: {from_status} -> {to_status}")


@dataclass(frozen=True)
class Keyword:
    """A watched term plus its scan state."""

    id: int
    term: str
    last_item_id: Optional[str] = None
    locked_until: Optional[datetime] = None


@dataclass(frozen=True)
class Subscription:
    """One user's subscription to one keyword."""

    user_id: str
    keyword_id: int
    is_active: bool = True
    whole_word_enabled: bool = False
    match_posts: bool = True
    match_comments: bool = True

    def wants(self, kind: str) -> bool:
        if kind == POST:
            return self.match_posts
        if kind == COMMENT:
            return self.match_comments
        return False


@dataclass(frozen=True)
class FeedItem:
    """A single post or comment pulled from the feed.

    ``id`` is the Reddit fullname (``t3_<b36>`` or ``t1_<b36>``).
    """

    id: str
    kind: str
    title: str
    body: str
    url: str

    @property
    def match_text(self) -> str:
        # Comments carry the thread title only as context, so only the body counts.
        if self.kind == COMMENT:
            return self.body
        return f"{self.title}\n{self.body}"


@dataclass(frozen=True)
class PostData:
    """The denormalized item snapshot stored with each alert."""

    title: str
    url: str
    preview: str

    def as_dict(self) -> dict:
        return {"title": self.title, "url": self.url, "preview": self.preview}

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "PostData":
        raw = raw or {}
        return cls(
            title=str(raw.get("title") or ""),
            url=str(raw.get("url") or ""),
            preview=str(raw.get("preview") or ""),
        )


@dataclass(frozen=True)
class AlertRecord:
    """One row of the alert backlog."""

    user_id: str
    keyword_term: str
    post_data: PostData
    status: str = PENDING
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class FetchResult:
    """Outcome of one feed fetch.

    ``ok`` is False when the upstream could not be read at all; callers
    retry on the next cycle. ``failed_batches`` counts dropped firehose
    batches, ``skipped`` counts entries the parser could not read and
    ``filtered`` counts readable entries that were not threads.
    """

    ok: bool
    items: list[FeedItem] = field(default_factory=list)
    error: Optional[str] = None
    failed_batches: int = 0
    skipped: int = 0
    filtered: int = 0


@dataclass
class ScanSummary:
    """Counters reported by one scan cycle."""

    keywords: int = 0
    skipped: int = 0
    items: int = 0
    matches: int = 0
    enqueued: int = 0
    fetches_ok: int = 0
    feed_errors: int = 0
    errors: int = 0
    failed_batches: int = 0
    filtered: int = 0

    @property
    def feed_reachable(self) -> bool:
        """False only when fetches failed and none succeeded."""

        return not (self.feed_errors and not self.fetches_ok)

    def as_dict(self) -> dict:
        return {
            "keywords": self.keywords,
            "skipped": self.skipped,
            "items": self.items,
            "matches": self.matches,
            "enqueued": self.enqueued,
            "fetches_ok": self.fetches_ok,
            "feed_errors": self.feed_errors,
            "errors": self.errors,
            "failed_batches": self.failed_batches,
            "filtered": self.filtered,
            "feed_reachable": self.feed_reachable,
        }


@dataclass
class DispatchSummary:
    """Counters reported by one dispatch cycle."""

    claimed: int = 0
    sent: int = 0
    failed: int = 0
    messages: int = 0

    def as_dict(self) -> dict:
        return {
            "claimed": self.claimed,
            "sent": self.sent,
            "failed": self.failed,
            "messages": self.messages,
        }
