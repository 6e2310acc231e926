"""Fan-out of matched feed items into per-subscriber alert records."""

from __future__ import annotations

import html
import logging
import re
from typing import Iterable, List

from core.matcher import matches_one
from core.models import COMMENT, PENDING, AlertRecord, FeedItem, Keyword, PostData, Subscription
from core.ports import AlertBacklogPort

LOGGER = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")

COMMENT_TITLE_PREFIX = "Comment match: "


def build_preview(body: str, limit: int = 200) -> str:
    """Strip markup and collapse whitespace for the email preview."""

    text = html.unescape(_TAG_RE.sub(" ", body or ""))
    return _WS_RE.sub(" ", text).strip()[:limit]


def build_post_data(item: FeedItem, preview_chars: int = 200) -> PostData:
    title = item.title
    if item.kind == COMMENT:
        title = f"{COMMENT_TITLE_PREFIX}{item.title}"
    return PostData(title=title, url=item.url, preview=build_preview(item.body, preview_chars))


def build_alerts(
    keyword: Keyword,
    matched_items: Iterable[FeedItem],
    subscribers: Iterable[Subscription],
    preview_chars: int = 200,
) -> List[AlertRecord]:
    """Expand matches into one pending record per (subscriber, item).

    Each subscriber's own kind flags and whole-word preference decide
    whether an item reaches them, so two subscribers of the same keyword
    can disagree about the same item.
    """

    subscribers = [sub for sub in subscribers if sub.is_active]
    records: List[AlertRecord] = []
    for item in matched_items:
        post_data = None
        for sub in subscribers:
            if not sub.wants(item.kind):
                continue
            if not matches_one(item.match_text, keyword.term, sub.whole_word_enabled):
                continue
            if post_data is None:
                post_data = build_post_data(item, preview_chars)
            records.append(
                AlertRecord(
                    user_id=sub.user_id,
                    keyword_term=keyword.term,
                    post_data=post_data,
                    status=PENDING,
                )
            )
    return records


def enqueue(
    keyword: Keyword,
    matched_items: Iterable[FeedItem],
    subscribers: Iterable[Subscription],
    backlog: AlertBacklogPort,
    preview_chars: int = 200,
) -> int:
    """Append pending alerts for every satisfied (subscriber, item) pair.

    Append-only: existing backlog rows are never read here; duplicates are
    collapsed later by the dispatcher's grouping.
    """

    records = build_alerts(keyword, matched_items, subscribers, preview_chars)
    if not records:
        return 0
    count = backlog.insert_alerts(records)
    LOGGER.info("Enqueued %s alerts for '%s'", count, keyword.term)
    return count
