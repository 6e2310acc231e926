"""Tolerant parsers for Reddit feed bodies.

Both entry points are generators: lazy, finite, and single-use. An entry
that cannot be read is skipped and counted instead of failing the whole
response.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

import feedparser

from core.feed_ids import split_fullname
from core.models import COMMENT, POST, FeedItem

LOGGER = logging.getLogger(__name__)

REDDIT_BASE_URL = "https://www.reddit.com"
_LISTING_KINDS = {"t3": POST, "t1": COMMENT}


class FeedParser:
    """Turns Atom search feeds and JSON listings into FeedItems."""

    def __init__(self) -> None:
        self.skipped = 0
        self.filtered = 0

    def _skip(self, reason: str, exc: Optional[Exception] = None) -> None:
        self.skipped += 1
        LOGGER.debug("Skipping feed entry (%s): %s", reason, exc)

    def iter_search_entries(self, body: str, kind: str) -> Iterator[FeedItem]:
        """Yield items from a ``search.rss`` Atom body, newest first."""

        parsed = feedparser.parse(body)
        for entry in parsed.entries:
            try:
                item = _search_entry_to_item(entry, kind)
            except (KeyError, ValueError, TypeError, AttributeError, IndexError) as exc:
                self._skip("atom", exc)
                continue
            if item is None:
                self.filtered += 1
                continue
            yield item

    def iter_info_listing(self, payload: Any) -> Iterator[FeedItem]:
        """Yield items from an ``api/info.json`` or ``/new.json`` listing.

        Raises ValueError when the payload is not a listing at all.
        """

        try:
            children = payload["data"]["children"]
        except (KeyError, TypeError) as exc:
            raise ValueError("Response is not a Reddit listing") from exc
        if not isinstance(children, list):
            raise ValueError("Response is not a Reddit listing")

        for child in children:
            try:
                item = _listing_child_to_item(child)
            except (KeyError, ValueError, TypeError, AttributeError) as exc:
                self._skip("listing", exc)
                continue
            if item is None:
                self.filtered += 1
                continue
            yield item


def _entry_body(entry) -> str:
    content = entry.get("content") or []
    if content:
        return content[0].get("value") or ""
    return entry.get("summary") or ""


def _search_entry_to_item(entry, kind: str) -> Optional[FeedItem]:
    fullname = entry["id"]
    entry_kind, _ = split_fullname(fullname)
    if entry_kind != kind:
        raise ValueError(f"Expected {kind} entry, got {fullname}")
    title = entry["title"]
    link = entry["link"]
    if not title or not link:
        raise ValueError("Entry missing title or link")
    # Search results also include subreddit and user pages; only real threads count.
    if kind == POST and "/comments/" not in link:
        return None
    return FeedItem(id=fullname, kind=kind, title=title, body=_entry_body(entry), url=link)


def _listing_child_to_item(child: dict) -> Optional[FeedItem]:
    kind = _LISTING_KINDS.get(child["kind"])
    if kind is None:
        return None
    data = child["data"]
    fullname = data["name"]
    split_fullname(fullname)
    url = f"{REDDIT_BASE_URL}{data['permalink']}"
    if kind == POST:
        return FeedItem(
            id=fullname,
            kind=POST,
            title=data.get("title") or "",
            body=data.get("selftext") or "",
            url=url,
        )
    return FeedItem(
        id=fullname,
        kind=COMMENT,
        title=data.get("link_title") or "",
        body=data.get("body") or "",
        url=url,
    )
