"""Reddit feed adapter.

Implements the core FeedPort over Reddit's public endpoints:
- ``search.rss`` (Atom) for per-keyword incremental scans
- ``api/info.json`` for id-range (firehose) scans
- ``r/all/new.json`` and ``r/all/comments.json`` to seed the firehose cursor

HTTP problems never raise out of this module. They come back as
``FetchResult(ok=False)`` so the calling cycle can move on and retry later.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

import requests

from adapters.feed_parser import REDDIT_BASE_URL, FeedParser
from core.feed_ids import Cursor, iter_id_block, split_fullname
from core.models import COMMENT, ITEM_KINDS, POST, FetchResult

LOGGER = logging.getLogger(__name__)

SEARCH_URL = f"{REDDIT_BASE_URL}/search.rss"
INFO_URL = f"{REDDIT_BASE_URL}/api/info.json"
LATEST_URLS = {
    POST: f"{REDDIT_BASE_URL}/r/all/new.json",
    COMMENT: f"{REDDIT_BASE_URL}/r/all/comments.json",
}

# Reddit answers generic or missing user agents with 429/403 pages.
DEFAULT_USER_AGENT = "redwatch/0.1 (keyword email alerts)"

XML_CONTENT_TYPES = {"application/atom+xml", "application/rss+xml", "application/xml", "text/xml"}
JSON_CONTENT_TYPES = {"application/json"}


def _content_type(response: requests.Response) -> str:
    return response.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()


class RedditFeed:
    """Blocking Reddit client; the firehose fans out over worker threads."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": user_agent})

    def _get(self, url: str, params: dict, accepted: set[str]) -> Tuple[Optional[requests.Response], Optional[str]]:
        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
        except requests.RequestException as exc:
            return None, f"request_error:{type(exc).__name__}"
        if not 200 <= response.status_code < 300:
            return None, f"status={response.status_code}"
        content_type = _content_type(response)
        if content_type not in accepted:
            return None, f"unexpected_content_type={content_type or 'missing'}"
        return response, None

    def fetch_since(self, term: str, kind: str, after: Optional[int], page_size: int) -> FetchResult:
        """Search for ``term`` and return items newer than ``after``, newest first."""

        params = {"q": term, "sort": "new", "limit": page_size}
        if kind == COMMENT:
            params["type"] = "comment"
        response, error = self._get(SEARCH_URL, params, XML_CONTENT_TYPES)
        if response is None:
            return FetchResult(ok=False, error=error)

        parser = FeedParser()
        items = []
        for item in parser.iter_search_entries(response.text, kind):
            _, number = split_fullname(item.id)
            # Results are newest first; everything past the cursor was handled already.
            if after is not None and number <= after:
                break
            items.append(item)
        if parser.skipped:
            LOGGER.warning("Skipped %s unreadable entries for '%s' (%s)", parser.skipped, term, kind)
        if parser.filtered:
            LOGGER.debug("Filtered %s non-thread results for '%s' (%s)", parser.filtered, term, kind)
        return FetchResult(ok=True, items=items, skipped=parser.skipped, filtered=parser.filtered)

    def _fetch_listing(self, url: str, params: dict) -> FetchResult:
        response, error = self._get(url, params, JSON_CONTENT_TYPES)
        if response is None:
            return FetchResult(ok=False, error=error)
        parser = FeedParser()
        try:
            items = list(parser.iter_info_listing(response.json()))
        except ValueError as exc:
            return FetchResult(ok=False, error=f"bad_listing:{exc}")
        return FetchResult(ok=True, items=items, skipped=parser.skipped, filtered=parser.filtered)

    def fetch_range(self, kind: str, after: int, count: int) -> FetchResult:
        """Look up ``count`` consecutive ids following ``after``."""

        ids = ",".join(iter_id_block(kind, after, count))
        return self._fetch_listing(INFO_URL, {"id": ids})

    async def fetch_firehose(self, cursor: Cursor, batches: int, batch_size: int) -> FetchResult:
        """Fetch the id blocks following ``cursor`` concurrently.

        Batches are split between posts and comments. A failed batch is
        dropped and counted; it never aborts its siblings. The result is
        only ``ok=False`` when every batch failed.
        """

        kinds = [kind for kind in ITEM_KINDS if cursor.get(kind) is not None]
        if not kinds or batches <= 0:
            return FetchResult(ok=True)

        plan = []
        for index in range(batches):
            kind = kinds[index % len(kinds)]
            offset = (index // len(kinds)) * batch_size
            plan.append((kind, cursor.get(kind) + offset))

        results = await asyncio.gather(
            *(asyncio.to_thread(self.fetch_range, kind, start, batch_size) for kind, start in plan)
        )

        items = []
        failed = 0
        skipped = 0
        filtered = 0
        for result in results:
            skipped += result.skipped
            filtered += result.filtered
            if not result.ok:
                failed += 1
                LOGGER.debug("Firehose batch dropped: %s", result.error)
                continue
            items.extend(result.items)

        if failed == len(results):
            return FetchResult(ok=False, error="all firehose batches failed", failed_batches=failed, skipped=skipped)

        items.sort(key=lambda item: split_fullname(item.id)[1], reverse=True)
        return FetchResult(ok=True, items=items, failed_batches=failed, skipped=skipped, filtered=filtered)

    def fetch_latest_ids(self) -> Cursor:
        """Return the newest post/comment ids; unknown sides stay unset."""

        cursor = Cursor()
        for kind, url in LATEST_URLS.items():
            result = self._fetch_listing(url, {"limit": 1})
            if not result.ok or not result.items:
                LOGGER.warning("Could not read latest %s id: %s", kind, result.error)
                continue
            _, number = split_fullname(result.items[0].id)
            cursor = cursor.with_value(kind, number)
        return cursor
