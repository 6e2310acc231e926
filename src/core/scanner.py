"""Scan cycles: feed → matcher → fan-out.

Two deployment modes share the same matcher, fan-out and lease discipline:

- ``IncrementalScanner`` searches the feed once per keyword, each keyword
  under its own lease and cursor, strictly one keyword at a time.
- ``FirehoseScanner`` reads a contiguous id range past a single global
  cursor with a bounded set of concurrent fetches, then scans every item
  against all keywords in one automaton pass.

In both, the cursor only moves after every fetched item was evaluated, so
a cycle that dies halfway is simply redone by the next one.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from core.config import FirehoseConfig, MatcherConfig, ScanConfig
from core.fanout import enqueue
from core.feed_ids import Cursor
from core.lease import FIREHOSE_RESOURCE, Lease, keyword_resource, utc_now
from core.matcher import build_matcher
from core.models import ITEM_KINDS, FeedItem, Keyword, ScanSummary, Subscription
from core.ports import AlertBacklogPort, CursorStorePort, FeedPort, SubscriptionPort

LOGGER = logging.getLogger(__name__)


class _BaseScanner:
    def __init__(
        self,
        store: CursorStorePort,
        subscriptions: SubscriptionPort,
        feed: FeedPort,
        backlog: AlertBacklogPort,
        scan_config: Optional[ScanConfig] = None,
        matcher_config: Optional[MatcherConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._subscriptions = subscriptions
        self._feed = feed
        self._backlog = backlog
        self._scan = scan_config or ScanConfig()
        self._matcher = matcher_config or MatcherConfig()
        self._clock = clock

    def _lease(self, resource: str) -> Lease:
        return Lease(self._store, resource, timedelta(minutes=self._scan.lease_minutes), self._clock)

    def _watched_keywords(self) -> List[Keyword]:
        """Keywords with at least one active subscriber."""

        wanted = self._subscriptions.keyword_ids_with_subscribers()
        return [keyword for keyword in self._store.list_keywords() if keyword.id in wanted]


class IncrementalScanner(_BaseScanner):
    """Per-keyword search scan guarded by per-keyword leases."""

    async def run(self) -> ScanSummary:
        summary = ScanSummary()
        for keyword in self._watched_keywords():
            subscribers = self._subscriptions.list_active_subscriptions(keyword.id)
            if not subscribers:
                continue
            await self.scan_keyword(keyword, subscribers, summary)

        LOGGER.info(
            "Scan complete: keywords=%s, skipped=%s, items=%s, matches=%s, enqueued=%s, feed_errors=%s",
            summary.keywords,
            summary.skipped,
            summary.items,
            summary.matches,
            summary.enqueued,
            summary.feed_errors,
        )
        return summary

    async def scan_keyword(
        self,
        keyword: Keyword,
        subscribers: List[Subscription],
        summary: ScanSummary,
    ) -> None:
        lease = self._lease(keyword_resource(keyword.id))
        if not lease.acquire():
            summary.skipped += 1
            return

        summary.keywords += 1
        try:
            cursor = Cursor.decode(self._store.read_cursor(keyword.id))
            matcher = build_matcher([keyword.term], self._matcher.mode)
            observed = Cursor()

            kinds = [kind for kind in ITEM_KINDS if any(sub.wants(kind) for sub in subscribers)]
            for kind in kinds:
                result = await asyncio.to_thread(
                    self._feed.fetch_since,
                    keyword.term,
                    kind,
                    cursor.get(kind),
                    self._scan.page_size,
                )
                if not result.ok:
                    # Retried next cycle; this kind's cursor side stays put.
                    summary.feed_errors += 1
                    LOGGER.warning("Feed fetch failed for '%s' (%s): %s", keyword.term, kind, result.error)
                    continue

                summary.fetches_ok += 1
                summary.filtered += result.filtered
                summary.items += len(result.items)
                matched = [item for item in result.items if matcher.scan(item.match_text)]
                summary.matches += len(matched)
                summary.enqueued += enqueue(
                    keyword,
                    matched,
                    subscribers,
                    self._backlog,
                    self._scan.preview_chars,
                )
                observed = observed.merge(Cursor.from_items(result.items))

            if observed.is_newer_than(cursor):
                stored = self._store.advance_cursor(keyword.id, observed)
                LOGGER.debug("Cursor for '%s' advanced to %s", keyword.term, stored)
        except Exception:
            summary.errors += 1
            LOGGER.exception("Scan failed for keyword '%s'", keyword.term)
        finally:
            lease.release()


class FirehoseScanner(_BaseScanner):
    """Global id-range scan guarded by one process-level lease."""

    def __init__(self, *args, firehose_config: Optional[FirehoseConfig] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._firehose = firehose_config or FirehoseConfig()

    async def run(self) -> ScanSummary:
        summary = ScanSummary()
        lease = self._lease(FIREHOSE_RESOURCE)
        if not lease.acquire():
            summary.skipped += 1
            LOGGER.info("Firehose lease is held elsewhere; skipping this cycle")
            return summary

        try:
            await self._run_locked(summary)
        except Exception:
            summary.errors += 1
            LOGGER.exception("Firehose scan failed")
        finally:
            lease.release()

        LOGGER.info(
            "Firehose scan complete: keywords=%s, items=%s, matches=%s, enqueued=%s, failed_batches=%s",
            summary.keywords,
            summary.items,
            summary.matches,
            summary.enqueued,
            summary.failed_batches,
        )
        return summary

    async def _seed(self, cursor: Cursor, summary: ScanSummary) -> None:
        # Nothing to range-scan from yet: start at the feed's current head.
        latest = await asyncio.to_thread(self._feed.fetch_latest_ids)
        if latest.is_empty():
            summary.feed_errors += 1
            LOGGER.warning("Could not seed the firehose cursor")
            return
        summary.fetches_ok += 1
        stored = self._store.advance_global_cursor(cursor.merge(latest))
        LOGGER.info("Firehose cursor seeded at %s", stored)

    async def _run_locked(self, summary: ScanSummary) -> None:
        cursor = Cursor.decode(self._store.read_global_cursor())
        if cursor.post is None or cursor.comment is None:
            await self._seed(cursor, summary)
            return

        keywords = self._watched_keywords()
        summary.keywords = len(keywords)
        if not keywords:
            return
        by_term: Dict[str, Keyword] = {keyword.term: keyword for keyword in keywords}
        matcher = build_matcher(by_term.keys(), self._matcher.mode)

        result = await self._feed.fetch_firehose(cursor, self._firehose.batches, self._firehose.batch_size)
        summary.failed_batches = result.failed_batches
        if not result.ok:
            summary.feed_errors += 1
            LOGGER.warning("Firehose fetch failed: %s", result.error)
            return
        summary.fetches_ok += 1
        summary.filtered = result.filtered
        summary.items = len(result.items)
        LOGGER.debug("Matching %s items against %s keywords", len(result.items), len(matcher))

        matched: Dict[str, List[FeedItem]] = {}
        for item in result.items:
            for term in matcher.scan(item.match_text):
                matched.setdefault(term, []).append(item)

        for term, items in matched.items():
            keyword = by_term[term]
            subscribers = self._subscriptions.list_active_subscriptions(keyword.id)
            summary.matches += len(items)
            summary.enqueued += enqueue(keyword, items, subscribers, self._backlog, self._scan.preview_chars)

        observed = Cursor.from_items(result.items)
        if observed.is_newer_than(cursor):
            stored = self._store.advance_global_cursor(observed)
            LOGGER.debug("Firehose cursor advanced to %s", stored)


def build_scanner(
    store: CursorStorePort,
    subscriptions: SubscriptionPort,
    feed: FeedPort,
    backlog: AlertBacklogPort,
    scan_config: ScanConfig,
    matcher_config: MatcherConfig,
    firehose_config: Optional[FirehoseConfig] = None,
):
    """Return the scanner for the configured scan mode."""

    if scan_config.mode == "firehose":
        return FirehoseScanner(
            store,
            subscriptions,
            feed,
            backlog,
            scan_config,
            matcher_config,
            firehose_config=firehose_config,
        )
    if scan_config.mode == "incremental":
        return IncrementalScanner(store, subscriptions, feed, backlog, scan_config, matcher_config)
    raise ValueError(f"Unsupported scan mode: {scan_config.mode}")
