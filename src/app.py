"""Application entry point for the redwatch scan and dispatch cycles."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from datetime import timedelta
from typing import Optional

from art import tprint

import settings
from adapters.reddit_feed import RedditFeed
from adapters.resend_notifier import ResendEmailNotifier
from adapters.sqlite_storage import SQLiteStorage
from core.config import DispatchConfig, FirehoseConfig, MatcherConfig, ScanConfig
from core.dispatcher import Dispatcher
from core.lease import utc_now
from core.models import DispatchSummary, ScanSummary, Subscription
from core.scanner import build_scanner
from logging_setup import configure_logging

NAME = "REDWATCH"
FONT = "tarty-1"

EXIT_FEED_UNREACHABLE = 2

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


def build_storage():
    """Return the configured storage adapter with its schema/keywords ready."""

    if settings.STORAGE_BACKEND == "supabase":
        from adapters.supabase_storage import SupabaseStorage, create_client

        storage = SupabaseStorage(create_client())
    elif settings.STORAGE_BACKEND == "sqlite":
        storage = SQLiteStorage(settings.DB_PATH)
        storage.init_db()
    else:
        raise RuntimeError("storage.backend must be 'sqlite' or 'supabase'")

    storage.ensure_global_cursor()
    for term in settings.KEYWORDS:
        storage.ensure_keyword(term)
    return storage


def build_notifier() -> ResendEmailNotifier:
    api_key = os.getenv("RESEND_API_KEY")
    sending_email = os.getenv("SENDING_EMAIL")
    if not api_key or not sending_email:
        raise RuntimeError("Missing RESEND_API_KEY or SENDING_EMAIL in environment")
    return ResendEmailNotifier(api_key, sending_email, sender_name=settings.SENDER_NAME)


def scan_config() -> ScanConfig:
    return ScanConfig(
        mode=settings.SCAN_MODE,
        lease_minutes=settings.LEASE_MINUTES,
        page_size=settings.PAGE_SIZE,
        preview_chars=settings.PREVIEW_CHARS,
    )


def dispatch_config() -> DispatchConfig:
    return DispatchConfig(
        batch_size=settings.DISPATCH_BATCH_SIZE,
        recipient_resolution=settings.RECIPIENT_RESOLUTION,
        stuck_after_minutes=settings.STUCK_AFTER_MINUTES,
    )


async def run_scan(storage=None) -> ScanSummary:
    """Run one scan cycle in the configured mode."""

    storage = storage or build_storage()
    feed = RedditFeed(user_agent=settings.USER_AGENT, timeout=settings.TIMEOUT_SECONDS)
    scanner = build_scanner(
        storage,
        storage,
        feed,
        storage,
        scan_config(),
        MatcherConfig(mode=settings.MATCHER_MODE),
        FirehoseConfig(batches=settings.FIREHOSE_BATCHES, batch_size=settings.FIREHOSE_BATCH_SIZE),
    )
    LOGGER.info("Starting %s scan", settings.SCAN_MODE)
    return await scanner.run()


async def run_dispatch(storage=None, batch_size: Optional[int] = None, notifier=None) -> DispatchSummary:
    """Run one dispatch cycle over the alert backlog."""

    storage = storage or build_storage()
    notifier = notifier or build_notifier()
    dispatcher = Dispatcher(storage, storage, notifier, dispatch_config())
    return await dispatcher.drain(batch_size)


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _scan_command(args) -> int:
    summary = asyncio.run(run_scan())
    _print_json(summary.as_dict())
    return 0 if summary.feed_reachable else EXIT_FEED_UNREACHABLE


def _dispatch_command(args) -> int:
    summary = asyncio.run(run_dispatch(batch_size=args.batch_size))
    _print_json(summary.as_dict())
    return 0


def _reap_command(args) -> int:
    minutes = args.minutes if args.minutes is not None else settings.STUCK_AFTER_MINUTES
    cutoff = utc_now() - timedelta(minutes=minutes)
    removed = build_storage().reap_stuck(cutoff)
    LOGGER.info("Marked %s stuck alerts as failed (older than %s minutes)", removed, minutes)
    _print_json({"reaped": removed})
    return 0


def _keyword_command(args) -> int:
    _print_banner()
    storage = build_storage()
    for term in args.terms:
        keyword = storage.ensure_keyword(term.strip())
        print(f"{keyword.id}\t{keyword.term}")
    return 0


def _subscribe_command(args) -> int:
    _print_banner()
    storage = build_storage()
    if not isinstance(storage, SQLiteStorage):
        raise RuntimeError("subscribe is only available for the sqlite backend")
    keyword = storage.ensure_keyword(args.term.strip())
    if args.email:
        storage.upsert_user(args.user_id, args.email)
    storage.add_subscription(
        Subscription(
            user_id=args.user_id,
            keyword_id=keyword.id,
            is_active=not args.inactive,
            whole_word_enabled=args.whole_word,
            match_posts=not args.no_posts,
            match_comments=not args.no_comments,
        )
    )
    print(f"{args.user_id} subscribed to '{keyword.term}'")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="redwatch")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan", help="Run one scan cycle and enqueue alerts")
    scan_parser.set_defaults(handler=_scan_command)

    dispatch_parser = subparsers.add_parser("dispatch", help="Drain pending alerts into emails")
    dispatch_parser.add_argument("--batch-size", type=int, default=None)
    dispatch_parser.set_defaults(handler=_dispatch_command)

    reap_parser = subparsers.add_parser("reap", help="Fail alerts stuck in processing")
    reap_parser.add_argument("--minutes", type=int, default=None)
    reap_parser.set_defaults(handler=_reap_command)

    keyword_parser = subparsers.add_parser("keyword", help="Add watched keywords")
    keyword_parser.add_argument("terms", nargs="+")
    keyword_parser.set_defaults(handler=_keyword_command)

    subscribe_parser = subparsers.add_parser("subscribe", help="Subscribe a user to a keyword (sqlite)")
    subscribe_parser.add_argument("user_id")
    subscribe_parser.add_argument("term")
    subscribe_parser.add_argument("--email")
    subscribe_parser.add_argument("--whole-word", action="store_true")
    subscribe_parser.add_argument("--no-posts", action="store_true")
    subscribe_parser.add_argument("--no-comments", action="store_true")
    subscribe_parser.add_argument("--inactive", action="store_true")
    subscribe_parser.set_defaults(handler=_subscribe_command)

    args = parser.parse_args(argv)
    configure_logging()
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
