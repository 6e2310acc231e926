"""Static configuration for redwatch.

All non-secret settings (keywords, scan/dispatch tuning, logging) live in a
single JSON file for quick edits without touching Python. Secrets stay in
the environment (.env via python-dotenv).
"""

import json
import os

from dotenv import load_dotenv

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

load_dotenv(os.path.join(PROJECT_ROOT, ".env"))

CONFIG_PATH = os.getenv("REDWATCH_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Storage backend: "sqlite" for local runs, "supabase" for production.
_storage = _CONFIG.get("storage", {})
STORAGE_BACKEND = _storage.get("backend", "sqlite")
DB_PATH = _resolve_path(_storage.get("db_path", "redwatch.db"))

# Keywords listed here are created on start; subscriptions come from users.
KEYWORDS = [term.strip() for term in _CONFIG.get("keywords", []) if term and term.strip()]

# Scan cycle settings.
# - mode: "incremental" (per-keyword search) or "firehose" (global id range)
# - lease_minutes: must exceed the time one keyword scan takes
_scan = _CONFIG.get("scan", {})
SCAN_MODE = _scan.get("mode", "incremental")
LEASE_MINUTES = int(_scan.get("lease_minutes", 5))
PAGE_SIZE = int(_scan.get("page_size", 100))
PREVIEW_CHARS = int(_scan.get("preview_chars", 200))

_firehose = _CONFIG.get("firehose", {})
FIREHOSE_BATCHES = int(_firehose.get("batches", 20))
FIREHOSE_BATCH_SIZE = int(_firehose.get("batch_size", 100))

# "multi" builds one automaton for all keywords; "single" tests them one by one.
MATCHER_MODE = _CONFIG.get("matcher", {}).get("mode", "multi")

# Dispatch cycle settings.
_dispatch = _CONFIG.get("dispatch", {})
DISPATCH_BATCH_SIZE = int(_dispatch.get("batch_size", 50))
RECIPIENT_RESOLUTION = _dispatch.get("recipient_resolution", "batched")
STUCK_AFTER_MINUTES = int(_dispatch.get("stuck_after_minutes", 30))
SENDER_NAME = _dispatch.get("sender_name", "Reddit Alert")

# Feed client identity and timeouts.
_feed = _CONFIG.get("feed", {})
USER_AGENT = _feed.get("user_agent", "redwatch/0.1 (keyword email alerts)")
TIMEOUT_SECONDS = float(_feed.get("timeout_seconds", 15))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
