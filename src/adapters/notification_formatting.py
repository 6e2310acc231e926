"""Shared notification formatting helpers.

All channels render a (user, keyword) group through these helpers.
"""

from __future__ import annotations

import html
from typing import Sequence

from core.models import AlertRecord

NO_PREVIEW = "No preview available"


def format_subject(keyword_term: str, count: int) -> str:
    return f'New Matches: "{keyword_term}" ({count} posts)'


def _format_item_html(record: AlertRecord) -> str:
    data = record.post_data
    title = html.escape(data.title or data.url)
    url = html.escape(data.url, quote=True)
    preview = html.escape(data.preview) if data.preview else NO_PREVIEW
    return (
        '<div style="margin-bottom: 15px; border-bottom: 1px solid #eee; padding-bottom: 10px;">'
        f'<a href="{url}" style="font-size: 16px; font-weight: bold; color: #0070f3; text-decoration: none;">'
        f"{title}</a>"
        f'<div style="color: #555; font-size: 14px; margin-top: 5px;">{preview}...</div>'
        "</div>"
    )


def format_html(keyword_term: str, records: Sequence[AlertRecord]) -> str:
    """Create the HTML body listing every matched item of one group."""

    term = html.escape(keyword_term)
    items = "\n".join(_format_item_html(record) for record in records)
    parts = [
        '<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">',
        f'<h2>{len(records)} new matches for "<b>{term}</b>"</h2>',
        '<p style="color: #666;">Here are the latest posts found on Reddit:</p>',
        '<hr style="border: 0; border-top: 1px solid #eee; margin: 20px 0;">',
        items,
        '<p style="font-size: 12px; color: #999; margin-top: 30px;">',
        f'You are receiving this because you subscribed to alerts for "{term}".',
        "</p>",
        "</div>",
    ]
    return "\n".join(parts)


def format_notification(keyword_term: str, records: Sequence[AlertRecord]) -> tuple[str, str]:
    """Return ``(subject, html_body)`` for one (user, keyword) group."""

    return format_subject(keyword_term, len(records)), format_html(keyword_term, records)
