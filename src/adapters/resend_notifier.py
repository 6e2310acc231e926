"""Resend email notification adapter.

Sends one HTML email per (user, keyword) group through the Resend API.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional, Sequence

import requests

from adapters.notification_formatting import format_notification
from core.models import AlertRecord
from core.ports import DeliveryError

RESEND_ENDPOINT = "https://api.resend.com/emails"


class ResendEmailNotifier:
    """Notifier adapter that delivers alerts by email via Resend."""

    def __init__(
        self,
        api_key: str,
        sending_email: str,
        sender_name: str = "Reddit Alert",
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key
        self._from = f"{sender_name} <{sending_email}>"
        self._timeout = timeout
        self._session = session or requests.Session()

    def _post(self, payload: dict) -> None:
        try:
            response = self._session.post(
                RESEND_ENDPOINT,
                headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
                data=json.dumps(payload),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise DeliveryError(f"Resend request failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise DeliveryError(f"Resend error {response.status_code}: {response.text[:200]}")

    async def send(self, to_address: str, keyword_term: str, records: Sequence[AlertRecord]) -> None:
        """Render the group and send it to a single recipient."""

        subject, body = format_notification(keyword_term, records)
        payload = {
            "from": self._from,
            "to": [to_address],
            "subject": subject,
            "html": body,
        }
        await asyncio.to_thread(self._post, payload)
