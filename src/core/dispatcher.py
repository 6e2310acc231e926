"""Alert backlog dispatcher.

One drain pass:
1) Claim up to N pending records (flipped to processing before any I/O)
2) Resolve recipients for the distinct users in the batch
3) Fail records of users without an address, without sending
4) Group the rest by (user_id, keyword_term)
5) Send one message per group and mark the whole group sent or failed

Grouping is what guarantees at most one email per user per keyword per
cycle, no matter how many matches piled up.
Store and directory calls are blocking and run on worker threads.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from core.config import DispatchConfig
from core.models import FAILED, PROCESSING, SENT, AlertRecord, DispatchSummary
from core.ports import AlertBacklogPort, DeliveryError, NotifierPort, UserDirectoryPort

LOGGER = logging.getLogger(__name__)

GroupKey = Tuple[str, str]


def group_records(records: Iterable[AlertRecord]) -> Dict[GroupKey, List[AlertRecord]]:
    """Group records by (user_id, keyword_term), keeping claim order."""

    groups: Dict[GroupKey, List[AlertRecord]] = {}
    for record in records:
        groups.setdefault((record.user_id, record.keyword_term), []).append(record)
    return groups


class Dispatcher:
    """Drains the alert backlog into batched notifications."""

    def __init__(
        self,
        backlog: AlertBacklogPort,
        directory: UserDirectoryPort,
        notifier: NotifierPort,
        config: Optional[DispatchConfig] = None,
    ) -> None:
        self._backlog = backlog
        self._directory = directory
        self._notifier = notifier
        self._config = config or DispatchConfig()

    def _resolve_batched(self, user_ids: List[str]) -> dict[str, str]:
        try:
            return dict(self._directory.lookup_emails(user_ids))
        except Exception:
            LOGGER.exception("Recipient lookup failed for %s users", len(user_ids))
            return {}

    def _resolve_direct(self, user_ids: List[str]) -> dict[str, str]:
        addresses: dict[str, str] = {}
        for user_id in user_ids:
            try:
                email = self._directory.lookup_email(user_id)
            except Exception:
                LOGGER.exception("Recipient lookup failed for user %s", user_id)
                continue
            if email:
                addresses[user_id] = email
        return addresses

    def resolve_recipients(self, user_ids: List[str]) -> dict[str, str]:
        if not user_ids:
            return {}
        if self._config.recipient_resolution == "direct":
            return self._resolve_direct(user_ids)
        return self._resolve_batched(user_ids)

    def _finish(self, records: List[AlertRecord], status: str) -> int:
        ids = [record.id for record in records if record.id is not None]
        if not ids:
            return 0
        return len(self._backlog.transition(ids, PROCESSING, status))

    async def drain(self, batch_size: Optional[int] = None) -> DispatchSummary:
        """Run one dispatch pass and return its counters."""

        limit = self._config.batch_size if batch_size is None else batch_size
        if limit < 1:
            raise ValueError(f"batch_size must be at least 1, got {limit}")

        summary = DispatchSummary()
        claimed = await asyncio.to_thread(self._backlog.claim_pending, limit)
        summary.claimed = len(claimed)
        if not claimed:
            LOGGER.info("No pending alerts to process")
            return summary

        user_ids = list(dict.fromkeys(record.user_id for record in claimed))
        addresses = await asyncio.to_thread(self.resolve_recipients, user_ids)

        deliverable: List[AlertRecord] = []
        unresolved: List[AlertRecord] = []
        for record in claimed:
            if addresses.get(record.user_id):
                deliverable.append(record)
            else:
                unresolved.append(record)

        if unresolved:
            missing = sorted({record.user_id for record in unresolved})
            LOGGER.warning("No email for users %s; failing %s alerts", ", ".join(missing), len(unresolved))
            summary.failed += await asyncio.to_thread(self._finish, unresolved, FAILED)

        for (user_id, keyword_term), records in group_records(deliverable).items():
            address = addresses[user_id]
            try:
                await self._notifier.send(address, keyword_term, records)
            except DeliveryError as exc:
                LOGGER.error("Delivery rejected for user %s ('%s'): %s", user_id, keyword_term, exc)
                summary.failed += await asyncio.to_thread(self._finish, records, FAILED)
                continue
            except Exception:
                LOGGER.exception("Delivery failed for user %s ('%s')", user_id, keyword_term)
                summary.failed += await asyncio.to_thread(self._finish, records, FAILED)
                continue

            summary.sent += await asyncio.to_thread(self._finish, records, SENT)
            summary.messages += 1
            LOGGER.info("Email sent to user %s for '%s' (%s matches)", user_id, keyword_term, len(records))

        LOGGER.info(
            "Dispatch complete: claimed=%s, sent=%s, failed=%s, messages=%s",
            summary.claimed,
            summary.sent,
            summary.failed,
            summary.messages,
        )
        return summary
