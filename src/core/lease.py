"""Time-bounded exclusive claims on store rows.

A lease is an expiry timestamp rather than a held connection, so a crashed
or hung cycle never strands a keyword for longer than the lease duration.
All race handling lives in the store's conditional update.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.ports import LeaseStorePort

LOGGER = logging.getLogger(__name__)

FIREHOSE_RESOURCE = "firehose"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def keyword_resource(keyword_id: int) -> str:
    return f"keyword:{keyword_id}"


class Lease:
    """Named lease on one resource (``keyword:<id>`` or ``firehose``)."""

    def __init__(
        self,
        store: LeaseStorePort,
        resource: str,
        duration: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self.resource = resource
        self.duration = duration
        self._clock = clock
        self.expires_at: Optional[datetime] = None

    def acquire(self) -> bool:
        """Claim the resource if it is free or its previous lease expired."""

        now = self._clock()
        until = now + self.duration
        if not self._store.try_acquire_lease(self.resource, now, until):
            LOGGER.info("Lease busy for %s", self.resource)
            return False
        self.expires_at = until
        return True

    def release(self) -> None:
        """Clear the lease unconditionally, including on failure paths."""

        self._store.release_lease(self.resource)
        self.expires_at = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return (now or self._clock()) >= self.expires_at
