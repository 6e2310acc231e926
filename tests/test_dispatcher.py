from __future__ import annotations

import asyncio
import threading

import pytest

from core.config import DispatchConfig
from core.dispatcher import Dispatcher, group_records
from fakes import FakeBacklog, FakeDirectory, FakeNotifier, make_record

EMAILS = {"U": "u@example.com", "V": "v@example.com", "W": "w@example.com"}


def _dispatcher(backlog, directory, notifier, **config) -> Dispatcher:
    return Dispatcher(backlog, directory, notifier, DispatchConfig(**config))


def test_one_message_per_user_keyword_group() -> None:
    backlog = FakeBacklog()
    backlog.insert_alerts([make_record("U", "rust", f"r{i}") for i in range(5)])
    backlog.insert_alerts([make_record("U", "go", f"g{i}") for i in range(3)])
    notifier = FakeNotifier(backlog=backlog)

    summary = asyncio.run(_dispatcher(backlog, FakeDirectory(EMAILS), notifier).drain(50))

    assert summary.messages == 2
    assert summary.sent == 8
    assert summary.failed == 0
    assert backlog.statuses() == {"sent": 8}
    assert sorted((term, len(records)) for _, term, records in notifier.sent) == [("go", 3), ("rust", 5)]


def test_records_are_processing_before_any_send() -> None:
    backlog = FakeBacklog()
    backlog.insert_alerts([make_record("U", "rust"), make_record("V", "rust")])
    notifier = FakeNotifier(backlog=backlog)

    asyncio.run(_dispatcher(backlog, FakeDirectory(EMAILS), notifier).drain(50))

    assert notifier.statuses_at_send == [{"processing"}, {"processing"}]


def test_rejected_group_fails_without_affecting_others() -> None:
    backlog = FakeBacklog()
    backlog.insert_alerts([make_record("U", "rust"), make_record("U", "rust")])
    backlog.insert_alerts([make_record("V", "rust"), make_record("W", "go")])
    notifier = FakeNotifier(reject={"u@example.com"})

    summary = asyncio.run(_dispatcher(backlog, FakeDirectory(EMAILS), notifier).drain(50))

    assert summary.failed == 2
    assert summary.sent == 2
    assert summary.messages == 2
    statuses = {row.id: row.status for row in backlog.rows.values()}
    assert statuses == {1: "failed", 2: "failed", 3: "sent", 4: "sent"}


def test_transport_crash_fails_only_that_group() -> None:
    backlog = FakeBacklog()
    backlog.insert_alerts([make_record("U", "rust"), make_record("V", "rust")])
    notifier = FakeNotifier(crash={"v@example.com"})

    summary = asyncio.run(_dispatcher(backlog, FakeDirectory(EMAILS), notifier).drain(50))

    assert (summary.sent, summary.failed) == (1, 1)


def test_missing_email_fails_records_without_sending() -> None:
    backlog = FakeBacklog()
    backlog.insert_alerts([make_record("ghost", "rust"), make_record("ghost", "go"), make_record("U", "rust")])
    notifier = FakeNotifier()

    summary = asyncio.run(_dispatcher(backlog, FakeDirectory(EMAILS), notifier).drain(50))

    assert summary.failed == 2
    assert summary.sent == 1
    assert [address for address, _, _ in notifier.sent] == ["u@example.com"]


def test_batched_resolution_uses_one_lookup() -> None:
    backlog = FakeBacklog()
    backlog.insert_alerts([make_record(user, "rust") for user in ("U", "V", "U", "W")])
    directory = FakeDirectory(EMAILS)

    asyncio.run(_dispatcher(backlog, directory, FakeNotifier()).drain(50))

    assert directory.batched_calls == [["U", "V", "W"]]
    assert directory.direct_calls == []


def test_direct_resolution_looks_up_each_user_once() -> None:
    backlog = FakeBacklog()
    backlog.insert_alerts([make_record(user, "rust") for user in ("U", "V", "U")])
    directory = FakeDirectory(EMAILS)

    summary = asyncio.run(
        _dispatcher(backlog, directory, FakeNotifier(), recipient_resolution="direct").drain(50)
    )

    assert directory.direct_calls == ["U", "V"]
    assert directory.batched_calls == []
    assert summary.sent == 3


def test_directory_outage_fails_the_batch() -> None:
    backlog = FakeBacklog()
    backlog.insert_alerts([make_record("U", "rust")])
    notifier = FakeNotifier()

    summary = asyncio.run(_dispatcher(backlog, FakeDirectory(EMAILS, fail=True), notifier).drain(50))

    assert summary.failed == 1
    assert notifier.sent == []


def test_batch_size_bounds_the_claim() -> None:
    backlog = FakeBacklog()
    backlog.insert_alerts([make_record("U", "rust") for _ in range(7)])

    summary = asyncio.run(_dispatcher(backlog, FakeDirectory(EMAILS), FakeNotifier(), batch_size=5).drain())

    assert summary.claimed == 5
    assert backlog.statuses() == {"sent": 5, "pending": 2}


def test_empty_backlog() -> None:
    summary = asyncio.run(_dispatcher(FakeBacklog(), FakeDirectory(EMAILS), FakeNotifier()).drain(10))
    assert summary.as_dict() == {"claimed": 0, "sent": 0, "failed": 0, "messages": 0}


def test_group_records_preserves_order() -> None:
    records = [make_record("U", "b"), make_record("U", "a"), make_record("U", "b")]
    groups = group_records(records)
    assert list(groups) == [("U", "b"), ("U", "a")]
    assert len(groups[("U", "b")]) == 2


@pytest.mark.parametrize("batch_size", [0, -1])
def test_non_positive_batch_size_is_rejected(batch_size: int) -> None:
    backlog = FakeBacklog()
    backlog.insert_alerts([make_record("U", "rust") for _ in range(7)])

    with pytest.raises(ValueError):
        asyncio.run(_dispatcher(backlog, FakeDirectory(EMAILS), FakeNotifier()).drain(batch_size))

    assert backlog.statuses() == {"pending": 7}


def test_config_rejects_non_positive_batch_size() -> None:
    with pytest.raises(ValueError):
        DispatchConfig(batch_size=0)


def test_store_calls_run_off_the_event_loop() -> None:
    loop_threads = []

    class ThreadRecordingBacklog(FakeBacklog):
        def claim_pending(self, limit: int):
            loop_threads.append(threading.get_ident())
            return super().claim_pending(limit)

    backlog = ThreadRecordingBacklog()
    backlog.insert_alerts([make_record("U", "rust")])

    async def run():
        loop_threads.append(threading.get_ident())
        return await _dispatcher(backlog, FakeDirectory(EMAILS), FakeNotifier()).drain(10)

    summary = asyncio.run(run())

    assert summary.sent == 1
    assert loop_threads[0] != loop_threads[1]
