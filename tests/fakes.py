from __future__ import annotations

from types import SimpleNamespace
from typing import Iterable, Optional, Sequence

from core.feed_ids import Cursor
from core.models import (
    PENDING,
    AlertRecord,
    FeedItem,
    FetchResult,
    PostData,
    check_transition,
)
from core.ports import DeliveryError


def make_item(fullname: str, title: str = "", body: str = "", kind: Optional[str] = None) -> FeedItem:
    if kind is None:
        kind = "post" if fullname.startswith("t3_") else "comment"
    return FeedItem(
        id=fullname,
        kind=kind,
        title=title,
        body=body,
        url=f"https://www.reddit.com/r/test/comments/{fullname[3:]}/x/",
    )


def make_record(user_id: str, term: str, title: str = "title") -> AlertRecord:
    return AlertRecord(
        user_id=user_id,
        keyword_term=term,
        post_data=PostData(title=title, url=f"https://example.com/{title}", preview="preview"),
    )


class FakeBacklog:
    """In-memory alert backlog with the same status rules as the adapters."""

    def __init__(self) -> None:
        self.rows: dict[int, AlertRecord] = {}
        self._next_id = 1

    def insert_alerts(self, records: Sequence[AlertRecord]) -> int:
        for record in records:
            self.rows[self._next_id] = AlertRecord(
                id=self._next_id,
                user_id=record.user_id,
                keyword_term=record.keyword_term,
                post_data=record.post_data,
                status=PENDING,
            )
            self._next_id += 1
        return len(records)

    def _set(self, row_id: int, status: str) -> None:
        row = self.rows[row_id]
        self.rows[row_id] = AlertRecord(
            id=row.id,
            user_id=row.user_id,
            keyword_term=row.keyword_term,
            post_data=row.post_data,
            status=status,
        )

    def claim_pending(self, limit: int) -> list[AlertRecord]:
        ids = [row_id for row_id, row in sorted(self.rows.items()) if row.status == PENDING][:limit]
        for row_id in ids:
            self._set(row_id, "processing")
        return [self.rows[row_id] for row_id in ids]

    def transition(self, ids: Iterable[int], from_status: str, to_status: str) -> list[int]:
        check_transition(from_status, to_status)
        moved = [row_id for row_id in ids if self.rows[row_id].status == from_status]
        for row_id in moved:
            self._set(row_id, to_status)
        return moved

    def reap_stuck(self, older_than) -> int:
        return 0

    def statuses(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for row in self.rows.values():
            counts[row.status] = counts.get(row.status, 0) + 1
        return counts


class FakeDirectory:
    def __init__(self, emails: dict[str, str], fail: bool = False) -> None:
        self.emails = emails
        self.fail = fail
        self.batched_calls: list[list[str]] = []
        self.direct_calls: list[str] = []

    def lookup_emails(self, user_ids: Iterable[str]) -> dict[str, str]:
        ids = list(user_ids)
        self.batched_calls.append(ids)
        if self.fail:
            raise RuntimeError("directory down")
        return {user_id: self.emails[user_id] for user_id in ids if user_id in self.emails}

    def lookup_email(self, user_id: str) -> Optional[str]:
        self.direct_calls.append(user_id)
        return self.emails.get(user_id)


class FakeNotifier:
    def __init__(self, reject: Optional[set[str]] = None, crash: Optional[set[str]] = None, backlog=None) -> None:
        self.reject = reject or set()
        self.crash = crash or set()
        self.backlog = backlog
        self.sent: list[tuple[str, str, list[AlertRecord]]] = []
        self.statuses_at_send: list[set[str]] = []

    async def send(self, to_address: str, keyword_term: str, records: Sequence[AlertRecord]) -> None:
        if self.backlog is not None:
            self.statuses_at_send.append({self.backlog.rows[r.id].status for r in records})
        if to_address in self.reject:
            raise DeliveryError("rejected")
        if to_address in self.crash:
            raise ConnectionError("socket closed")
        self.sent.append((to_address, keyword_term, list(records)))


class FakeFeed:
    def __init__(
        self,
        results: Optional[dict] = None,
        firehose: Optional[FetchResult] = None,
        latest: Optional[Cursor] = None,
    ) -> None:
        self.results = results or {}
        self.firehose = firehose or FetchResult(ok=True)
        self.latest = latest or Cursor()
        self.calls: list[tuple[str, str, Optional[int]]] = []
        self.firehose_calls: list[Cursor] = []

    def fetch_since(self, term: str, kind: str, after: Optional[int], page_size: int) -> FetchResult:
        self.calls.append((term, kind, after))
        result = self.results.get((term, kind), FetchResult(ok=True))
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_firehose(self, cursor: Cursor, batches: int, batch_size: int) -> FetchResult:
        self.firehose_calls.append(cursor)
        return self.firehose

    def fetch_latest_ids(self) -> Cursor:
        return self.latest


class FakeQuery:
    """Records a Supabase query-builder chain; ``execute`` pops scripted rows."""

    def __init__(self, client: "FakeSupabase", table: str) -> None:
        self.client = client
        self.table = table
        self.calls: list[tuple] = []

    def __getattr__(self, name: str):
        def step(*args, **kwargs):
            self.calls.append((name, *args, kwargs) if kwargs else (name, *args))
            return self

        return step

    def method(self, name: str) -> Optional[tuple]:
        return next((call for call in self.calls if call[0] == name), None)

    def execute(self):
        self.client.executed.append(self)
        queue = self.client.responses.get(self.table, [])
        data = queue.pop(0) if queue else []
        return SimpleNamespace(data=data)


class FakeAdmin:
    def __init__(self, users: dict[str, str]) -> None:
        self.users = users
        self.calls: list[str] = []

    def get_user_by_id(self, user_id: str):
        self.calls.append(user_id)
        email = self.users.get(user_id)
        return SimpleNamespace(user=SimpleNamespace(email=email) if email else None)


class FakeSupabase:
    def __init__(self, responses: Optional[dict] = None, users: Optional[dict[str, str]] = None) -> None:
        self.responses: dict[str, list[list[dict]]] = responses or {}
        self.executed: list[FakeQuery] = []
        self.auth = SimpleNamespace(admin=FakeAdmin(users or {}))

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)
