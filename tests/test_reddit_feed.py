from __future__ import annotations

import asyncio
from typing import Callable, Optional

import requests

from adapters.reddit_feed import INFO_URL, LATEST_URLS, SEARCH_URL, RedditFeed
from core.feed_ids import Cursor, from_base36


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        content_type: str = "application/atom+xml; charset=UTF-8",
        text: str = "",
        json_data=None,
    ) -> None:
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}
        self.text = text
        self._json = json_data

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeSession:
    def __init__(self, handler: Callable[[str, dict], FakeResponse]) -> None:
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, dict, Optional[float]]] = []
        self._handler = handler

    def get(self, url: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append((url, dict(params or {}), timeout))
        return self._handler(url, params or {})


def _atom(*entries: tuple[str, str]) -> str:
    body = "".join(
        f"""
        <entry>
          <id>{fullname}</id>
          <link href="https://www.reddit.com/r/x/comments/{fullname[3:]}/t/" />
          <title>{title}</title>
          <content type="html">{title} body</content>
        </entry>"""
        for fullname, title in entries
    )
    return f'<?xml version="1.0" encoding="UTF-8"?><feed xmlns="http://www.w3.org/2005/Atom">{body}</feed>'


def _listing(kind: str, ids: list[str]) -> dict:
    children = []
    for fullname in ids:
        data = {"name": fullname, "permalink": f"/r/x/comments/{fullname[3:]}/t/"}
        if kind == "t3":
            data.update({"title": f"post {fullname}", "selftext": "launch news"})
        else:
            data.update({"link_title": "thread", "body": f"comment {fullname}"})
        children.append({"kind": kind, "data": data})
    return {"kind": "Listing", "data": {"children": children}}


def test_user_agent_and_timeout_are_sent() -> None:
    session = FakeSession(lambda url, params: FakeResponse(text=_atom()))
    feed = RedditFeed(user_agent="redwatch-test/1.0", timeout=7, session=session)
    feed.fetch_since("launch", "post", None, 25)

    assert session.headers["User-Agent"] == "redwatch-test/1.0"
    url, params, timeout = session.calls[0]
    assert url == SEARCH_URL
    assert params == {"q": "launch", "sort": "new", "limit": 25}
    assert timeout == 7


def test_fetch_since_stops_at_cursor() -> None:
    body = _atom(("t3_5", "five"), ("t3_4", "four"), ("t3_3", "three"))
    feed = RedditFeed(session=FakeSession(lambda url, params: FakeResponse(text=body)))

    result = feed.fetch_since("launch", "post", from_base36("4"), 100)

    assert result.ok
    assert [item.id for item in result.items] == ["t3_5"]


def test_fetch_since_without_cursor_returns_everything() -> None:
    body = _atom(("t3_5", "five"), ("t3_4", "four"))
    feed = RedditFeed(session=FakeSession(lambda url, params: FakeResponse(text=body)))
    assert len(feed.fetch_since("launch", "post", None, 100).items) == 2


def test_comment_search_requests_comment_type() -> None:
    session = FakeSession(lambda url, params: FakeResponse(text=_atom(("t1_9", "c"))))
    result = RedditFeed(session=session).fetch_since("launch", "comment", None, 100)
    assert session.calls[0][1]["type"] == "comment"
    assert [item.kind for item in result.items] == ["comment"]


def test_non_success_status_is_a_failed_fetch() -> None:
    feed = RedditFeed(session=FakeSession(lambda url, params: FakeResponse(status_code=429)))
    result = feed.fetch_since("launch", "post", None, 100)
    assert result.ok is False
    assert result.error == "status=429"
    assert result.items == []


def test_html_body_is_not_parsed() -> None:
    response = FakeResponse(content_type="text/html", text="<html>blocked</html>")
    feed = RedditFeed(session=FakeSession(lambda url, params: response))
    result = feed.fetch_since("launch", "post", None, 100)
    assert result.ok is False
    assert "text/html" in result.error


def test_transport_errors_do_not_raise() -> None:
    def boom(url: str, params: dict) -> FakeResponse:
        raise requests.ConnectionError("down")

    result = RedditFeed(session=FakeSession(boom)).fetch_since("launch", "post", None, 100)
    assert result.ok is False
    assert result.error == "request_error:ConnectionError"


def test_firehose_drops_failed_batches_only() -> None:
    def handler(url: str, params: dict) -> FakeResponse:
        assert url == INFO_URL
        ids = params["id"].split(",")
        if ids[0].startswith("t1_"):
            return FakeResponse(status_code=500)
        return FakeResponse(content_type="application/json", json_data=_listing("t3", ids))

    session = FakeSession(handler)
    feed = RedditFeed(session=session)
    cursor = Cursor(post=10, comment=20)

    result = asyncio.run(feed.fetch_firehose(cursor, batches=4, batch_size=3))

    assert result.ok
    assert result.failed_batches == 2
    assert len(session.calls) == 4
    numbers = sorted(from_base36(item.id[3:]) for item in result.items)
    assert numbers == list(range(11, 17))
    assert result.items[0].id == "t3_g"


def test_firehose_with_every_batch_failing_is_not_ok() -> None:
    response = FakeResponse(content_type="text/html", text="<html/>")
    feed = RedditFeed(session=FakeSession(lambda url, params: response))
    result = asyncio.run(feed.fetch_firehose(Cursor(post=1, comment=1), batches=2, batch_size=5))
    assert result.ok is False
    assert result.failed_batches == 2


def test_fetch_latest_ids_reads_both_listings() -> None:
    def handler(url: str, params: dict) -> FakeResponse:
        if url == LATEST_URLS["post"]:
            return FakeResponse(content_type="application/json", json_data=_listing("t3", ["t3_zz"]))
        return FakeResponse(status_code=503)

    cursor = RedditFeed(session=FakeSession(handler)).fetch_latest_ids()
    assert cursor == Cursor(post=from_base36("zz"), comment=None)


def test_non_thread_results_are_counted_as_filtered() -> None:
    body = _atom(("t3_5", "five")).replace(
        "</feed>",
        '<entry><id>t3_4</id><link href="https://www.reddit.com/r/launch/" /><title>r/launch</title></entry></feed>',
    )
    feed = RedditFeed(session=FakeSession(lambda url, params: FakeResponse(text=body)))

    result = feed.fetch_since("launch", "post", None, 100)

    assert [item.id for item in result.items] == ["t3_5"]
    assert result.filtered == 1
