from __future__ import annotations

import pytest

from adapters.feed_parser import FeedParser

ATOM_POSTS = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>reddit.com: search results - launch</title>
  <entry>
    <author><name>/u/someone</name></author>
    <content type="html">&lt;p&gt;We &lt;b&gt;launch&lt;/b&gt; today&lt;/p&gt;</content>
    <id>t3_1abd</id>
    <link href="https://www.reddit.com/r/rust/comments/1abd/launch_day/" />
    <updated>2024-01-01T00:00:00+00:00</updated>
    <title>Launch day</title>
  </entry>
  <entry>
    <id>not-a-fullname</id>
    <link href="https://www.reddit.com/r/rust/comments/zzz/broken/" />
    <title>Broken entry</title>
  </entry>
  <entry>
    <id>t3_1abb</id>
    <link href="https://www.reddit.com/r/launch/" />
    <title>r/launch</title>
  </entry>
  <entry>
    <id>t3_1abc</id>
    <link href="https://www.reddit.com/r/rust/comments/1abc/older_launch/" />
    <summary type="html">older body</summary>
    <title>Older launch</title>
  </entry>
</feed>
"""


def test_search_entries_skip_malformed_and_filter_non_threads() -> None:
    parser = FeedParser()
    items = list(parser.iter_search_entries(ATOM_POSTS, "post"))

    assert [item.id for item in items] == ["t3_1abd", "t3_1abc"]
    assert items[0].title == "Launch day"
    assert "launch" in items[0].body
    assert items[0].url == "https://www.reddit.com/r/rust/comments/1abd/launch_day/"
    assert items[1].body == "older body"
    assert parser.skipped == 1
    assert parser.filtered == 1


def test_search_entries_are_lazy_and_single_use() -> None:
    parser = FeedParser()
    entries = parser.iter_search_entries(ATOM_POSTS, "post")
    assert parser.skipped == 0
    first = next(entries)
    assert first.id == "t3_1abd"
    rest = list(entries)
    assert [item.id for item in rest] == ["t3_1abc"]
    assert list(entries) == []


def test_search_entries_reject_wrong_kind() -> None:
    parser = FeedParser()
    assert list(parser.iter_search_entries(ATOM_POSTS, "comment")) == []
    assert parser.skipped == 4


def test_garbage_body_yields_nothing() -> None:
    parser = FeedParser()
    assert list(parser.iter_search_entries("<html>rate limited</html>", "post")) == []


def test_info_listing_reads_posts_and_comments() -> None:
    payload = {
        "kind": "Listing",
        "data": {
            "children": [
                {
                    "kind": "t3",
                    "data": {
                        "name": "t3_abc",
                        "title": "Rust 2.0",
                        "selftext": "body text",
                        "permalink": "/r/rust/comments/abc/rust_20/",
                    },
                },
                {
                    "kind": "t1",
                    "data": {
                        "name": "t1_xyz",
                        "body": "a comment",
                        "link_title": "Thread",
                        "permalink": "/r/rust/comments/abc/rust_20/xyz/",
                    },
                },
                {"kind": "t5", "data": {"name": "t5_sub"}},
                {"kind": "t3", "data": {"title": "no name"}},
            ]
        },
    }
    parser = FeedParser()
    items = list(parser.iter_info_listing(payload))

    assert [(item.id, item.kind) for item in items] == [("t3_abc", "post"), ("t1_xyz", "comment")]
    assert items[0].url == "https://www.reddit.com/r/rust/comments/abc/rust_20/"
    assert items[1].title == "Thread"
    assert parser.filtered == 1
    assert parser.skipped == 1


def test_info_listing_rejects_non_listing() -> None:
    parser = FeedParser()
    with pytest.raises(ValueError):
        list(parser.iter_info_listing({"message": "Too Many Requests", "error": 429}))
