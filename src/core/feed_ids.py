"""Helpers for working with Reddit ids and feed cursors.

Reddit ids are base-36 integers. Fullnames prefix them with a type tag
(``t3_`` for posts, ``t1_`` for comments). Ids are monotonic within a kind,
which is what makes cursors and id-range scans possible.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from core.models import COMMENT, POST

KIND_PREFIXES = {POST: "t3_", COMMENT: "t1_"}
_PREFIX_KINDS = {prefix: kind for kind, prefix in KIND_PREFIXES.items()}

_B36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
CURSOR_SEPARATOR = ":"


def to_base36(number: int) -> str:
    """Encode a non-negative integer the way Reddit does."""

    if number < 0:
        raise ValueError("Reddit ids are non-negative")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_B36_DIGITS[rem])
    return "".join(reversed(digits))


def from_base36(value: str) -> int:
    return int(value, 36)


def build_fullname(kind: str, number: int) -> str:
    return f"{KIND_PREFIXES[kind]}{to_base36(number)}"


def split_fullname(fullname: str) -> Tuple[str, int]:
    """Split ``t3_abc`` into ``("post", 13368)``.

    Raises ValueError for unknown prefixes or malformed ids.
    """

    prefix, body = fullname[:3], fullname[3:]
    kind = _PREFIX_KINDS.get(prefix)
    if kind is None or not body:
        raise ValueError(f"Not a post/comment fullname: {fullname!r}")
    return kind, from_base36(body)


def iter_id_block(kind: str, after: int, count: int) -> Iterator[str]:
    """Yield ``count`` fullnames immediately following ``after``."""

    for number in range(after + 1, after + 1 + count):
        yield build_fullname(kind, number)


@dataclass(frozen=True)
class Cursor:
    """Composite cursor: highest post and comment number observed."""

    post: Optional[int] = None
    comment: Optional[int] = None

    def get(self, kind: str) -> Optional[int]:
        return self.post if kind == POST else self.comment

    def with_value(self, kind: str, number: Optional[int]) -> "Cursor":
        if kind == POST:
            return Cursor(post=number, comment=self.comment)
        return Cursor(post=self.post, comment=number)

    def is_empty(self) -> bool:
        return self.post is None and self.comment is None

    def merge(self, other: "Cursor") -> "Cursor":
        """Component-wise max; a cursor never moves backwards."""

        return Cursor(post=_max_optional(self.post, other.post), comment=_max_optional(self.comment, other.comment))

    def is_newer_than(self, other: "Cursor") -> bool:
        """True when at least one component moves strictly forward."""

        return _gt_optional(self.post, other.post) or _gt_optional(self.comment, other.comment)

    def encode(self) -> str:
        post = to_base36(self.post) if self.post is not None else ""
        comment = to_base36(self.comment) if self.comment is not None else ""
        return f"{post}{CURSOR_SEPARATOR}{comment}"

    @classmethod
    def decode(cls, raw: Optional[str]) -> "Cursor":
        """Parse a stored cursor; unreadable parts are treated as unset."""

        if not raw:
            return cls()
        if CURSOR_SEPARATOR not in raw:
            # A bare fullname is accepted so hand-seeded rows work.
            try:
                kind, number = split_fullname(raw)
            except ValueError:
                return cls()
            return cls().with_value(kind, number)
        post_part, _, comment_part = raw.partition(CURSOR_SEPARATOR)
        return cls(post=_safe_b36(post_part), comment=_safe_b36(comment_part))

    @classmethod
    def from_items(cls, items) -> "Cursor":
        cursor = cls()
        for item in items:
            kind, number = split_fullname(item.id)
            cursor = cursor.merge(cls().with_value(kind, number))
        return cursor


def _safe_b36(value: str) -> Optional[int]:
    if not value:
        return None
    try:
        return from_base36(value)
    except ValueError:
        return None


def _max_optional(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _gt_optional(a: Optional[int], b: Optional[int]) -> bool:
    if a is None:
        return False
    if b is None:
        return True
    return a > b
