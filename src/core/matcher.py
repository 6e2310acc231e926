"""Keyword matching (core domain).

Two strategies share one contract: ``scan(text, whole_word)`` returns the
set of configured keywords that occur in ``text``.

- ``KeywordAutomaton`` is an Aho-Corasick automaton. It walks the text once
  regardless of how many keywords are loaded.
- ``SingleKeywordMatcher`` applies ``matches_one`` per keyword and is kept
  for small keyword sets.

Both lower-case text and keywords before matching, and both use the same
definition of a word boundary, so they always agree.
"""

from __future__ import annotations

import re
from collections import deque
from typing import Iterable, Iterator, List, Tuple


def normalize_keyword(keyword: str) -> str:
    return keyword.strip().lower()


def _is_word_char(ch: str) -> bool:
    # Same character class as ``\w`` for str patterns.
    return ch.isalnum() or ch == "_"


def _has_word_boundaries(text: str, start: int, end: int) -> bool:
    """Check the characters around ``text[start:end]``."""

    if start > 0 and _is_word_char(text[start - 1]):
        return False
    if end < len(text) and _is_word_char(text[end]):
        return False
    return True


def matches_one(text: str, keyword: str, whole_word: bool = False) -> bool:
    """Return True when ``keyword`` occurs in ``text``.

    In whole-word mode the keyword must be bounded by non-word characters
    or the ends of the string. The keyword is escaped so regex
    metacharacters (``c++``, ``.net``) are matched literally.
    """

    if not text:
        return False
    needle = normalize_keyword(keyword)
    if not needle:
        return False
    haystack = text.lower()
    if not whole_word:
        return needle in haystack
    pattern = re.compile(rf"(?<!\w){re.escape(needle)}(?!\w)")
    return pattern.search(haystack) is not None


class KeywordAutomaton:
    """Aho-Corasick automaton over a fixed keyword set."""

    def __init__(self, keywords: Iterable[str]) -> None:
        self._originals: dict[str, set[str]] = {}
        for keyword in keywords:
            normalized = normalize_keyword(keyword)
            if not normalized:
                continue
            self._originals.setdefault(normalized, set()).add(keyword)

        self._goto: List[dict[str, int]] = [{}]
        self._fail: List[int] = [0]
        self._out: List[List[str]] = [[]]
        for normalized in self._originals:
            self._insert(normalized)
        self._link()

    def __len__(self) -> int:
        return len(self._originals)

    def _insert(self, word: str) -> None:
        state = 0
        for ch in word:
            nxt = self._goto[state].get(ch)
            if nxt is None:
                nxt = len(self._goto)
                self._goto.append({})
                self._fail.append(0)
                self._out.append([])
                self._goto[state][ch] = nxt
            state = nxt
        self._out[state].append(word)

    def _link(self) -> None:
        # Breadth-first so every failure target is finalized before use.
        queue: deque[int] = deque()
        for child in self._goto[0].values():
            self._fail[child] = 0
            queue.append(child)
        while queue:
            state = queue.popleft()
            for ch, child in self._goto[state].items():
                queue.append(child)
                fallback = self._fail[state]
                while fallback and ch not in self._goto[fallback]:
                    fallback = self._fail[fallback]
                target = self._goto[fallback].get(ch, 0)
                self._fail[child] = target if target != child else 0
                self._out[child].extend(self._out[self._fail[child]])

    def iter_matches(self, text: str) -> Iterator[Tuple[int, str]]:
        """Lazily yield ``(end_index, normalized_keyword)`` for every occurrence.

        ``end_index`` is exclusive and refers to ``text.lower()``.
        """

        state = 0
        for index, ch in enumerate(text.lower()):
            while state and ch not in self._goto[state]:
                state = self._fail[state]
            state = self._goto[state].get(ch, 0)
            for word in self._out[state]:
                yield index + 1, word

    def scan(self, text: str, whole_word: bool = False) -> set[str]:
        """Return the keywords (as originally given) that occur in ``text``."""

        if not text or not self._originals:
            return set()
        lowered = text.lower()
        found: set[str] = set()
        for end, word in self.iter_matches(text):
            if word in found:
                continue
            if whole_word and not _has_word_boundaries(lowered, end - len(word), end):
                continue
            found.add(word)
            if len(found) == len(self._originals):
                break
        return {original for word in found for original in self._originals[word]}


class SingleKeywordMatcher:
    """Fallback matcher that tests each keyword independently."""

    def __init__(self, keywords: Iterable[str]) -> None:
        self._keywords = [k for k in keywords if normalize_keyword(k)]

    def __len__(self) -> int:
        return len({normalize_keyword(k) for k in self._keywords})

    def scan(self, text: str, whole_word: bool = False) -> set[str]:
        return {k for k in self._keywords if matches_one(text, k, whole_word)}


def build_automaton(keywords: Iterable[str]) -> KeywordAutomaton:
    return KeywordAutomaton(keywords)


def build_matcher(keywords: Iterable[str], mode: str = "multi"):
    """Return a matcher for the configured mode (``multi`` or ``single``)."""

    if mode == "multi":
        return KeywordAutomaton(keywords)
    if mode == "single":
        return SingleKeywordMatcher(keywords)
    raise ValueError(f"Unsupported matcher mode: {mode}")
