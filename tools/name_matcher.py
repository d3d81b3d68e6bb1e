"""
Name matching — the one place that decides whether two names "match".

The Dungeon Master refers to characters and items loosely ("Ann", "potion"),
so the default strategy is case-insensitive substring containment with
first-match-wins. It is ambiguous ("Ann" matches both "Ann" and "Anna"),
which is why callers take the matcher as a parameter: `exact_match` can be
passed instead without touching reconciliation code.
"""

import logging
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

logger = logging.getLogger("NameMatcher")

T = TypeVar("T")

# (subject, query) -> does `subject` answer to `query`?
NameMatcher = Callable[[str, str], bool]


def _fold(value: str) -> str:
    return " ".join(value.split()).casefold()


def substring_match(subject: str, query: str) -> bool:
    """True when `query` appears inside `subject`, ignoring case.

    An empty query never matches.
    """
    q = _fold(query or "")
    if not q:
        return False
    return q in _fold(subject or "")


def exact_match(subject: str, query: str) -> bool:
    q = _fold(query or "")
    return bool(q) and q == _fold(subject or "")


def find_key_for(name: str, keys: Iterable[str], matcher: NameMatcher = substring_match) -> Optional[str]:
    """First delta key that refers to the character called `name`."""
    for key in keys:
        if matcher(name, key):
            return key
    return None


def find_index(
    entries: Sequence[T],
    query: str,
    name_of: Callable[[T], str] = lambda e: e.name,
    matcher: NameMatcher = substring_match,
) -> Optional[int]:
    """Index of the first entry whose name matches `query`, or None."""
    for i, entry in enumerate(entries):
        if matcher(name_of(entry), query):
            return i
    return None


def ambiguous_matches(names: Iterable[str], query: str, matcher: NameMatcher = substring_match) -> List[str]:
    """All names a query would hit; more than one means the query is ambiguous."""
    hits = [n for n in names if matcher(n, query)]
    if len(hits) > 1:
        logger.debug(f"Query '{query}' is ambiguous: {hits}")
    return hits
