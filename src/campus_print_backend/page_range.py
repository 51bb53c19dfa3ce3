"""
Page-range selection for print requests.

An expression is a comma-separated list of tokens, each either a single page
(``7``) or an inclusive span (``3-9``). Selection is forgiving: tokens that do
not parse, reversed spans, and pages outside the document are dropped rather
than rejected. Deciding whether an empty selection is acceptable is left to
the caller.
"""

from __future__ import annotations

import re
from typing import List, Optional, Set

ALL_PAGES = "all"

_SINGLE = re.compile(r"^\s*(\d+)\s*$")
_SPAN = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


def selects_all(expression: Optional[str]) -> bool:
    """True for an absent, blank, or ``all`` expression."""
    if expression is None:
        return True
    stripped = expression.strip()
    return not stripped or stripped.lower() == ALL_PAGES


def select_pages(expression: Optional[str], total_pages: int) -> List[int]:
    """
    Resolve ``expression`` against a document of ``total_pages`` pages.

    Returns:
        Strictly ascending page numbers, each within [1, total_pages]. May be
        empty.

    Example:
        >>> select_pages("5-100", 10)
        [5, 6, 7, 8, 9, 10]
        >>> select_pages("3-1", 10)
        []
    """
    if selects_all(expression):
        return list(range(1, total_pages + 1))

    pages: Set[int] = set()
    for token in expression.split(","):
        span = _SPAN.match(token)
        if span:
            start, end = int(span.group(1)), int(span.group(2))
            if start > end:
                continue
            pages.update(range(max(1, start), min(end, total_pages) + 1))
            continue

        single = _SINGLE.match(token)
        if single:
            page = int(single.group(1))
            if 1 <= page <= total_pages:
                pages.add(page)

    return sorted(pages)
