"""Page-unit pricing for print jobs."""

from __future__ import annotations

import math
from typing import Optional

from .errors import InputError, InvalidRange
from .models import PaperSize
from .page_range import select_pages, selects_all

DEFAULT_A3_MULTIPLIER = 2.0


def resolve_effective_pages(page_range: Optional[str], total_pages: int) -> int:
    """
    Number of distinct document pages a request prints once.

    An explicit range that selects nothing is an invalid request.
    """
    if total_pages <= 0:
        raise InputError("Document page count must be positive", {"total_pages": total_pages})
    if selects_all(page_range):
        return total_pages

    pages = select_pages(page_range, total_pages)
    if not pages:
        raise InvalidRange(page_range, total_pages)
    return len(pages)


def calculate_cost(
    effective_pages: int,
    copies: int,
    paper_size: PaperSize,
    a3_multiplier: float = DEFAULT_A3_MULTIPLIER,
    duplex: bool = False,
) -> int:
    """
    Cost in page units: ``effective_pages * copies * size_factor``.

    ``duplex`` is accepted so callers can pass the full print setup, but it never
    changes the charge; every page-image costs the same whatever the sheet count.
    A fractional product (non-integer multiplier) is rounded up to whole units.
    """
    if effective_pages <= 0 or copies <= 0 or a3_multiplier <= 0:
        raise InputError(
            "Invalid cost parameters",
            {"effective_pages": effective_pages, "copies": copies, "a3_multiplier": a3_multiplier},
        )

    size_factor = a3_multiplier if PaperSize(paper_size) is PaperSize.A3 else 1
    # round() first so float noise such as 6.000000000000001 does not cost an extra unit
    return math.ceil(round(effective_pages * copies * size_factor, 6))
