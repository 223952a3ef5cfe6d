from __future__ import annotations

import math
from dataclasses import dataclass

import pandas as pd


PAGE_SIZE = 12


@dataclass(frozen=True)
class Page:
    rows: pd.DataFrame
    page: int
    total_pages: int
    total_rows: int
    page_size: int = PAGE_SIZE

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def total_pages(n: int, page_size: int = PAGE_SIZE) -> int:
    return max(1, math.ceil(n / page_size))


def clamp_page(page: int, n: int, page_size: int = PAGE_SIZE) -> int:
    return min(max(1, int(page)), total_pages(n, page_size))


def page_slice(records: pd.DataFrame, page: int, page_size: int = PAGE_SIZE) -> pd.DataFrame:
    """Rows ``[(page - 1) * page_size, page * page_size)``; no clamping."""
    start = (page - 1) * page_size
    if start < 0:
        return records.iloc[0:0]
    return records.iloc[start : page * page_size]


def paginate(records: pd.DataFrame, page: int, page_size: int = PAGE_SIZE) -> Page:
    """Page of ``records`` with the requested page number clamped into range."""
    n = len(records)
    current = clamp_page(page, n, page_size)
    return Page(
        rows=page_slice(records, current, page_size),
        page=current,
        total_pages=total_pages(n, page_size),
        total_rows=n,
        page_size=page_size,
    )
