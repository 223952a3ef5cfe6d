from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Tuple

import pandas as pd


EV_TYPE_OPTIONS = ("All", "BEV", "PHEV")
DEFAULT_YEAR_FROM = 0
DEFAULT_YEAR_TO = 9999

QUERY_FIELDS = ("make", "model", "city", "county", "state")


@dataclass(frozen=True)
class FilterSpec:
    ev_type: str = "All"
    make: str = "All"
    year_from: int = DEFAULT_YEAR_FROM
    year_to: int = DEFAULT_YEAR_TO
    query: str = ""

    def with_changes(self, **changes) -> "FilterSpec":
        return replace(self, **changes)


def _as_int(value: object, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_filters(raw: dict, *, year_bounds: Optional[Tuple[int, int]] = None) -> FilterSpec:
    """Build a FilterSpec from loose input; missing years fall back to the dataset bounds."""
    lo, hi = year_bounds if year_bounds else (DEFAULT_YEAR_FROM, DEFAULT_YEAR_TO)

    ev_type = str(raw.get("ev_type") or "All")
    if ev_type not in EV_TYPE_OPTIONS:
        ev_type = "All"

    make = raw.get("make")
    make = str(make) if make not in (None, "") else "All"

    return FilterSpec(
        ev_type=ev_type,
        make=make,
        year_from=_as_int(raw.get("year_from"), lo),
        year_to=_as_int(raw.get("year_to"), hi),
        query=(raw.get("query") or "").strip(),
    )


def search_haystack(records: pd.DataFrame) -> pd.Series:
    hay = records[QUERY_FIELDS[0]].astype(str)
    for col in QUERY_FIELDS[1:]:
        hay = hay + " " + records[col].astype(str)
    return hay.str.lower()


def filter_mask(records: pd.DataFrame, spec: FilterSpec) -> pd.Series:
    mask = pd.Series(True, index=records.index)
    if records.empty:
        return mask
    if spec.ev_type != "All":
        mask &= records["ev_type"] == spec.ev_type
    if spec.make != "All":
        mask &= records["make"] == spec.make

    # Records without a year are never excluded by the year range.
    years = records["model_year"]
    in_range = ((years >= spec.year_from) & (years <= spec.year_to)).fillna(True)
    mask &= in_range.astype(bool)

    q = spec.query.strip().lower()
    if q:
        mask &= search_haystack(records).str.contains(q, regex=False)
    return mask


def apply_filters(records: pd.DataFrame, spec: FilterSpec) -> pd.DataFrame:
    """Rows of ``records`` matching every predicate of ``spec``, in input order."""
    return records[filter_mask(records, spec).to_numpy()]
