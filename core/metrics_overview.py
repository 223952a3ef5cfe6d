from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import pandas as pd

from core.charts import by_year_chart, cafv_chart, to_vega_spec, top_makes_chart, type_split_chart
from core.data import EV_TYPES, year_bounds
from core.filters import FilterSpec


TOP_N_MAKES = 10


@dataclass(frozen=True)
class KpiBundle:
    total: int = 0
    bev: int = 0
    phev: int = 0
    avg_range: float = 0.0
    median_year: int = 0

    @property
    def bev_share(self) -> float:
        """BEV share of the total, in percent."""
        return (self.bev / self.total) * 100 if self.total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["bev_share"] = self.bev_share
        return out


def compute_kpis(records: pd.DataFrame) -> KpiBundle:
    total = int(len(records))
    if total == 0:
        return KpiBundle()
    types = records["ev_type"]
    bev = int((types == "BEV").sum())
    phev = int((types == "PHEV").sum())

    # Zero and missing ranges are left out of both numerator and denominator.
    ranges = records["range"].dropna()
    ranges = ranges[ranges > 0]
    avg_range = float(ranges.mean()) if not ranges.empty else 0.0

    # Upper median: element n // 2 of the sorted years, never an average.
    years = records["model_year"].dropna().sort_values(kind="stable").reset_index(drop=True)
    median_year = int(years.iloc[len(years) // 2]) if not years.empty else 0

    return KpiBundle(total=total, bev=bev, phev=phev, avg_range=avg_range, median_year=median_year)


def series_by_year(records: pd.DataFrame) -> List[Dict[str, int]]:
    if records.empty:
        return []
    counts = records["model_year"].dropna().astype(int).value_counts().sort_index()
    return [{"year": int(year), "count": int(count)} for year, count in counts.items()]


def _counts_in_encounter_order(values: pd.Series) -> pd.Series:
    return values.groupby(values, sort=False).size()


def series_top_makes(records: pd.DataFrame, n: int = TOP_N_MAKES) -> List[Dict[str, Any]]:
    if records.empty:
        return []
    counts = _counts_in_encounter_order(records["make"])
    # Stable sort keeps first-encountered order among equal counts.
    top = counts.sort_values(ascending=False, kind="stable").head(n)
    return [{"name": str(name), "count": int(count)} for name, count in top.items()]


def series_type_split(records: pd.DataFrame) -> List[Dict[str, Any]]:
    counts = records["ev_type"].value_counts() if not records.empty else pd.Series(dtype="int64")
    return [{"name": t, "value": int(counts.get(t, 0))} for t in EV_TYPES]


def series_cafv(records: pd.DataFrame) -> List[Dict[str, Any]]:
    if records.empty:
        return []
    counts = _counts_in_encounter_order(records["cafv"])
    return [{"name": str(name), "value": int(value)} for name, value in counts.items()]


def compute_series(records: pd.DataFrame, *, top_n: int = TOP_N_MAKES) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "by_year": series_by_year(records),
        "top_makes": series_top_makes(records, top_n),
        "type_split": series_type_split(records),
        "cafv": series_cafv(records),
    }


def build_charts(series: Dict[str, List[Dict[str, Any]]]) -> Dict[str, Any]:
    return {
        "by_year": to_vega_spec(by_year_chart(series["by_year"])),
        "top_makes": to_vega_spec(top_makes_chart(series["top_makes"])),
        "type_split": to_vega_spec(type_split_chart(series["type_split"])),
        "cafv": to_vega_spec(cafv_chart(series["cafv"])),
    }


def compute_overview(
    filters: FilterSpec,
    filtered: pd.DataFrame,
    *,
    dataset: Optional[pd.DataFrame] = None,
    include_charts: bool = False,
) -> Dict[str, Any]:
    """JSON-serializable overview payload for one filtered set."""
    series = compute_series(filtered)
    lo, hi = year_bounds(dataset if dataset is not None else filtered)
    payload: Dict[str, Any] = {
        "filters": asdict(filters),
        "kpis": compute_kpis(filtered).to_dict(),
        "series": series,
        "year_bounds": {"min": lo, "max": hi},
        "charts": {},
    }
    if include_charts:
        payload["charts"] = build_charts(series)
    return payload
