from __future__ import annotations

import io
import logging
import os
import warnings
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd


logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CSV_NAME = "Electric_Vehicle_Population_Data.csv"
DEFAULT_CSV_PATH = DATA_DIR / DEFAULT_CSV_NAME
CSV_SOURCE_ENV = "EV_DASHBOARD_CSV"

UNKNOWN_MAKE = "Unknown"
EV_TYPES = ("BEV", "PHEV")

# Header aliases per logical field. Exact, case-sensitive; earlier aliases win.
COLUMN_ALIASES: Dict[str, Tuple[str, ...]] = {
    "make": ("Make", "make"),
    "model": ("Model", "model"),
    "model_year": ("Model Year", "ModelYear", "model_year", "Model_Year"),
    "ev_type": ("Electric Vehicle Type", "EV Type", "Type", "Electric_Vehicle_Type"),
    "cafv": (
        "Clean Alternative Fuel Vehicle (CAFV) Eligibility",
        "CAFV Eligibility",
        "CAFV",
        "cafv",
    ),
    "range": ("Electric Range", "Range", "electric_range"),
    "base_msrp": ("Base MSRP", "MSRP"),
    "city": ("City", "city"),
    "county": ("County", "county"),
    "state": ("State", "state"),
}

TEXT_FIELDS = ("make", "model", "cafv", "city", "county", "state")

RECORD_COLUMNS = [
    "row_id",
    "model_year",
    "ev_type",
    "range",
    "base_msrp",
    "make",
    "model",
    "cafv",
    "city",
    "county",
    "state",
]

# Years beyond this cannot be held exactly in a float64.
_MAX_EXACT_INT = 2**53


# ---------- ingestion errors ----------
class IngestError(Exception):
    """A load attempt failed; nothing from it is committed."""

    kind = "ingest_error"

    def __init__(self, message: str, *, source: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source = source

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "kind": self.kind, "source": self.source}


class NetworkFailure(IngestError):
    kind = "network_failure"


class EmptyOrMalformed(IngestError):
    kind = "empty_or_malformed"


class ParseFailure(IngestError):
    kind = "parse_failure"


@dataclass(frozen=True)
class RawDataset:
    rows: pd.DataFrame = field(repr=False)
    headers: List[str]
    source: str

    def __len__(self) -> int:
        return len(self.rows)


# ---------- field resolver ----------
def _is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def get_field(row: Mapping[str, object], aliases: Tuple[str, ...]) -> Optional[str]:
    """Return the first alias of ``aliases`` holding a non-empty value in ``row``."""
    for key in aliases:
        value = row.get(key)
        if not _is_blank(value):
            return str(value)
    return None


def column_as_series(df: pd.DataFrame, col: str) -> pd.Series:
    if col not in df.columns:
        return pd.Series(pd.NA, index=df.index, dtype=object)
    val = df[col]
    if isinstance(val, pd.DataFrame):
        return val.iloc[:, 0]
    return val


def resolve_column(df: pd.DataFrame, aliases: Tuple[str, ...]) -> pd.Series:
    """Row-wise ``get_field`` over a raw frame; unresolved cells are ``pd.NA``."""
    out = pd.Series(pd.NA, index=df.index, dtype=object)
    for alias in aliases:
        if alias not in df.columns:
            continue
        col = column_as_series(df, alias)
        present = col.notna() & (col.fillna("").astype(str) != "")
        take = out.isna() & present
        if take.any():
            out[take] = col[take].astype(str)
    return out


# ---------- record normalizer ----------
def _to_numbers(values: pd.Series) -> pd.Series:
    text = values.fillna("").astype(str).str.strip()
    return pd.to_numeric(text, errors="coerce").astype("float64")


def coerce_years(values: pd.Series) -> pd.Series:
    nums = _to_numbers(values)
    ok = np.isfinite(nums) & (nums % 1 == 0) & (nums.abs() < _MAX_EXACT_INT)
    return nums.where(ok).astype("Int64")


def coerce_ranges(values: pd.Series) -> pd.Series:
    nums = _to_numbers(values)
    ok = np.isfinite(nums) & (nums >= 0)
    return nums.where(ok).astype("Float64")


def classify_types(values: pd.Series) -> pd.Series:
    is_phev = values.fillna("").astype(str).str.upper().str.contains("PHEV", regex=False)
    return pd.Series(np.where(is_phev, "PHEV", "BEV"), index=values.index, dtype=object)


def coerce_year(value: object) -> Optional[int]:
    """Integral model year or None. ``"2022.0"`` is accepted, ``"2022.5"`` is not."""
    out = coerce_years(pd.Series([value], dtype=object)).iloc[0]
    return None if pd.isna(out) else int(out)


def coerce_range(value: object) -> Optional[float]:
    out = coerce_ranges(pd.Series([value], dtype=object)).iloc[0]
    return None if pd.isna(out) else float(out)


def classify_type(value: object) -> str:
    return str(classify_types(pd.Series([value], dtype=object)).iloc[0])


def normalize_records(raw: pd.DataFrame) -> pd.DataFrame:
    """Normalize every raw row into the canonical record shape, one-to-one and in order."""
    resolved = {name: resolve_column(raw, aliases) for name, aliases in COLUMN_ALIASES.items()}
    out = pd.DataFrame(
        {
            "row_id": np.arange(len(raw), dtype="int64"),
            "model_year": coerce_years(resolved["model_year"]).to_numpy(),
            "ev_type": classify_types(resolved["ev_type"]).to_numpy(),
            "range": coerce_ranges(resolved["range"]).to_numpy(),
            "base_msrp": coerce_ranges(resolved["base_msrp"]).to_numpy(),
        }
    )
    for name in TEXT_FIELDS:
        default = UNKNOWN_MAKE if name == "make" else ""
        out[name] = resolved[name].fillna(default).astype(str).to_numpy()
    out["model_year"] = out["model_year"].astype("Int64")
    out["range"] = out["range"].astype("Float64")
    out["base_msrp"] = out["base_msrp"].astype("Float64")
    return out[RECORD_COLUMNS]


def normalize_record(row: Mapping[str, object]) -> Dict[str, Any]:
    record = normalize_records(pd.DataFrame([dict(row)], dtype=object)).iloc[0].to_dict()
    for key in ("model_year", "range", "base_msrp"):
        if pd.isna(record[key]):
            record[key] = None
    if record["model_year"] is not None:
        record["model_year"] = int(record["model_year"])
    record["row_id"] = int(record["row_id"])
    record["raw"] = dict(row)
    return record


def empty_records() -> pd.DataFrame:
    return normalize_records(pd.DataFrame())


def raw_row(raw: RawDataset, row_id: int) -> Dict[str, Any]:
    """Original key/value row a record was normalized from."""
    return raw.rows.iloc[int(row_id)].to_dict()


def all_makes(records: pd.DataFrame) -> List[str]:
    if records.empty:
        return ["All"]
    return ["All"] + sorted(records["make"].dropna().astype(str).unique().tolist())


def year_bounds(records: pd.DataFrame) -> Tuple[int, int]:
    years = records["model_year"].dropna() if "model_year" in records.columns else pd.Series(dtype="Int64")
    if years.empty:
        return 0, 0
    return int(years.min()), int(years.max())


# ---------- CSV ingestion ----------
def default_csv_source() -> str:
    return os.environ.get(CSV_SOURCE_ENV) or str(DEFAULT_CSV_PATH)


def _is_url(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


def _parse_csv(buffer: Union[str, io.BytesIO], *, source: str) -> RawDataset:
    try:
        # Surplus fields are a structural error, never an implicit index column.
        with warnings.catch_warnings():
            warnings.simplefilter("error", pd.errors.ParserWarning)
            rows = pd.read_csv(
                buffer,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                index_col=False,
                encoding="utf-8-sig",
            )
    except pd.errors.EmptyDataError as exc:
        raise EmptyOrMalformed("CSV file empty or invalid", source=source) from exc
    except pd.errors.ParserWarning as exc:
        raise ParseFailure("Failed to parse CSV: rows have more fields than the header", source=source) from exc
    except (pd.errors.ParserError, UnicodeDecodeError) as exc:
        raise ParseFailure(f"Failed to parse CSV: {exc}", source=source) from exc
    except OSError as exc:
        raise NetworkFailure(f"Failed to fetch CSV: {exc}", source=source) from exc

    if rows.empty:
        raise EmptyOrMalformed("CSV file empty or invalid", source=source)
    headers = [str(c) for c in rows.columns]
    logger.info("Parsed %d rows (%d columns) from %s", len(rows), len(headers), source)
    return RawDataset(rows=rows.reset_index(drop=True), headers=headers, source=source)


@lru_cache(maxsize=4)
def _load_local_cached(path: str, signature: Tuple[float, int]) -> RawDataset:
    return _parse_csv(path, source=path)


def load_default(source: Optional[str] = None) -> RawDataset:
    """Load the well-known dataset (local path or http(s) URL)."""
    src = source or default_csv_source()
    try:
        if _is_url(src):
            return _parse_csv(src, source=src)
        path = Path(src)
        if not path.is_file():
            raise NetworkFailure(f"Failed to fetch CSV: {src} not found", source=src)
        stat = path.stat()
        return _load_local_cached(str(path), (stat.st_mtime, stat.st_size))
    except IngestError as exc:
        logger.warning("Default load failed (%s): %s", exc.kind, exc.message)
        raise


def load_from_file(data: Union[bytes, str, Any], *, name: str = "upload.csv") -> RawDataset:
    """Load a user-supplied CSV from bytes, text or a file-like object."""
    if hasattr(data, "getvalue"):
        data = data.getvalue()
    elif hasattr(data, "read"):
        data = data.read()
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        return _parse_csv(io.BytesIO(data or b""), source=name)
    except IngestError as exc:
        logger.warning("Upload %s rejected (%s): %s", name, exc.kind, exc.message)
        raise
