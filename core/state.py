"""Explicit dashboard state and the transitions between states.

State flows one way: an event (load finished, filters changed, page
requested) produces a new ``DashboardState``; everything shown on screen is
derived from that state by ``derive_view``. Nothing here mutates a state in
place.

Loads are sequenced: each load attempt takes a request id from a
``LoadSequencer`` and only the most recently issued id may commit, so a slow
default fetch finishing after a user upload is discarded instead of
overwriting the upload.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from core.data import IngestError, RawDataset, all_makes, empty_records, normalize_records, year_bounds
from core.filters import FilterSpec, apply_filters
from core.metrics_overview import KpiBundle, compute_kpis, compute_series
from core.pagination import PAGE_SIZE, Page, clamp_page, paginate


logger = logging.getLogger(__name__)

STATUS_LOADING = "loading"
STATUS_READY = "ready"
STATUS_ERROR = "error"

FILTER_CACHE_SIZE = 16


class NotReadyError(RuntimeError):
    """Raised when derived data is requested while no dataset is ready."""

    def __init__(self, status: str, error: Optional[str] = None):
        super().__init__(error or f"Dataset not ready (status: {status})")
        self.status = status
        self.error = error


@dataclass(frozen=True, eq=False)
class DashboardState:
    status: str = STATUS_LOADING
    error: Optional[str] = None
    error_kind: Optional[str] = None
    records: pd.DataFrame = field(default_factory=empty_records, repr=False)
    raw: Optional[RawDataset] = field(default=None, repr=False)
    headers: Tuple[str, ...] = ()
    source: Optional[str] = None
    filters: FilterSpec = field(default_factory=FilterSpec)
    page: int = 1
    dataset_version: int = 0

    @property
    def ready(self) -> bool:
        return self.status == STATUS_READY


@dataclass(frozen=True, eq=False)
class DashboardView:
    filtered: pd.DataFrame = field(repr=False)
    kpis: KpiBundle
    series: Dict[str, List[Dict[str, Any]]]
    page: Page = field(repr=False)
    makes: List[str]
    year_bounds: Tuple[int, int]


def start_loading(state: DashboardState) -> DashboardState:
    return replace(state, status=STATUS_LOADING, error=None, error_kind=None)


def loaded(state: DashboardState, raw: RawDataset, *, version: int) -> DashboardState:
    """Replace the dataset wholesale; the year filter snaps to the new bounds."""
    records = normalize_records(raw.rows)
    filters = state.filters
    if records["model_year"].notna().any():
        lo, hi = year_bounds(records)
        filters = filters.with_changes(year_from=lo, year_to=hi)
    if filters.make != "All" and filters.make not in set(records["make"]):
        filters = filters.with_changes(make="All")
    return replace(
        state,
        status=STATUS_READY,
        error=None,
        error_kind=None,
        records=records,
        raw=raw,
        headers=tuple(raw.headers),
        source=raw.source,
        filters=filters,
        page=1,
        dataset_version=version,
    )


def failed(state: DashboardState, exc: IngestError) -> DashboardState:
    return replace(state, status=STATUS_ERROR, error=exc.message, error_kind=exc.kind)


def with_filters(state: DashboardState, filters: FilterSpec) -> DashboardState:
    if filters == state.filters:
        return state
    return replace(state, filters=filters, page=1)


def filtered_records(state: DashboardState) -> pd.DataFrame:
    if not state.ready:
        raise NotReadyError(state.status, state.error)
    return apply_filters(state.records, state.filters)


def with_page(state: DashboardState, page: int) -> DashboardState:
    n = len(filtered_records(state))
    return replace(state, page=clamp_page(page, n, PAGE_SIZE))


def derive_view(state: DashboardState, *, filtered: Optional[pd.DataFrame] = None) -> DashboardView:
    if filtered is None:
        filtered = filtered_records(state)
    return DashboardView(
        filtered=filtered,
        kpis=compute_kpis(filtered),
        series=compute_series(filtered),
        page=paginate(filtered, state.page, PAGE_SIZE),
        makes=all_makes(state.records),
        year_bounds=year_bounds(state.records),
    )


class LoadSequencer:
    """Hands out increasing request ids; only the newest id is current."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest = 0

    def begin(self) -> int:
        with self._lock:
            self._latest += 1
            return self._latest

    def is_current(self, request_id: int) -> bool:
        with self._lock:
            return request_id == self._latest

    @property
    def latest(self) -> int:
        return self._latest


class DashboardStore:
    """Holds the current state for a long-lived process (the API)."""

    def __init__(self, state: Optional[DashboardState] = None):
        self._lock = threading.RLock()
        self._state = state or DashboardState()
        self._sequencer = LoadSequencer()
        self._filtered: "OrderedDict[Tuple[int, FilterSpec], pd.DataFrame]" = OrderedDict()

    @property
    def state(self) -> DashboardState:
        with self._lock:
            return self._state

    def begin_load(self) -> int:
        with self._lock:
            request_id = self._sequencer.begin()
            self._state = start_loading(self._state)
            return request_id

    def complete_load(self, request_id: int, raw: RawDataset) -> bool:
        with self._lock:
            if not self._sequencer.is_current(request_id):
                logger.info("Discarding stale load #%d from %s", request_id, raw.source)
                return False
            self._state = loaded(self._state, raw, version=request_id)
            logger.info("Committed load #%d: %d records from %s", request_id, len(self._state.records), raw.source)
            return True

    def fail_load(self, request_id: int, exc: IngestError) -> bool:
        with self._lock:
            if not self._sequencer.is_current(request_id):
                logger.info("Ignoring stale failure of load #%d: %s", request_id, exc.message)
                return False
            self._state = failed(self._state, exc)
            return True

    def run_load(self, loader, *args, **kwargs) -> DashboardState:
        """Run ``loader`` under a fresh request id and commit its outcome."""
        request_id = self.begin_load()
        try:
            raw = loader(*args, **kwargs)
        except IngestError as exc:
            self.fail_load(request_id, exc)
            raise
        self.complete_load(request_id, raw)
        return self.state

    def set_filters(self, filters: FilterSpec) -> DashboardState:
        with self._lock:
            self._state = with_filters(self._state, filters)
            return self._state

    def filtered_for(self, state: DashboardState, filters: FilterSpec) -> pd.DataFrame:
        """Filtered records of ``state``'s dataset for ``filters``, memoized per dataset version."""
        if not state.ready:
            raise NotReadyError(state.status, state.error)
        key = (state.dataset_version, filters)
        with self._lock:
            cached = self._filtered.get(key)
            if cached is not None:
                self._filtered.move_to_end(key)
                return cached
        result = apply_filters(state.records, filters)
        with self._lock:
            self._filtered[key] = result
            while len(self._filtered) > FILTER_CACHE_SIZE:
                self._filtered.popitem(last=False)
        return result

    def filtered(self, filters: Optional[FilterSpec] = None) -> pd.DataFrame:
        state = self.state
        return self.filtered_for(state, state.filters if filters is None else filters)

    def set_page(self, page: int) -> DashboardState:
        with self._lock:
            n = len(self.filtered_for(self._state, self._state.filters))
            self._state = replace(self._state, page=clamp_page(page, n, PAGE_SIZE))
            return self._state

    def view_for(self, state: DashboardState, filters: FilterSpec, page: int = 1) -> DashboardView:
        snapshot = replace(state, filters=filters, page=page)
        return derive_view(snapshot, filtered=self.filtered_for(state, filters))

    def view(self, filters: Optional[FilterSpec] = None, page: Optional[int] = None) -> DashboardView:
        state = self.state
        return self.view_for(
            state,
            state.filters if filters is None else filters,
            state.page if page is None else page,
        )
