from __future__ import annotations

from dataclasses import asdict
import logging
import math
from typing import Tuple

import numpy as np
import pandas as pd
from fastapi import FastAPI, File, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from api.schemas import FilterSpecModel, LoadResponse, MetaHeadersResponse, MetaMakesResponse, MetaYearsResponse
from core.data import IngestError, ParseFailure, all_makes, load_default, load_from_file, year_bounds
from core.filters import FilterSpec, normalize_filters
from core.metrics_overview import compute_overview
from core.pagination import PAGE_SIZE
from core.state import DashboardState, DashboardStore, NotReadyError


app = FastAPI(title="EV Registrations Dashboard API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = DashboardStore()


def _json(data: object, status_code: int = 200) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
            },
        ),
    )


def _error(exc: Exception, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc), "type": type(exc).__name__})


def _not_ready(exc: NotReadyError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": str(exc), "status": exc.status})


def _ingest_failed(exc: IngestError) -> JSONResponse:
    return JSONResponse(status_code=422, content=exc.to_dict())


def _ensure_loaded() -> DashboardState:
    """Fetch the default dataset the first time anything asks for data."""
    if store.state.dataset_version == 0 and store.state.status == "loading":
        try:
            store.run_load(load_default)
        except IngestError:
            pass  # recorded on the store as the error state
    return store.state


def _request_filters(model: FilterSpecModel) -> Tuple[DashboardState, FilterSpec]:
    """State snapshot plus this request's own filters; the shared store is not touched."""
    state = _ensure_loaded()
    spec = normalize_filters(model.model_dump(), year_bounds=year_bounds(state.records))
    return state, spec


def _records_payload(df: pd.DataFrame) -> list[dict]:
    return df.astype(object).where(df.notna(), None).to_dict(orient="records")


def _load_response(state: DashboardState) -> dict:
    return LoadResponse(
        status=state.status,
        records=int(len(state.records)),
        headers=list(state.headers),
        source=state.source,
        filters=asdict(state.filters),
    ).model_dump()


@app.get("/health")
def health():
    state = _ensure_loaded()
    return _json({"status": state.status, "records": int(len(state.records)), "error": state.error, "error_kind": state.error_kind})


@app.get("/meta/makes")
def meta_makes():
    state = _ensure_loaded()
    if not state.ready:
        return _not_ready(NotReadyError(state.status, state.error))
    return _json(MetaMakesResponse(makes=all_makes(state.records)).model_dump())


@app.get("/meta/years")
def meta_years():
    state = _ensure_loaded()
    if not state.ready:
        return _not_ready(NotReadyError(state.status, state.error))
    lo, hi = year_bounds(state.records)
    return _json(MetaYearsResponse(min=lo, max=hi).model_dump())


@app.get("/meta/headers")
def meta_headers():
    state = _ensure_loaded()
    if not state.ready:
        return _not_ready(NotReadyError(state.status, state.error))
    return _json(MetaHeadersResponse(headers=list(state.headers), source=state.source).model_dump())


@app.post("/reload")
def reload_default():
    try:
        state = store.run_load(load_default)
        return _json(_load_response(state))
    except IngestError as exc:
        return _ingest_failed(exc)
    except Exception as exc:
        logger.exception("reload failed")
        return _error(exc)


@app.post("/upload")
def upload(file: UploadFile = File(...)):
    name = file.filename or "upload.csv"
    try:
        if not name.lower().endswith(".csv"):
            raise ParseFailure("Only .csv files are accepted", source=name)
        data = file.file.read()
        state = store.run_load(load_from_file, data, name=name)
        return _json(_load_response(state))
    except IngestError as exc:
        return _ingest_failed(exc)
    except Exception as exc:
        logger.exception("upload failed")
        return _error(exc)


@app.post("/overview")
def overview(filters: FilterSpecModel, charts: bool = Query(default=False)):
    try:
        state, spec = _request_filters(filters)
        filtered = store.filtered_for(state, spec)
        return _json(compute_overview(spec, filtered, dataset=state.records, include_charts=charts))
    except NotReadyError as exc:
        return _not_ready(exc)
    except Exception as exc:
        logger.exception("overview failed")
        return _error(exc)


@app.post("/records")
def records(filters: FilterSpecModel, page: int = Query(default=1)):
    try:
        state, spec = _request_filters(filters)
        view = store.view_for(state, spec, page)
        current = view.page
        return _json(
            {
                "filters": asdict(spec),
                "page": current.page,
                "page_size": PAGE_SIZE,
                "total_pages": current.total_pages,
                "total_rows": current.total_rows,
                "rows": _records_payload(current.rows),
            }
        )
    except NotReadyError as exc:
        return _not_ready(exc)
    except Exception as exc:
        logger.exception("records failed")
        return _error(exc)


@app.post("/export")
def export_filtered(filters: FilterSpecModel):
    try:
        state, spec = _request_filters(filters)
        export_df = store.filtered_for(state, spec)
    except NotReadyError as exc:
        return _not_ready(exc)
    csv_bytes = export_df.to_csv(index=False).encode("utf-8")
    return Response(
        content=csv_bytes,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=ev_registrations_filtered.csv"},
    )
