"""Core (UI-agnostic) dashboard logic.

This package contains:
- CSV ingestion and record normalization (CSV -> pandas)
- filter specs and the filter engine
- KPI and chart-series aggregation (JSON-serializable payloads)
- pagination and the explicit dashboard state
- chart helpers (Altair -> Vega-Lite spec dict)
"""
