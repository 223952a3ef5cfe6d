import altair as alt
import pandas as pd
import streamlit as st
from contextlib import contextmanager

from core.charts import by_year_chart, cafv_chart, top_makes_chart, type_split_chart
from core.data import DEFAULT_CSV_NAME, IngestError, all_makes, load_default, load_from_file, year_bounds
from core.filters import EV_TYPE_OPTIONS, FilterSpec
from core.state import DashboardState, LoadSequencer, NotReadyError, derive_view, failed, loaded, start_loading, with_filters, with_page

alt.data_transformers.disable_max_rows()

DISPLAY_COLUMNS = {
    "make": "Make",
    "model": "Model",
    "model_year": "Year",
    "ev_type": "Type",
    "range": "Range (mi)",
    "city": "City",
    "county": "County",
    "state": "State",
    "cafv": "CAFV Eligibility",
}


# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;margin-bottom: 8px;}
        .chip-row {display: flex;flex-wrap: wrap;gap: 6px;margin-top: 6px;}
        .chip {background: #f3f4f6;border: 1px solid #e5e7eb;border-radius: 14px;padding: 4px 10px;font-size: 0.85rem;color: #374151;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str):
    container = st.container()
    container.markdown(f"<div class='card'><div class='card-title'>{title}</div>", unsafe_allow_html=True)
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def format_filter_summary(spec: FilterSpec) -> str:
    chips = [
        f"Type: {spec.ev_type}",
        f"Make: {spec.make}",
        f"Years: {spec.year_from}–{spec.year_to}",
        f"Search: {spec.query}" if spec.query else "Search: none",
    ]
    return "".join([f"<span class='chip'>{txt}</span>" for txt in chips])


def fmt(n: float) -> str:
    return f"{round(n):,}"


# ---------- state plumbing ----------
def get_state() -> DashboardState:
    return st.session_state.setdefault("dashboard_state", DashboardState())


def get_sequencer() -> LoadSequencer:
    return st.session_state.setdefault("load_sequencer", LoadSequencer())


def set_state(state: DashboardState) -> None:
    st.session_state["dashboard_state"] = state


def run_load(loader, *args, **kwargs) -> None:
    sequencer = get_sequencer()
    request_id = sequencer.begin()
    set_state(start_loading(get_state()))
    try:
        raw = loader(*args, **kwargs)
    except IngestError as exc:
        if sequencer.is_current(request_id):
            set_state(failed(get_state(), exc))
        return
    if sequencer.is_current(request_id):
        set_state(loaded(get_state(), raw, version=request_id))


# ---------- UI setup ----------
st.set_page_config(page_title="EV Analytics Dashboard", layout="wide")
inject_base_styles()
st.title("EV Analytics Dashboard")
st.caption("Interactive insights from the Electric Vehicle Population dataset.")

top = st.columns([6, 2])
with top[0]:
    uploaded = st.file_uploader("Upload CSV", type=["csv"], label_visibility="collapsed")
with top[1]:
    reload_clicked = st.button("Reload default dataset")

if uploaded is not None and st.session_state.get("_uploaded_id") != uploaded.file_id:
    st.session_state["_uploaded_id"] = uploaded.file_id
    run_load(load_from_file, uploaded, name=uploaded.name)
elif reload_clicked or get_sequencer().latest == 0:
    run_load(load_default)

state = get_state()
if not state.ready:
    if state.status == "error":
        st.error(state.error or "Could not load CSV")
        st.info(f"Place {DEFAULT_CSV_NAME} next to app.py (recommended) or use the upload control above.")
    else:
        st.info("Loading dataset…")
    st.stop()

# ----- Sidebar: filters -----
makes = all_makes(state.records)
year_min, year_max = year_bounds(state.records)
with st.sidebar:
    st.markdown("### Filters")
    query = st.text_input("Search make, model, city, county, state…", value=state.filters.query)
    ev_type = st.selectbox("EV type", EV_TYPE_OPTIONS, index=EV_TYPE_OPTIONS.index(state.filters.ev_type))
    make = st.selectbox("Make", makes, index=makes.index(state.filters.make) if state.filters.make in makes else 0)
    year_from = st.number_input("Year from", min_value=year_min or 1990, max_value=max(year_max, year_min) or 2050, value=max(state.filters.year_from, year_min or 1990))
    year_to = st.number_input("Year to", min_value=year_min or 1990, max_value=max(year_max, year_min) or 2050, value=min(state.filters.year_to, year_max or 2050))

spec = FilterSpec(ev_type=ev_type, make=make, year_from=int(year_from), year_to=int(year_to), query=query.strip())
state = with_filters(state, spec)
set_state(state)

try:
    view = derive_view(state)
except NotReadyError as exc:
    st.error(str(exc))
    st.stop()

st.markdown(f"<div class='chip-row'>{format_filter_summary(state.filters)}</div>", unsafe_allow_html=True)

# ----- KPIs -----
kpis = view.kpis
k1, k2, k3, k4 = st.columns(4)
k1.metric("Vehicles", fmt(kpis.total), help=f"{fmt(kpis.bev)} BEV • {fmt(kpis.phev)} PHEV")
k2.metric("Avg. Electric Range", f"{round(kpis.avg_range)} mi", help="Only non-zero values")
k3.metric("BEV Share", f"{round(kpis.bev_share)}%", help=f"{fmt(kpis.bev)} of {fmt(kpis.total)}")
k4.metric("Median Model Year", kpis.median_year or "—", help=f"{year_min or '—'}–{year_max or '—'}")

# ----- Charts -----
c1, c2 = st.columns(2)
with c1:
    with card("Registrations by Model Year"):
        st.altair_chart(by_year_chart(view.series["by_year"]), use_container_width=True)
with c2:
    with card("Top Manufacturers"):
        st.altair_chart(top_makes_chart(view.series["top_makes"]), use_container_width=True)
c3, c4 = st.columns(2)
with c3:
    with card("BEV vs PHEV"):
        st.altair_chart(type_split_chart(view.series["type_split"]), use_container_width=True)
with c4:
    with card("CAFV Eligibility (filtered)"):
        st.altair_chart(cafv_chart(view.series["cafv"]), use_container_width=True)

# ----- Table -----
with card("Vehicles"):
    total_pages = view.page.total_pages
    requested = st.number_input(
        "Page",
        min_value=1,
        max_value=total_pages,
        value=view.page.page,
        step=1,
        key=f"page-{state.dataset_version}-{hash(state.filters)}",
    )
    state = with_page(state, int(requested))
    set_state(state)
    page = derive_view(state, filtered=view.filtered).page
    display = page.rows[list(DISPLAY_COLUMNS)].rename(columns=DISPLAY_COLUMNS)
    st.dataframe(display, use_container_width=True, hide_index=True)
    st.caption(f"Page {page.page} of {page.total_pages} • {fmt(page.total_rows)} rows")
    st.download_button(
        "Export CSV",
        data=view.filtered.to_csv(index=False).encode("utf-8"),
        file_name="ev_registrations_filtered.csv",
        mime="text/csv",
    )
