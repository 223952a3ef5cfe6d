"""
Tests for core/state.py: state transitions, derived views and load sequencing.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.data import EmptyOrMalformed, load_from_file
from core.filters import FilterSpec
from core.state import (
    DashboardState,
    DashboardStore,
    LoadSequencer,
    NotReadyError,
    derive_view,
    failed,
    loaded,
    start_loading,
    with_filters,
    with_page,
)

from conftest import SAMPLE_CSV


def _raw(text: str, name: str):
    return load_from_file(text.encode("utf-8"), name=name)


TWENTY_FIVE_CSV = "Make,Model Year\n" + "AUDI,2020\n" * 20 + "BMW,2021\n" * 5
UPLOAD_CSV = "Make,Model,Model Year,Electric Vehicle Type\nRIVIAN,R1T,2022,BEV\n"


@pytest.fixture
def ready_state(sample_raw):
    return loaded(DashboardState(), sample_raw, version=1)


class TestTransitions:
    def test_initial_state_is_loading(self):
        state = DashboardState()
        assert state.status == "loading"
        with pytest.raises(NotReadyError):
            derive_view(state)

    def test_loaded_snaps_year_filter(self, ready_state):
        assert ready_state.ready
        assert (ready_state.filters.year_from, ready_state.filters.year_to) == (2013, 2023)
        assert ready_state.page == 1
        assert ready_state.source == "sample.csv"
        assert len(ready_state.records) == 6

    def test_loaded_without_years_keeps_year_filter(self):
        state = loaded(DashboardState(), _raw("Make\nA\n", "a.csv"), version=1)
        assert (state.filters.year_from, state.filters.year_to) == (0, 9999)

    def test_loaded_resets_unknown_make(self, ready_state):
        state = with_filters(ready_state, ready_state.filters.with_changes(make="TESLA"))
        state = loaded(state, _raw(UPLOAD_CSV, "u.csv"), version=2)
        assert state.filters.make == "All"

    def test_failed_is_not_ready(self, ready_state):
        state = failed(start_loading(ready_state), EmptyOrMalformed("CSV file empty or invalid"))
        assert state.status == "error"
        assert state.error_kind == "empty_or_malformed"
        with pytest.raises(NotReadyError) as info:
            derive_view(state)
        assert info.value.status == "error"

    def test_loading_blocks_views(self, ready_state):
        with pytest.raises(NotReadyError):
            derive_view(start_loading(ready_state))

    def test_filter_change_resets_page(self):
        state = loaded(DashboardState(), _raw(TWENTY_FIVE_CSV, "25.csv"), version=1)
        state = with_page(state, 3)
        assert state.page == 3
        assert derive_view(state).page.total_pages == 3

        state = with_filters(state, state.filters.with_changes(make="BMW"))
        view = derive_view(state)
        assert state.page == 1
        assert view.page.total_pages == 1
        assert len(view.filtered) == 5

    def test_same_filters_keep_page(self):
        state = with_page(loaded(DashboardState(), _raw(TWENTY_FIVE_CSV, "25.csv"), version=1), 2)
        assert with_filters(state, state.filters).page == 2

    def test_with_page_clamps(self, ready_state):
        assert with_page(ready_state, 10).page == 1
        assert with_page(ready_state, -1).page == 1

    def test_derive_view(self, ready_state):
        view = derive_view(with_filters(ready_state, ready_state.filters.with_changes(ev_type="PHEV")))
        assert view.kpis.total == 3
        assert view.makes[0] == "All"
        assert view.year_bounds == (2013, 2023)
        assert len(view.page.rows) == 3
        assert view.series["type_split"] == [{"name": "BEV", "value": 0}, {"name": "PHEV", "value": 3}]


class TestSequencing:
    def test_sequencer_ids_increase(self):
        seq = LoadSequencer()
        first, second = seq.begin(), seq.begin()
        assert second > first
        assert seq.is_current(second)
        assert not seq.is_current(first)

    def test_stale_default_load_does_not_overwrite_upload(self):
        store = DashboardStore()
        default_id = store.begin_load()
        upload_id = store.begin_load()

        assert store.complete_load(upload_id, _raw(UPLOAD_CSV, "upload.csv"))
        assert not store.complete_load(default_id, _raw(SAMPLE_CSV, "default.csv"))

        state = store.state
        assert state.source == "upload.csv"
        assert state.records["make"].tolist() == ["RIVIAN"]

    def test_stale_failure_is_ignored(self):
        store = DashboardStore()
        old_id = store.begin_load()
        new_id = store.begin_load()
        store.complete_load(new_id, _raw(UPLOAD_CSV, "upload.csv"))
        assert not store.fail_load(old_id, EmptyOrMalformed("late"))
        assert store.state.ready

    def test_run_load_records_failure(self):
        store = DashboardStore()
        with pytest.raises(EmptyOrMalformed):
            store.run_load(load_from_file, b"Make\n", name="empty.csv")
        assert store.state.status == "error"
        assert store.state.error_kind == "empty_or_malformed"

    def test_store_filters_and_pages(self):
        store = DashboardStore()
        store.run_load(load_from_file, TWENTY_FIVE_CSV.encode("utf-8"), name="25.csv")
        assert store.set_page(99).page == 3
        store.set_filters(store.state.filters.with_changes(make="BMW"))
        assert store.state.page == 1
        assert len(store.filtered()) == 5
        assert store.view().page.total_pages == 1

    def test_store_recomputes_after_reload(self):
        store = DashboardStore()
        store.run_load(load_from_file, SAMPLE_CSV.encode("utf-8"), name="a.csv")
        assert len(store.filtered()) == 6
        store.run_load(load_from_file, UPLOAD_CSV.encode("utf-8"), name="b.csv")
        assert len(store.filtered()) == 1
        store.set_filters(FilterSpec(ev_type="PHEV", year_from=2022, year_to=2022))
        assert store.filtered().empty

    def test_filtered_for_uses_the_given_filters_not_the_shared_ones(self):
        store = DashboardStore()
        store.run_load(load_from_file, TWENTY_FIVE_CSV.encode("utf-8"), name="25.csv")
        state = store.state
        audi = state.filters.with_changes(make="AUDI")

        # Another caller changes the shared filters between this caller's steps.
        store.set_filters(state.filters.with_changes(make="BMW"))

        assert set(store.filtered_for(state, audi)["make"]) == {"AUDI"}
        assert set(store.filtered(audi)["make"]) == {"AUDI"}
        assert set(store.filtered()["make"]) == {"BMW"}

    def test_view_for_pairs_filters_with_their_results(self):
        store = DashboardStore()
        store.run_load(load_from_file, TWENTY_FIVE_CSV.encode("utf-8"), name="25.csv")
        state = store.state
        bmw_view = store.view_for(state, state.filters.with_changes(make="BMW"), page=7)
        store.set_filters(state.filters.with_changes(make="AUDI"))
        assert bmw_view.kpis.total == 5
        assert bmw_view.page.page == 1
        assert store.view().kpis.total == 20

    def test_concurrent_filtered_calls_do_not_leak(self):
        store = DashboardStore()
        store.run_load(load_from_file, TWENTY_FIVE_CSV.encode("utf-8"), name="25.csv")
        state = store.state
        specs = [state.filters.with_changes(make=m) for m in ("AUDI", "BMW")] * 50

        def run(spec):
            store.set_filters(spec)
            return spec.make, set(store.filtered_for(store.state, spec)["make"])

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(run, specs))
        assert all(makes == {make} for make, makes in results)

    def test_filtered_memo_is_keyed_by_dataset_version(self):
        store = DashboardStore()
        store.run_load(load_from_file, SAMPLE_CSV.encode("utf-8"), name="a.csv")
        spec = FilterSpec()
        first = store.filtered(spec)
        assert store.filtered(spec) is first
        store.run_load(load_from_file, UPLOAD_CSV.encode("utf-8"), name="b.csv")
        assert len(store.filtered(spec)) == 1
