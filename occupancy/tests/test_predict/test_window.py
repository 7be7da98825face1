"""Tests for the rolling historical window."""

import json
from datetime import date
from pathlib import Path

import pytest

from occupancy.models.observation import HistoricalWindow, Observation, TimeOfDay
from occupancy.predict.window import (
    PopulatedWeek,
    SparseWeek,
    UnexpectedPayloadError,
    WindowStateError,
    build_window,
    decode_day_payload,
    decode_week_payload,
    ensure_window,
    load_window,
    merge_week,
    needs_prediction,
    save_window,
    window_is_current,
    window_summary,
)
from occupancy.store.paths import StorePaths

FIXTURE_DIR = Path(__file__).parent.parent / "fixtures"


class FakeStore:
    """In-memory stand-in for RemoteStore.get, recording requested paths."""

    def __init__(self, data: dict):
        self.data = data
        self.calls: list[str] = []

    async def get(self, path: str):
        self.calls.append(path)
        return self.data.get(path)


@pytest.fixture
def week_array() -> list:
    with open(FIXTURE_DIR / "week_array.json") as f:
        return json.load(f)


@pytest.fixture
def week_object() -> dict:
    with open(FIXTURE_DIR / "week_object.json") as f:
        return json.load(f)


def _series(week, weeks_away=0) -> list[list[Observation]]:
    per_weekday: list[list[Observation]] = [[] for _ in range(7)]
    merge_week(per_weekday, week, weeks_away)
    return per_weekday


class TestDecodeWeek:
    def test_array_is_populated(self, week_array):
        week = decode_week_payload(week_array)
        assert isinstance(week, PopulatedWeek)
        assert week.day(1) == {"1800": 80}
        assert week.day(2) is None

    def test_object_is_sparse(self, week_object):
        week = decode_week_payload(week_object)
        assert isinstance(week, SparseWeek)
        assert week.day(0) == {"0900": 20, "0930": 35}
        assert week.day(6) is None

    def test_null_is_empty(self):
        week = decode_week_payload(None)
        assert week == SparseWeek()
        assert all(not s for s in _series(week))

    def test_short_array(self):
        assert decode_week_payload([{"0900": 1}]).day(5) is None

    def test_shapes_normalize_identically(self, week_array, week_object):
        from_array = _series(decode_week_payload(week_array), weeks_away=1)
        from_object = _series(decode_week_payload(week_object), weeks_away=1)
        assert from_array == from_object
        assert from_array[0] == [
            Observation(TimeOfDay(900), 20, 1),
            Observation(TimeOfDay(930), 35, 1),
        ]

    @pytest.mark.parametrize("raw", ["oops", 42, True])
    def test_unexpected_week_shape(self, raw):
        with pytest.raises(UnexpectedPayloadError):
            decode_week_payload(raw)

    def test_unexpected_weekday_key(self):
        with pytest.raises(UnexpectedPayloadError):
            decode_week_payload({"monday": {"0900": 10}})


class TestDecodeDay:
    def test_samples(self):
        assert decode_day_payload({"0700": 10, "1845": 95}) == [
            (TimeOfDay(700), 10),
            (TimeOfDay(1845), 95),
        ]

    def test_null_day(self):
        assert decode_day_payload(None) == []

    @pytest.mark.parametrize(
        "raw",
        [
            [10, 20],
            {"9:30": 10},
            {"0930": "10"},
            {"0930": 10.5},
            {"0930": True},
            {"0930": None},
        ],
    )
    def test_unexpected_day_shape(self, raw):
        with pytest.raises(UnexpectedPayloadError):
            decode_day_payload(raw)


class TestBuildWindow:
    @pytest.mark.asyncio
    async def test_fetches_preceding_weeks(self, week_array, week_object):
        paths = StorePaths()
        store = FakeStore({
            "rs_data/data/2024-01-08": week_array,
            "rs_data/data/2024-01-01": week_object,
        })
        window = await build_window(store, paths, weeks=3, today=date(2024, 1, 17))

        assert window.for_date == date(2024, 1, 15)
        assert store.calls == [
            "rs_data/data/2024-01-08",
            "rs_data/data/2024-01-01",
            "rs_data/data/2023-12-25",
        ]
        assert [o.weeks_away for o in window.series(0)] == [0, 0, 1, 1]
        assert window.series(6) == ()
        assert window.last_predicted is None

    @pytest.mark.asyncio
    async def test_bad_payload_is_fatal(self):
        store = FakeStore({"rs_data/data/2024-01-08": "garbage"})
        with pytest.raises(UnexpectedPayloadError):
            await build_window(store, StorePaths(), weeks=1, today=date(2024, 1, 15))


class TestPersistence:
    def test_missing_file(self, tmp_path):
        assert load_window(tmp_path / "window.json") is None

    def test_round_trip(self, tmp_path):
        window = HistoricalWindow(
            for_date=date(2024, 1, 15),
            per_weekday=((Observation(TimeOfDay(900), 20, 0),),) + ((),) * 6,
            last_predicted=date(2024, 1, 16),
        )
        path = tmp_path / "state" / "window.json"
        save_window(window, path)
        assert load_window(path) == window
        assert not path.with_name("window.json.tmp").exists()

    @pytest.mark.parametrize("content", ["not json", "{}", '{"for_date": "yesterday"}'])
    def test_corrupt_file(self, tmp_path, content):
        path = tmp_path / "window.json"
        path.write_text(content)
        with pytest.raises(WindowStateError):
            load_window(path)


class TestRefreshPolicy:
    def test_current_within_same_week(self):
        window = HistoricalWindow.empty(date(2024, 1, 15))
        assert window_is_current(window, date(2024, 1, 21))
        assert not window_is_current(window, date(2024, 1, 22))

    def test_needs_prediction(self):
        window = HistoricalWindow.empty(date(2024, 1, 15))
        assert needs_prediction(window, date(2024, 1, 16))
        marked = window.with_last_predicted(date(2024, 1, 16))
        assert not needs_prediction(marked, date(2024, 1, 16))
        assert needs_prediction(marked, date(2024, 1, 17))

    @pytest.mark.asyncio
    async def test_ensure_window_is_idempotent_within_week(self, tmp_path, week_array):
        state = tmp_path / "window.json"
        store = FakeStore({"rs_data/data/2024-01-08": week_array})

        first = await ensure_window(store, StorePaths(), state, 2, date(2024, 1, 16))
        written = state.read_bytes()
        assert len(store.calls) == 2

        second = await ensure_window(store, StorePaths(), state, 2, date(2024, 1, 18))
        assert second == first
        assert state.read_bytes() == written
        assert len(store.calls) == 2

    @pytest.mark.asyncio
    async def test_ensure_window_rebuilds_next_week(self, tmp_path):
        state = tmp_path / "window.json"
        save_window(
            HistoricalWindow.empty(date(2024, 1, 8)).with_last_predicted(date(2024, 1, 14)),
            state,
        )
        store = FakeStore({})

        window = await ensure_window(store, StorePaths(), state, 1, date(2024, 1, 15))
        assert window.for_date == date(2024, 1, 15)
        assert window.last_predicted is None
        assert store.calls == ["rs_data/data/2024-01-08"]
        assert load_window(state) == window


def test_window_summary():
    window = HistoricalWindow(
        for_date=date(2024, 1, 15),
        per_weekday=(
            (Observation(TimeOfDay(900), 20, 1), Observation(TimeOfDay(930), 30, 0)),
        ) + ((),) * 6,
    )
    summary = window_summary(window)
    assert summary["for_date"] == "2024-01-15"
    assert summary["last_predicted"] is None
    assert summary["weekdays"][0] == {"weekday": "Monday", "observations": 2, "weeks": [0, 1]}
    assert summary["weekdays"][6]["observations"] == 0
