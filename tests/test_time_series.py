"""
Unit tests for the time series store.

Tests cover:
  - AssetSeries: returns, ring-buffer eviction, rolling volatility warm-up
  - Tick validation: bad prices, volumes and out-of-order or tz-aware timestamps
  - TimeSeriesStore: registration, lookback, seeding, unknown assets
  - SeriesSnapshot immutability
"""

from datetime import datetime
import math

import numpy as np
import pandas as pd
import pytest

from signal_engine.data.time_series import AssetSeries, TimeSeriesStore, to_timestamp
from signal_engine.exceptions import (
    InsufficientHistoryError,
    InvalidTickError,
    UnknownAssetError,
)


def _local_tz():
    return datetime.now().astimezone().tzinfo


# ═══════════════════════════════════════════════════════════════════════════
# AssetSeries
# ═══════════════════════════════════════════════════════════════════════════


class TestAssetSeries:

    def test_first_point_has_no_return(self):
        series = AssetSeries("ETH")
        series.append(100.0, 10.0, 1)
        snap = series.snapshot()
        assert math.isnan(snap.returns[0])
        assert math.isnan(snap.log_returns[0])

    def test_returns_computed_from_previous_price(self):
        series = AssetSeries("ETH")
        series.append(100.0, 10.0, 1)
        series.append(110.0, 10.0, 2)
        snap = series.snapshot()
        assert snap.returns[1] == pytest.approx(0.10)
        assert snap.log_returns[1] == pytest.approx(math.log(1.1))

    def test_capacity_evicts_oldest(self):
        series = AssetSeries("ETH", capacity=5)
        for i in range(8):
            series.append(100.0 + i, 1.0, i + 1)
        snap = series.snapshot()
        assert len(snap) == 5
        assert snap.prices[0] == 103.0
        assert snap.last_price == 107.0

    def test_length_never_shrinks(self):
        series = AssetSeries("ETH", capacity=10)
        lengths = []
        for i in range(25):
            series.append(50.0 + i, 1.0, i + 1)
            lengths.append(len(series))
        assert lengths == sorted(lengths)
        assert max(lengths) == 10

    def test_rolling_volatility_nan_until_window_full(self):
        series = AssetSeries("ETH", volatility_window=3)
        for i, price in enumerate([100.0, 101.0, 99.0]):
            series.append(price, 1.0, i + 1)
        assert math.isnan(series.snapshot().rolling_volatility[-1])

        series.append(102.0, 1.0, 4)
        assert np.isfinite(series.snapshot().rolling_volatility[-1])

    def test_epoch_seconds_timestamp(self):
        assert to_timestamp(0) == pd.Timestamp("1970-01-01")
        assert to_timestamp("2025-01-06") == pd.Timestamp("2025-01-06")

    def test_numpy_epoch_seconds(self):
        assert to_timestamp(np.int64(86400)) == pd.Timestamp("1970-01-02")
        assert to_timestamp(np.float64(3600.0)) == pd.Timestamp("1970-01-01 01:00")

    def test_tz_aware_timestamp_made_naive_local(self):
        ts = to_timestamp("2025-01-01T01:00:00Z")
        expected = pd.Timestamp("2025-01-01T01:00:00Z").tz_convert(_local_tz()).tz_localize(None)
        assert ts.tzinfo is None
        assert ts == expected


class TestTickValidation:

    @pytest.mark.parametrize("price", [0.0, -5.0, float("nan"), float("inf"), "abc", None])
    def test_rejects_bad_price(self, price):
        series = AssetSeries("ETH")
        with pytest.raises(InvalidTickError):
            series.append(price, 1.0, 1)
        assert len(series) == 0

    @pytest.mark.parametrize("volume", [-1.0, float("nan")])
    def test_rejects_bad_volume(self, volume):
        series = AssetSeries("ETH")
        with pytest.raises(InvalidTickError):
            series.append(100.0, volume, 1)

    def test_rejects_non_increasing_timestamp(self):
        series = AssetSeries("ETH")
        series.append(100.0, 1.0, 10)
        with pytest.raises(InvalidTickError):
            series.append(101.0, 1.0, 10)
        with pytest.raises(InvalidTickError):
            series.append(101.0, 1.0, 5)
        assert len(series) == 1
        assert series.last_price == 100.0

    def test_tz_aware_after_naive_accepted(self):
        series = AssetSeries("ETH")
        series.append(100.0, 1.0, pd.Timestamp("2000-01-01 00:00"))
        series.append(101.0, 1.0, "2025-01-01T01:00:00Z")
        assert len(series) == 2
        assert series.last_timestamp.tzinfo is None

    def test_tz_aware_out_of_order_is_invalid_tick(self):
        series = AssetSeries("ETH")
        series.append(100.0, 1.0, "2025-01-01T02:00:00Z")
        with pytest.raises(InvalidTickError):
            series.append(101.0, 1.0, "2025-01-01T01:00:00+00:00")

    @pytest.mark.parametrize("timestamp", ["not a date", float("inf"), float("nan")])
    def test_rejects_bad_timestamp(self, timestamp):
        series = AssetSeries("ETH")
        with pytest.raises(InvalidTickError):
            series.append(100.0, 1.0, timestamp)
        assert len(series) == 0

    def test_invalid_tick_is_value_error(self):
        series = AssetSeries("ETH")
        with pytest.raises(ValueError):
            series.append(-1.0, 1.0, 1)


# ═══════════════════════════════════════════════════════════════════════════
# TimeSeriesStore
# ═══════════════════════════════════════════════════════════════════════════


class TestTimeSeriesStore:

    def _store(self, n: int = 0) -> TimeSeriesStore:
        store = TimeSeriesStore(capacity=100)
        store.register("ETH")
        for i in range(n):
            store.append_tick("ETH", 100.0 + i, 1.0, i + 1)
        return store

    def test_unknown_asset(self):
        store = self._store()
        with pytest.raises(UnknownAssetError):
            store.append_tick("BTC", 100.0, 1.0)
        with pytest.raises(KeyError):
            store.snapshot("BTC")

    def test_register_is_idempotent(self):
        store = self._store(3)
        store.register("ETH")
        assert store.size("ETH") == 3
        assert store.assets() == ["ETH"]

    def test_get_series_requires_two_points(self):
        store = self._store(1)
        with pytest.raises(InsufficientHistoryError):
            store.get_series("ETH")

    def test_lookback(self):
        store = self._store(10)
        snap = store.get_series("ETH", lookback=4)
        assert len(snap) == 4
        assert list(snap.prices) == [106.0, 107.0, 108.0, 109.0]

    def test_lookback_below_minimum(self):
        store = self._store(10)
        with pytest.raises(ValueError):
            store.get_series("ETH", lookback=1)

    def test_snapshot_is_read_only(self):
        store = self._store(5)
        snap = store.snapshot("ETH")
        with pytest.raises(ValueError):
            snap.prices[0] = 1.0

    def test_snapshot_unaffected_by_later_ticks(self):
        store = self._store(5)
        snap = store.snapshot("ETH")
        store.append_tick("ETH", 500.0, 1.0, 100)
        assert len(snap) == 5
        assert store.latest_price("ETH") == 500.0

    def test_seed_skips_invalid_rows(self, random_walk_df):
        df = random_walk_df.head(50).copy()
        df.iloc[10, df.columns.get_loc("price")] = -1.0
        store = self._store()
        stored = store.seed("ETH", df)
        assert stored == 49
        assert store.size("ETH") == 49

    def test_seed_tz_aware_frame(self, random_walk_df):
        df = random_walk_df.head(30).tz_localize("UTC")
        store = self._store()
        assert store.seed("ETH", df) == 30
        snap = store.snapshot("ETH")
        assert snap.last_timestamp.tzinfo is None
        store.append_tick("ETH", 100.0, 1.0, "2030-01-01T00:00:00Z")
        assert store.size("ETH") == 31

    def test_unregister_and_clear(self):
        store = self._store(3)
        store.unregister("ETH")
        assert "ETH" not in store
        store.register("LINK")
        store.clear()
        assert store.assets() == []
