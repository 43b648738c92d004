"""
Time Series Store
=================
Bounded per-asset history of price, volume and returns.

Every AssetSeries is a ring buffer of parallel arrays. A tick is validated
and committed under the series' own lock so readers (which always work on
snapshots) never observe a half-written point.
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from itertools import islice
from typing import Dict, List, Optional, Union
import logging
import math
import numbers
import threading

import numpy as np
import pandas as pd

from ..exceptions import InvalidTickError, InsufficientHistoryError, UnknownAssetError

logger = logging.getLogger(__name__)

TimestampLike = Union[pd.Timestamp, datetime, str, int, float, None]


def to_timestamp(value: TimestampLike) -> pd.Timestamp:
    """Normalize a timestamp; numbers are epoch seconds, None means now."""
    if value is None:
        return pd.Timestamp.now()
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        ts = pd.Timestamp(float(value), unit='s')
    else:
        ts = pd.Timestamp(value)
    if pd.isna(ts):
        raise ValueError("timestamp is NaT")
    # tz-aware input is stored as naive local time
    if ts.tzinfo is not None:
        ts = ts.tz_convert(datetime.now().astimezone().tzinfo).tz_localize(None)
    return ts


@dataclass(frozen=True)
class SeriesSnapshot:
    """Immutable copy of an AssetSeries taken at one instant."""
    symbol: str
    timestamps: pd.DatetimeIndex
    prices: np.ndarray
    volumes: np.ndarray
    returns: np.ndarray
    log_returns: np.ndarray
    rolling_volatility: np.ndarray

    def __len__(self) -> int:
        return len(self.prices)

    @property
    def last_price(self) -> Optional[float]:
        return float(self.prices[-1]) if len(self.prices) else None

    @property
    def last_timestamp(self) -> Optional[pd.Timestamp]:
        return self.timestamps[-1] if len(self.timestamps) else None

    def valid_log_returns(self) -> np.ndarray:
        """Log returns without the leading NaN of the first point."""
        return self.log_returns[~np.isnan(self.log_returns)]

    def valid_returns(self) -> np.ndarray:
        return self.returns[~np.isnan(self.returns)]

    def tail(self, n: int) -> 'SeriesSnapshot':
        """Snapshot restricted to the most recent n points."""
        return SeriesSnapshot(
            symbol=self.symbol,
            timestamps=self.timestamps[-n:],
            prices=self.prices[-n:],
            volumes=self.volumes[-n:],
            returns=self.returns[-n:],
            log_returns=self.log_returns[-n:],
            rolling_volatility=self.rolling_volatility[-n:],
        )

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'price': self.prices,
            'volume': self.volumes,
            'returns': self.returns,
            'log_returns': self.log_returns,
            'rolling_volatility': self.rolling_volatility,
        }, index=self.timestamps)


class AssetSeries:
    """
    Ring buffer of price/volume/return/log-return/rolling-volatility.

    Timestamps are strictly increasing. Once capacity is reached the oldest
    entry is evicted from every array at once.
    """

    def __init__(self, symbol: str, capacity: int = 1000,
                 volatility_window: int = 20, periods_per_year: int = 252):
        if capacity < 2:
            raise ValueError("capacity must be >= 2")
        self.symbol = symbol
        self.capacity = capacity
        self.volatility_window = volatility_window
        self.annualization = math.sqrt(periods_per_year)

        self._timestamps: deque = deque(maxlen=capacity)
        self._prices: deque = deque(maxlen=capacity)
        self._volumes: deque = deque(maxlen=capacity)
        self._returns: deque = deque(maxlen=capacity)
        self._log_returns: deque = deque(maxlen=capacity)
        self._rolling_vol: deque = deque(maxlen=capacity)
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._prices)

    @property
    def last_price(self) -> Optional[float]:
        with self._lock:
            return self._prices[-1] if self._prices else None

    @property
    def last_timestamp(self) -> Optional[pd.Timestamp]:
        with self._lock:
            return self._timestamps[-1] if self._timestamps else None

    def append(self, price: float, volume: float, timestamp: TimestampLike = None):
        """Validate and commit one tick. Raises InvalidTickError on bad input."""
        try:
            price = float(price)
            volume = float(volume)
        except (TypeError, ValueError):
            raise InvalidTickError(self.symbol, f"non-numeric price/volume ({price!r}, {volume!r})")

        if not math.isfinite(price) or price <= 0:
            raise InvalidTickError(self.symbol, f"price must be positive, got {price}")
        if not math.isfinite(volume) or volume < 0:
            raise InvalidTickError(self.symbol, f"volume cannot be negative, got {volume}")

        try:
            ts = to_timestamp(timestamp)
        except (TypeError, ValueError, OverflowError) as e:
            raise InvalidTickError(self.symbol, f"bad timestamp {timestamp!r}: {e}")

        with self._lock:
            try:
                out_of_order = bool(self._timestamps) and ts <= self._timestamps[-1]
            except TypeError as e:
                raise InvalidTickError(self.symbol, f"incomparable timestamp {ts}: {e}")
            if out_of_order:
                raise InvalidTickError(
                    self.symbol,
                    f"timestamp {ts} not after last {self._timestamps[-1]}"
                )

            if self._prices:
                prev = self._prices[-1]
                simple_return = (price - prev) / prev
                log_return = math.log(price / prev)
            else:
                simple_return = math.nan
                log_return = math.nan

            self._timestamps.append(ts)
            self._prices.append(price)
            self._volumes.append(volume)
            self._returns.append(simple_return)
            self._log_returns.append(log_return)
            self._rolling_vol.append(self._current_rolling_volatility())

    def _current_rolling_volatility(self) -> float:
        """Annualized stdev of the latest window of log returns (NaN until full)."""
        recent = [r for r in islice(reversed(self._log_returns), self.volatility_window)
                  if not math.isnan(r)]
        if len(recent) < self.volatility_window:
            return math.nan
        return float(np.std(recent, ddof=1) * self.annualization)

    def snapshot(self) -> SeriesSnapshot:
        with self._lock:
            timestamps = pd.DatetimeIndex(list(self._timestamps))
            arrays = [
                np.array(self._prices, dtype=float),
                np.array(self._volumes, dtype=float),
                np.array(self._returns, dtype=float),
                np.array(self._log_returns, dtype=float),
                np.array(self._rolling_vol, dtype=float),
            ]
        for arr in arrays:
            arr.setflags(write=False)
        return SeriesSnapshot(self.symbol, timestamps, *arrays)


class TimeSeriesStore:
    """Registry of AssetSeries owned by one engine instance."""

    MIN_POINTS = 2

    def __init__(self, capacity: int = 1000, volatility_window: int = 20,
                 periods_per_year: int = 252):
        self.capacity = capacity
        self.volatility_window = volatility_window
        self.periods_per_year = periods_per_year
        self._series: Dict[str, AssetSeries] = {}

    def register(self, asset: str) -> AssetSeries:
        if asset not in self._series:
            self._series[asset] = AssetSeries(
                asset,
                capacity=self.capacity,
                volatility_window=self.volatility_window,
                periods_per_year=self.periods_per_year,
            )
            logger.debug(f"Registered series for {asset} (capacity {self.capacity})")
        return self._series[asset]

    def unregister(self, asset: str):
        self._series.pop(asset, None)

    def clear(self):
        self._series = {}

    def assets(self) -> List[str]:
        return list(self._series.keys())

    def __contains__(self, asset: str) -> bool:
        return asset in self._series

    def _get(self, asset: str) -> AssetSeries:
        try:
            return self._series[asset]
        except KeyError:
            raise UnknownAssetError(asset)

    def append_tick(self, asset: str, price: float, volume: float,
                    timestamp: TimestampLike = None):
        """Append one tick to an asset's series. Raises InvalidTickError on bad input."""
        self._get(asset).append(price, volume, timestamp)

    def seed(self, asset: str, history: pd.DataFrame) -> int:
        """
        Bulk-load history (columns: price, volume; timestamp index).

        Invalid rows are logged and skipped. Returns the number of rows stored.
        """
        series = self._get(asset)
        stored = 0
        skipped = 0
        for ts, row in history.iterrows():
            try:
                series.append(row['price'], row.get('volume', 0.0), ts)
                stored += 1
            except InvalidTickError as e:
                skipped += 1
                logger.debug(str(e))
        if skipped:
            logger.warning(f"Skipped {skipped} invalid history rows for {asset}")
        return stored

    def snapshot(self, asset: str) -> SeriesSnapshot:
        """Snapshot of the whole series, however short."""
        return self._get(asset).snapshot()

    def get_series(self, asset: str, lookback: Optional[int] = None) -> SeriesSnapshot:
        """
        Most recent `lookback` points of an asset.

        Raises InsufficientHistoryError below MIN_POINTS.
        """
        snap = self._get(asset).snapshot()
        if len(snap) < self.MIN_POINTS:
            raise InsufficientHistoryError(asset, self.MIN_POINTS, len(snap))
        if lookback is not None:
            if lookback < self.MIN_POINTS:
                raise ValueError(f"lookback must be >= {self.MIN_POINTS}")
            snap = snap.tail(lookback)
        return snap

    def latest_price(self, asset: str) -> Optional[float]:
        return self._get(asset).last_price

    def size(self, asset: str) -> int:
        return len(self._get(asset))
