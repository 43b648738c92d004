"""
Shared pytest fixtures for the signal engine test suite.

Provides synthetic price/volume series and a small, seeded PredictionService
so every test module can exercise the pipeline without hitting the network.
"""

import numpy as np
import pandas as pd
import pytest

from signal_engine.config import SystemConfig
from signal_engine.data.time_series import AssetSeries
from signal_engine.orchestrator import PredictionService


# ---------------------------------------------------------------------------
# Synthetic data generators
# ---------------------------------------------------------------------------


def _make_timestamps(n: int, freq: str = "1h", start: str = "2025-01-06 00:00") -> pd.DatetimeIndex:
    return pd.date_range(start=start, periods=n, freq=freq)


def _random_walk(
    n: int = 300,
    start_price: float = 100.0,
    volatility: float = 0.01,
    seed: int = 42,
    volume_mean: int = 1000,
) -> pd.DataFrame:
    """Geometric random walk with columns price, volume and a naive DatetimeIndex."""
    rng = np.random.default_rng(seed)
    returns = rng.normal(0, volatility, n)
    price = start_price * np.exp(np.cumsum(returns))

    volume = rng.poisson(volume_mean, n).astype(float)
    volume = np.maximum(volume, 1)

    return pd.DataFrame({"price": price, "volume": volume}, index=_make_timestamps(n))


def _snapshot(prices, volumes=None, symbol: str = "ETH", capacity: int = 1000):
    """SeriesSnapshot built by appending ticks one hour apart."""
    prices = list(prices)
    if volumes is None:
        volumes = [1000.0] * len(prices)
    series = AssetSeries(symbol, capacity=capacity)
    for ts, price, volume in zip(_make_timestamps(len(prices)), prices, volumes):
        series.append(price, volume, ts)
    return series.snapshot()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def random_walk_df() -> pd.DataFrame:
    return _random_walk()


@pytest.fixture()
def make_snapshot():
    """Factory fixture: make_snapshot(prices, volumes=None, symbol='ETH')."""
    return _snapshot


@pytest.fixture()
def random_walk_snapshot():
    df = _random_walk(n=300, seed=7)
    return _snapshot(df["price"], df["volume"])


@pytest.fixture()
def engine_config() -> SystemConfig:
    """Seeded synthetic configuration with no waiting between retries or cycles."""
    config = SystemConfig()
    config.data.synthetic_seed = 11
    config.data.history_periods = 120
    config.data.update_frequency_seconds = 0
    config.data.retry_base_delay = 0.0
    config.monitoring.alert_channels = []
    return config


@pytest.fixture()
def service(engine_config):
    """Initialized PredictionService over synthetic data."""
    svc = PredictionService(engine_config)
    svc.initialize()
    yield svc
    svc.shutdown()
