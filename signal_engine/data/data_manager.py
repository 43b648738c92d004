"""
Data Module
===========
Market data acquisition for the engine: historical series and realtime quotes.

Every provider call carries a timeout and bounded retries. On failure the
manager falls back to a synthetic generator seeded by the asset's configured
base price, volatility and drift, and counts the failure against the asset.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
import logging
import math
import threading
import time

import numpy as np
import pandas as pd
import yfinance as yf

from ..exceptions import ExternalFetchTimeout

logger = logging.getLogger(__name__)


@dataclass
class MarketQuote:
    """Realtime quote for one asset."""
    symbol: str
    price: float
    volume: float
    change_24h: float = 0.0
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)
    source: str = ""

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'price': self.price,
            'volume': self.volume,
            'change_24h': self.change_24h,
            'timestamp': self.timestamp.isoformat(),
            'source': self.source
        }


class DataSource(ABC):
    """Abstract base class for market data providers."""

    name = "abstract"

    @abstractmethod
    def get_historical_series(self, asset: str, periods: int) -> pd.DataFrame:
        """Return `periods` rows with columns price, volume and a timestamp index."""
        pass

    @abstractmethod
    def get_realtime_quote(self, asset: str) -> MarketQuote:
        """Return the latest quote for an asset."""
        pass


class YFinanceSource(DataSource):
    """Yahoo Finance data source. Crypto symbols map to their USD pairs."""

    name = "yfinance"

    def __init__(self, interval: str = "1h"):
        self.interval = interval

    def get_historical_series(self, asset: str, periods: int) -> pd.DataFrame:
        ticker = yf.Ticker(self._convert_symbol(asset))
        # Hourly bars; ask for enough days to cover the requested periods
        days = max(2, math.ceil(periods / 24) + 1)
        df = ticker.history(period=f"{min(days, 729)}d", interval=self.interval)

        if df is None or df.empty:
            raise ValueError(f"No history returned for {asset}")

        df = df.rename(columns={'Close': 'price', 'Volume': 'volume'})
        return df[['price', 'volume']].tail(periods)

    def get_realtime_quote(self, asset: str) -> MarketQuote:
        ticker = yf.Ticker(self._convert_symbol(asset))
        info = ticker.info

        price = info.get('regularMarketPrice', info.get('currentPrice'))
        if price is None:
            raise ValueError(f"No quote returned for {asset}")

        return MarketQuote(
            symbol=asset,
            price=float(price),
            volume=float(info.get('volume24Hr', info.get('volume', 0)) or 0),
            change_24h=float(info.get('regularMarketChangePercent', 0) or 0),
            source=self.name
        )

    def _convert_symbol(self, asset: str) -> str:
        """Convert symbol to Yahoo Finance format."""
        if '-' in asset or asset.startswith('^'):
            return asset
        return f"{asset}-USD"


class SyntheticDataSource(DataSource):
    """
    Synthetic generator used as the fallback provider and in offline mode.

    History is geometric Brownian motion driven by the configured annual
    drift and volatility. Realtime quotes continue from the last price with
    a small random walk pulled back toward the base price.
    """

    name = "synthetic"

    def __init__(self, config=None, seed: Optional[int] = None):
        from ..config import DataConfig
        self.config = config or DataConfig()
        self.rng = np.random.default_rng(seed if seed is not None else self.config.synthetic_seed)
        self._last_prices: Dict[str, float] = {}
        self._reference_prices: Dict[str, float] = {}
        self._lock = threading.Lock()

    def get_historical_series(self, asset: str, periods: int) -> pd.DataFrame:
        base_price = self.config.base_price_for(asset)
        sigma = self.config.volatility_for(asset)
        mu = self.config.drift_for(asset)
        dt = 1.0 / self.config.periods_per_year

        with self._lock:
            shocks = self.rng.standard_normal(periods)
            volume_noise = self.rng.uniform(0.5, 1.5, periods)

        # GBM in log space
        increments = (mu - 0.5 * sigma ** 2) * dt + sigma * math.sqrt(dt) * shocks
        increments[0] = 0.0
        prices = base_price * np.exp(np.cumsum(increments))
        volumes = self.config.volume_for(asset) * volume_noise

        step = timedelta(seconds=max(1, self.config.update_frequency_seconds))
        end = pd.Timestamp.now().floor('s') - step
        index = pd.date_range(end=end, periods=periods, freq=step)

        self.anchor(asset, float(prices[-1]))
        return pd.DataFrame({'price': prices, 'volume': volumes}, index=index)

    def get_realtime_quote(self, asset: str) -> MarketQuote:
        base_price = self.config.base_price_for(asset)
        sigma = self.config.volatility_for(asset)

        with self._lock:
            last = self._last_prices.get(asset, base_price)
            random_walk = (self.rng.random() - 0.5) * sigma * 0.02
            mean_reversion = (base_price - last) / last * 0.001
            price = max(last * (1 + random_walk + mean_reversion), 1e-8)
            volume = self.config.volume_for(asset) * self.rng.uniform(0.5, 1.5)

            self._last_prices[asset] = price
            reference = self._reference_prices.setdefault(asset, last)

        return MarketQuote(
            symbol=asset,
            price=price,
            volume=volume,
            change_24h=(price / reference - 1) * 100,
            source=self.name
        )

    def anchor(self, asset: str, price: float):
        """Continue the random walk from a known price."""
        if price > 0:
            with self._lock:
                self._last_prices[asset] = price
                self._reference_prices.setdefault(asset, price)


@dataclass
class CacheEntry:
    """Cache entry with expiration."""
    data: Any
    timestamp: datetime
    ttl_seconds: int

    def is_expired(self) -> bool:
        return datetime.now() - self.timestamp > timedelta(seconds=self.ttl_seconds)


class QuoteCache:
    """Thread-safe last-known quote cache."""

    def __init__(self, ttl_seconds: int = 60):
        self.ttl_seconds = ttl_seconds
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def get(self, key: str, allow_expired: bool = False) -> Optional[MarketQuote]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if entry.is_expired() and not allow_expired:
                return None
            return entry.data

    def set(self, key: str, quote: MarketQuote):
        with self._lock:
            self._cache[key] = CacheEntry(
                data=quote,
                timestamp=datetime.now(),
                ttl_seconds=self.ttl_seconds
            )

    def clear(self):
        with self._lock:
            self._cache.clear()


@dataclass
class DataMetrics:
    """Track data fetch performance."""
    total_requests: int = 0
    failed_requests: int = 0
    timeouts: int = 0
    fallbacks: int = 0
    avg_fetch_time_ms: float = 0.0
    last_fetch_time: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 100.0
        return (1 - self.failed_requests / self.total_requests) * 100


class RateLimiter:
    """Sliding-window limit on requests to one provider."""

    def __init__(self, max_requests: int = 30, window_seconds: float = 60.0):
        self.max_requests = int(max_requests)
        self.window_seconds = float(window_seconds)
        self.requests: List[float] = []
        self.throttled = 0
        self._lock = threading.Lock()

    def _prune(self, now: float):
        self.requests = [t for t in self.requests if now - t < self.window_seconds]

    def can_request(self) -> bool:
        with self._lock:
            self._prune(time.monotonic())
            return len(self.requests) < self.max_requests

    def record_request(self):
        with self._lock:
            self.requests.append(time.monotonic())

    def wait_time(self) -> float:
        """Returns seconds to wait before next request."""
        with self._lock:
            now = time.monotonic()
            self._prune(now)
            if len(self.requests) < self.max_requests:
                return 0.0
            return max(0.0, self.requests[0] + self.window_seconds - now)

    def acquire(self) -> float:
        """Block until a request is allowed, record it, and return the seconds waited."""
        waited = 0.0
        while True:
            with self._lock:
                now = time.monotonic()
                self._prune(now)
                if len(self.requests) < self.max_requests:
                    self.requests.append(now)
                    if waited:
                        self.throttled += 1
                    return waited
                wait = self.requests[0] + self.window_seconds - now
            time.sleep(max(wait, 0.0))
            waited += max(wait, 0.0)

    def get_status(self) -> Dict:
        with self._lock:
            self._prune(time.monotonic())
            return {
                'max_requests': self.max_requests,
                'window_seconds': self.window_seconds,
                'recent_requests': len(self.requests),
                'throttled': self.throttled,
            }


class DataManager:
    """
    Coordinates market data for the engine.

    Responsibilities:
    - Fetch history and quotes from the primary provider with timeout/retry
    - Fall back to synthetic data on failure
    - Track per-asset failures and mark repeatedly failing assets degraded
    """

    def __init__(self, config=None, primary: Optional[DataSource] = None,
                 fallback: Optional[DataSource] = None):
        from ..config import DataConfig, DataMode
        self.config = config or DataConfig()

        if primary is None:
            if self.config.mode == DataMode.LIVE:
                primary = YFinanceSource()
            else:
                primary = SyntheticDataSource(self.config)
        self.primary_source = primary
        self.fallback_source = fallback or SyntheticDataSource(self.config)

        self.cache = QuoteCache(self.config.quote_ttl_seconds)
        self.metrics = DataMetrics()

        # Per-source request spacing
        self.rate_limiters: Dict[str, RateLimiter] = {
            name: RateLimiter(*limit) for name, limit in self.config.rate_limits.items()
        }

        # Per-asset failure tracking
        self.error_counts: Dict[str, int] = {}
        self._degraded_since: Dict[str, float] = {}
        self._lock = threading.Lock()

        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="market-data")

    # =====================================================================
    # Fetch plumbing
    # =====================================================================

    def _call_with_timeout(self, asset: str, operation: str, func: Callable, *args):
        """Run a provider call in a worker thread, bounded by the fetch timeout."""
        timeout = self.config.fetch_timeout_seconds
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout:
            future.cancel()
            with self._lock:
                self.metrics.timeouts += 1
            raise ExternalFetchTimeout(asset, operation, timeout)

    def _fetch_with_retry(self, asset: str, source: DataSource, operation: str, *args):
        """Execute fetch with exponential backoff retry, spaced by the source's rate limit."""
        func = getattr(source, operation)
        limiter = self.rate_limiters.get(source.name)
        last_error: Optional[Exception] = None
        attempts = self.config.max_retries + 1

        for attempt in range(attempts):
            if limiter is not None:
                waited = limiter.acquire()
                if waited:
                    logger.warning(f"Rate limit hit for {source.name}, waited {waited:.1f}s")
            start_time = time.time()
            with self._lock:
                self.metrics.total_requests += 1
            try:
                result = self._call_with_timeout(asset, operation, func, *args)
                self._update_fetch_time((time.time() - start_time) * 1000)
                return result
            except Exception as e:
                last_error = e
                with self._lock:
                    self.metrics.failed_requests += 1
                if attempt < attempts - 1:
                    delay = self.config.retry_base_delay * (2 ** attempt)
                    logger.warning(
                        f"{operation} attempt {attempt + 1} for {asset} failed: {e}. "
                        f"Retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)

        raise last_error

    def _update_fetch_time(self, fetch_time_ms: float):
        """Update rolling average fetch time."""
        with self._lock:
            self.metrics.last_fetch_time = datetime.now()
            if self.metrics.avg_fetch_time_ms == 0:
                self.metrics.avg_fetch_time_ms = fetch_time_ms
            else:
                self.metrics.avg_fetch_time_ms = (
                    0.9 * self.metrics.avg_fetch_time_ms + 0.1 * fetch_time_ms
                )

    # =====================================================================
    # Failure tracking
    # =====================================================================

    def _record_success(self, asset: str):
        with self._lock:
            self.error_counts[asset] = 0
            if self._degraded_since.pop(asset, None) is not None:
                logger.info(f"{asset} recovered, no longer degraded")

    def _record_failure(self, asset: str, error: Exception):
        with self._lock:
            self.error_counts[asset] = self.error_counts.get(asset, 0) + 1
            count = self.error_counts[asset]
            threshold = self.config.max_consecutive_failures
            if count >= threshold and asset not in self._degraded_since:
                self._degraded_since[asset] = time.monotonic()
                logger.error(f"{asset} marked degraded after {count} consecutive failures: {error}")

    def is_degraded(self, asset: str) -> bool:
        with self._lock:
            return asset in self._degraded_since

    def should_skip(self, asset: str) -> bool:
        """Degraded assets are skipped until the retry window has elapsed."""
        with self._lock:
            since = self._degraded_since.get(asset)
        if since is None:
            return False
        return time.monotonic() - since < self.config.degraded_retry_seconds

    def reset(self, asset: str):
        """Clear failure state for an asset."""
        with self._lock:
            self.error_counts.pop(asset, None)
            self._degraded_since.pop(asset, None)

    def degraded_assets(self) -> List[str]:
        with self._lock:
            return sorted(self._degraded_since)

    # =====================================================================
    # Public API
    # =====================================================================

    def load_history(self, asset: str, periods: Optional[int] = None) -> pd.DataFrame:
        """Load historical series for an asset, falling back to synthetic data."""
        periods = periods or self.config.history_periods
        try:
            df = self._fetch_with_retry(
                asset, self.primary_source, "get_historical_series", asset, periods
            )
            self._record_success(asset)
            logger.info(f"Fetched {len(df)} rows for {asset} from {self.primary_source.name}")
        except Exception as e:
            self._record_failure(asset, e)
            logger.warning(f"Primary source failed for {asset}: {e}. Using {self.fallback_source.name}")
            with self._lock:
                self.metrics.fallbacks += 1
            df = self.fallback_source.get_historical_series(asset, periods)

        df = self._clean_data(df)
        if not df.empty and isinstance(self.fallback_source, SyntheticDataSource):
            self.fallback_source.anchor(asset, float(df['price'].iloc[-1]))
        return df

    def get_quote(self, asset: str) -> MarketQuote:
        """Latest quote; synthetic or last-known data on provider failure."""
        try:
            quote = self._fetch_with_retry(
                asset, self.primary_source, "get_realtime_quote", asset
            )
            self._record_success(asset)
            self.cache.set(asset, quote)
            if isinstance(self.fallback_source, SyntheticDataSource):
                self.fallback_source.anchor(asset, quote.price)
            return quote
        except Exception as e:
            self._record_failure(asset, e)
            logger.warning(f"Realtime fetch failed for {asset}: {e}")
            with self._lock:
                self.metrics.fallbacks += 1

        try:
            return self.fallback_source.get_realtime_quote(asset)
        except Exception as e:
            last_known = self.cache.get(asset, allow_expired=True)
            if last_known is not None:
                logger.warning(f"Fallback failed for {asset} ({e}), using last-known quote")
                return last_known
            raise

    def _clean_data(self, df: pd.DataFrame) -> pd.DataFrame:
        """Clean and validate a price/volume frame."""
        if df.empty:
            return df

        # Provider bars are tz-aware; ticks use naive local time
        if isinstance(df.index, pd.DatetimeIndex) and df.index.tz is not None:
            df = df.tz_convert(datetime.now().astimezone().tzinfo).tz_localize(None)

        df = df[~df.index.duplicated(keep='last')]
        df = df.sort_index()
        df = df.ffill()
        df = df.assign(volume=df['volume'].fillna(0.0))
        df = df[(df['price'] > 0) & (df['volume'] >= 0)]

        return df

    def get_status(self) -> Dict:
        with self._lock:
            return {
                'primary_source': self.primary_source.name,
                'fallback_source': self.fallback_source.name,
                'total_requests': self.metrics.total_requests,
                'failed_requests': self.metrics.failed_requests,
                'timeouts': self.metrics.timeouts,
                'fallbacks': self.metrics.fallbacks,
                'success_rate': self.metrics.success_rate,
                'avg_fetch_time_ms': self.metrics.avg_fetch_time_ms,
                'error_counts': dict(self.error_counts),
                'degraded_assets': sorted(self._degraded_since),
                'rate_limits': {
                    name: limiter.get_status() for name, limiter in self.rate_limiters.items()
                },
            }

    def shutdown(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.cache.clear()
