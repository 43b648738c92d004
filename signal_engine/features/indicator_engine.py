"""
Indicator Engine
================
Technical indicators computed from an asset's price/volume history.

Only closing prices are available, so indicators that normally need OHLC
data (ATR, ADX, CCI, MFI, Stochastic, Williams %R) use a close-only
approximation: high = low = typical price = close.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging
import math

import numpy as np
import pandas as pd

from ..data.time_series import SeriesSnapshot

logger = logging.getLogger(__name__)


@dataclass
class IndicatorSet:
    """Latest indicator values for one asset. A value is None until enough history exists."""
    symbol: str
    values: Dict[str, Optional[float]]
    history_length: int
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)

    def __getitem__(self, name: str) -> Optional[float]:
        return self.values.get(name)

    def get(self, name: str, default: Optional[float] = None) -> Optional[float]:
        value = self.values.get(name)
        return default if value is None else value

    @property
    def missing(self) -> List[str]:
        return [name for name, value in self.values.items() if value is None]

    def to_dict(self) -> dict:
        return dict(self.values)


class TechnicalIndicators:
    """Classic technical indicators over pandas Series."""

    @staticmethod
    def sma(prices: pd.Series, period: int) -> pd.Series:
        """Simple Moving Average."""
        return prices.rolling(window=period).mean()

    @staticmethod
    def ema(prices: pd.Series, period: int) -> pd.Series:
        """Exponential Moving Average seeded with the SMA of the first `period` values."""
        valid = prices.dropna()
        if len(valid) < period:
            return pd.Series(np.nan, index=prices.index)

        seeded = valid.iloc[period - 1:].copy()
        seeded.iloc[0] = valid.iloc[:period].mean()
        return seeded.ewm(span=period, adjust=False).mean().reindex(prices.index)

    @staticmethod
    def rsi(prices: pd.Series, period: int = 14) -> pd.Series:
        """
        Relative Strength Index from simple averages of gains and losses.

        No losses in the window gives 100; a perfectly flat window gives 50.
        """
        delta = prices.diff()
        gain = delta.clip(lower=0)
        loss = -delta.clip(upper=0)

        avg_gain = gain.rolling(window=period).mean()
        avg_loss = loss.rolling(window=period).mean()

        rs = avg_gain / avg_loss.replace(0, np.nan)
        rsi = 100 - (100 / (1 + rs))
        rsi = rsi.mask((avg_loss == 0) & (avg_gain > 0), 100.0)
        rsi = rsi.mask((avg_loss == 0) & (avg_gain == 0), 50.0)
        return rsi

    @staticmethod
    def macd(prices: pd.Series, fast: int = 12, slow: int = 26,
             signal: int = 9) -> Dict[str, pd.Series]:
        """MACD line, signal line (EMA of the MACD series) and histogram."""
        macd_line = TechnicalIndicators.ema(prices, fast) - TechnicalIndicators.ema(prices, slow)
        signal_line = TechnicalIndicators.ema(macd_line, signal)
        histogram = macd_line - signal_line

        return {
            'macd': macd_line,
            'signal': signal_line,
            'histogram': histogram
        }

    @staticmethod
    def bollinger_bands(prices: pd.Series, period: int = 20,
                        num_std: float = 2.0) -> Dict[str, pd.Series]:
        """Bollinger Bands using the population standard deviation of the window."""
        middle = prices.rolling(window=period).mean()
        std = prices.rolling(window=period).std(ddof=0)

        upper = middle + (std * num_std)
        lower = middle - (std * num_std)
        band_range = upper - lower

        return {
            'upper': upper,
            'middle': middle,
            'lower': lower,
            'width': band_range / middle,
            'percent_b': ((prices - lower) / band_range.replace(0, np.nan)).fillna(0.5).where(middle.notna())
        }

    @staticmethod
    def stochastic(close: pd.Series, period: int = 14,
                   smoothing: int = 3) -> Dict[str, pd.Series]:
        """Stochastic %K and %D (SMA of %K). A flat range gives %K = 50."""
        lowest_low = close.rolling(window=period).min()
        highest_high = close.rolling(window=period).max()
        price_range = highest_high - lowest_low

        k = 100 * (close - lowest_low) / price_range.replace(0, np.nan)
        k = k.mask((price_range == 0), 50.0)
        d = k.rolling(window=smoothing).mean()

        return {'k': k, 'd': d}

    @staticmethod
    def williams_r(close: pd.Series, period: int = 14) -> pd.Series:
        """Williams %R in [-100, 0]. A flat range gives -50."""
        highest_high = close.rolling(window=period).max()
        lowest_low = close.rolling(window=period).min()
        price_range = highest_high - lowest_low

        wr = -100 * (highest_high - close) / price_range.replace(0, np.nan)
        return wr.mask(price_range == 0, -50.0)

    @staticmethod
    def true_range(close: pd.Series) -> pd.Series:
        """True range with high = low = close, i.e. |close - previous close|."""
        return close.diff().abs()

    @staticmethod
    def atr(close: pd.Series, period: int = 14) -> pd.Series:
        """Average True Range."""
        return TechnicalIndicators.true_range(close).rolling(window=period).mean()

    @staticmethod
    def adx(close: pd.Series, period: int = 14) -> pd.Series:
        """Average Directional Index on close-only moves."""
        up_move = close.diff()
        down_move = -close.diff()

        plus_dm = up_move.where((up_move > down_move) & (up_move > 0), 0.0)
        minus_dm = down_move.where((down_move > up_move) & (down_move > 0), 0.0)
        plus_dm = plus_dm.where(up_move.notna())
        minus_dm = minus_dm.where(down_move.notna())

        atr = TechnicalIndicators.atr(close, period)
        plus_avg = plus_dm.rolling(window=period).mean()
        minus_avg = minus_dm.rolling(window=period).mean()
        plus_di = (100 * plus_avg / atr.replace(0, np.nan)).mask(atr == 0, 0.0)
        minus_di = (100 * minus_avg / atr.replace(0, np.nan)).mask(atr == 0, 0.0)

        di_sum = plus_di + minus_di
        dx = (100 * (plus_di - minus_di).abs() / di_sum.replace(0, np.nan)).mask(di_sum == 0, 0.0)
        return dx.rolling(window=period).mean()

    @staticmethod
    def cci(close: pd.Series, period: int = 20) -> pd.Series:
        """Commodity Channel Index with typical price = close."""
        sma = close.rolling(window=period).mean()
        mean_dev = close.rolling(window=period).apply(
            lambda x: np.mean(np.abs(x - x.mean())), raw=True
        )
        cci = (close - sma) / (0.015 * mean_dev.replace(0, np.nan))
        return cci.mask(mean_dev == 0, 0.0)

    @staticmethod
    def money_flow_index(close: pd.Series, volume: pd.Series, period: int = 14) -> pd.Series:
        """Money Flow Index. No negative flow in the window gives 100."""
        raw_money_flow = close * volume
        direction = close.diff()

        positive_flow = raw_money_flow.where(direction > 0, 0.0).where(direction.notna())
        negative_flow = raw_money_flow.where(direction < 0, 0.0).where(direction.notna())

        positive_mf = positive_flow.rolling(window=period).sum()
        negative_mf = negative_flow.rolling(window=period).sum()

        mfi = 100 - (100 / (1 + positive_mf / negative_mf.replace(0, np.nan)))
        return mfi.mask(negative_mf == 0, 100.0)

    @staticmethod
    def vwap(close: pd.Series, volume: pd.Series, period: int = 20) -> pd.Series:
        """Rolling volume-weighted average price."""
        volume_sum = volume.rolling(window=period).sum()
        return (close * volume).rolling(window=period).sum() / volume_sum.replace(0, np.nan)

    @staticmethod
    def rolling_volatility(log_returns: pd.Series, window: int,
                           periods_per_year: int = 252) -> pd.Series:
        """Annualized standard deviation of log returns."""
        return log_returns.rolling(window=window).std(ddof=1) * math.sqrt(periods_per_year)


class IndicatorEngine:
    """
    Computes the indicator set for an asset.

    Every indicator is computed as soon as its own period is available, so a
    short series yields a partial set with None for the rest.
    """

    def __init__(self, config=None, store=None, periods_per_year: int = 252):
        from ..config import FeatureConfig
        self.config = config or FeatureConfig()
        self.store = store
        self.periods_per_year = periods_per_year

    def compute(self, asset: str) -> IndicatorSet:
        """Indicator set for an asset in the attached store."""
        if self.store is None:
            raise RuntimeError("IndicatorEngine has no TimeSeriesStore attached")
        return self.compute_from_series(self.store.snapshot(asset))

    def compute_from_series(self, series: SeriesSnapshot) -> IndicatorSet:
        frame = self.compute_frame(series)
        if frame.empty:
            values = {name: None for name in self.indicator_names()}
        else:
            values = {name: self._clean(frame[name].iloc[-1]) for name in frame.columns}

        indicator_set = IndicatorSet(
            symbol=series.symbol,
            values=values,
            history_length=len(series),
            timestamp=series.last_timestamp if len(series) else pd.Timestamp.now()
        )

        if len(series) < self.config.min_history:
            logger.debug(
                f"{series.symbol}: {len(series)} points, partial indicators "
                f"({len(indicator_set.missing)} missing)"
            )
        return indicator_set

    def compute_frame(self, series: SeriesSnapshot) -> pd.DataFrame:
        """Full indicator history as a DataFrame indexed like the series."""
        cfg = self.config
        close = pd.Series(series.prices, index=series.timestamps, dtype=float)
        volume = pd.Series(series.volumes, index=series.timestamps, dtype=float)
        log_returns = pd.Series(series.log_returns, index=series.timestamps, dtype=float)

        ti = TechnicalIndicators
        df = pd.DataFrame(index=close.index)
        df['price'] = close

        # =====================================================================
        # TREND
        # =====================================================================

        for period in cfg.sma_periods:
            df[f'sma_{period}'] = ti.sma(close, period)
        for period in cfg.ema_periods:
            df[f'ema_{period}'] = ti.ema(close, period)

        macd = ti.macd(close, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
        df['macd'] = macd['macd']
        df['macd_signal'] = macd['signal']
        df['macd_histogram'] = macd['histogram']

        df['adx'] = ti.adx(close, cfg.adx_period)

        # =====================================================================
        # MOMENTUM / OSCILLATORS
        # =====================================================================

        df['rsi'] = ti.rsi(close, cfg.rsi_period)

        stoch = ti.stochastic(close, cfg.stochastic_period, cfg.stochastic_smoothing)
        df['stoch_k'] = stoch['k']
        df['stoch_d'] = stoch['d']

        df['williams_r'] = ti.williams_r(close, cfg.williams_period)
        df['cci'] = ti.cci(close, cfg.cci_period)

        # =====================================================================
        # VOLATILITY
        # =====================================================================

        bb = ti.bollinger_bands(close, cfg.bollinger_period, cfg.bollinger_std)
        df['bb_upper'] = bb['upper']
        df['bb_middle'] = bb['middle']
        df['bb_lower'] = bb['lower']
        df['bb_width'] = bb['width']
        df['bb_percent_b'] = bb['percent_b']

        df['atr'] = ti.atr(close, cfg.atr_period)
        for window in cfg.volatility_windows:
            df[f'volatility_{window}'] = ti.rolling_volatility(
                log_returns, window, self.periods_per_year
            )

        # =====================================================================
        # VOLUME
        # =====================================================================

        volume_sma = ti.sma(volume, cfg.volume_ma_period)
        df['volume_sma'] = volume_sma
        df['volume_ratio'] = volume / volume_sma.replace(0, np.nan)
        df['vwap'] = ti.vwap(close, volume, cfg.volume_ma_period)
        short_volume = ti.sma(volume, 5)
        df['volume_oscillator'] = (short_volume - volume_sma) / volume_sma.replace(0, np.nan) * 100
        df['mfi'] = ti.money_flow_index(close, volume, cfg.mfi_period)

        return df

    def indicator_names(self) -> List[str]:
        """Names produced by compute_frame, in order."""
        cfg = self.config
        names = ['price']
        names += [f'sma_{p}' for p in cfg.sma_periods]
        names += [f'ema_{p}' for p in cfg.ema_periods]
        names += ['macd', 'macd_signal', 'macd_histogram', 'adx', 'rsi',
                  'stoch_k', 'stoch_d', 'williams_r', 'cci',
                  'bb_upper', 'bb_middle', 'bb_lower', 'bb_width', 'bb_percent_b', 'atr']
        names += [f'volatility_{w}' for w in cfg.volatility_windows]
        names += ['volume_sma', 'volume_ratio', 'vwap', 'volume_oscillator', 'mfi']
        return names

    @staticmethod
    def _clean(value) -> Optional[float]:
        if value is None or pd.isna(value) or not np.isfinite(value):
            return None
        return float(value)
