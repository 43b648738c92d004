"""
Volatility Model
================
Rolling and forecasted volatility per asset.

Current volatility blends an EWMA estimate with a standard rolling estimate,
weighted by the volatility regime. Forecasts blend a GARCH(1,1) projection,
a technical-indicator multiplier and a regime multiplier.

The GARCH parameters are static (omega=1e-5, alpha=0.1, beta=0.85) and
never fitted to data.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Union
import logging
import math

import numpy as np
import pandas as pd

from ..data.time_series import SeriesSnapshot
from ..exceptions import InsufficientHistoryError
from ..regime.regime_detector import VolatilityRegime

logger = logging.getLogger(__name__)


@dataclass
class VolatilityEstimate:
    """Current volatility for one asset (annualized)."""
    standard: float
    ewma: float
    combined: float
    regime_tag: str
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)

    def to_dict(self) -> dict:
        return {
            'standard': self.standard,
            'ewma': self.ewma,
            'combined': self.combined,
            'regime': self.regime_tag,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass
class VolatilityPrediction:
    """Forecast volatility for a horizon, with the components that produced it."""
    asset: str
    horizon: int
    predicted: float
    confidence: float
    regime: str
    components: Dict[str, Dict[str, float]] = field(default_factory=dict)
    fallback: bool = False
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)

    def to_dict(self) -> dict:
        return {
            'asset': self.asset,
            'horizon': self.horizon,
            'predicted': self.predicted,
            'confidence': self.confidence,
            'regime': self.regime,
            'components': self.components,
            'fallback': self.fallback,
            'timestamp': self.timestamp.isoformat()
        }


class VolatilityCalculator:
    """Volatility estimators over arrays of log returns."""

    @staticmethod
    def standard_volatility(returns: np.ndarray, window: int = 20,
                            periods_per_year: int = 252) -> Optional[float]:
        """Annualized unbiased sample volatility of the last `window` returns."""
        returns = np.asarray(returns, dtype=float)
        if len(returns) < max(window, 2):
            return None
        variance = np.var(returns[-window:], ddof=1)
        return float(math.sqrt(variance * periods_per_year))

    @staticmethod
    def ewma_variance(returns: np.ndarray, lam: float = 0.94) -> Optional[float]:
        """
        RiskMetrics recursion: var_t = lam * var_{t-1} + (1 - lam) * r_t^2.

        Seeded with the first squared return. Returns the per-period variance.
        """
        returns = np.asarray(returns, dtype=float)
        if len(returns) == 0:
            return None

        variance = returns[0] ** 2
        for r in returns[1:]:
            variance = lam * variance + (1 - lam) * r ** 2
        return float(variance)

    @staticmethod
    def ewma_volatility(returns: np.ndarray, lam: float = 0.94,
                        periods_per_year: int = 252) -> Optional[float]:
        variance = VolatilityCalculator.ewma_variance(returns, lam)
        if variance is None:
            return None
        return float(math.sqrt(variance * periods_per_year))

    @staticmethod
    def garch_variance(returns: np.ndarray, omega: float = 1e-5,
                       alpha: float = 0.1, beta: float = 0.85) -> Optional[float]:
        """
        One-step-ahead GARCH(1,1) conditional variance filtered over the returns.

        Seeded with the sample variance of the series.
        """
        returns = np.asarray(returns, dtype=float)
        if len(returns) < 2:
            return None

        variance = float(np.var(returns, ddof=1))
        for r in returns:
            variance = omega + alpha * r ** 2 + beta * variance
        return variance

    @staticmethod
    def garch_forecast(variance: float, horizon: int, omega: float = 1e-5,
                       alpha: float = 0.1, beta: float = 0.85) -> float:
        """Project a per-period variance `horizon` steps ahead."""
        for _ in range(horizon):
            variance = omega + (alpha + beta) * variance
        return variance

    @staticmethod
    def squared_return_autocorrelation(returns: np.ndarray, lag: int = 1) -> Optional[float]:
        """Volatility clustering: autocorrelation of squared returns."""
        returns = np.asarray(returns, dtype=float)
        if len(returns) <= lag + 2:
            return None
        value = pd.Series(returns ** 2).autocorr(lag=lag)
        return None if pd.isna(value) else float(value)


class VolatilityModel:
    """
    Per-asset volatility state owned by one engine.

    Only the estimate history persists between cycles; everything else is
    recomputed from the series snapshot passed to `update`.
    """

    # Multiplier and confidence applied by the regime component
    REGIME_MULTIPLIERS = {
        VolatilityRegime.HIGH_VOLATILITY: (1.35, 0.85),
        VolatilityRegime.LOW_VOLATILITY: (0.8, 0.9),
        VolatilityRegime.DIVERGENT: (1.1, 0.6),
        VolatilityRegime.NORMAL: (1.0, 0.75),
    }

    # Blend weights (garch, technical, regime); GARCH leads in high volatility
    PREDICTION_WEIGHTS = {
        VolatilityRegime.HIGH_VOLATILITY: (0.5, 0.2, 0.3),
        VolatilityRegime.LOW_VOLATILITY: (0.3, 0.4, 0.3),
        VolatilityRegime.DIVERGENT: (0.2, 0.3, 0.5),
        VolatilityRegime.NORMAL: (0.4, 0.3, 0.3),
    }

    VAR_Z_SCORES = {0.90: 1.282, 0.95: 1.645, 0.99: 2.326}
    CVAR_MULTIPLIER = 1.3
    FALLBACK_CONFIDENCE = 0.3

    def __init__(self, config=None, data_config=None):
        from ..config import VolatilityConfig, DataConfig
        self.config = config or VolatilityConfig()
        self.data_config = data_config or DataConfig()
        self.periods_per_year = self.data_config.periods_per_year

        self._history: Dict[str, Deque[VolatilityEstimate]] = {}
        self._series: Dict[str, SeriesSnapshot] = {}
        self._error_counts: Dict[str, int] = {}

    # =====================================================================
    # Current volatility
    # =====================================================================

    def ewma_weight(self, regime: VolatilityRegime) -> float:
        return self.config.regime_ewma_weights.get(regime.value, 0.5)

    def compute_estimate(self, series: SeriesSnapshot,
                         regime: VolatilityRegime = VolatilityRegime.NORMAL) -> VolatilityEstimate:
        """Estimate current volatility. Raises InsufficientHistoryError on a short series."""
        returns = series.valid_log_returns()
        window = self.config.window
        if len(returns) < window:
            raise InsufficientHistoryError(series.symbol, window + 1, len(series))

        standard = VolatilityCalculator.standard_volatility(returns, window, self.periods_per_year)
        ewma = VolatilityCalculator.ewma_volatility(returns, self.config.ewma_lambda, self.periods_per_year)

        w = self.ewma_weight(regime)
        combined = w * ewma + (1 - w) * standard

        return VolatilityEstimate(
            standard=standard,
            ewma=ewma,
            combined=combined,
            regime_tag=regime.value,
            timestamp=series.last_timestamp
        )

    def update(self, asset: str, series: SeriesSnapshot,
               regime: VolatilityRegime = VolatilityRegime.NORMAL) -> Optional[VolatilityEstimate]:
        """
        Record a new estimate for an asset.

        Returns None when history is too short or the asset is being skipped
        after repeated failures.
        """
        if self.is_skipped(asset):
            logger.debug(f"Skipping volatility update for {asset} after repeated errors")
            return None

        try:
            estimate = self.compute_estimate(series, regime)
        except InsufficientHistoryError as e:
            logger.debug(f"Volatility unavailable: {e}")
            self._series[asset] = series
            return None
        except Exception as e:
            count = self._error_counts.get(asset, 0) + 1
            self._error_counts[asset] = count
            logger.warning(f"Volatility update failed for {asset} ({count} errors): {e}")
            if count > self.config.max_error_count:
                logger.error(f"{asset} exceeded {self.config.max_error_count} volatility errors, skipping")
            return None

        history = self._history.setdefault(asset, deque(maxlen=self.config.history_length))
        last = history[-1] if history else None
        if last is not None and last.timestamp == estimate.timestamp:
            # No new ticks since the last estimate
            history[-1] = estimate
        else:
            history.append(estimate)

        self._series[asset] = series
        self._error_counts[asset] = 0
        return estimate

    def is_skipped(self, asset: str) -> bool:
        return self._error_counts.get(asset, 0) > self.config.max_error_count

    def reset_errors(self, asset: str):
        self._error_counts.pop(asset, None)

    def get_realtime_volatility(self, asset: str) -> Optional[VolatilityEstimate]:
        history = self._history.get(asset)
        return history[-1] if history else None

    def get_volatility_trend(self, asset: str, periods: int = 24) -> List[VolatilityEstimate]:
        history = self._history.get(asset)
        if not history:
            return []
        return list(history)[-periods:]

    def latest_combined(self) -> Dict[str, Optional[float]]:
        """Snapshot of each asset's latest combined volatility."""
        return {
            asset: (history[-1].combined if history else None)
            for asset, history in list(self._history.items())
        }

    def historical_max(self, asset: str) -> Optional[float]:
        history = self._history.get(asset)
        if not history:
            return None
        return max(e.combined for e in history)

    # =====================================================================
    # Forecasts
    # =====================================================================

    def predict_volatility(self, asset: str, horizon: int = 1, indicators=None,
                           regime: Union[VolatilityRegime, None] = None,
                           series: Optional[SeriesSnapshot] = None,
                           estimate: Optional[VolatilityEstimate] = None,
                           historical_max: Optional[float] = None) -> VolatilityPrediction:
        """
        Forecast annualized volatility `horizon` periods ahead.

        Uses the latest recorded series and estimate unless a captured
        `series` / `estimate` / `historical_max` is passed in.

        Never raises for data problems: short history gives a fallback based
        on the asset's configured base volatility.
        """
        if horizon < 0:
            raise ValueError(f"horizon must be non-negative, got {horizon}")

        regime = regime or VolatilityRegime.NORMAL
        latest = estimate if estimate is not None else self.get_realtime_volatility(asset)
        if series is None:
            series = self._series.get(asset)
        if latest is None or series is None:
            return self.fallback_prediction(asset, horizon)

        try:
            components = {
                'garch': self._garch_component(series, horizon),
                'technical': self._technical_component(latest.combined, indicators),
                'regime': self._regime_component(latest.combined, regime),
            }
        except Exception as e:
            logger.warning(f"Volatility prediction failed for {asset}: {e}")
            return self.fallback_prediction(asset, horizon)

        weights = dict(zip(('garch', 'technical', 'regime'), self.PREDICTION_WEIGHTS[regime]))
        predicted = sum(weights[name] * c['volatility'] for name, c in components.items())
        confidence = sum(weights[name] * c['confidence'] for name, c in components.items())

        # Clamp to a sane multiple of what this asset has actually shown
        if historical_max is None:
            historical_max = self.historical_max(asset) or latest.combined
        cap = historical_max * self.config.prediction_cap_multiple
        predicted = float(min(max(predicted, 0.0), cap))

        for name, weight in weights.items():
            components[name]['weight'] = weight

        return VolatilityPrediction(
            asset=asset,
            horizon=horizon,
            predicted=predicted,
            confidence=float(min(confidence, 1.0)),
            regime=regime.value,
            components=components,
            timestamp=latest.timestamp
        )

    def fallback_prediction(self, asset: str, horizon: int) -> VolatilityPrediction:
        """Low-confidence forecast tied to the asset's configured base volatility."""
        return VolatilityPrediction(
            asset=asset,
            horizon=horizon,
            predicted=self.data_config.volatility_for(asset),
            confidence=self.FALLBACK_CONFIDENCE,
            regime=VolatilityRegime.NORMAL.value,
            fallback=True
        )

    def _garch_component(self, series: SeriesSnapshot, horizon: int) -> Dict[str, float]:
        cfg = self.config
        variance = VolatilityCalculator.garch_variance(
            series.valid_log_returns(), cfg.garch_omega, cfg.garch_alpha, cfg.garch_beta
        )
        if variance is None:
            raise InsufficientHistoryError(series.symbol, 3, len(series))
        forecast = VolatilityCalculator.garch_forecast(
            variance, horizon, cfg.garch_omega, cfg.garch_alpha, cfg.garch_beta
        )
        return {
            'volatility': math.sqrt(forecast * self.periods_per_year),
            'confidence': 0.7
        }

    def _technical_component(self, base: float, indicators) -> Dict[str, float]:
        multiplier = 1.0
        confidence = 0.6

        if indicators is not None:
            atr = indicators.get('atr')
            price = indicators.get('price')
            if atr is not None and price and base > 0:
                atr_ratio = (atr / price) * math.sqrt(self.periods_per_year) / base
                multiplier *= 1 + min(atr_ratio, 3.0) * 0.3

            bb_width = indicators.get('bb_width')
            if bb_width is not None:
                if bb_width > 0.1:
                    multiplier *= 1.2
                elif bb_width < 0.05:
                    multiplier *= 0.8

            rsi = indicators.get('rsi')
            if rsi is not None and (rsi > 70 or rsi < 30):
                multiplier *= 1.15
                confidence += 0.1

        return {
            'volatility': base * multiplier,
            'confidence': min(confidence, 0.9),
            'multiplier': multiplier
        }

    def _regime_component(self, base: float, regime: VolatilityRegime) -> Dict[str, float]:
        multiplier, confidence = self.REGIME_MULTIPLIERS[regime]
        return {
            'volatility': base * multiplier,
            'confidence': confidence,
            'multiplier': multiplier
        }

    # =====================================================================
    # Risk statistics
    # =====================================================================

    def volatility_clustering(self, asset: str, lag: int = 1) -> Optional[float]:
        series = self._series.get(asset)
        if series is None:
            return None
        return VolatilityCalculator.squared_return_autocorrelation(series.valid_log_returns(), lag)

    def value_at_risk(self, asset: str, confidence: float = 0.95,
                      horizon: int = 1) -> Optional[Dict[str, float]]:
        """Parametric VaR/CVaR as a fraction of position value."""
        if confidence not in self.VAR_Z_SCORES:
            raise ValueError(f"Unsupported VaR confidence {confidence}; use one of {sorted(self.VAR_Z_SCORES)}")
        latest = self.get_realtime_volatility(asset)
        if latest is None:
            return None

        period_vol = latest.combined / math.sqrt(self.periods_per_year)
        var = self.VAR_Z_SCORES[confidence] * period_vol * math.sqrt(max(horizon, 1))
        return {
            'confidence': confidence,
            'var': var,
            'cvar': var * self.CVAR_MULTIPLIER
        }

    # =====================================================================
    # Lifecycle
    # =====================================================================

    def remove(self, asset: str):
        self._history.pop(asset, None)
        self._series.pop(asset, None)
        self._error_counts.pop(asset, None)

    def clear(self):
        self._history = {}
        self._series = {}
        self._error_counts = {}
