"""
Regime Detection
================
Classifies the market trend and the cross-asset volatility regime.

The regime is detected once per cycle and then feeds the volatility
weighting, the ensemble confidence and the risk overrides.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple
import logging
import math

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class TrendRegime(Enum):
    """Direction of the benchmark asset."""
    BULL = "BULL"
    BEAR = "BEAR"
    SIDEWAYS = "SIDEWAYS"


class VolatilityRegime(Enum):
    """Level and dispersion of volatility across tracked assets."""
    HIGH_VOLATILITY = "HIGH_VOLATILITY"
    LOW_VOLATILITY = "LOW_VOLATILITY"
    DIVERGENT = "DIVERGENT"
    NORMAL = "NORMAL"


@dataclass
class MarketRegime:
    """Regime snapshot for one cycle."""
    trend: TrendRegime = TrendRegime.SIDEWAYS
    volatility_regime: VolatilityRegime = VolatilityRegime.NORMAL
    mean_volatility: float = 0.0
    dispersion: float = 0.0
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)

    def to_dict(self) -> dict:
        return {
            'trend': self.trend.value,
            'volatility_regime': self.volatility_regime.value,
            'mean_volatility': self.mean_volatility,
            'dispersion': self.dispersion,
            'timestamp': self.timestamp.isoformat()
        }


class RegimeDetector:
    """
    Trend and volatility regime classification.

    Trend compares the mean of the most recent window of prices with the
    window before it. The volatility regime looks at the mean and population
    standard deviation of each asset's latest combined volatility.
    """

    # Probability that the current volatility regime holds for another cycle
    PERSISTENCE = {
        VolatilityRegime.HIGH_VOLATILITY: 0.7,
        VolatilityRegime.LOW_VOLATILITY: 0.8,
        VolatilityRegime.DIVERGENT: 0.4,
        VolatilityRegime.NORMAL: 0.6,
    }

    def __init__(self, config=None):
        from ..config import RegimeConfig
        self.config = config or RegimeConfig()
        self.current = MarketRegime()

    def detect_trend(self, prices: Iterable[float]) -> TrendRegime:
        """
        BULL/BEAR when the recent window mean moved more than the threshold.

        With fewer than two full windows the prior window is whatever history
        precedes the recent one; with no prior history the trend is SIDEWAYS.
        """
        prices = np.asarray(list(prices), dtype=float)
        window = self.config.trend_window

        if len(prices) <= window:
            return TrendRegime.SIDEWAYS

        recent = prices[-window:]
        prior = prices[-2 * window:-window]
        prior_mean = prior.mean()
        if prior_mean <= 0:
            return TrendRegime.SIDEWAYS

        change = (recent.mean() - prior_mean) / prior_mean

        if change > self.config.trend_threshold:
            return TrendRegime.BULL
        if change < -self.config.trend_threshold:
            return TrendRegime.BEAR
        return TrendRegime.SIDEWAYS

    def detect_volatility_regime(
        self, volatilities: Dict[str, Optional[float]]
    ) -> Tuple[VolatilityRegime, float, float]:
        """Return (regime, mean, dispersion) for a snapshot of latest volatilities."""
        values = np.array(
            [v for v in volatilities.values() if v is not None and math.isfinite(v)],
            dtype=float
        )
        if len(values) == 0:
            return VolatilityRegime.NORMAL, 0.0, 0.0

        mean = float(values.mean())
        dispersion = float(values.std())  # population
        cfg = self.config

        if mean > cfg.high_mean and dispersion > cfg.high_dispersion:
            regime = VolatilityRegime.HIGH_VOLATILITY
        elif mean < cfg.low_mean and dispersion < cfg.low_dispersion:
            regime = VolatilityRegime.LOW_VOLATILITY
        elif dispersion > cfg.divergent_dispersion:
            regime = VolatilityRegime.DIVERGENT
        else:
            regime = VolatilityRegime.NORMAL

        return regime, mean, dispersion

    def detect(self, benchmark_prices: Iterable[float],
               volatilities: Dict[str, Optional[float]]) -> MarketRegime:
        """Detect the market regime for this cycle and keep it as `current`."""
        trend = self.detect_trend(benchmark_prices)
        vol_regime, mean, dispersion = self.detect_volatility_regime(volatilities)

        regime = MarketRegime(
            trend=trend,
            volatility_regime=vol_regime,
            mean_volatility=mean,
            dispersion=dispersion
        )

        if (regime.trend != self.current.trend
                or regime.volatility_regime != self.current.volatility_regime):
            logger.info(
                f"Regime change: {self.current.trend.value}/{self.current.volatility_regime.value} "
                f"-> {trend.value}/{vol_regime.value} (mean vol {mean:.2f}, dispersion {dispersion:.2f})"
            )

        self.current = regime
        return regime

    def regime_persistence(self, regime: Optional[VolatilityRegime] = None) -> float:
        regime = regime or self.current.volatility_regime
        return self.PERSISTENCE.get(regime, 0.5)

    def stress_indicator(self, volatilities: Dict[str, Optional[float]]) -> float:
        """Market stress in [0, 1]: mean volatility scaled up by dispersion."""
        _, mean, dispersion = self.detect_volatility_regime(volatilities)
        return min(1.0, mean * (1 + dispersion))

    def reset(self):
        self.current = MarketRegime()
