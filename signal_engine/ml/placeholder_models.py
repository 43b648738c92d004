"""
Placeholder Model Heuristics
============================
Stand-ins for the "ARIMA / GARCH / VaR" statistical models and the
"RandomForest / LSTM / SVM" machine-learning models.

NONE OF THESE IS A FITTED MODEL. Each is a small deterministic heuristic
that returns a bounded directional hint with the same range and weight the
real model slot is given in the ensemble. They exist so the ensemble has the
right shape until real models are trained and plugged in behind the same
`predict` interface.

Being deterministic functions of the series, they return identical values
when called twice on the same data.
"""

from typing import Dict, Optional, Tuple
import logging
import math

import numpy as np

logger = logging.getLogger(__name__)


class StatisticalHeuristics:
    """
    Bounded directional hints labelled ARIMA, GARCH and VaR.

    - arima: sign and size of a lag-1 autoregressive projection, in [-0.05, 0.05]
    - garch: rising short-term variance is bearish, in [-0.025, 0.025]
    - var:   5% historical VaR of recent returns mapped to -0.8 / 0 / +0.6
    """

    def __init__(self):
        self.weights = {
            'arima': 0.3,
            'garch': 0.2,
            'var': 0.5
        }

    def predict(self, prices: np.ndarray, returns: np.ndarray) -> Dict:
        """Weighted blend of the available hints."""
        hints = {
            'arima': self.arima_hint(prices, returns),
            'garch': self.garch_hint(returns),
            'var': self.var_hint(returns),
        }
        return _blend(hints, self.weights)

    def arima_hint(self, prices: np.ndarray, returns: np.ndarray,
                   bound: float = 0.05) -> Optional[float]:
        """Lag-1 autocorrelation times the last return, scaled by return dispersion."""
        if len(prices) <= 50 or len(returns) < 20:
            return None

        window = returns[-50:]
        std = np.std(window)
        if std == 0:
            return 0.0

        phi = np.corrcoef(window[:-1], window[1:])[0, 1]
        if not math.isfinite(phi):
            return 0.0

        projected = phi * window[-1]
        return float(np.clip(projected / std, -1.0, 1.0) * bound)

    def garch_hint(self, returns: np.ndarray, bound: float = 0.025) -> Optional[float]:
        """Compare short (10) and long (30) window variance."""
        if len(returns) <= 30:
            return None

        long_var = np.var(returns[-30:])
        short_var = np.var(returns[-10:])
        if long_var == 0 or short_var == 0:
            return 0.0

        return float(-bound * math.tanh(math.log(short_var / long_var)))

    def var_hint(self, returns: np.ndarray, confidence: float = 0.95) -> Optional[float]:
        """Historical VaR over the last 100 returns."""
        if len(returns) < 30:
            return None

        value_at_risk = self.historical_var(returns, confidence)
        if value_at_risk < -0.05:
            return -0.8
        if value_at_risk > 0.02:
            return 0.6
        return 0.0

    @staticmethod
    def historical_var(returns: np.ndarray, confidence: float = 0.95) -> float:
        recent = np.sort(np.asarray(returns[-100:], dtype=float))
        index = int(math.floor((1 - confidence) * len(recent)))
        return float(recent[index])


class MLProxyModels:
    """
    Bounded pseudo-scores in the RandomForest / LSTM / SVM slots.

    - random_forest: majority vote of four indicator rules, in [-0.4, 0.4]
    - lstm:          normalized 20-period price slope, in [-0.3, 0.3]
    - svm:           sign of the MACD histogram, in {-0.2, 0, 0.2}
    """

    def __init__(self):
        self.weights = {
            'random_forest': 0.4,
            'lstm': 0.4,
            'svm': 0.2
        }

    def predict(self, prices: np.ndarray, indicators) -> Dict:
        hints = {
            'random_forest': self.random_forest(indicators),
            'lstm': self.lstm(prices),
            'svm': self.svm(indicators),
        }
        return _blend(hints, self.weights)

    def random_forest(self, indicators, bound: float = 0.4) -> Optional[float]:
        votes = []

        rsi = indicators.get('rsi')
        if rsi is not None:
            votes.append(1 if rsi < 50 else -1)

        histogram = indicators.get('macd_histogram')
        if histogram is not None:
            votes.append(1 if histogram > 0 else -1)

        price = indicators.get('price')
        sma_20 = indicators.get('sma_20')
        if price is not None and sma_20 is not None:
            votes.append(1 if price > sma_20 else -1)

        percent_b = indicators.get('bb_percent_b')
        if percent_b is not None:
            votes.append(1 if percent_b < 0.5 else -1)

        if not votes:
            return None
        return bound * sum(votes) / len(votes)

    def lstm(self, prices: np.ndarray, bound: float = 0.3) -> Optional[float]:
        if len(prices) < 20:
            return None

        recent = np.asarray(prices[-20:], dtype=float)
        x = np.arange(len(recent))
        slope, _ = np.polyfit(x, recent, 1)
        normalized = slope * len(recent) / recent[-1]
        return float(bound * math.tanh(normalized * 10))

    def svm(self, indicators, bound: float = 0.2) -> Optional[float]:
        histogram = indicators.get('macd_histogram')
        if histogram is None:
            return None
        return float(bound * np.sign(histogram))


def _blend(hints: Dict[str, Optional[float]], weights: Dict[str, float]) -> Dict:
    """Weighted average of available hints; confidence is the available weight (max 1)."""
    available: Dict[str, Tuple[float, float]] = {
        name: (value, weights[name]) for name, value in hints.items() if value is not None
    }
    total_weight = sum(w for _, w in available.values())

    if total_weight == 0:
        return {'score': 0.0, 'confidence': 0.0, 'components': hints}

    score = sum(v * w for v, w in available.values()) / total_weight
    return {
        'score': float(score),
        'confidence': float(min(total_weight, 1.0)),
        'components': hints
    }
