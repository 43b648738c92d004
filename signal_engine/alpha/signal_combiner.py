"""
Signal Combiner
===============
Weighted ensemble of the six opinions into one directional signal.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import logging

import pandas as pd

from .signal_generator import SignalOpinion
from ..regime.regime_detector import MarketRegime

logger = logging.getLogger(__name__)


class SignalDirection(Enum):
    """Ensemble direction."""
    BUY = "BUY"
    WEAK_BUY = "WEAK_BUY"
    NEUTRAL = "NEUTRAL"
    WEAK_SELL = "WEAK_SELL"
    SELL = "SELL"

    @property
    def is_bullish(self) -> bool:
        return self in (SignalDirection.BUY, SignalDirection.WEAK_BUY)

    @property
    def is_bearish(self) -> bool:
        return self in (SignalDirection.SELL, SignalDirection.WEAK_SELL)


@dataclass
class CombinedSignal:
    """Ensemble output for one asset."""
    symbol: str
    direction: SignalDirection
    strength: float  # |raw_score|
    confidence: float  # 0 to 1
    raw_score: float  # -1 to 1
    contributing_opinions: List[SignalOpinion] = field(default_factory=list)
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'direction': self.direction.value,
            'strength': self.strength,
            'confidence': self.confidence,
            'raw_score': self.raw_score,
            'opinions': {o.source.value: {'score': o.raw_score, 'confidence': o.confidence}
                         for o in self.contributing_opinions},
            'timestamp': self.timestamp.isoformat()
        }


class SignalCombiner:
    """
    Confidence-weighted ensemble.

    score = sum(s_i * w_i * c_i) / sum(w_i * c_i)
    confidence = sum(c_i * w_i), then scaled by the volatility regime
    """

    def __init__(self, config=None):
        from ..config import AlphaConfig
        self.config = config or AlphaConfig()
        self.weights: Dict[str, float] = self.config.ensemble_weights

    def direction_for(self, score: float) -> SignalDirection:
        strong = self.config.strong_threshold
        weak = self.config.weak_threshold

        if score > strong:
            return SignalDirection.BUY
        if score > weak:
            return SignalDirection.WEAK_BUY
        if score < -strong:
            return SignalDirection.SELL
        if score < -weak:
            return SignalDirection.WEAK_SELL
        return SignalDirection.NEUTRAL

    def combine(self, opinions: List[SignalOpinion],
                regime: Optional[MarketRegime] = None,
                symbol: Optional[str] = None) -> CombinedSignal:
        weighted_score = 0.0
        score_weight = 0.0
        confidence = 0.0

        for opinion in opinions:
            weight = self.weights.get(opinion.source.value, 0.0)
            weighted_score += opinion.raw_score * weight * opinion.confidence
            score_weight += weight * opinion.confidence
            confidence += opinion.confidence * weight

        score = weighted_score / score_weight if score_weight > 0 else 0.0
        score = min(max(score, -1.0), 1.0)

        if regime is not None:
            multiplier = self.config.regime_confidence_multipliers.get(
                regime.volatility_regime.value, 1.0
            )
            confidence *= multiplier
        confidence = min(max(confidence, 0.0), 1.0)

        if symbol is None:
            symbol = opinions[0].symbol if opinions else ""
        timestamp = opinions[0].timestamp if opinions else pd.Timestamp.now()

        combined = CombinedSignal(
            symbol=symbol,
            direction=self.direction_for(score),
            strength=abs(score),
            confidence=confidence,
            raw_score=score,
            contributing_opinions=list(opinions),
            timestamp=timestamp
        )

        logger.debug(
            f"{symbol} combined: {combined.direction.value} score {score:+.3f} "
            f"conf {confidence:.2f}"
        )
        return combined
