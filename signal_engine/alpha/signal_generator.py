"""
Signal Generator
================
Six independent directional opinions per asset per cycle.

Each opinion model turns indicators, the series and the market regime into
a raw score in [-1, 1] and a confidence in [0, 1]. The statistical and ML
opinions are driven by placeholder heuristics (see ml.placeholder_models).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import logging

import pandas as pd

from ..data.time_series import SeriesSnapshot
from ..features.indicator_engine import IndicatorSet
from ..ml.placeholder_models import StatisticalHeuristics, MLProxyModels
from ..regime.regime_detector import MarketRegime, TrendRegime

logger = logging.getLogger(__name__)


class OpinionSource(Enum):
    """Sub-model that produced an opinion."""
    TECHNICAL = "technical"
    STATISTICAL = "statistical"
    ML = "ml"
    SENTIMENT = "sentiment"
    VOLUME = "volume"
    MOMENTUM = "momentum"


@dataclass
class SignalOpinion:
    """One sub-model's directional view before ensemble combination."""
    symbol: str
    source: OpinionSource
    raw_score: float  # -1 to 1
    confidence: float  # 0 to 1
    components: Dict = field(default_factory=dict)
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'source': self.source.value,
            'raw_score': self.raw_score,
            'confidence': self.confidence,
            'components': self.components,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass
class SignalContext:
    """Inputs shared by all opinion models for one asset in one cycle."""
    series: SeriesSnapshot
    indicators: IndicatorSet
    regime: MarketRegime

    @property
    def symbol(self) -> str:
        return self.series.symbol

    @property
    def timestamp(self) -> pd.Timestamp:
        return self.series.last_timestamp if len(self.series) else pd.Timestamp.now()


class OpinionModel(ABC):
    """Abstract base class for opinion models."""

    source: OpinionSource

    @abstractmethod
    def generate(self, context: SignalContext) -> SignalOpinion:
        """Produce this model's opinion for one asset."""
        pass

    def _create_opinion(self, context: SignalContext, score: float,
                        confidence: float, **components) -> SignalOpinion:
        """Helper to create an opinion with clamped score and confidence."""
        return SignalOpinion(
            symbol=context.symbol,
            source=self.source,
            raw_score=min(max(float(score), -1.0), 1.0),
            confidence=min(max(float(confidence), 0.0), 1.0),
            components=components,
            timestamp=context.timestamp
        )


class TechnicalOpinion(OpinionModel):
    """
    Classic indicator rules:
    RSI extremity, MACD vs signal, Bollinger breach, SMA20 vs SMA50.
    """

    source = OpinionSource.TECHNICAL

    def generate(self, context: SignalContext) -> SignalOpinion:
        ind = context.indicators
        score = 0.0
        weight = 0.0
        components = {}

        # RSI
        rsi = ind['rsi']
        if rsi is not None:
            value = 1.0 if rsi < 30 else (-1.0 if rsi > 70 else 0.0)
            score += value * 1.0
            weight += 1.0
            components['rsi'] = value

        # MACD crossover
        macd, macd_signal = ind['macd'], ind['macd_signal']
        if macd is not None and macd_signal is not None:
            value = 0.5 if macd > macd_signal else -0.5
            score += value
            weight += 0.5
            components['macd'] = value

        # Bollinger breach
        price, upper, lower = ind['price'], ind['bb_upper'], ind['bb_lower']
        if price is not None and upper is not None and lower is not None:
            value = 0.8 if price < lower else (-0.8 if price > upper else 0.0)
            score += value
            weight += 0.8
            components['bollinger'] = value

        # Moving average crossover
        sma_20, sma_50 = ind['sma_20'], ind['sma_50']
        if sma_20 is not None and sma_50 is not None:
            value = 0.6 if sma_20 > sma_50 else -0.6
            score += value
            weight += 0.6
            components['ma_cross'] = value

        signal = score / weight if weight > 0 else 0.0
        return self._create_opinion(context, signal, min(weight / 3, 1.0), **components)


class StatisticalOpinion(OpinionModel):
    """Placeholder ARIMA/GARCH/VaR hints blended 0.3/0.2/0.5."""

    source = OpinionSource.STATISTICAL

    def __init__(self):
        self.heuristics = StatisticalHeuristics()

    def generate(self, context: SignalContext) -> SignalOpinion:
        result = self.heuristics.predict(context.series.prices, context.series.valid_returns())
        return self._create_opinion(
            context, result['score'], result['confidence'],
            placeholder=True, **result['components']
        )


class MLProxyOpinion(OpinionModel):
    """Placeholder RandomForest/LSTM/SVM pseudo-scores blended 0.4/0.4/0.2."""

    source = OpinionSource.ML

    def __init__(self):
        self.models = MLProxyModels()

    def generate(self, context: SignalContext) -> SignalOpinion:
        result = self.models.predict(context.series.prices, context.indicators)
        return self._create_opinion(
            context, result['score'], result['confidence'],
            placeholder=True, **result['components']
        )


class SentimentOpinion(OpinionModel):
    """Market trend as sentiment, discounted by the asset's own volatility."""

    source = OpinionSource.SENTIMENT
    DEFAULT_VOLATILITY = 0.5

    def generate(self, context: SignalContext) -> SignalOpinion:
        trend = context.regime.trend
        if trend == TrendRegime.BULL:
            score = 0.6
        elif trend == TrendRegime.BEAR:
            score = -0.6
        else:
            score = 0.0

        volatility = context.indicators.get('volatility_20', self.DEFAULT_VOLATILITY)
        confidence = max(0.0, 1 - volatility) * 0.7

        return self._create_opinion(
            context, score, confidence, trend=trend.value, volatility=volatility
        )


class VolumeOpinion(OpinionModel):
    """Volume surges are bullish, volume droughts mildly bearish."""

    source = OpinionSource.VOLUME

    def generate(self, context: SignalContext) -> SignalOpinion:
        ratio = context.indicators['volume_ratio']
        if ratio is None:
            return self._create_opinion(context, 0.0, 0.0)

        if ratio > 1.5:
            score = 0.5
        elif ratio < 0.5:
            score = -0.3
        else:
            score = 0.0
        return self._create_opinion(context, score, 0.6, volume_ratio=ratio)


class MomentumOpinion(OpinionModel):
    """Oscillator extremes: Stochastic %K, Williams %R, CCI."""

    source = OpinionSource.MOMENTUM

    def generate(self, context: SignalContext) -> SignalOpinion:
        ind = context.indicators
        score = 0.0
        weight = 0.0
        components = {}

        stoch_k = ind['stoch_k']
        if stoch_k is not None:
            value = 0.7 if stoch_k < 20 else (-0.7 if stoch_k > 80 else 0.0)
            score += value
            weight += 0.7
            components['stochastic'] = value

        williams_r = ind['williams_r']
        if williams_r is not None:
            value = 0.5 if williams_r < -80 else (-0.5 if williams_r > -20 else 0.0)
            score += value
            weight += 0.5
            components['williams_r'] = value

        cci = ind['cci']
        if cci is not None:
            value = 0.6 if cci < -100 else (-0.6 if cci > 100 else 0.0)
            score += value
            weight += 0.6
            components['cci'] = value

        signal = score / weight if weight > 0 else 0.0
        return self._create_opinion(context, signal, min(weight / 2, 1.0), **components)


class SignalGenerator:
    """
    Runs all opinion models for an asset.

    A failing model is logged and replaced by a zero-confidence opinion so the
    ensemble always receives six opinions.
    """

    def __init__(self, models: Optional[Dict[OpinionSource, OpinionModel]] = None):
        self.models: Dict[OpinionSource, OpinionModel] = models or {
            OpinionSource.TECHNICAL: TechnicalOpinion(),
            OpinionSource.STATISTICAL: StatisticalOpinion(),
            OpinionSource.ML: MLProxyOpinion(),
            OpinionSource.SENTIMENT: SentimentOpinion(),
            OpinionSource.VOLUME: VolumeOpinion(),
            OpinionSource.MOMENTUM: MomentumOpinion(),
        }

    def generate(self, series: SeriesSnapshot, indicators: IndicatorSet,
                 regime: MarketRegime) -> List[SignalOpinion]:
        context = SignalContext(series=series, indicators=indicators, regime=regime)
        opinions = []

        for source, model in self.models.items():
            try:
                opinion = model.generate(context)
                logger.debug(
                    f"{source.value} opinion for {context.symbol}: "
                    f"{opinion.raw_score:+.2f} (conf: {opinion.confidence:.2f})"
                )
            except Exception as e:
                logger.warning(f"Error in {source.value} model for {context.symbol}: {e}")
                opinion = SignalOpinion(
                    symbol=context.symbol,
                    source=source,
                    raw_score=0.0,
                    confidence=0.0,
                    components={'error': str(e)},
                    timestamp=context.timestamp
                )
            opinions.append(opinion)

        return opinions
