"""
Unit tests for opinion generation and the ensemble combiner.

Tests cover:
  - SignalCombiner: score/confidence bounds, direction thresholds, regime scaling
  - SignalGenerator: six opinions, failing model isolation
  - Individual opinion rules
  - Placeholder heuristics: bounds and repeatability
"""

import numpy as np
import pytest

from signal_engine.alpha.signal_combiner import SignalCombiner, SignalDirection
from signal_engine.alpha.signal_generator import (
    OpinionModel,
    OpinionSource,
    SignalContext,
    SignalGenerator,
    SignalOpinion,
    TechnicalOpinion,
    VolumeOpinion,
)
from signal_engine.features.indicator_engine import IndicatorEngine, IndicatorSet
from signal_engine.ml.placeholder_models import MLProxyModels, StatisticalHeuristics
from signal_engine.regime.regime_detector import MarketRegime, TrendRegime, VolatilityRegime


def _opinion(source: OpinionSource, score: float, confidence: float) -> SignalOpinion:
    return SignalOpinion(symbol="ETH", source=source, raw_score=score, confidence=confidence)


def _context(make_snapshot, values: dict) -> SignalContext:
    series = make_snapshot([100.0, 101.0, 102.0])
    indicators = IndicatorSet(symbol="ETH", values=values, history_length=len(series))
    return SignalContext(series=series, indicators=indicators, regime=MarketRegime())


# ═══════════════════════════════════════════════════════════════════════════
# SignalCombiner
# ═══════════════════════════════════════════════════════════════════════════


class TestSignalCombiner:

    def test_output_bounds(self):
        rng = np.random.default_rng(3)
        combiner = SignalCombiner()
        regimes = [MarketRegime(volatility_regime=r) for r in VolatilityRegime]

        for i in range(200):
            opinions = [
                _opinion(source, rng.uniform(-1, 1), rng.uniform(0, 1))
                for source in OpinionSource
            ]
            combined = combiner.combine(opinions, regimes[i % len(regimes)])
            assert -1.0 <= combined.raw_score <= 1.0
            assert 0.0 <= combined.confidence <= 1.0
            assert combined.strength == pytest.approx(abs(combined.raw_score))

    @pytest.mark.parametrize("score, expected", [
        (0.35, SignalDirection.BUY),
        (0.2, SignalDirection.WEAK_BUY),
        (0.0, SignalDirection.NEUTRAL),
        (0.1, SignalDirection.NEUTRAL),
        (-0.2, SignalDirection.WEAK_SELL),
        (-0.5, SignalDirection.SELL),
    ])
    def test_direction_thresholds(self, score, expected):
        assert SignalCombiner().direction_for(score) == expected

    def test_zero_confidence_is_neutral(self):
        opinions = [_opinion(source, 0.9, 0.0) for source in OpinionSource]
        combined = SignalCombiner().combine(opinions)
        assert combined.raw_score == 0.0
        assert combined.confidence == 0.0
        assert combined.direction == SignalDirection.NEUTRAL

    def test_unanimous_full_confidence(self):
        opinions = [_opinion(source, 0.5, 1.0) for source in OpinionSource]
        combined = SignalCombiner().combine(opinions)
        assert combined.raw_score == pytest.approx(0.5)
        assert combined.confidence == pytest.approx(1.0)
        assert combined.direction == SignalDirection.BUY

    def test_high_volatility_regime_lowers_confidence(self):
        opinions = [_opinion(source, 0.5, 0.5) for source in OpinionSource]
        combiner = SignalCombiner()
        normal = combiner.combine(opinions, MarketRegime())
        high = combiner.combine(opinions, MarketRegime(volatility_regime=VolatilityRegime.HIGH_VOLATILITY))
        assert high.confidence == pytest.approx(normal.confidence * 0.8)

    def test_to_dict(self):
        combined = SignalCombiner().combine([_opinion(OpinionSource.TECHNICAL, 0.4, 0.8)])
        data = combined.to_dict()
        assert data["direction"] == "BUY"
        assert data["opinions"]["technical"]["score"] == pytest.approx(0.4)


# ═══════════════════════════════════════════════════════════════════════════
# SignalGenerator
# ═══════════════════════════════════════════════════════════════════════════


class _BrokenModel(OpinionModel):
    source = OpinionSource.SENTIMENT

    def generate(self, context):
        raise RuntimeError("model exploded")


class TestSignalGenerator:

    def test_six_opinions(self, random_walk_snapshot):
        indicators = IndicatorEngine().compute_from_series(random_walk_snapshot)
        opinions = SignalGenerator().generate(random_walk_snapshot, indicators, MarketRegime())
        assert [o.source for o in opinions] == list(OpinionSource)
        for opinion in opinions:
            assert -1 <= opinion.raw_score <= 1
            assert 0 <= opinion.confidence <= 1

    def test_failing_model_is_isolated(self, random_walk_snapshot):
        generator = SignalGenerator()
        generator.models[OpinionSource.SENTIMENT] = _BrokenModel()
        indicators = IndicatorEngine().compute_from_series(random_walk_snapshot)

        opinions = generator.generate(random_walk_snapshot, indicators, MarketRegime())
        assert len(opinions) == 6
        broken = [o for o in opinions if o.source == OpinionSource.SENTIMENT][0]
        assert broken.confidence == 0.0
        assert "error" in broken.components

    def test_generation_is_repeatable(self, random_walk_snapshot):
        indicators = IndicatorEngine().compute_from_series(random_walk_snapshot)
        generator = SignalGenerator()
        regime = MarketRegime(trend=TrendRegime.BULL)
        first = [o.to_dict() for o in generator.generate(random_walk_snapshot, indicators, regime)]
        second = [o.to_dict() for o in generator.generate(random_walk_snapshot, indicators, regime)]
        assert first == second


class TestOpinionRules:

    def test_oversold_technical_is_bullish(self, make_snapshot):
        context = _context(make_snapshot, {
            "rsi": 20.0, "macd": 1.0, "macd_signal": 0.5,
            "price": 90.0, "bb_upper": 110.0, "bb_lower": 95.0,
            "sma_20": 101.0, "sma_50": 100.0,
        })
        opinion = TechnicalOpinion().generate(context)
        assert opinion.raw_score == pytest.approx(1.0)
        assert opinion.confidence == pytest.approx(min(2.9 / 3, 1.0))

    def test_technical_without_indicators(self, make_snapshot):
        opinion = TechnicalOpinion().generate(_context(make_snapshot, {}))
        assert opinion.raw_score == 0.0
        assert opinion.confidence == 0.0

    @pytest.mark.parametrize("ratio, expected", [(2.0, 0.5), (0.3, -0.3), (1.0, 0.0)])
    def test_volume_rules(self, make_snapshot, ratio, expected):
        opinion = VolumeOpinion().generate(_context(make_snapshot, {"volume_ratio": ratio}))
        assert opinion.raw_score == pytest.approx(expected)


class TestPlaceholderModels:

    def test_statistical_hints_bounded(self, random_walk_snapshot):
        heuristics = StatisticalHeuristics()
        prices = random_walk_snapshot.prices
        returns = random_walk_snapshot.valid_returns()
        assert abs(heuristics.arima_hint(prices, returns)) <= 0.05
        assert abs(heuristics.garch_hint(returns)) <= 0.025
        assert heuristics.var_hint(returns) in (-0.8, 0.0, 0.6)

    def test_statistical_needs_history(self):
        result = StatisticalHeuristics().predict(np.array([100.0, 101.0]), np.array([0.01]))
        assert result["score"] == 0.0
        assert result["confidence"] == 0.0

    def test_ml_proxies_bounded(self, random_walk_snapshot):
        models = MLProxyModels()
        indicators = IndicatorEngine().compute_from_series(random_walk_snapshot)
        assert abs(models.random_forest(indicators)) <= 0.4
        assert abs(models.lstm(random_walk_snapshot.prices)) <= 0.3
        assert models.svm(indicators) in (-0.2, 0.0, 0.2)
        result = models.predict(random_walk_snapshot.prices, indicators)
        assert result["confidence"] == pytest.approx(1.0)
