"""
Unit tests for the risk manager.

Tests cover:
  - Kelly fraction bounds and degenerate inputs
  - ATR stop levels for long and short recommendations
  - Drawdown, volatility and regime overrides
  - Conservative defaults on unusable input
  - Realized trade statistics replacing the static Kelly inputs
"""

import math

import numpy as np
import pytest

from signal_engine.alpha.signal_combiner import CombinedSignal, SignalDirection
from signal_engine.config import RiskConfig
from signal_engine.regime.regime_detector import MarketRegime, VolatilityRegime
from signal_engine.risk.risk_manager import OverrideReason, PositionSizer, RiskManager


def _signal(direction=SignalDirection.BUY, strength=0.8, confidence=0.9, symbol="ETH"):
    score = strength if not direction.is_bearish else -strength
    return CombinedSignal(
        symbol=symbol,
        direction=direction,
        strength=strength,
        confidence=confidence,
        raw_score=score
    )


class TestKelly:

    def test_bounds(self):
        rng = np.random.default_rng(5)
        for _ in range(500):
            fraction = PositionSizer.kelly_fraction(
                rng.uniform(0, 1), rng.uniform(0, 0.5), rng.uniform(0, 0.5),
                ceiling=0.25, max_position=0.10
            )
            assert 0.0 <= fraction <= 0.10

    def test_zero_average_loss(self):
        fraction = PositionSizer.kelly_fraction(0.6, 0.08, 0.0)
        assert fraction == 0.0
        assert math.isfinite(fraction)

    def test_negative_edge_is_zero(self):
        assert PositionSizer.kelly_fraction(0.2, 0.05, 0.05) == 0.0

    def test_uncapped_value(self):
        # b = 2, p = 0.4: (0.8 - 0.6) / 2 = 0.1
        assert PositionSizer.kelly_fraction(0.4, 0.10, 0.05, ceiling=1.0, max_position=1.0) == pytest.approx(0.1)

    def test_default_inputs_hit_position_cap(self):
        assert RiskManager().kelly_fraction("ETH") == pytest.approx(0.10)

    def test_realized_outcomes_take_over(self):
        manager = RiskManager()
        for _ in range(19):
            manager.record_trade_outcome("ETH", -0.02)
        assert manager.trade_stats("ETH").source == "static"
        assert manager.kelly_fraction("ETH") == pytest.approx(0.10)

        manager.record_trade_outcome("ETH", -0.02)
        stats = manager.trade_stats("ETH")
        assert stats.source == "realized"
        assert stats.win_rate == 0.0
        assert manager.kelly_fraction("ETH") == 0.0

    def test_non_finite_outcome_ignored(self):
        manager = RiskManager()
        manager.record_trade_outcome("ETH", float("nan"))
        assert manager.outcomes.count("ETH") == 0


class TestStops:

    def test_long_stops(self):
        stop, target, rr = PositionSizer.stop_levels(100.0, 2.0, SignalDirection.BUY)
        assert stop == pytest.approx(96.0)
        assert target == pytest.approx(106.0)
        assert rr == pytest.approx(1.5)

    def test_short_stops_mirrored(self):
        stop, target, rr = PositionSizer.stop_levels(100.0, 2.0, SignalDirection.SELL)
        assert stop == pytest.approx(104.0)
        assert target == pytest.approx(94.0)
        assert rr == pytest.approx(1.5)


class TestOverrides:

    def test_max_drawdown_forces_neutral(self):
        manager = RiskManager(RiskConfig(max_drawdown=0.2))
        rec = manager.evaluate(_signal(), price=100.0, atr=2.0, volatility=0.5, drawdown=0.25)
        assert rec.direction == SignalDirection.NEUTRAL
        assert rec.override_reason == OverrideReason.MAX_DRAWDOWN_REACHED
        assert rec.to_dict()["override_reason"] == "MAX_DRAWDOWN_REACHED"
        assert rec.position_size_fraction == 0.0

    def test_volatility_ceiling_halves_strength(self):
        rec = RiskManager().evaluate(_signal(strength=0.8, confidence=0.9), 100.0, 2.0, volatility=2.0)
        assert rec.override_reason == OverrideReason.HIGH_VOLATILITY
        assert rec.strength == pytest.approx(0.4)
        assert rec.confidence == pytest.approx(0.72)
        assert rec.direction == SignalDirection.BUY

    def test_elevated_volatility_scales_confidence(self):
        rec = RiskManager().evaluate(_signal(confidence=0.5), 100.0, 2.0, volatility=1.2)
        assert rec.override_reason is None
        assert rec.confidence == pytest.approx(0.4)
        assert "ELEVATED_VOLATILITY" in rec.tags

    def test_regime_scales_strength(self):
        regime = MarketRegime(volatility_regime=VolatilityRegime.LOW_VOLATILITY)
        rec = RiskManager().evaluate(_signal(strength=0.5), 100.0, 2.0, volatility=0.2, regime=regime)
        assert rec.strength == pytest.approx(0.65)

    def test_drawdown_from_prices(self):
        assert RiskManager.calculate_drawdown([100.0, 120.0, 90.0]) == pytest.approx(0.25)
        assert RiskManager.calculate_drawdown([]) == 0.0


class TestRecommendation:

    def test_position_size_bounded(self):
        manager = RiskManager()
        rec = manager.evaluate(_signal(strength=1.0, confidence=1.0), 100.0, 2.0, volatility=0.1)
        assert 0 < rec.position_size_fraction <= manager.config.max_position_size

    def test_position_size_formula(self):
        # kelly 0.10 * strength 0.5 * vol adj 1.0 * confidence 0.6
        rec = RiskManager().evaluate(_signal(strength=0.5, confidence=0.6), 100.0, 2.0, volatility=0.5)
        assert rec.position_size_fraction == pytest.approx(0.03)

    def test_neutral_signal_has_no_size(self):
        rec = RiskManager().evaluate(_signal(SignalDirection.NEUTRAL, strength=0.05), 100.0, 2.0, 0.5)
        assert rec.position_size_fraction == 0.0

    def test_fallback_atr(self):
        rec = RiskManager().evaluate(_signal(), 100.0, atr=None, volatility=0.5)
        assert rec.stop_loss == pytest.approx(96.0)
        assert "FALLBACK_ATR" in rec.tags

    @pytest.mark.parametrize("price", [None, 0.0, -10.0, float("nan")])
    def test_invalid_price_gives_conservative_default(self, price):
        rec = RiskManager().evaluate(_signal(), price, 2.0, 0.5)
        assert rec.direction == SignalDirection.NEUTRAL
        assert rec.position_size_fraction == 0.0
        assert rec.override_reason == OverrideReason.DEGRADED_INPUT

    def test_to_dict_keys(self):
        data = RiskManager().evaluate(_signal(), 100.0, 2.0, 0.5).to_dict()
        for key in ("entry", "stop_loss", "take_profit", "position_size", "risk_reward", "direction"):
            assert key in data


class TestStrategyLabel:

    @pytest.mark.parametrize("vol, regime, confidence, expected", [
        (1.5, VolatilityRegime.HIGH_VOLATILITY, 0.8, "MOMENTUM"),
        (1.5, VolatilityRegime.HIGH_VOLATILITY, 0.5, "DEFENSIVE"),
        (0.2, VolatilityRegime.LOW_VOLATILITY, 0.9, "ACCUMULATION"),
        (0.2, VolatilityRegime.LOW_VOLATILITY, 0.5, "CONSERVATIVE"),
        (0.6, VolatilityRegime.DIVERGENT, 0.5, "HEDGED"),
        (0.6, VolatilityRegime.NORMAL, 0.5, "BALANCED"),
    ])
    def test_labels(self, vol, regime, confidence, expected):
        label = RiskManager.strategy_label(vol, MarketRegime(volatility_regime=regime), confidence)
        assert label == expected

    def test_missing_inputs(self):
        assert RiskManager.strategy_label(None, MarketRegime(), 0.9) == "CONSERVATIVE"
