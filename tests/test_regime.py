"""
Unit tests for regime detection.
"""

import numpy as np
import pytest

from signal_engine.regime.regime_detector import RegimeDetector, TrendRegime, VolatilityRegime


class TestTrend:

    def test_rising_series_is_bull(self):
        assert RegimeDetector().detect_trend(np.linspace(100, 160, 60)) == TrendRegime.BULL

    def test_falling_series_is_bear(self):
        assert RegimeDetector().detect_trend(np.linspace(160, 100, 60)) == TrendRegime.BEAR

    def test_short_history_is_sideways(self):
        assert RegimeDetector().detect_trend(np.linspace(100, 160, 50)) == TrendRegime.SIDEWAYS

    def test_flat_is_sideways(self):
        assert RegimeDetector().detect_trend([100.0] * 120) == TrendRegime.SIDEWAYS

    def test_two_full_windows(self):
        prices = [100.0] * 50 + [115.0] * 50
        assert RegimeDetector().detect_trend(prices) == TrendRegime.BULL


class TestVolatilityRegime:

    @pytest.mark.parametrize("vols, expected", [
        ({"A": 2.0, "B": 0.8}, VolatilityRegime.HIGH_VOLATILITY),
        ({"A": 0.10, "B": 0.12}, VolatilityRegime.LOW_VOLATILITY),
        ({"A": 0.1, "B": 1.3}, VolatilityRegime.DIVERGENT),
        ({"A": 0.5, "B": 0.6}, VolatilityRegime.NORMAL),
        ({}, VolatilityRegime.NORMAL),
    ])
    def test_classification(self, vols, expected):
        regime, _, _ = RegimeDetector().detect_volatility_regime(vols)
        assert regime == expected

    def test_population_dispersion(self):
        _, mean, dispersion = RegimeDetector().detect_volatility_regime({"A": 0.2, "B": 0.6})
        assert mean == pytest.approx(0.4)
        assert dispersion == pytest.approx(0.2)

    def test_missing_values_ignored(self):
        regime, mean, _ = RegimeDetector().detect_volatility_regime(
            {"A": 0.10, "B": None, "C": float("nan"), "D": 0.12}
        )
        assert regime == VolatilityRegime.LOW_VOLATILITY
        assert mean == pytest.approx(0.11)


class TestDetect:

    def test_detect_updates_current(self):
        detector = RegimeDetector()
        regime = detector.detect(np.linspace(100, 160, 60), {"A": 2.0, "B": 0.8})
        assert detector.current is regime
        assert regime.trend == TrendRegime.BULL
        assert regime.volatility_regime == VolatilityRegime.HIGH_VOLATILITY
        assert detector.regime_persistence() == pytest.approx(0.7)

    def test_reset(self):
        detector = RegimeDetector()
        detector.detect(np.linspace(100, 160, 60), {})
        detector.reset()
        assert detector.current.trend == TrendRegime.SIDEWAYS

    def test_stress_indicator_bounded(self):
        stress = RegimeDetector().stress_indicator({"A": 3.0, "B": 0.2})
        assert 0 <= stress <= 1
