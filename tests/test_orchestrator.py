"""
Integration tests for the PredictionService.

Tests cover:
  - Lifecycle: initialize seeds history and runs the first cycle, shutdown clears state
  - get_prediction: output shape, idempotence within a cycle, horizons, misuse errors
  - get_all_volatilities and subscriber notifications
  - Per-asset failure isolation and service health
  - run(): bounded cycles and the stalled-cycle watchdog
"""

import threading
import time

import pytest

from signal_engine.exceptions import ConfigurationError, InvalidTickError, UnknownAssetError
from signal_engine.orchestrator import PredictionService, resolve_horizon

PREDICTION_KEYS = {
    "asset", "direction", "strength", "confidence", "entry", "stop_loss",
    "take_profit", "position_size", "risk_reward", "indicators", "regime",
    "volatility", "strategy", "override_reason", "timestamp",
}


class TestLifecycle:

    def test_initialize_seeds_and_runs_first_cycle(self, service, engine_config):
        status = service.get_status()
        assert status["initialized"]
        assert status["cycle"] == 1
        for asset in engine_config.data.assets:
            # seeded history plus the first cycle's quote
            assert status["assets"][asset]["data_points"] == engine_config.data.history_periods + 1
            assert status["assets"][asset]["has_result"]

    def test_invalid_config_is_fatal(self, engine_config):
        engine_config.alpha.ensemble_weights["technical"] = 0.0
        svc = PredictionService(engine_config)
        with pytest.raises(ConfigurationError):
            svc.initialize()

    def test_shutdown_clears_state(self, engine_config):
        svc = PredictionService(engine_config)
        svc.initialize()
        svc.shutdown()
        assert svc.store.assets() == []
        with pytest.raises(UnknownAssetError):
            svc.get_prediction("ETH")


class TestGetPrediction:

    def test_output_shape(self, service):
        prediction = service.get_prediction("ETH")
        assert set(prediction) == PREDICTION_KEYS
        assert prediction["asset"] == "ETH"
        assert prediction["direction"] in {"BUY", "WEAK_BUY", "NEUTRAL", "WEAK_SELL", "SELL"}
        assert 0 <= prediction["confidence"] <= 1
        assert 0 <= prediction["position_size"] <= service.config.risk.max_position_size
        assert prediction["entry"] > 0

    def test_idempotent_within_cycle(self, service):
        first = service.get_prediction("LINK", horizon=6)
        second = service.get_prediction("LINK", horizon=6)
        assert first == second

    def test_unaffected_by_ticks_until_next_cycle(self, service):
        before = service.get_prediction("ETH")
        service.ingest_tick("ETH", before["entry"] * 0.5, 1000.0)
        assert service.get_prediction("ETH") == before

    def test_new_cycle_publishes_new_state(self, service):
        service.run_cycle()
        assert service.get_status()["cycle"] == 2

    def test_horizon_labels(self, service):
        assert service.get_prediction("ETH", "LONG")["volatility"]["horizon"] == 24
        assert service.get_prediction("ETH", "short")["volatility"]["horizon"] == 1

    def test_unknown_asset(self, service):
        with pytest.raises(UnknownAssetError):
            service.get_prediction("BTC")

    def test_negative_horizon(self, service):
        with pytest.raises(ValueError):
            service.get_prediction("ETH", horizon=-1)

    def test_unknown_horizon_label(self, service):
        with pytest.raises(ValueError):
            service.get_prediction("ETH", horizon="WEEKLY")

    def test_fallback_before_first_cycle(self, engine_config):
        svc = PredictionService(engine_config)
        svc.store.register("ETH")
        prediction = svc.get_prediction("ETH")
        assert prediction["direction"] == "NEUTRAL"
        assert prediction["position_size"] == 0.0
        assert prediction["volatility"]["fallback"] is True
        assert prediction["volatility"]["confidence"] == pytest.approx(0.3)
        svc.shutdown()

    def test_forecast_uses_published_cycle_inputs(self, service, make_snapshot):
        result = service._state.results["ETH"]
        regime = service.get_market_regime().volatility_regime
        expected = service.volatility_model.predict_volatility("ETH", 6, result.indicators, regime)

        # a later cycle has updated the model but not yet published
        spiky = make_snapshot([100.0, 150.0] * 40)
        service.volatility_model.update("ETH", spiky, regime)
        drifted = service.volatility_model.predict_volatility("ETH", 6, result.indicators, regime)
        assert drifted.predicted != pytest.approx(expected.predicted)

        volatility = service.get_prediction("ETH", 6)["volatility"]
        assert volatility["predicted"] == pytest.approx(expected.predicted)
        assert volatility["confidence"] == pytest.approx(expected.confidence)

    def test_resolve_horizon(self):
        assert resolve_horizon(3) == 3
        assert resolve_horizon("MEDIUM") == 6
        with pytest.raises(ValueError):
            resolve_horizon(1.5)


class TestVolatilities:

    def test_all_assets_reported(self, service, engine_config):
        volatilities = service.get_all_volatilities()
        assert set(volatilities) == set(engine_config.data.assets)
        eth = volatilities["ETH"]
        assert eth["current"] > 0
        assert set(eth["indicators"]) == {"atr", "bb_width", "rsi"}
        assert eth["degraded"] is False

    def test_subscribers_notified_each_cycle(self, service):
        received = []
        unsubscribe = service.subscribe(received.append)
        service.run_cycle()
        assert len(received) == 1
        assert "ETH" in received[0]

        unsubscribe()
        service.run_cycle()
        assert len(received) == 1

    def test_failing_subscriber_does_not_break_cycle(self, service):
        def bad_subscriber(data):
            raise RuntimeError("subscriber down")

        service.subscribe(bad_subscriber)
        service.run_cycle()
        assert service.get_status()["cycle"] == 2


class TestIsolation:

    def test_failing_asset_is_isolated(self, service, monkeypatch):
        engine = service.indicator_engine
        original = engine.compute_from_series

        def flaky(series):
            if series.symbol == "LINK":
                raise RuntimeError("indicator failure")
            return original(series)

        monkeypatch.setattr(engine, "compute_from_series", flaky)
        results = service.run_cycle()

        assert service.monitor.error_count("LINK") == 1
        assert service.monitor.error_count("ETH") == 0
        # last good result is kept for the failing asset
        assert "LINK" in results
        assert service.get_prediction("ETH")["asset"] == "ETH"

        health = service.get_service_health()
        assert health["degraded"] == 1
        assert health["status"] == "degraded"

    def test_ingest_tick_validation(self, service):
        with pytest.raises(InvalidTickError):
            service.ingest_tick("ETH", -1.0, 10.0)
        with pytest.raises(UnknownAssetError):
            service.ingest_tick("BTC", 100.0, 10.0)

    def test_healthy_after_clean_cycles(self, service):
        health = service.get_service_health()
        assert health["status"] == "healthy"
        assert health["total"] == 5


class TestRunLoop:

    def test_bounded_cycles(self, service):
        service.run(max_cycles=2)
        assert service.get_status()["cycle"] == 3
        assert not service.running

    def test_stalled_cycle_is_skipped(self, service, monkeypatch):
        release = threading.Event()
        service.config.monitoring.cycle_timeout_seconds = 0.05
        monkeypatch.setattr(service, "run_cycle", lambda: release.wait(5))

        try:
            service.run(max_cycles=3)
            assert service.monitor.cycle_stats.stalled_cycles == 1
        finally:
            release.set()

    def test_stop_ends_loop(self, service):
        service.config.data.update_frequency_seconds = 5
        thread = threading.Thread(target=service.run)
        thread.start()
        deadline = time.time() + 5
        while not service.running and time.time() < deadline:
            time.sleep(0.01)
        service.stop()
        thread.join(2)
        assert not thread.is_alive()
