"""
Prediction Service
==================
Main pipeline orchestrating all components:
    DATA → INDICATORS → VOLATILITY → REGIME → OPINIONS → ENSEMBLE → RISK

One PredictionService owns all per-asset state. Each update cycle works on
series snapshots, and its results are published in one reference swap so
readers always see a complete cycle.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union
import copy
import logging
import threading
import time

import pandas as pd

from .config import SystemConfig, DataMode
from .data import DataManager, TimeSeriesStore, SeriesSnapshot
from .features import IndicatorEngine, IndicatorSet
from .volatility import VolatilityModel, VolatilityEstimate, VolatilityPrediction
from .regime import RegimeDetector, MarketRegime
from .alpha import SignalGenerator, SignalCombiner, CombinedSignal
from .risk import RiskManager, RiskAdjustedRecommendation
from .monitoring import HealthMonitor
from .exceptions import (
    SignalEngineError,
    InvalidTickError,
    InsufficientHistoryError,
    UnknownAssetError,
)

logger = logging.getLogger(__name__)


# Named forecast horizons, in periods
HORIZONS = {
    'SHORT': 1,
    'MEDIUM': 6,
    'LONG': 24,
}

HorizonLike = Union[int, str]


@dataclass
class AssetCycleResult:
    """Everything one cycle produced for one asset."""
    asset: str
    indicators: IndicatorSet
    estimate: Optional[VolatilityEstimate]
    signal: CombinedSignal
    recommendation: RiskAdjustedRecommendation
    strategy: str
    history_length: int
    # Volatility inputs captured for forecasts read after publish
    series: Optional[SeriesSnapshot] = None
    volatility_peak: Optional[float] = None


@dataclass
class CycleState:
    """Published results of the last completed cycle."""
    cycle: int = 0
    results: Dict[str, AssetCycleResult] = field(default_factory=dict)
    regime: MarketRegime = field(default_factory=MarketRegime)
    completed_at: Optional[pd.Timestamp] = None
    # get_prediction output memoized per (asset, horizon) for this cycle
    predictions: Dict = field(default_factory=dict)


def resolve_horizon(horizon: HorizonLike) -> int:
    """Horizon in periods from an int or a SHORT / MEDIUM / LONG label."""
    if isinstance(horizon, str):
        try:
            return HORIZONS[horizon.upper()]
        except KeyError:
            raise ValueError(f"Unknown horizon '{horizon}', use an integer or one of {list(HORIZONS)}")
    if isinstance(horizon, bool) or not isinstance(horizon, int):
        raise ValueError(f"horizon must be an integer or label, got {horizon!r}")
    if horizon < 0:
        raise ValueError(f"horizon must be non-negative, got {horizon}")
    return horizon


class PredictionService:
    """
    Market signal and position sizing service.

    Coordinates the pipeline per cycle:
    1. DATA: one realtime quote per non-degraded asset
    2. VOLATILITY SNAPSHOT: latest combined volatility of every asset
    3. REGIME: trend of the benchmark asset, volatility regime across assets
    4. PER ASSET: indicators → volatility → opinions → ensemble → risk
    5. PUBLISH: swap in the new results
    6. NOTIFY: push volatilities to subscribers
    """

    def __init__(self, config: SystemConfig = None,
                 data_manager: DataManager = None,
                 store: TimeSeriesStore = None,
                 indicator_engine: IndicatorEngine = None,
                 volatility_model: VolatilityModel = None,
                 regime_detector: RegimeDetector = None,
                 signal_generator: SignalGenerator = None,
                 combiner: SignalCombiner = None,
                 risk_manager: RiskManager = None,
                 monitor: HealthMonitor = None):
        self.config = config or SystemConfig()
        cfg = self.config

        self.data_manager = data_manager or DataManager(cfg.data)
        self.store = store or TimeSeriesStore(
            capacity=cfg.data.max_history,
            volatility_window=cfg.volatility.window,
            periods_per_year=cfg.data.periods_per_year
        )
        self.indicator_engine = indicator_engine or IndicatorEngine(
            cfg.features, store=self.store, periods_per_year=cfg.data.periods_per_year
        )
        self.volatility_model = volatility_model or VolatilityModel(cfg.volatility, cfg.data)
        self.regime_detector = regime_detector or RegimeDetector(cfg.regime)
        self.signal_generator = signal_generator or SignalGenerator()
        self.combiner = combiner or SignalCombiner(cfg.alpha)
        self.risk_manager = risk_manager or RiskManager(cfg.risk)
        self.monitor = monitor or HealthMonitor(
            cfg.monitoring, error_threshold=cfg.volatility.max_error_count
        )

        # Service state
        self.initialized = False
        self.running = False
        self._state = CycleState()
        self._subscribers: List[Callable[[Dict], None]] = []
        self._stop_event = threading.Event()
        self._cycle_lock = threading.Lock()

        logger.info(
            f"PredictionService created for {len(cfg.data.assets)} assets "
            f"({cfg.data.mode.value} data)"
        )

    # =====================================================================
    # Lifecycle
    # =====================================================================

    def initialize(self):
        """Validate config, seed history and run the first cycle."""
        logger.info("Initializing prediction service...")

        self.config.validate()

        for asset in self.config.data.assets:
            self.store.register(asset)
            self.monitor.register(asset)
            try:
                history = self.data_manager.load_history(asset)
                stored = self.store.seed(asset, history)
                logger.info(f"Seeded {stored} points for {asset}")
            except Exception as e:
                logger.error(f"History load failed for {asset}: {e}")
                self.monitor.record_asset_error(asset, e)

        self.initialized = True
        self.run_cycle()

        logger.info("Prediction service initialized successfully")

    def shutdown(self):
        """Stop the loop and release all per-asset state."""
        logger.info("Shutting down prediction service...")

        self.running = False
        self._stop_event.set()

        self.data_manager.shutdown()
        self.store.clear()
        self.volatility_model.clear()
        self.regime_detector.reset()
        self.monitor.reset()
        self._subscribers = []
        self._state = CycleState()
        self.initialized = False

        logger.info("Prediction service shutdown complete")

    # =====================================================================
    # Ingestion
    # =====================================================================

    def ingest_tick(self, asset: str, price: float, volume: float, timestamp=None):
        """
        Append one tick. Safe to call from a background ingestion thread.

        Raises UnknownAssetError for an untracked asset and InvalidTickError
        for a malformed or out-of-order tick.
        """
        self.store.append_tick(asset, price, volume, timestamp)

    def _ingest_quotes(self, assets: List[str]):
        for asset in assets:
            if self.data_manager.should_skip(asset):
                logger.debug(f"Skipping degraded asset {asset}")
                continue
            try:
                quote = self.data_manager.get_quote(asset)
                self.ingest_tick(asset, quote.price, quote.volume, quote.timestamp)
            except InvalidTickError as e:
                logger.warning(f"Dropped tick: {e}")
            except Exception as e:
                logger.error(f"Quote ingestion failed for {asset}: {e}")
                self.monitor.record_asset_error(asset, e)

    # =====================================================================
    # Update cycle
    # =====================================================================

    def run_cycle(self) -> Dict[str, AssetCycleResult]:
        """Run one complete update cycle and publish its results."""
        with self._cycle_lock:
            start_time = time.time()
            previous = self._state
            assets = self.store.assets()
            logger.debug(f"=== Cycle {previous.cycle + 1} ===")

            # 1. DATA
            self._ingest_quotes(assets)

            # 2. VOLATILITY SNAPSHOT
            volatilities = self.volatility_model.latest_combined()

            # 3. REGIME
            benchmark = self.config.benchmark_asset
            benchmark_prices = self.store.snapshot(benchmark).prices if benchmark in self.store else []
            regime = self.regime_detector.detect(benchmark_prices, volatilities)

            # 4. PER ASSET
            results: Dict[str, AssetCycleResult] = {}
            for asset in assets:
                try:
                    results[asset] = self._process_asset(asset, regime)
                except InsufficientHistoryError as e:
                    logger.info(f"Waiting for history: {e}")
                    continue
                except Exception as e:
                    logger.error(f"Cycle failed for {asset}: {e}")
                    self.monitor.record_asset_error(asset, e)
                    if asset in previous.results:
                        results[asset] = previous.results[asset]
                    continue

                if self.data_manager.is_degraded(asset):
                    self.monitor.record_asset_error(
                        asset, SignalEngineError(f"{asset} market data degraded")
                    )
                else:
                    self.monitor.record_asset_success(asset)

            # 5. PUBLISH
            self._state = CycleState(
                cycle=previous.cycle + 1,
                results=results,
                regime=regime,
                completed_at=pd.Timestamp.now()
            )
            self.monitor.record_cycle(time.time() - start_time)

        # 6. NOTIFY
        self._notify_subscribers()
        return results

    def _process_asset(self, asset: str, regime: MarketRegime) -> AssetCycleResult:
        series = self.store.get_series(asset)

        indicators = self.indicator_engine.compute_from_series(series)
        estimate = self.volatility_model.update(asset, series, regime.volatility_regime)
        volatility = estimate.combined if estimate is not None else None

        opinions = self.signal_generator.generate(series, indicators, regime)
        signal = self.combiner.combine(opinions, regime, symbol=asset)

        drawdown = self.risk_manager.calculate_drawdown(series.prices)
        recommendation = self.risk_manager.evaluate(
            signal, series.last_price, indicators['atr'], volatility, drawdown, regime
        )
        strategy = self.risk_manager.strategy_label(volatility, regime, signal.confidence)

        return AssetCycleResult(
            asset=asset,
            indicators=indicators,
            estimate=estimate,
            signal=signal,
            recommendation=recommendation,
            strategy=strategy,
            history_length=len(series),
            series=series,
            volatility_peak=self.volatility_model.historical_max(asset) if estimate is not None else None
        )

    def run(self, max_cycles: Optional[int] = None):
        """
        Fixed-cadence update loop, stopped by shutdown() or stop().

        Each cycle runs in a worker thread bounded by the watchdog timeout.
        While a stalled cycle is still running, new cycles are skipped.
        """
        self._stop_event.clear()
        self.running = True

        interval = self.config.data.update_frequency_seconds
        timeout = self.config.monitoring.cycle_timeout_seconds
        worker: Optional[threading.Thread] = None
        attempts = 0

        logger.info(f"Starting update loop (every {interval}s)...")

        while self.running and not self._stop_event.is_set():
            try:
                if worker is not None and worker.is_alive():
                    logger.error("Previous cycle still running, skipping this cycle")
                else:
                    worker = threading.Thread(
                        target=self._guarded_cycle, name="update-cycle", daemon=True
                    )
                    started = time.time()
                    worker.start()
                    worker.join(timeout)
                    if worker.is_alive():
                        elapsed = time.time() - started
                        logger.error(f"Cycle exceeded {timeout}s watchdog")
                        self.monitor.record_stalled_cycle(elapsed)

                attempts += 1
                if max_cycles is not None and attempts >= max_cycles:
                    break

                self._stop_event.wait(interval)

            except KeyboardInterrupt:
                logger.info("Keyboard interrupt received")
                break

        self.running = False

    def stop(self):
        """Stop the update loop after the current cycle."""
        self.running = False
        self._stop_event.set()

    def _guarded_cycle(self):
        start_time = time.time()
        try:
            self.run_cycle()
        except Exception as e:
            logger.error(f"Update cycle failed: {e}")
            self.monitor.record_cycle(time.time() - start_time, failed=True)

    # =====================================================================
    # Read API
    # =====================================================================

    def _check_asset(self, asset: str):
        if asset not in self.store:
            raise UnknownAssetError(asset)

    def get_prediction(self, asset: str, horizon: HorizonLike = 1) -> Dict:
        """
        Risk-adjusted recommendation for an asset from the last completed cycle.

        Repeated calls within one cycle return identical output.
        """
        self._check_asset(asset)
        periods = resolve_horizon(horizon)

        state = self._state
        key = (asset, periods)
        cached = state.predictions.get(key)
        if cached is None:
            cached = self._build_prediction(state, asset, periods)
            state.predictions[key] = cached
        return copy.deepcopy(cached)

    def _build_prediction(self, state: CycleState, asset: str, horizon: int) -> Dict:
        result = state.results.get(asset)

        if result is None:
            recommendation = self.risk_manager.conservative_default(
                asset, self.store.latest_price(asset), "no completed cycle"
            )
            forecast = self.volatility_model.fallback_prediction(asset, horizon)
            return self._format_prediction(
                asset, recommendation, forecast, None, {}, state.regime, "CONSERVATIVE"
            )

        forecast = self._forecast(result, horizon, state.regime)
        return self._format_prediction(
            asset, result.recommendation, forecast, result.estimate,
            result.indicators.to_dict(), state.regime, result.strategy
        )

    def _forecast(self, result: AssetCycleResult, horizon: int,
                  regime: MarketRegime) -> VolatilityPrediction:
        """Forecast from the inputs captured when the cycle ran."""
        if result.estimate is None or result.series is None:
            return self.volatility_model.fallback_prediction(result.asset, horizon)
        return self.volatility_model.predict_volatility(
            result.asset, horizon, result.indicators, regime.volatility_regime,
            series=result.series,
            estimate=result.estimate,
            historical_max=result.volatility_peak
        )

    @staticmethod
    def _format_prediction(asset: str, rec: RiskAdjustedRecommendation,
                           forecast: VolatilityPrediction,
                           estimate: Optional[VolatilityEstimate],
                           indicators: Dict, regime: MarketRegime, strategy: str) -> Dict:
        return {
            'asset': asset,
            'direction': rec.direction.value,
            'strength': rec.strength,
            'confidence': rec.confidence,
            'entry': rec.entry_price,
            'stop_loss': rec.stop_loss,
            'take_profit': rec.take_profit,
            'position_size': rec.position_size_fraction,
            'risk_reward': rec.risk_reward_ratio,
            'indicators': indicators,
            'regime': regime.to_dict(),
            'volatility': {
                'current': estimate.combined if estimate is not None else None,
                'predicted': forecast.predicted,
                'confidence': forecast.confidence,
                'horizon': forecast.horizon,
                'fallback': forecast.fallback
            },
            'strategy': strategy,
            'override_reason': rec.override_reason.value if rec.override_reason else None,
            'timestamp': rec.timestamp.isoformat()
        }

    def get_all_volatilities(self) -> Dict[str, Dict]:
        """Current and next-period volatility for every tracked asset."""
        state = self._state
        regime = state.regime
        output = {}

        for asset in self.store.assets():
            result = state.results.get(asset)
            degraded = self.data_manager.is_degraded(asset)

            if result is None or result.estimate is None:
                forecast = self.volatility_model.fallback_prediction(asset, 1)
                output[asset] = {
                    'current': forecast.predicted,
                    'predicted': forecast.predicted,
                    'confidence': forecast.confidence,
                    'regime': forecast.regime,
                    'trend': regime.trend.value,
                    'indicators': {'atr': None, 'bb_width': None, 'rsi': None},
                    'degraded': degraded,
                    'fallback': True,
                    'timestamp': forecast.timestamp.isoformat()
                }
                continue

            forecast = self._forecast(result, 1, regime)
            indicators = result.indicators
            output[asset] = {
                'current': result.estimate.combined,
                'predicted': forecast.predicted,
                'confidence': forecast.confidence,
                'regime': regime.volatility_regime.value,
                'trend': regime.trend.value,
                'indicators': {
                    'atr': indicators['atr'],
                    'bb_width': indicators['bb_width'],
                    'rsi': indicators['rsi']
                },
                'degraded': degraded,
                'fallback': forecast.fallback,
                'timestamp': result.estimate.timestamp.isoformat()
            }

        return output

    def get_market_regime(self) -> MarketRegime:
        return self._state.regime

    # =====================================================================
    # Subscribers
    # =====================================================================

    def subscribe(self, callback: Callable[[Dict], None]) -> Callable[[], None]:
        """Register a callback receiving get_all_volatilities() after every cycle."""
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Callable[[Dict], None]):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify_subscribers(self):
        if not self._subscribers:
            return
        data = self.get_all_volatilities()
        for callback in list(self._subscribers):
            try:
                callback(data)
            except Exception as e:
                logger.error(f"Error notifying volatility subscriber: {e}")

    # =====================================================================
    # Status
    # =====================================================================

    def get_service_health(self) -> Dict:
        return self.monitor.get_service_health()

    def get_status(self) -> Dict:
        """Get comprehensive service status."""
        state = self._state
        return {
            'initialized': self.initialized,
            'running': self.running,
            'mode': self.config.data.mode.value,
            'cycle': state.cycle,
            'last_cycle': state.completed_at.isoformat() if state.completed_at else None,
            'assets': {
                asset: {
                    'data_points': self.store.size(asset),
                    'degraded': self.data_manager.is_degraded(asset),
                    'has_result': asset in state.results
                }
                for asset in self.store.assets()
            },
            'regime': state.regime.to_dict(),
            'data': self.data_manager.get_status(),
            'health': self.monitor.get_service_health(),
            **self.monitor.get_status()
        }


def _print_predictions(service: PredictionService):
    print("\n" + "=" * 78)
    print(f"{'ASSET':<6} {'DIRECTION':<10} {'CONF':>6} {'SIZE':>7} {'ENTRY':>12} "
          f"{'STOP':>12} {'TARGET':>12} {'VOL':>6}")
    print("=" * 78)
    for asset in service.store.assets():
        p = service.get_prediction(asset)
        vol = p['volatility']['current']
        vol_text = f"{vol:.2f}" if vol is not None else "-"
        print(f"{asset:<6} {p['direction']:<10} {p['confidence']:>6.2f} {p['position_size']:>7.2%} "
              f"{p['entry']:>12.4f} {p['stop_loss']:>12.4f} {p['take_profit']:>12.4f} {vol_text:>6}")
    regime = service.get_market_regime()
    health = service.get_service_health()
    print(f"Regime: {regime.trend.value}/{regime.volatility_regime.value}  "
          f"Health: {health['status']} ({health['score']:.0f})")


def main():
    """Main entry point for the prediction service."""
    import argparse

    parser = argparse.ArgumentParser(description='Market Signal Engine')
    parser.add_argument('--assets', nargs='+', help='Assets to track')
    parser.add_argument('--cycles', type=int, default=None,
                        help='Number of cycles to run (default: run until interrupted)')
    parser.add_argument('--interval', type=int, help='Seconds between cycles')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--live', action='store_true', help='Use live yfinance data')
    parser.add_argument('--log-level', type=str, help='Logging level')

    args = parser.parse_args()

    # Create configuration
    config = SystemConfig.load(args.config) if args.config else SystemConfig()
    if args.assets:
        config.data.assets = args.assets
    if args.interval is not None:
        config.data.update_frequency_seconds = args.interval
    if args.live:
        config.data.mode = DataMode.LIVE
    if args.log_level:
        config.monitoring.log_level = args.log_level.upper()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.monitoring.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if config.monitoring.log_file:
        file_handler = logging.FileHandler(config.monitoring.log_file)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        logging.getLogger().addHandler(file_handler)

    service = PredictionService(config)
    service.subscribe(lambda _: _print_predictions(service))

    try:
        # initialize() runs the first cycle
        service.initialize()
        if args.cycles is None or args.cycles > 1:
            remaining = None if args.cycles is None else args.cycles - 1
            service.run(max_cycles=remaining)
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
