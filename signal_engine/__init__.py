"""
Market Signal Engine
====================

Per-asset market signals and risk-adjusted position sizing:

- Rolling and forecasted volatility (standard, EWMA, GARCH(1,1))
- Technical indicator set (trend, oscillators, bands, volume)
- Trend and cross-asset volatility regime detection
- Six-opinion confidence-weighted ensemble
- Kelly-capped position sizing with ATR stops and drawdown overrides
- Timeouts, retries and synthetic fallback for every market-data fetch

PIPELINE:
    ┌──────────────┐
    │    DATA      │  ← quotes & history (timeout, retry, fallback)
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ INDICATORS   │  ← SMA, EMA, RSI, MACD, BB, ATR, ADX, ...
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ VOLATILITY   │  ← rolling / EWMA / GARCH forecast
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │   REGIME     │  ← trend, volatility regime
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │  OPINIONS    │  ← technical, statistical, ml, sentiment, volume, momentum
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │  ENSEMBLE    │  ← direction, strength, confidence
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │    RISK      │  ← position size, stop-loss, take-profit
    └──────────────┘

USAGE:
    # Command line
    python -m signal_engine.orchestrator --assets ETH LINK --cycles 3

    # Read API
    python -m signal_engine.api --port 5000

    # Programmatic usage
    from signal_engine import PredictionService, SystemConfig

    config = SystemConfig()
    config.data.synthetic_seed = 42

    service = PredictionService(config)
    service.initialize()
    prediction = service.get_prediction('ETH', horizon='SHORT')
    service.shutdown()

MODULES:
    - data: Time series store and market data providers
    - features: Technical indicators
    - volatility: Volatility estimates and forecasts
    - regime: Trend and volatility regime detection
    - ml: Placeholder statistical and ML heuristics
    - alpha: Opinion models and the ensemble combiner
    - risk: Position sizing, stops, overrides
    - monitoring: Service health and alerts
"""

from .config import (
    SystemConfig,
    DataConfig,
    DataMode,
    FeatureConfig,
    VolatilityConfig,
    RegimeConfig,
    AlphaConfig,
    RiskConfig,
    MonitoringConfig,
    DEFAULT_CONFIG
)
from .exceptions import (
    SignalEngineError,
    InvalidTickError,
    InsufficientHistoryError,
    ExternalFetchTimeout,
    ConfigurationError,
    UnknownAssetError
)
from .orchestrator import PredictionService, HORIZONS, main
from .data import DataManager, TimeSeriesStore, SeriesSnapshot, MarketQuote
from .features import IndicatorEngine, IndicatorSet
from .volatility import VolatilityModel, VolatilityEstimate, VolatilityPrediction
from .regime import RegimeDetector, MarketRegime, TrendRegime, VolatilityRegime
from .alpha import SignalGenerator, SignalCombiner, SignalOpinion, CombinedSignal, SignalDirection
from .risk import RiskManager, RiskAdjustedRecommendation, OverrideReason
from .monitoring import HealthMonitor, AlertSeverity

__version__ = "1.0.0"
__all__ = [
    # Main
    'PredictionService',
    'HORIZONS',
    'main',

    # Config
    'SystemConfig',
    'DataConfig',
    'DataMode',
    'FeatureConfig',
    'VolatilityConfig',
    'RegimeConfig',
    'AlphaConfig',
    'RiskConfig',
    'MonitoringConfig',
    'DEFAULT_CONFIG',

    # Errors
    'SignalEngineError',
    'InvalidTickError',
    'InsufficientHistoryError',
    'ExternalFetchTimeout',
    'ConfigurationError',
    'UnknownAssetError',

    # Data
    'DataManager',
    'TimeSeriesStore',
    'SeriesSnapshot',
    'MarketQuote',

    # Features
    'IndicatorEngine',
    'IndicatorSet',

    # Volatility
    'VolatilityModel',
    'VolatilityEstimate',
    'VolatilityPrediction',

    # Regime
    'RegimeDetector',
    'MarketRegime',
    'TrendRegime',
    'VolatilityRegime',

    # Alpha
    'SignalGenerator',
    'SignalCombiner',
    'SignalOpinion',
    'CombinedSignal',
    'SignalDirection',

    # Risk
    'RiskManager',
    'RiskAdjustedRecommendation',
    'OverrideReason',

    # Monitoring
    'HealthMonitor',
    'AlertSeverity'
]
