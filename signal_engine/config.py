"""
Configuration Management
========================
Central configuration for the signal engine.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Dict, Optional
from enum import Enum
import json
import math
import os

from .exceptions import ConfigurationError


class DataMode(Enum):
    """Market data operation modes."""
    SYNTHETIC = "synthetic"
    LIVE = "live"


@dataclass
class DataConfig:
    """Data module configuration."""
    # Assets to track
    assets: List[str] = field(default_factory=lambda: ["ETH", "USDC", "USDT", "DAI", "LINK"])
    mode: DataMode = DataMode.SYNTHETIC

    # Per-asset synthetic parameters (annualized drift / volatility)
    base_prices: Dict[str, float] = field(default_factory=lambda: {
        "ETH": 2500.0, "USDC": 1.0, "USDT": 1.0, "DAI": 1.0, "LINK": 15.0
    })
    base_volatility: Dict[str, float] = field(default_factory=lambda: {
        "ETH": 0.8, "USDC": 0.05, "USDT": 0.05, "DAI": 0.08, "LINK": 1.2
    })
    drift: Dict[str, float] = field(default_factory=lambda: {
        "ETH": 0.15, "USDC": 0.0, "USDT": 0.0, "DAI": 0.0, "LINK": 0.12
    })
    base_volume: Dict[str, float] = field(default_factory=lambda: {
        "ETH": 1_000_000, "USDC": 5_000_000, "USDT": 8_000_000,
        "DAI": 2_000_000, "LINK": 500_000
    })
    default_base_price: float = 100.0
    default_volatility: float = 0.6
    default_drift: float = 0.1
    default_volume: float = 1_000_000
    synthetic_seed: Optional[int] = None

    # History
    max_history: int = 1000  # ring buffer capacity per asset
    history_periods: int = 200  # points seeded at startup
    periods_per_year: int = 252

    # Fetch behaviour
    update_frequency_seconds: int = 30
    fetch_timeout_seconds: float = 8.0
    max_retries: int = 2
    retry_base_delay: float = 0.5
    max_consecutive_failures: int = 5
    degraded_retry_seconds: float = 300.0
    quote_ttl_seconds: int = 60

    # Provider rate limits: source name -> [max requests, window seconds]
    rate_limits: Dict[str, List[float]] = field(default_factory=lambda: {
        "yfinance": [30, 60.0]
    })

    def base_price_for(self, asset: str) -> float:
        return self.base_prices.get(asset, self.default_base_price)

    def volatility_for(self, asset: str) -> float:
        return self.base_volatility.get(asset, self.default_volatility)

    def drift_for(self, asset: str) -> float:
        return self.drift.get(asset, self.default_drift)

    def volume_for(self, asset: str) -> float:
        return self.base_volume.get(asset, self.default_volume)


@dataclass
class FeatureConfig:
    """Indicator configuration."""
    # Moving averages
    sma_periods: List[int] = field(default_factory=lambda: [20, 50, 200])
    ema_periods: List[int] = field(default_factory=lambda: [12, 26])

    # Oscillators
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bollinger_period: int = 20
    bollinger_std: float = 2.0
    stochastic_period: int = 14
    stochastic_smoothing: int = 3
    atr_period: int = 14
    adx_period: int = 14
    williams_period: int = 14
    cci_period: int = 20
    mfi_period: int = 14

    # Volume / volatility
    volume_ma_period: int = 20
    volatility_windows: List[int] = field(default_factory=lambda: [20, 50])

    # Longest period needed for a complete indicator set
    min_history: int = 50


@dataclass
class VolatilityConfig:
    """Volatility model configuration."""
    window: int = 20
    ewma_lambda: float = 0.94

    # Static GARCH(1,1) parameters (not fitted)
    garch_omega: float = 1e-5
    garch_alpha: float = 0.1
    garch_beta: float = 0.85

    # EWMA weight in the combined estimate, by volatility regime
    regime_ewma_weights: Dict[str, float] = field(default_factory=lambda: {
        "HIGH_VOLATILITY": 0.8,
        "LOW_VOLATILITY": 0.3,
        "DIVERGENT": 0.6,
        "NORMAL": 0.5,
    })

    history_length: int = 200
    max_error_count: int = 5
    prediction_cap_multiple: float = 10.0


@dataclass
class RegimeConfig:
    """Regime detection configuration."""
    trend_window: int = 50
    trend_threshold: float = 0.10
    benchmark_asset: Optional[str] = None  # defaults to first configured asset

    # Volatility regime thresholds (annualized)
    high_mean: float = 1.0
    high_dispersion: float = 0.3
    low_mean: float = 0.3
    low_dispersion: float = 0.1
    divergent_dispersion: float = 0.5


@dataclass
class AlphaConfig:
    """Signal generation and ensemble configuration."""
    # Ensemble weights (must sum to 1.0)
    ensemble_weights: Dict[str, float] = field(default_factory=lambda: {
        "technical": 0.25,
        "statistical": 0.20,
        "ml": 0.25,
        "sentiment": 0.10,
        "volume": 0.10,
        "momentum": 0.10,
    })

    # Direction thresholds
    strong_threshold: float = 0.3
    weak_threshold: float = 0.1

    regime_confidence_multipliers: Dict[str, float] = field(default_factory=lambda: {
        "HIGH_VOLATILITY": 0.8,
        "LOW_VOLATILITY": 1.1,
        "DIVERGENT": 0.7,
        "NORMAL": 1.0,
    })


@dataclass
class RiskConfig:
    """Risk manager configuration."""
    # Position sizing
    kelly_ceiling: float = 0.25
    max_position_size: float = 0.10

    # Kelly inputs used until enough realized trades exist
    default_win_rate: float = 0.55
    default_avg_win: float = 0.08
    default_avg_loss: float = 0.05
    asset_trade_stats: Dict[str, Dict[str, float]] = field(default_factory=dict)
    min_trades_for_stats: int = 20
    max_trade_history: int = 500

    # Risk limits
    max_drawdown: float = 0.20
    volatility_ceiling: float = 1.5  # 150% annualized
    elevated_volatility: float = 1.0

    # Stops
    stop_loss_atr_multiple: float = 2.0
    take_profit_atr_multiple: float = 3.0
    fallback_atr_pct: float = 0.02

    regime_strength_multipliers: Dict[str, float] = field(default_factory=lambda: {
        "HIGH_VOLATILITY": 0.7,
        "LOW_VOLATILITY": 1.3,
        "DIVERGENT": 0.7,
        "NORMAL": 1.0,
    })


@dataclass
class MonitoringConfig:
    """Monitoring and logging configuration."""
    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Cycle watchdog
    cycle_timeout_seconds: float = 20.0

    # Service health score thresholds
    healthy_score: float = 80.0
    degraded_score: float = 50.0

    # Alerts
    enable_alerts: bool = True
    alert_channels: List[str] = field(default_factory=lambda: ["console"])


@dataclass
class SystemConfig:
    """Master system configuration."""
    data: DataConfig = field(default_factory=DataConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    volatility: VolatilityConfig = field(default_factory=VolatilityConfig)
    regime: RegimeConfig = field(default_factory=RegimeConfig)
    alpha: AlphaConfig = field(default_factory=AlphaConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @property
    def benchmark_asset(self) -> str:
        return self.regime.benchmark_asset or self.data.assets[0]

    def validate(self) -> 'SystemConfig':
        """Check parameters, raising ConfigurationError listing every problem found."""
        errors = []

        # Data
        assets = self.data.assets
        if not assets:
            errors.append("at least one asset must be configured")
        if len(set(assets)) != len(assets):
            errors.append(f"duplicate assets in {assets}")
        if self.data.max_history < 2:
            errors.append("data.max_history must be >= 2")
        if self.data.history_periods > self.data.max_history:
            errors.append("data.history_periods cannot exceed data.max_history")
        if self.data.fetch_timeout_seconds <= 0:
            errors.append("data.fetch_timeout_seconds must be positive")
        for source, limit in self.data.rate_limits.items():
            if len(limit) != 2 or limit[0] < 1 or limit[1] <= 0:
                errors.append(f"rate limit for {source} must be [max_requests >= 1, window_seconds > 0]")
        for asset in assets:
            if self.data.base_price_for(asset) <= 0:
                errors.append(f"base price for {asset} must be positive")
            if self.data.volatility_for(asset) < 0:
                errors.append(f"base volatility for {asset} cannot be negative")

        # Volatility
        vol = self.volatility
        if not 0 < vol.ewma_lambda < 1:
            errors.append("volatility.ewma_lambda must be in (0, 1)")
        if vol.window < 2:
            errors.append("volatility.window must be >= 2")
        if vol.garch_omega <= 0 or vol.garch_alpha < 0 or vol.garch_beta < 0:
            errors.append("GARCH parameters must be positive")
        if vol.garch_alpha + vol.garch_beta >= 1:
            errors.append("GARCH alpha + beta must be < 1")

        # Regime
        benchmark = self.regime.benchmark_asset
        if benchmark is not None and benchmark not in assets:
            errors.append(f"benchmark asset {benchmark} is not a configured asset")

        # Alpha
        weights = self.alpha.ensemble_weights
        if any(w < 0 for w in weights.values()):
            errors.append("ensemble weights cannot be negative")
        if not math.isclose(sum(weights.values()), 1.0, abs_tol=1e-6):
            errors.append(f"ensemble weights must sum to 1.0, got {sum(weights.values()):.4f}")
        if not 0 <= self.alpha.weak_threshold <= self.alpha.strong_threshold:
            errors.append("alpha thresholds must satisfy 0 <= weak <= strong")

        # Risk
        risk = self.risk
        for name in ('kelly_ceiling', 'max_position_size', 'max_drawdown'):
            value = getattr(risk, name)
            if not 0 < value <= 1:
                errors.append(f"risk.{name} must be in (0, 1]")
        if risk.volatility_ceiling <= 0:
            errors.append("risk.volatility_ceiling must be positive")
        if not 0 <= risk.default_win_rate <= 1:
            errors.append("risk.default_win_rate must be in [0, 1]")

        if errors:
            raise ConfigurationError("; ".join(errors))
        return self

    def save(self, filepath: str):
        """Save configuration to JSON file."""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self._to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'SystemConfig':
        """Load configuration from JSON file."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls._from_dict(data)

    def _to_dict(self) -> dict:
        """Convert to dictionary."""
        data = asdict(self)
        data['data']['mode'] = self.data.mode.value
        return data

    @classmethod
    def _from_dict(cls, data: dict) -> 'SystemConfig':
        """Create from dictionary. Missing sections keep their defaults."""
        sections = {
            'data': DataConfig,
            'features': FeatureConfig,
            'volatility': VolatilityConfig,
            'regime': RegimeConfig,
            'alpha': AlphaConfig,
            'risk': RiskConfig,
            'monitoring': MonitoringConfig,
        }
        kwargs = {}
        for name, section_cls in sections.items():
            values = dict(data.get(name, {}))
            if name == 'data' and 'mode' in values:
                values['mode'] = DataMode(values['mode'])
            try:
                kwargs[name] = section_cls(**values)
            except TypeError as e:
                raise ConfigurationError(f"Invalid '{name}' section: {e}") from e
        return cls(**kwargs)


# Default configuration instance
DEFAULT_CONFIG = SystemConfig()
