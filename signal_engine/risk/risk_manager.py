"""
Risk Manager Module
===================
Turns an ensemble signal into a risk-bounded recommendation:
Kelly-capped position size, ATR stops and regime overrides.

Risk rules are applied mechanically; every call returns a recommendation,
falling back to a flat, zero-size one when inputs are unusable.
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Iterable, List, Optional, Tuple
import logging
import math

import numpy as np
import pandas as pd

from ..alpha.signal_combiner import CombinedSignal, SignalDirection
from ..regime.regime_detector import MarketRegime, VolatilityRegime

logger = logging.getLogger(__name__)


class OverrideReason(Enum):
    """Why the risk manager overrode the ensemble signal."""
    MAX_DRAWDOWN_REACHED = "MAX_DRAWDOWN_REACHED"
    HIGH_VOLATILITY = "HIGH_VOLATILITY"
    DEGRADED_INPUT = "DEGRADED_INPUT"


@dataclass
class TradeStats:
    """Inputs to the Kelly formula."""
    win_rate: float
    avg_win: float
    avg_loss: float
    sample_size: int = 0
    source: str = "static"  # 'static' or 'realized'


@dataclass
class RiskAdjustedRecommendation:
    """Risk-bounded trade recommendation handed to execution."""
    symbol: str
    direction: SignalDirection
    strength: float
    confidence: float
    entry_price: float
    position_size_fraction: float
    stop_loss: float
    take_profit: float
    risk_reward_ratio: float
    kelly_fraction: float = 0.0
    drawdown: float = 0.0
    volatility: Optional[float] = None
    override_reason: Optional[OverrideReason] = None
    tags: List[str] = field(default_factory=list)
    timestamp: pd.Timestamp = field(default_factory=pd.Timestamp.now)

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'direction': self.direction.value,
            'strength': self.strength,
            'confidence': self.confidence,
            'entry': self.entry_price,
            'position_size': self.position_size_fraction,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'risk_reward': self.risk_reward_ratio,
            'kelly_fraction': self.kelly_fraction,
            'drawdown': self.drawdown,
            'volatility': self.volatility,
            'override_reason': self.override_reason.value if self.override_reason else None,
            'tags': list(self.tags),
            'timestamp': self.timestamp.isoformat()
        }


class PositionSizer:
    """Position sizing algorithms."""

    @staticmethod
    def kelly_fraction(win_rate: float, avg_win: float, avg_loss: float,
                       ceiling: float = 0.25, max_position: float = 0.10) -> float:
        """
        Kelly Criterion fraction (b*p - q) / b with b = avg_win / avg_loss.

        Capped at `ceiling`, then at `max_position`; never negative.
        A non-positive average loss or win gives 0.
        """
        if avg_loss <= 0 or avg_win <= 0:
            return 0.0
        if not all(math.isfinite(x) for x in (win_rate, avg_win, avg_loss)):
            return 0.0

        b = avg_win / avg_loss
        p = min(max(win_rate, 0.0), 1.0)
        q = 1 - p
        kelly = (b * p - q) / b

        kelly = min(kelly, ceiling)
        kelly = min(kelly, max_position)
        return max(kelly, 0.0)

    @staticmethod
    def volatility_adjustment(volatility: Optional[float]) -> float:
        """Scale down above 100% annualized volatility, up below 30%."""
        if volatility is None or not math.isfinite(volatility):
            return 1.0
        if volatility > 1.0:
            return max(0.1, 1 - (volatility - 1) * 0.5)
        if volatility < 0.3:
            return min(2.0, 1 + (0.3 - volatility) * 0.5)
        return 1.0

    @staticmethod
    def stop_levels(price: float, atr: float, direction: SignalDirection,
                    stop_multiple: float = 2.0,
                    target_multiple: float = 3.0) -> Tuple[float, float, float]:
        """
        (stop_loss, take_profit, risk_reward) from ATR.

        Long and flat recommendations stop below entry; short ones mirror it.
        """
        if direction.is_bearish:
            stop_loss = price + stop_multiple * atr
            take_profit = price - target_multiple * atr
        else:
            stop_loss = price - stop_multiple * atr
            take_profit = price + target_multiple * atr

        risk = price - stop_loss
        reward = take_profit - price
        risk_reward = reward / risk if risk != 0 else 0.0
        return stop_loss, take_profit, risk_reward


class TradeOutcomeTracker:
    """Realized trade returns per asset, used to replace the static Kelly inputs."""

    def __init__(self, max_history: int = 500):
        self.max_history = max_history
        self._outcomes: Dict[str, Deque[float]] = {}

    def record(self, asset: str, return_pct: float):
        if not math.isfinite(return_pct):
            logger.warning(f"Ignoring non-finite trade outcome for {asset}")
            return
        self._outcomes.setdefault(asset, deque(maxlen=self.max_history)).append(return_pct)

    def count(self, asset: str) -> int:
        return len(self._outcomes.get(asset, ()))

    def stats(self, asset: str) -> Optional[TradeStats]:
        outcomes = self._outcomes.get(asset)
        if not outcomes:
            return None

        values = np.array(outcomes, dtype=float)
        wins = values[values > 0]
        losses = values[values < 0]

        return TradeStats(
            win_rate=len(wins) / len(values),
            avg_win=float(wins.mean()) if len(wins) else 0.0,
            avg_loss=float(abs(losses.mean())) if len(losses) else 0.0,
            sample_size=len(values),
            source="realized"
        )

    def clear(self):
        self._outcomes = {}


class RiskManager:
    """
    Risk manager for ensemble signals.

    Responsibilities:
    - Kelly position sizing with ceiling and policy caps
    - ATR stop-loss / take-profit
    - Drawdown and volatility overrides
    - Regime strength scaling
    """

    def __init__(self, config=None):
        from ..config import RiskConfig
        self.config = config or RiskConfig()
        self.outcomes = TradeOutcomeTracker(self.config.max_trade_history)

    # =====================================================================
    # Kelly inputs
    # =====================================================================

    def trade_stats(self, asset: str) -> TradeStats:
        """Realized stats once enough trades exist, otherwise the configured constants."""
        if self.outcomes.count(asset) >= self.config.min_trades_for_stats:
            return self.outcomes.stats(asset)

        overrides = self.config.asset_trade_stats.get(asset, {})
        return TradeStats(
            win_rate=overrides.get('win_rate', self.config.default_win_rate),
            avg_win=overrides.get('avg_win', self.config.default_avg_win),
            avg_loss=overrides.get('avg_loss', self.config.default_avg_loss)
        )

    def kelly_fraction(self, asset: str) -> float:
        stats = self.trade_stats(asset)
        return PositionSizer.kelly_fraction(
            stats.win_rate, stats.avg_win, stats.avg_loss,
            ceiling=self.config.kelly_ceiling,
            max_position=self.config.max_position_size
        )

    def record_trade_outcome(self, asset: str, return_pct: float):
        """Record a realized trade return (e.g. 0.04 for +4%)."""
        self.outcomes.record(asset, return_pct)
        count = self.outcomes.count(asset)
        if count == self.config.min_trades_for_stats:
            logger.info(f"{asset}: {count} realized trades, Kelly now uses realized statistics")

    # =====================================================================
    # Overrides
    # =====================================================================

    @staticmethod
    def calculate_drawdown(prices: Iterable[float]) -> float:
        """Drawdown of the last price from the running peak."""
        prices = np.asarray(list(prices), dtype=float)
        if len(prices) == 0:
            return 0.0
        peak = np.max(prices)
        if peak <= 0:
            return 0.0
        return float(max(0.0, (peak - prices[-1]) / peak))

    def apply_regime_overrides(
        self, direction: SignalDirection, strength: float, confidence: float,
        drawdown: float, volatility: Optional[float],
        regime: Optional[MarketRegime] = None
    ) -> Tuple[SignalDirection, float, float, Optional[OverrideReason], List[str]]:
        """
        Returns (direction, strength, confidence, override_reason, tags).

        Drawdown beyond the limit forces NEUTRAL. Volatility beyond the
        ceiling halves strength. Otherwise strength is scaled by regime.
        """
        cfg = self.config
        tags: List[str] = []

        if drawdown > cfg.max_drawdown:
            tags.append(OverrideReason.MAX_DRAWDOWN_REACHED.value)
            logger.warning(f"Drawdown {drawdown:.1%} exceeds {cfg.max_drawdown:.0%}, forcing NEUTRAL")
            return SignalDirection.NEUTRAL, 0.0, confidence, OverrideReason.MAX_DRAWDOWN_REACHED, tags

        vol = volatility if volatility is not None and math.isfinite(volatility) else None

        if vol is not None and vol > cfg.elevated_volatility:
            confidence *= 0.8
            tags.append("ELEVATED_VOLATILITY")

        if vol is not None and vol > cfg.volatility_ceiling:
            tags.append(OverrideReason.HIGH_VOLATILITY.value)
            return direction, strength * 0.5, confidence, OverrideReason.HIGH_VOLATILITY, tags

        if regime is not None:
            multiplier = cfg.regime_strength_multipliers.get(regime.volatility_regime.value, 1.0)
            strength = min(strength * multiplier, 1.0)

        return direction, strength, confidence, None, tags

    # =====================================================================
    # Recommendation
    # =====================================================================

    def evaluate(self, signal: CombinedSignal, price: Optional[float],
                 atr: Optional[float] = None, volatility: Optional[float] = None,
                 drawdown: float = 0.0,
                 regime: Optional[MarketRegime] = None) -> RiskAdjustedRecommendation:
        """Build a recommendation for a combined signal. Never raises."""
        try:
            if price is None or not math.isfinite(price) or price <= 0:
                return self.conservative_default(signal.symbol, price, "invalid price")
            return self._evaluate(signal, price, atr, volatility, drawdown, regime)
        except Exception as e:
            logger.error(f"Risk evaluation failed for {signal.symbol}: {e}")
            return self.conservative_default(signal.symbol, price, str(e))

    def _evaluate(self, signal: CombinedSignal, price: float, atr: Optional[float],
                  volatility: Optional[float], drawdown: float,
                  regime: Optional[MarketRegime]) -> RiskAdjustedRecommendation:
        cfg = self.config

        direction, strength, confidence, reason, tags = self.apply_regime_overrides(
            signal.direction, signal.strength, signal.confidence,
            drawdown, volatility, regime
        )

        if atr is None or not math.isfinite(atr) or atr <= 0:
            atr = price * cfg.fallback_atr_pct
            tags.append("FALLBACK_ATR")

        stop_loss, take_profit, risk_reward = PositionSizer.stop_levels(
            price, atr, direction,
            cfg.stop_loss_atr_multiple, cfg.take_profit_atr_multiple
        )

        kelly = self.kelly_fraction(signal.symbol)
        if direction == SignalDirection.NEUTRAL:
            position_size = 0.0
        else:
            position_size = kelly * strength
            position_size *= PositionSizer.volatility_adjustment(volatility)
            position_size *= confidence
            position_size = min(max(position_size, 0.0), cfg.max_position_size)

        return RiskAdjustedRecommendation(
            symbol=signal.symbol,
            direction=direction,
            strength=strength,
            confidence=confidence,
            entry_price=price,
            position_size_fraction=position_size,
            stop_loss=stop_loss,
            take_profit=take_profit,
            risk_reward_ratio=risk_reward,
            kelly_fraction=kelly,
            drawdown=drawdown,
            volatility=volatility,
            override_reason=reason,
            tags=tags,
            timestamp=signal.timestamp
        )

    def conservative_default(self, symbol: str, price: Optional[float],
                             reason: str = "") -> RiskAdjustedRecommendation:
        """Flat, zero-size recommendation used when inputs are unusable."""
        logger.warning(f"Conservative default recommendation for {symbol}: {reason}")
        entry = price if price is not None and math.isfinite(price) and price > 0 else 0.0
        return RiskAdjustedRecommendation(
            symbol=symbol,
            direction=SignalDirection.NEUTRAL,
            strength=0.0,
            confidence=0.0,
            entry_price=entry,
            position_size_fraction=0.0,
            stop_loss=entry,
            take_profit=entry,
            risk_reward_ratio=0.0,
            override_reason=OverrideReason.DEGRADED_INPUT,
            tags=[OverrideReason.DEGRADED_INPUT.value]
        )

    @staticmethod
    def strategy_label(volatility: Optional[float], regime: Optional[MarketRegime],
                       confidence: float) -> str:
        """Volatility posture: MOMENTUM, DEFENSIVE, ACCUMULATION, CONSERVATIVE, HEDGED or BALANCED."""
        if volatility is None or regime is None:
            return "CONSERVATIVE"

        vol_regime = regime.volatility_regime
        if vol_regime == VolatilityRegime.HIGH_VOLATILITY and volatility > 1.2:
            return "MOMENTUM" if confidence > 0.7 else "DEFENSIVE"
        if vol_regime == VolatilityRegime.LOW_VOLATILITY and volatility < 0.3:
            return "ACCUMULATION" if confidence > 0.8 else "CONSERVATIVE"
        if vol_regime == VolatilityRegime.DIVERGENT:
            return "HEDGED"
        return "BALANCED"
