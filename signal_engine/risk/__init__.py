"""
Risk Management Module
======================
"""
from .risk_manager import (
    OverrideReason,
    PositionSizer,
    RiskAdjustedRecommendation,
    RiskManager,
    TradeOutcomeTracker,
    TradeStats
)

__all__ = [
    'OverrideReason',
    'PositionSizer',
    'RiskAdjustedRecommendation',
    'RiskManager',
    'TradeOutcomeTracker',
    'TradeStats'
]
