"""
Regime Detection Module
=======================
"""
from .regime_detector import (
    MarketRegime,
    RegimeDetector,
    TrendRegime,
    VolatilityRegime
)

__all__ = [
    'MarketRegime',
    'RegimeDetector',
    'TrendRegime',
    'VolatilityRegime'
]
