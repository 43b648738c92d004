"""
Feature Engineering Module
==========================
"""
from .indicator_engine import (
    IndicatorEngine,
    IndicatorSet,
    TechnicalIndicators
)

__all__ = [
    'IndicatorEngine',
    'IndicatorSet',
    'TechnicalIndicators'
]
