"""
Volatility Module
=================
"""
from .volatility_model import (
    VolatilityCalculator,
    VolatilityEstimate,
    VolatilityModel,
    VolatilityPrediction
)

__all__ = [
    'VolatilityCalculator',
    'VolatilityEstimate',
    'VolatilityModel',
    'VolatilityPrediction'
]
