"""
Placeholder Models Module
=========================
"""
from .placeholder_models import (
    MLProxyModels,
    StatisticalHeuristics
)

__all__ = [
    'MLProxyModels',
    'StatisticalHeuristics'
]
