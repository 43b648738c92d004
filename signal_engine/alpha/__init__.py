"""
Alpha Models Module
===================
"""
from .signal_generator import (
    MLProxyOpinion,
    MomentumOpinion,
    OpinionModel,
    OpinionSource,
    SentimentOpinion,
    SignalContext,
    SignalGenerator,
    SignalOpinion,
    StatisticalOpinion,
    TechnicalOpinion,
    VolumeOpinion
)
from .signal_combiner import (
    CombinedSignal,
    SignalCombiner,
    SignalDirection
)

__all__ = [
    'MLProxyOpinion',
    'MomentumOpinion',
    'OpinionModel',
    'OpinionSource',
    'SentimentOpinion',
    'SignalContext',
    'SignalGenerator',
    'SignalOpinion',
    'StatisticalOpinion',
    'TechnicalOpinion',
    'VolumeOpinion',
    'CombinedSignal',
    'SignalCombiner',
    'SignalDirection'
]
