"""
Data Module
===========
"""
from .time_series import (
    AssetSeries,
    SeriesSnapshot,
    TimeSeriesStore,
    to_timestamp
)
from .data_manager import (
    DataManager,
    DataSource,
    MarketQuote,
    RateLimiter,
    SyntheticDataSource,
    YFinanceSource
)

__all__ = [
    'AssetSeries',
    'SeriesSnapshot',
    'TimeSeriesStore',
    'to_timestamp',
    'DataManager',
    'DataSource',
    'MarketQuote',
    'RateLimiter',
    'SyntheticDataSource',
    'YFinanceSource'
]
