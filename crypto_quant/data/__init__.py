"""
Market Data Module
==================
"""
from .candles import (
    Candle,
    CandleHistory,
    validate_candles,
    candles_from_dataframe,
    candles_to_dataframe,
    load_candles_csv
)

__all__ = [
    'Candle',
    'CandleHistory',
    'validate_candles',
    'candles_from_dataframe',
    'candles_to_dataframe',
    'load_candles_csv'
]
