"""
Signal Aggregation Module
=========================
"""
from .aggregator import (
    SignalAggregator,
    AggregatedSignal,
    SignalBreakdown,
    MarketSnapshot
)

__all__ = [
    'SignalAggregator',
    'AggregatedSignal',
    'SignalBreakdown',
    'MarketSnapshot'
]
