"""
Backtest Module
===============
"""
from .engine import (
    BacktestEngine,
    BacktestConfig,
    BacktestResult,
    BacktestTrade,
    EquityPoint,
    TradeStatus
)
from .performance import PerformanceAnalyzer, PerformanceAnalysis

__all__ = [
    'BacktestEngine',
    'BacktestConfig',
    'BacktestResult',
    'BacktestTrade',
    'EquityPoint',
    'TradeStatus',
    'PerformanceAnalyzer',
    'PerformanceAnalysis'
]
