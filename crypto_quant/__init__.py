"""
Crypto Quantitative Trading Core
================================

Algorithmic trading core for crypto pairs:

FEATURES:
- Streaming technical indicators (trend, momentum, volatility, volume)
- Regime-aware weighted signal aggregation
- Ordered pre-trade risk checks, Kelly sizing, circuit breaker
- Deterministic candle-by-candle backtesting with performance analysis
- Live orchestration with optional advisory signal blending

PIPELINE:
    ┌─────────┐
    │ CANDLES │  ← one closed OHLCV bar per symbol per interval
    └────┬────┘
         ↓
    ┌──────────────┐
    │ INDICATORS   │  ← SMA, EMA, MACD, RSI, Bollinger, ATR, VWAP, OBV, MFI...
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ AGGREGATOR   │  ← weighted Buy / Sell / Neutral with confidence
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ RISK MANAGER │  ← validation, sizing, circuit breaker
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ EXECUTION    │  ← executor interface (paper or exchange connector)
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ MONITORING   │  ← events, alerts, performance
    └──────────────┘

USAGE:
    # Backtest a preset strategy over a CSV of candles
    python -m crypto_quant.orchestrator --data btc_1h.csv --strategy ma_crossover_trend

    # Programmatic usage
    from crypto_quant import TradingEngine, SystemConfig, StrategyFactory

    engine = TradingEngine(SystemConfig(), strategies=StrategyFactory.get_all_strategies())
    engine.start()
    engine.process_market_data("BTCUSDT", candle)

MODULES:
    - data: Candles and loaders
    - indicators: Technical indicator library
    - signals: Signal aggregation
    - risk: Risk management (validation, sizing, circuit breaker)
    - backtest: Backtest engine and performance analysis
    - execution: Order executor interface and paper executor
    - monitoring: Event bus, alerts, performance tracking
"""

from .config import SystemConfig, TradingMode, MarketRegime, RiskLimits
from .errors import (
    TradingError,
    ConfigurationError,
    InsufficientDataError,
    DataValidationError,
    ExecutionError
)
from .data import Candle, load_candles_csv
from .indicators import IndicatorName, Signal
from .signals import SignalAggregator, AggregatedSignal
from .strategies import StrategyFactory, TradingStrategy
from .risk import RiskManager, Portfolio, Position, TradeRequest, ValidationResult
from .execution import OrderExecutor, PaperExecutor, OrderSide, OrderType
from .monitoring import EventBus, EventType, AlertManager, PerformanceTracker
from .backtest import BacktestConfig, BacktestEngine, BacktestResult, PerformanceAnalyzer
from .orchestrator import TradingEngine, AIAdvisory, TradingDecision, main

__version__ = "1.0.0"
__all__ = [
    # Main
    'TradingEngine',
    'AIAdvisory',
    'TradingDecision',
    'SystemConfig',
    'TradingMode',
    'MarketRegime',
    'RiskLimits',
    'main',

    # Errors
    'TradingError',
    'ConfigurationError',
    'InsufficientDataError',
    'DataValidationError',
    'ExecutionError',

    # Data
    'Candle',
    'load_candles_csv',

    # Signals
    'IndicatorName',
    'Signal',
    'SignalAggregator',
    'AggregatedSignal',

    # Strategies
    'StrategyFactory',
    'TradingStrategy',

    # Risk
    'RiskManager',
    'Portfolio',
    'Position',
    'TradeRequest',
    'ValidationResult',

    # Execution
    'OrderExecutor',
    'PaperExecutor',
    'OrderSide',
    'OrderType',

    # Monitoring
    'EventBus',
    'EventType',
    'AlertManager',
    'PerformanceTracker',

    # Backtest
    'BacktestConfig',
    'BacktestEngine',
    'BacktestResult',
    'PerformanceAnalyzer'
]
