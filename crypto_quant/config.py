"""
Configuration Management
========================
Central configuration for the trading core.

Configuration is loaded once (at startup or backtest invocation) and
passed into the components that need it; nothing here reads files
implicitly.
"""

from dataclasses import dataclass, field, fields
from typing import Dict, List
from enum import Enum
import json
import os

from .errors import ConfigurationError
from .indicators.base import IndicatorName


class TradingMode(Enum):
    """Trading operation modes."""
    BACKTEST = "backtest"
    PAPER = "paper"
    LIVE = "live"


class MarketRegime(Enum):
    """Market regime derived from Bollinger bandwidth."""
    TRENDING = "trending"
    RANGING = "ranging"
    VOLATILE = "volatile"
    UNKNOWN = "unknown"


def default_indicator_weights() -> Dict[IndicatorName, float]:
    return {
        IndicatorName.SMA_20: 0.08,
        IndicatorName.SMA_50: 0.06,
        IndicatorName.EMA_12: 0.09,
        IndicatorName.EMA_26: 0.07,
        IndicatorName.DEMA_14: 0.05,
        IndicatorName.MACD: 0.12,
        IndicatorName.RSI_14: 0.10,
        IndicatorName.RSI_7: 0.06,
        IndicatorName.STOCH_14: 0.08,
        IndicatorName.WILLIAMS_R_14: 0.05,
        IndicatorName.CCI_20: 0.04,
        IndicatorName.BB_20: 0.09,
        IndicatorName.ATR_14: 0.03,
        IndicatorName.KC_20: 0.06,
        IndicatorName.VWAP: 0.08,
        IndicatorName.OBV: 0.07,
        IndicatorName.MFI_14: 0.06,
        IndicatorName.AD_LINE: 0.05
    }


def default_regime_multipliers() -> Dict[MarketRegime, Dict[IndicatorName, float]]:
    return {
        MarketRegime.TRENDING: {
            IndicatorName.MACD: 1.3,
            IndicatorName.EMA_12: 1.2,
            IndicatorName.EMA_26: 1.2,
            IndicatorName.RSI_14: 0.8,
            IndicatorName.BB_20: 0.8
        },
        MarketRegime.RANGING: {
            IndicatorName.RSI_14: 1.3,
            IndicatorName.STOCH_14: 1.2,
            IndicatorName.BB_20: 1.2,
            IndicatorName.MACD: 0.7,
            IndicatorName.EMA_12: 0.8
        },
        MarketRegime.VOLATILE: {
            IndicatorName.ATR_14: 1.5,
            IndicatorName.BB_20: 1.3,
            IndicatorName.KC_20: 1.2,
            IndicatorName.VWAP: 1.2,
            IndicatorName.MFI_14: 1.2
        }
    }


@dataclass
class RiskLimits:
    """Risk manager ceilings. Percentages are expressed 0-100."""
    max_position_size_percent: float = 10.0  # Notional per trade vs portfolio value
    max_portfolio_heat: float = 50.0  # Aggregate exposure, % of portfolio
    max_daily_loss_percent: float = 5.0  # Of start-of-day equity
    max_drawdown: float = 10.0  # % from peak equity
    max_leverage: float = 1.0
    max_consecutive_losses: int = 3
    max_correlation_risk: float = 0.5
    max_volatility_threshold: float = 5.0  # Daily volatility, %
    circuit_breaker_cooldown_seconds: float = 3600.0

    def validate(self):
        positive = {
            'max_position_size_percent': self.max_position_size_percent,
            'max_portfolio_heat': self.max_portfolio_heat,
            'max_daily_loss_percent': self.max_daily_loss_percent,
            'max_drawdown': self.max_drawdown,
            'max_leverage': self.max_leverage,
            'max_volatility_threshold': self.max_volatility_threshold
        }
        for name, value in positive.items():
            if value is None or value <= 0:
                raise ConfigurationError(f"RiskLimits.{name} must be > 0, got {value}")
        for name in ('max_position_size_percent', 'max_drawdown', 'max_daily_loss_percent'):
            if getattr(self, name) > 100:
                raise ConfigurationError(f"RiskLimits.{name} is a percentage (0-100)")
        if self.max_consecutive_losses < 1:
            raise ConfigurationError("RiskLimits.max_consecutive_losses must be >= 1")
        if self.max_correlation_risk < 0:
            raise ConfigurationError("RiskLimits.max_correlation_risk must be >= 0")
        if self.circuit_breaker_cooldown_seconds < 0:
            raise ConfigurationError("RiskLimits.circuit_breaker_cooldown_seconds must be >= 0")


@dataclass
class AggregatorConfig:
    """Signal aggregation configuration."""
    weights: Dict[IndicatorName, float] = field(default_factory=default_indicator_weights)
    regime_multipliers: Dict[MarketRegime, Dict[IndicatorName, float]] = field(
        default_factory=default_regime_multipliers
    )

    # Winner must beat loser by this much on the normalized [0, 1] scale
    min_confluence: float = 0.15

    # Bollinger bandwidth regime thresholds
    volatile_bandwidth: float = 0.05
    ranging_bandwidth: float = 0.02

    history_size: int = 400

    def validate(self):
        if not self.weights:
            raise ConfigurationError("AggregatorConfig.weights is empty")
        if any(w < 0 for w in self.weights.values()):
            raise ConfigurationError("Indicator weights must be non-negative")
        if sum(self.weights.values()) <= 0:
            raise ConfigurationError("Indicator weights must not all be zero")
        if not 0 <= self.min_confluence <= 1:
            raise ConfigurationError("AggregatorConfig.min_confluence must be in [0, 1]")
        if self.ranging_bandwidth >= self.volatile_bandwidth:
            raise ConfigurationError("ranging_bandwidth must be below volatile_bandwidth")


@dataclass
class BacktestSettings:
    """Simulation parameters shared by every backtest run."""
    commission_rate: float = 0.001
    slippage_rate: float = 0.001
    max_size_slippage: float = 0.002  # Cap on the size-impact component
    warmup_candles: int = 50
    min_candles: int = 50
    min_confidence: float = 60.0
    reversal_confidence: float = 70.0
    alignment_strength: float = 70.0  # Dissenting strategy indicator above this blocks entry
    max_open_positions: int = 5
    risk_per_trade: float = 0.02
    assumed_stop_distance: float = 0.05
    max_position_fraction: float = 0.10
    cash_buffer: float = 0.95
    risk_free_rate: float = 0.02  # Annual
    periods_per_year: int = 252
    volatility_lookback: int = 20

    def validate(self):
        if self.commission_rate < 0 or self.slippage_rate < 0:
            raise ConfigurationError("Commission and slippage rates must be >= 0")
        if self.min_candles < 1 or self.warmup_candles < 0:
            raise ConfigurationError("Invalid warm-up / minimum candle counts")
        if not 0 < self.max_position_fraction <= 1:
            raise ConfigurationError("max_position_fraction must be in (0, 1]")
        if not 0 < self.cash_buffer <= 1:
            raise ConfigurationError("cash_buffer must be in (0, 1]")


@dataclass
class EngineConfig:
    """Live trading engine configuration."""
    symbols: List[str] = field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"])
    timeframe: str = "1h"

    # Technical / advisory blend
    technical_weight: float = 0.4
    advisory_weight: float = 0.6
    score_threshold: float = 0.6
    confidence_threshold: float = 70.0

    # Hard caps, reset once per trading day
    max_daily_trades: int = 50
    max_positions: int = 5
    max_position_fraction: float = 0.2
    cash_buffer: float = 0.9

    # Position management
    reversal_confidence: float = 75.0
    commission_rate: float = 0.001
    volatility_lookback: int = 20
    close_positions_on_stop: bool = True

    def validate(self):
        if not self.symbols:
            raise ConfigurationError("EngineConfig.symbols is empty")
        if abs(self.technical_weight + self.advisory_weight - 1.0) > 1e-9:
            raise ConfigurationError("technical_weight + advisory_weight must equal 1")
        if self.max_daily_trades < 1 or self.max_positions < 1:
            raise ConfigurationError("Daily trade and position caps must be >= 1")


@dataclass
class SystemConfig:
    """Master system configuration."""
    mode: TradingMode = TradingMode.PAPER
    initial_capital: float = 10000.0

    risk: RiskLimits = field(default_factory=RiskLimits)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    backtest: BacktestSettings = field(default_factory=BacktestSettings)
    engine: EngineConfig = field(default_factory=EngineConfig)

    def validate(self) -> 'SystemConfig':
        """Raise ConfigurationError on any invalid section."""
        if self.initial_capital is None or self.initial_capital <= 0:
            raise ConfigurationError(f"initial_capital must be > 0, got {self.initial_capital}")
        self.risk.validate()
        self.aggregator.validate()
        self.backtest.validate()
        self.engine.validate()
        return self

    def save(self, filepath: str):
        """Save configuration to JSON file."""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'SystemConfig':
        """Load and validate configuration from a JSON file."""
        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config {filepath}: {e}") from e
        return cls.from_dict(data).validate()

    def to_dict(self) -> dict:
        return {
            'mode': self.mode.value,
            'initial_capital': self.initial_capital,
            'risk': _section_to_dict(self.risk),
            'aggregator': {
                'weights': {k.value: v for k, v in self.aggregator.weights.items()},
                'regime_multipliers': {
                    regime.value: {k.value: v for k, v in table.items()}
                    for regime, table in self.aggregator.regime_multipliers.items()
                },
                'min_confluence': self.aggregator.min_confluence,
                'volatile_bandwidth': self.aggregator.volatile_bandwidth,
                'ranging_bandwidth': self.aggregator.ranging_bandwidth,
                'history_size': self.aggregator.history_size
            },
            'backtest': _section_to_dict(self.backtest),
            'engine': _section_to_dict(self.engine)
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SystemConfig':
        _reject_unknown(data, {'mode', 'initial_capital', 'risk', 'aggregator', 'backtest', 'engine'}, 'config')
        config = cls()
        try:
            config.mode = TradingMode(data.get('mode', config.mode.value))
        except ValueError as e:
            raise ConfigurationError(f"Unknown trading mode: {data.get('mode')}") from e
        config.initial_capital = float(data.get('initial_capital', config.initial_capital))

        config.risk = _section_from_dict(RiskLimits, data.get('risk', {}), 'risk')
        config.backtest = _section_from_dict(BacktestSettings, data.get('backtest', {}), 'backtest')
        config.engine = _section_from_dict(EngineConfig, data.get('engine', {}), 'engine')

        aggregator = dict(data.get('aggregator', {}))
        weights = aggregator.pop('weights', None)
        multipliers = aggregator.pop('regime_multipliers', None)
        config.aggregator = _section_from_dict(AggregatorConfig, aggregator, 'aggregator')
        if weights is not None:
            config.aggregator.weights = {
                _indicator(name): float(w) for name, w in weights.items()
            }
        if multipliers is not None:
            config.aggregator.regime_multipliers = {
                _regime(regime): {_indicator(name): float(m) for name, m in table.items()}
                for regime, table in multipliers.items()
            }
        return config


def _section_to_dict(section) -> dict:
    return {f.name: getattr(section, f.name) for f in fields(section)}


def _section_from_dict(cls, data: dict, section: str):
    known = {f.name for f in fields(cls)}
    _reject_unknown(data, known, section)
    return cls(**data)


def _reject_unknown(data: dict, known: set, section: str):
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{section}' must be an object")
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"Unknown option(s) in '{section}': {sorted(unknown)}")


def _indicator(name: str) -> IndicatorName:
    try:
        return IndicatorName(name)
    except ValueError as e:
        raise ConfigurationError(f"Unknown indicator: {name}") from e


def _regime(name: str) -> MarketRegime:
    try:
        return MarketRegime(name)
    except ValueError as e:
        raise ConfigurationError(f"Unknown market regime: {name}") from e
