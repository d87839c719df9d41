"""
Strategy Definitions
====================
Strategy data model and the library of preset strategies.

A strategy tells the aggregator which indicators to score (and how much
each counts), the minimum rule confidence for entries, and the
risk-management block used for sizing and exits. Strategies are passed
explicitly into every risk and backtest call.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import logging

import numpy as np

from .errors import ConfigurationError
from .indicators import IndicatorName, Signal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndicatorConfig:
    """One indicator a strategy scores, with its weight."""
    name: IndicatorName
    weight: float
    parameters: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class TradingRule:
    """Entry rule: signals below ``confidence`` do not qualify."""
    condition: str
    action: Signal
    confidence: float
    stop_loss: Optional[float] = None  # Percent
    take_profit: Optional[float] = None  # Percent


@dataclass
class RiskManagementConfig:
    """Per-strategy risk block. Sizes and drawdown are fractions, stops are percents."""
    max_position_size: float
    max_drawdown: float
    stop_loss_percentage: float
    take_profit_percentage: float
    risk_per_trade: float


@dataclass
class StrategyPerformance:
    """Track record used for Kelly sizing."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0  # Percent
    gross_profit: float = 0.0
    gross_loss: float = 0.0  # Positive number
    total_return: float = 0.0
    total_return_percentage: float = 0.0
    max_drawdown_percentage: float = 0.0
    sharpe_ratio: float = 0.0
    profit_factor: float = 0.0

    @property
    def average_win(self) -> float:
        return self.gross_profit / self.winning_trades if self.winning_trades else 0.0

    @property
    def average_loss(self) -> float:
        return self.gross_loss / self.losing_trades if self.losing_trades else 0.0

    @classmethod
    def from_trade_pnls(cls, pnls: Sequence[float], initial_balance: float = 0.0,
                        max_drawdown_percentage: float = 0.0,
                        sharpe_ratio: float = 0.0) -> 'StrategyPerformance':
        """Build a track record from realized trade P&L values."""
        values = np.asarray(list(pnls), dtype=float)
        wins = values[values > 0]
        losses = values[values <= 0]
        gross_profit = float(wins.sum())
        gross_loss = float(abs(losses.sum()))
        total_return = float(values.sum())

        return cls(
            total_trades=len(values),
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=len(wins) / len(values) * 100 if len(values) else 0.0,
            gross_profit=gross_profit,
            gross_loss=gross_loss,
            total_return=total_return,
            total_return_percentage=total_return / initial_balance * 100 if initial_balance else 0.0,
            max_drawdown_percentage=max_drawdown_percentage,
            sharpe_ratio=sharpe_ratio,
            profit_factor=_profit_factor(gross_profit, gross_loss)
        )

    def combined(self, other: 'StrategyPerformance') -> 'StrategyPerformance':
        """
        Track record covering the trades of both records.

        Counts and gross figures add up; rates are recomputed. Drawdown is
        the worse of the two and the Sharpe ratio comes from ``other`` once
        it has trades.
        """
        total = self.total_trades + other.total_trades
        winning = self.winning_trades + other.winning_trades
        gross_profit = self.gross_profit + other.gross_profit
        gross_loss = self.gross_loss + other.gross_loss

        return StrategyPerformance(
            total_trades=total,
            winning_trades=winning,
            losing_trades=self.losing_trades + other.losing_trades,
            win_rate=winning / total * 100 if total else 0.0,
            gross_profit=gross_profit,
            gross_loss=gross_loss,
            total_return=self.total_return + other.total_return,
            total_return_percentage=self.total_return_percentage + other.total_return_percentage,
            max_drawdown_percentage=max(self.max_drawdown_percentage, other.max_drawdown_percentage),
            sharpe_ratio=other.sharpe_ratio if other.total_trades else self.sharpe_ratio,
            profit_factor=_profit_factor(gross_profit, gross_loss)
        )


def _profit_factor(gross_profit: float, gross_loss: float) -> float:
    if gross_loss > 0:
        return gross_profit / gross_loss
    return float('inf') if gross_profit > 0 else 0.0


@dataclass
class TradingStrategy:
    """A complete, injectable strategy definition."""
    id: str
    name: str
    description: str
    indicators: List[IndicatorConfig]
    rules: List[TradingRule]
    risk_management: RiskManagementConfig
    is_active: bool = True
    symbols: List[str] = field(default_factory=list)  # Empty: every symbol
    performance: StrategyPerformance = field(default_factory=StrategyPerformance)

    def weight_table(self) -> Dict[IndicatorName, float]:
        return {ind.name: ind.weight for ind in self.indicators}

    def applies_to(self, symbol: str) -> bool:
        return not self.symbols or symbol in self.symbols

    def rules_for(self, action: Signal) -> List[TradingRule]:
        return [rule for rule in self.rules if rule.action == action]

    def validate(self) -> 'TradingStrategy':
        """Raise ConfigurationError if the definition is unusable."""
        if not self.id:
            raise ConfigurationError("Strategy id is required")
        if not self.indicators:
            raise ConfigurationError(f"Strategy {self.id} has no indicators")
        if any(ind.weight < 0 for ind in self.indicators):
            raise ConfigurationError(f"Strategy {self.id} has negative indicator weights")
        if sum(ind.weight for ind in self.indicators) <= 0:
            raise ConfigurationError(f"Strategy {self.id} indicator weights sum to zero")
        if not self.rules:
            raise ConfigurationError(f"Strategy {self.id} has no rules")

        rm = self.risk_management
        if rm is None:
            raise ConfigurationError(f"Strategy {self.id} has no risk management block")
        if not 0 < rm.max_position_size <= 1:
            raise ConfigurationError(f"Strategy {self.id}: max_position_size must be in (0, 1]")
        if not 0 < rm.max_drawdown <= 1:
            raise ConfigurationError(f"Strategy {self.id}: max_drawdown must be in (0, 1]")
        if rm.stop_loss_percentage <= 0 or rm.take_profit_percentage <= 0:
            raise ConfigurationError(f"Strategy {self.id}: stop loss / take profit must be > 0")
        if not 0 < rm.risk_per_trade <= 1:
            raise ConfigurationError(f"Strategy {self.id}: risk_per_trade must be in (0, 1]")
        return self


def _symmetric_rules(buy: str, sell: str, confidence: float,
                     stop_loss: float, take_profit: float) -> List[TradingRule]:
    return [
        TradingRule(buy, Signal.BUY, confidence, stop_loss, take_profit),
        TradingRule(sell, Signal.SELL, confidence, stop_loss, take_profit)
    ]


class StrategyFactory:
    """Preset strategies."""

    @staticmethod
    def create_moving_average_crossover() -> TradingStrategy:
        """Trend following: EMA crossover confirmed by MACD."""
        return TradingStrategy(
            id='ma_crossover_trend',
            name='Moving Average Crossover (Trend Following)',
            description='EMA 12/26 crossover with MACD confirmation; best in trending markets.',
            indicators=[
                IndicatorConfig(IndicatorName.EMA_12, 0.4, {'period': 12}),
                IndicatorConfig(IndicatorName.EMA_26, 0.4, {'period': 26}),
                IndicatorConfig(IndicatorName.MACD, 0.2, {'fast': 12, 'slow': 26, 'signal': 9})
            ],
            rules=_symmetric_rules(
                'EMA_12 crosses above EMA_26 AND MACD > 0',
                'EMA_12 crosses below EMA_26 AND MACD < 0',
                75, 3, 9
            ),
            risk_management=RiskManagementConfig(0.10, 0.15, 3, 9, 0.02)
        )

    @staticmethod
    def create_mean_reversion() -> TradingStrategy:
        """Fade RSI / Bollinger extremes, confirmed by the stochastic."""
        return TradingStrategy(
            id='mean_reversion_rsi_bb',
            name='Mean Reversion (RSI + Bollinger Bands)',
            description='Buys oversold touches of the lower band, sells overbought upper-band touches.',
            indicators=[
                IndicatorConfig(IndicatorName.RSI_14, 0.35, {'period': 14}),
                IndicatorConfig(IndicatorName.BB_20, 0.35, {'period': 20, 'num_std': 2}),
                IndicatorConfig(IndicatorName.STOCH_14, 0.30, {'period': 14})
            ],
            rules=_symmetric_rules(
                'RSI_14 < 30 AND price <= BB lower AND STOCH < 20',
                'RSI_14 > 70 AND price >= BB upper AND STOCH > 80',
                80, 2, 4
            ),
            risk_management=RiskManagementConfig(0.15, 0.10, 2, 4, 0.015)
        )

    @staticmethod
    def create_momentum_breakout() -> TradingStrategy:
        """Keltner breakouts with MACD and VWAP confirmation."""
        return TradingStrategy(
            id='momentum_breakout',
            name='Momentum Breakout',
            description='Trades channel breakouts backed by momentum and volume-weighted price.',
            indicators=[
                IndicatorConfig(IndicatorName.KC_20, 0.30, {'period': 20, 'atr_period': 10}),
                IndicatorConfig(IndicatorName.ATR_14, 0.20, {'period': 14}),
                IndicatorConfig(IndicatorName.MACD, 0.25, {'fast': 12, 'slow': 26, 'signal': 9}),
                IndicatorConfig(IndicatorName.VWAP, 0.25)
            ],
            rules=_symmetric_rules(
                'price > KC upper AND MACD > signal AND price > VWAP',
                'price < KC lower AND MACD < signal AND price < VWAP',
                70, 4, 12
            ),
            risk_management=RiskManagementConfig(0.08, 0.20, 4, 12, 0.025)
        )

    @staticmethod
    def create_volume_price_analysis() -> TradingStrategy:
        """Volume-confirmed price moves."""
        return TradingStrategy(
            id='volume_price_analysis',
            name='Volume Price Analysis',
            description='Follows moves confirmed by OBV, money flow and accumulation.',
            indicators=[
                IndicatorConfig(IndicatorName.VWAP, 0.30),
                IndicatorConfig(IndicatorName.OBV, 0.25),
                IndicatorConfig(IndicatorName.MFI_14, 0.25, {'period': 14}),
                IndicatorConfig(IndicatorName.AD_LINE, 0.20)
            ],
            rules=_symmetric_rules(
                'OBV rising AND MFI < 30 AND A/D accumulating',
                'OBV falling AND MFI > 70 AND A/D distributing',
                75, 2.5, 6
            ),
            risk_management=RiskManagementConfig(0.12, 0.12, 2.5, 6, 0.018)
        )

    @staticmethod
    def create_multi_timeframe_confluence() -> TradingStrategy:
        """Broad confluence of trend, momentum, bands and VWAP."""
        return TradingStrategy(
            id='multi_timeframe_confluence',
            name='Multi-Indicator Confluence',
            description='Requires agreement across trend, oscillator, band and volume indicators.',
            indicators=[
                IndicatorConfig(IndicatorName.EMA_12, 0.2, {'period': 12}),
                IndicatorConfig(IndicatorName.RSI_14, 0.2, {'period': 14}),
                IndicatorConfig(IndicatorName.MACD, 0.2, {'fast': 12, 'slow': 26, 'signal': 9}),
                IndicatorConfig(IndicatorName.BB_20, 0.2, {'period': 20}),
                IndicatorConfig(IndicatorName.VWAP, 0.2)
            ],
            rules=_symmetric_rules(
                'EMA, RSI, MACD, BB and VWAP all bullish',
                'EMA, RSI, MACD, BB and VWAP all bearish',
                85, 3, 9
            ),
            risk_management=RiskManagementConfig(0.15, 0.10, 3, 9, 0.02)
        )

    @staticmethod
    def create_scalping() -> TradingStrategy:
        """Fast in-and-out trades on short-period indicators."""
        return TradingStrategy(
            id='scalping_strategy',
            name='Scalping Strategy',
            description='Short holding periods with tight stops on fast indicators.',
            indicators=[
                IndicatorConfig(IndicatorName.EMA_5, 0.25, {'period': 5}),
                IndicatorConfig(IndicatorName.RSI_7, 0.25, {'period': 7}),
                IndicatorConfig(IndicatorName.WILLIAMS_R_14, 0.25, {'period': 14}),
                IndicatorConfig(IndicatorName.VWAP, 0.25)
            ],
            rules=_symmetric_rules(
                'price > EMA_5 AND RSI_7 < 30 AND Williams %R < -80',
                'price < EMA_5 AND RSI_7 > 70 AND Williams %R > -20',
                60, 0.5, 1.5
            ),
            risk_management=RiskManagementConfig(0.05, 0.05, 0.5, 1.5, 0.005)
        )

    @classmethod
    def get_all_strategies(cls) -> List[TradingStrategy]:
        return [
            cls.create_moving_average_crossover(),
            cls.create_mean_reversion(),
            cls.create_momentum_breakout(),
            cls.create_volume_price_analysis(),
            cls.create_multi_timeframe_confluence(),
            cls.create_scalping()
        ]

    @classmethod
    def get_strategy(cls, strategy_id: str) -> TradingStrategy:
        for strategy in cls.get_all_strategies():
            if strategy.id == strategy_id:
                return strategy
        raise ConfigurationError(f"Unknown strategy: {strategy_id}")

    @classmethod
    def strategy_ids(cls) -> List[str]:
        return [s.id for s in cls.get_all_strategies()]
