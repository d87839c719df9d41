"""
Backtest Engine
===============
Deterministic candle-by-candle replay of the live decision pipeline:
    CANDLE → SIGNAL AGGREGATOR → STRATEGY GATES → RISK MANAGER → SIMULATED FILL

Fills model slippage that grows with order size plus a flat commission.
No wall-clock or random input reaches a trade outcome: identical candles
and configuration always produce an identical ``BacktestResult``.
"""

import pandas as pd
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence, Union
from enum import Enum
import logging
import math

from ..data import Candle, candles_from_dataframe, validate_candles
from ..errors import InsufficientDataError
from ..execution import OrderSide
from ..indicators import Signal
from ..monitoring.events import EventBus, EventType
from ..monitoring.metrics import max_drawdown, periodic_returns, profit_factor, sharpe_ratio
from ..risk import Portfolio, Position, PositionSide, RiskManager, TradeRequest
from ..signals import AggregatedSignal, SignalAggregator
from ..strategies import StrategyPerformance, TradingStrategy

logger = logging.getLogger(__name__)


@dataclass
class BacktestConfig:
    """What to replay and at which costs."""
    symbol: str
    timeframe: str = "1h"
    start_date: Optional[pd.Timestamp] = None
    end_date: Optional[pd.Timestamp] = None
    initial_balance: float = 10000.0
    commission: float = 0.001
    slippage: float = 0.001

    def __post_init__(self):
        if self.start_date is not None:
            self.start_date = pd.Timestamp(self.start_date)
        if self.end_date is not None:
            self.end_date = pd.Timestamp(self.end_date)

    @classmethod
    def from_settings(cls, symbol: str, settings, initial_balance: float = 10000.0,
                      timeframe: str = "1h", start_date=None, end_date=None) -> 'BacktestConfig':
        return cls(
            symbol=symbol,
            timeframe=timeframe,
            start_date=start_date,
            end_date=end_date,
            initial_balance=initial_balance,
            commission=settings.commission_rate,
            slippage=settings.slippage_rate
        )

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'timeframe': self.timeframe,
            'start_date': self.start_date.isoformat() if self.start_date is not None else None,
            'end_date': self.end_date.isoformat() if self.end_date is not None else None,
            'initial_balance': self.initial_balance,
            'commission': self.commission,
            'slippage': self.slippage
        }


class TradeStatus(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class BacktestTrade:
    """Simulated round trip. Exit fields are filled once, by ``closed``."""
    id: str
    symbol: str
    side: OrderSide
    entry_time: pd.Timestamp
    entry_price: float
    quantity: float
    commission: float
    reason: str
    status: TradeStatus = TradeStatus.OPEN
    exit_time: Optional[pd.Timestamp] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[str] = None
    pnl: Optional[float] = None
    pnl_percentage: Optional[float] = None

    def closed(self, exit_time: pd.Timestamp, exit_price: float, exit_commission: float,
               pnl: float, reason: str) -> 'BacktestTrade':
        if self.status == TradeStatus.CLOSED:
            raise ValueError(f"Trade {self.id} is already closed")
        cost = self.entry_price * self.quantity
        return replace(
            self,
            status=TradeStatus.CLOSED,
            exit_time=exit_time,
            exit_price=exit_price,
            exit_reason=reason,
            commission=self.commission + exit_commission,
            pnl=pnl,
            pnl_percentage=pnl / cost * 100 if cost > 0 else 0.0
        )

    @property
    def holding_hours(self) -> Optional[float]:
        if self.exit_time is None:
            return None
        return (self.exit_time - self.entry_time).total_seconds() / 3600

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'side': self.side.value,
            'entry_time': self.entry_time.isoformat(),
            'entry_price': self.entry_price,
            'quantity': self.quantity,
            'commission': self.commission,
            'reason': self.reason,
            'status': self.status.value,
            'exit_time': self.exit_time.isoformat() if self.exit_time is not None else None,
            'exit_price': self.exit_price,
            'exit_reason': self.exit_reason,
            'pnl': self.pnl,
            'pnl_percentage': self.pnl_percentage
        }


@dataclass(frozen=True)
class EquityPoint:
    timestamp: pd.Timestamp
    equity: float
    cash: float
    drawdown: float
    drawdown_percentage: float

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'equity': self.equity,
            'cash': self.cash,
            'drawdown': self.drawdown,
            'drawdown_percentage': self.drawdown_percentage
        }


@dataclass
class BacktestResult:
    """Summary metrics plus the full trade list and equity curve."""
    id: str
    config: BacktestConfig
    strategy_id: str
    final_balance: float
    total_return: float
    total_return_percentage: float
    max_drawdown: float
    max_drawdown_percentage: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    profit_factor: float
    sharpe_ratio: float
    trades: List[BacktestTrade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)

    @property
    def closed_trades(self) -> List[BacktestTrade]:
        return [t for t in self.trades if t.status == TradeStatus.CLOSED]

    def to_strategy_performance(self) -> StrategyPerformance:
        """Track record usable for Kelly sizing in the live engine."""
        return StrategyPerformance.from_trade_pnls(
            [t.pnl for t in self.closed_trades],
            initial_balance=self.config.initial_balance,
            max_drawdown_percentage=self.max_drawdown_percentage,
            sharpe_ratio=self.sharpe_ratio
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'config': self.config.to_dict(),
            'strategy_id': self.strategy_id,
            'final_balance': self.final_balance,
            'total_return': self.total_return,
            'total_return_percentage': self.total_return_percentage,
            'max_drawdown': self.max_drawdown,
            'max_drawdown_percentage': self.max_drawdown_percentage,
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'win_rate': self.win_rate,
            'profit_factor': None if math.isinf(self.profit_factor) else self.profit_factor,
            'sharpe_ratio': self.sharpe_ratio,
            'trades': [t.to_dict() for t in self.trades],
            'equity_curve': [p.to_dict() for p in self.equity_curve]
        }

    def equity_frame(self) -> pd.DataFrame:
        """Equity curve indexed by timestamp."""
        if not self.equity_curve:
            return pd.DataFrame(columns=['equity', 'cash', 'drawdown', 'drawdown_percentage'])
        df = pd.DataFrame([p.to_dict() for p in self.equity_curve])
        df['timestamp'] = pd.to_datetime(df['timestamp'])
        return df.set_index('timestamp')

    def trades_frame(self) -> pd.DataFrame:
        return pd.DataFrame([t.to_dict() for t in self.trades])


StepObserver = Callable[[Candle, Portfolio], None]


class BacktestEngine:
    """
    Event-driven backtester.

    Each run builds a fresh aggregator, portfolio and risk manager, so an
    engine can replay many strategies and independent runs never share
    state.
    """

    def __init__(self, config: BacktestConfig, settings=None, aggregator_config=None,
                 event_bus: Optional[EventBus] = None):
        from ..config import BacktestSettings
        self.config = config
        self.settings = settings or BacktestSettings()
        self.settings.validate()
        self.aggregator_config = aggregator_config
        self.event_bus = event_bus

        self.aggregator = SignalAggregator(config.symbol, aggregator_config)
        self.risk_manager: Optional[RiskManager] = None
        self.trades: List[BacktestTrade] = []
        self.equity_curve: List[EquityPoint] = []
        self._open_trades: Dict[str, int] = {}
        self._trade_seq = 0

        logger.info(
            f"Backtest engine initialized for {config.symbol} "
            f"({config.start_date} - {config.end_date}), balance {config.initial_balance:,.2f}"
        )

    @property
    def portfolio(self) -> Portfolio:
        return self.risk_manager.portfolio

    def run_backtest(self, historical_data: Union[Sequence[Candle], pd.DataFrame],
                     strategy: TradingStrategy,
                     on_step: Optional[StepObserver] = None) -> BacktestResult:
        """
        Replay ``historical_data`` through ``strategy``.

        Args:
            historical_data: Candles (or an OHLCV DataFrame) in time order
            strategy: Strategy definition; validated before anything runs
            on_step: Optional observer called after every processed candle

        Returns:
            BacktestResult

        Raises:
            ConfigurationError: invalid strategy
            DataValidationError: malformed candles
            InsufficientDataError: no data, or fewer usable candles than required
        """
        strategy.validate()

        if isinstance(historical_data, pd.DataFrame):
            historical_data = candles_from_dataframe(historical_data, self.config.timeframe)
        candles = list(historical_data)
        if not candles:
            raise InsufficientDataError("No historical data provided for backtesting")
        validate_candles(candles)

        filtered = self._filter_by_date_range(candles)
        if len(filtered) < self.settings.min_candles:
            raise InsufficientDataError(
                f"Insufficient data for backtesting: {len(filtered)} candles "
                f"(minimum {self.settings.min_candles} required)"
            )

        logger.info(
            f"Starting backtest of {strategy.name} on {self.config.symbol}: {len(filtered)} candles"
        )

        self._reset_state(strategy)

        for index, candle in enumerate(filtered):
            self._process_candle(index, candle, strategy)
            if on_step is not None:
                on_step(candle, self.portfolio)

        last = filtered[-1]
        for symbol in list(self.portfolio.positions):
            self._close_position(symbol, last.weighted_price, last.close_time, "End of backtest")

        result = self._generate_result(strategy)

        logger.info(
            f"Backtest completed: {result.total_trades} trades, final balance "
            f"{result.final_balance:,.2f} ({result.total_return_percentage:+.2f}%), "
            f"max drawdown {result.max_drawdown_percentage:.2f}%"
        )
        return result

    def _reset_state(self, strategy: TradingStrategy):
        from ..config import RiskLimits
        rm = strategy.risk_management
        limits = RiskLimits(
            max_position_size_percent=rm.max_position_size * 100,
            max_drawdown=rm.max_drawdown * 100
        )
        self.risk_manager = RiskManager(
            limits=limits,
            portfolio=Portfolio(cash=self.config.initial_balance),
            event_bus=self.event_bus
        )
        self.aggregator.reset()
        self.trades = []
        self.equity_curve = []
        self._open_trades = {}
        self._trade_seq = 0

    def _process_candle(self, index: int, candle: Candle, strategy: TradingStrategy):
        symbol = self.config.symbol
        now = candle.close_time

        self.aggregator.add_candle(candle)
        self.risk_manager.roll_day(now)

        price = candle.weighted_price
        self.risk_manager.mark_to_market(symbol, price)
        self.risk_manager.update_volatility_data(
            symbol, self.aggregator.recent_closes(self.settings.volatility_lookback + 1), now
        )

        if index < self.settings.warmup_candles:
            return

        signal = self.aggregator.get_aggregated_signal(strategy.weight_table())
        position = self.portfolio.get_position(symbol)

        if position is not None:
            reason = self._exit_reason(position, signal, strategy)
            if reason:
                self._close_position(symbol, price, now, reason)
        elif self._should_enter(signal, strategy, price):
            self._open_position(signal, strategy, price, now)

        self._record_equity_point(now)

    def _should_enter(self, signal: AggregatedSignal, strategy: TradingStrategy, price: float) -> bool:
        if signal.signal == Signal.NEUTRAL:
            return False
        if signal.confidence < self.settings.min_confidence:
            return False
        if not self._aligns_with_strategy(signal, strategy):
            return False

        if len(self.portfolio.positions) >= self.settings.max_open_positions:
            logger.debug("Maximum positions limit reached")
            return False

        required_cash = self._position_size(price, 70.0, strategy) * price * 1.1
        if required_cash > self.portfolio.cash:
            logger.debug(f"Insufficient cash: need {required_cash:,.2f}, have {self.portfolio.cash:,.2f}")
            return False
        return True

    def _aligns_with_strategy(self, signal: AggregatedSignal, strategy: TradingStrategy) -> bool:
        """No strong dissenting strategy indicator and every rule for the signal's action met."""
        for indicator in strategy.indicators:
            part = signal.breakdown.get(indicator.name)
            if part is None:
                continue
            dissents = part.signal != Signal.NEUTRAL and part.signal != signal.signal
            if dissents and part.strength > self.settings.alignment_strength:
                return False

        rules = strategy.rules_for(signal.signal)
        return bool(rules) and all(rule.confidence <= signal.confidence for rule in rules)

    def _exit_reason(self, position: Position, signal: AggregatedSignal,
                     strategy: TradingStrategy) -> Optional[str]:
        rm = strategy.risk_management
        pnl_pct = position.pnl_percentage

        if pnl_pct <= -rm.stop_loss_percentage:
            return f"Stop loss triggered at {pnl_pct:.2f}%"
        if pnl_pct >= rm.take_profit_percentage:
            return f"Take profit triggered at {pnl_pct:.2f}%"

        held = Signal.BUY if position.side == PositionSide.LONG else Signal.SELL
        if signal.signal == held.opposite and signal.confidence > self.settings.reversal_confidence:
            return f"Signal reversal with {signal.confidence:.1f}% confidence"
        return None

    def _position_size(self, price: float, confidence: float, strategy: TradingStrategy) -> float:
        """Risk-based size: fixed fraction at risk over an assumed stop distance."""
        if price <= 0:
            return 0.0
        settings = self.settings
        equity = self.portfolio.equity

        size = equity * settings.risk_per_trade / (price * settings.assumed_stop_distance)
        size *= min(1.5, confidence / 100)

        max_fraction = min(settings.max_position_fraction, strategy.risk_management.max_position_size)
        size = min(size, equity * max_fraction / price)
        size = min(size, self.portfolio.cash / price * settings.cash_buffer)
        return max(0.0, math.floor(size * 100) / 100)

    def _slippage(self, price: float, quantity: float) -> float:
        size_impact = min(self.settings.max_size_slippage, quantity / 10000 * 0.001)
        return price * (self.config.slippage + size_impact)

    def _open_position(self, signal: AggregatedSignal, strategy: TradingStrategy,
                       price: float, now: pd.Timestamp):
        symbol = self.config.symbol
        side = OrderSide.BUY if signal.signal == Signal.BUY else OrderSide.SELL
        quantity = self._position_size(price, signal.confidence, strategy)
        if quantity <= 0:
            return

        request = TradeRequest(symbol, side, quantity, price, strategy_id=strategy.id)
        validation = self.risk_manager.validate_trade(request, strategy, now)
        if not validation.approved:
            self._publish(EventType.TRADE_REJECTED, now, symbol=symbol, reasons=validation.reasons)
            return

        quantity = math.floor(min(quantity, validation.recommended_position_size) * 100) / 100
        if quantity <= 0:
            return

        slippage = self._slippage(price, quantity)
        fill = price + slippage if side == OrderSide.BUY else price - slippage
        commission = quantity * fill * self.config.commission
        if quantity * fill + commission > self.portfolio.cash:
            logger.warning(
                f"Insufficient cash for position: need {quantity * fill + commission:,.2f}, "
                f"have {self.portfolio.cash:,.2f}"
            )
            return

        position_side = PositionSide.from_order_side(side)
        self.risk_manager.open_position(
            symbol, position_side, quantity, fill,
            commission=commission,
            now=now,
            stop_loss=validation.recommended_stop_loss,
            strategy_id=strategy.id
        )

        self._trade_seq += 1
        trade = BacktestTrade(
            id=f"{symbol}-{self._trade_seq:05d}",
            symbol=symbol,
            side=side,
            entry_time=now,
            entry_price=fill,
            quantity=quantity,
            commission=commission,
            reason=f"Strategy signal with {signal.confidence:.1f}% confidence"
        )
        self._open_trades[symbol] = len(self.trades)
        self.trades.append(trade)

        logger.debug(f"Position opened: {position_side.value} {quantity} {symbol} @ {fill:.2f}")
        self._publish(EventType.POSITION_OPENED, now, symbol=symbol, side=position_side.value,
                      quantity=quantity, price=fill)

    def _close_position(self, symbol: str, price: float, now: pd.Timestamp, reason: str):
        position = self.portfolio.get_position(symbol)
        slippage = self._slippage(price, position.quantity)
        fill = price - slippage if position.side == PositionSide.LONG else price + slippage
        commission = position.quantity * fill * self.config.commission

        pnl = self.risk_manager.close_position(symbol, fill, commission, now)

        index = self._open_trades.pop(symbol)
        self.trades[index] = self.trades[index].closed(now, fill, commission, pnl, reason)

        logger.debug(f"Position closed: {symbol} @ {fill:.2f}, P&L {pnl:,.2f} ({reason})")
        self._publish(EventType.POSITION_CLOSED, now, symbol=symbol, pnl=pnl, reason=reason)

    def _record_equity_point(self, now: pd.Timestamp):
        portfolio = self.portfolio
        drawdown = max(0.0, portfolio.peak_equity - portfolio.equity)
        self.equity_curve.append(EquityPoint(
            timestamp=now,
            equity=portfolio.equity,
            cash=portfolio.cash,
            drawdown=drawdown,
            drawdown_percentage=portfolio.drawdown_percent
        ))

    def _filter_by_date_range(self, candles: List[Candle]) -> List[Candle]:
        reference = candles[0].open_time
        start = _align(self.config.start_date, reference)
        end = _align(self.config.end_date, reference)
        return [
            c for c in candles
            if (start is None or c.open_time >= start) and (end is None or c.open_time <= end)
        ]

    def _generate_result(self, strategy: TradingStrategy) -> BacktestResult:
        initial = self.config.initial_balance
        final = self.portfolio.equity

        closed = [t for t in self.trades if t.status == TradeStatus.CLOSED]
        pnls = [t.pnl for t in closed]
        winning = [p for p in pnls if p > 0]
        losing = [p for p in pnls if p < 0]

        equities = [initial] + [p.equity for p in self.equity_curve]
        dd_amount, dd_pct = max_drawdown(equities)
        returns = periodic_returns([p.equity for p in self.equity_curve])

        return BacktestResult(
            id=f"backtest_{self.config.symbol}_{strategy.id}",
            config=self.config,
            strategy_id=strategy.id,
            final_balance=final,
            total_return=final - initial,
            total_return_percentage=(final - initial) / initial * 100,
            max_drawdown=dd_amount,
            max_drawdown_percentage=dd_pct,
            total_trades=len(closed),
            winning_trades=len(winning),
            losing_trades=len(losing),
            win_rate=len(winning) / len(closed) * 100 if closed else 0.0,
            profit_factor=profit_factor(pnls),
            sharpe_ratio=sharpe_ratio(returns, self.settings.risk_free_rate, self.settings.periods_per_year),
            trades=list(self.trades),
            equity_curve=list(self.equity_curve)
        )

    def _publish(self, event_type: EventType, now: pd.Timestamp, **payload):
        if self.event_bus is not None:
            self.event_bus.publish(event_type, timestamp=now, **payload)


def _align(bound: Optional[pd.Timestamp], reference: pd.Timestamp) -> Optional[pd.Timestamp]:
    """Match a date bound's timezone awareness to the candle timestamps."""
    if bound is None:
        return None
    if reference.tzinfo is None:
        return bound.tz_convert(None) if bound.tzinfo is not None else bound
    return bound.tz_localize(reference.tzinfo) if bound.tzinfo is None else bound.tz_convert(reference.tzinfo)
