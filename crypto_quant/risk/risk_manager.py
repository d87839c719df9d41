"""
Risk Manager Module
===================
Position and portfolio model, pre-trade validation, sizing and the
consecutive-loss circuit breaker.

Core principle: "No emotional overrides once live"
Every entry passes the same ordered set of checks; rejections come back
as data (``ValidationResult``), never as exceptions.

Time is injected (candle timestamps in backtests, a clock callable live)
so circuit-breaker cooldowns and daily rollovers are deterministic.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple
from enum import Enum
import datetime
import logging
import threading

from ..execution import OrderSide, OrderType
from ..monitoring.events import EventBus, EventType

logger = logging.getLogger(__name__)

# Assumed adverse move used when projecting the loss of a new trade
POTENTIAL_LOSS_FRACTION = 0.05
STOP_LOSS_ATR_MULTIPLE = 2.0
FALLBACK_STOP_LOSS = 0.02
KELLY_FRACTION = 0.25
KELLY_MIN = 0.01
KELLY_MAX = 0.10
MIN_VOLATILITY_SIZE_FACTOR = 0.1
MIN_KELLY_VOLATILITY_FACTOR = 0.5

# Early-warning thresholds as a fraction of each limit
HEAT_WARNING = 0.8
DRAWDOWN_WARNING = 0.7
DAILY_LOSS_WARNING = 0.8
LEVERAGE_WARNING = 0.8
CORRELATION_WARNING = 0.8


class PositionSide(Enum):
    """Direction of an open position."""
    LONG = "LONG"
    SHORT = "SHORT"

    @classmethod
    def from_order_side(cls, side: OrderSide) -> 'PositionSide':
        return cls.LONG if side == OrderSide.BUY else cls.SHORT

    @property
    def entry_side(self) -> OrderSide:
        return OrderSide.BUY if self is PositionSide.LONG else OrderSide.SELL

    @property
    def exit_side(self) -> OrderSide:
        return self.entry_side.opposite


@dataclass
class Position:
    """Represents an open position."""
    symbol: str
    side: PositionSide
    quantity: float
    entry_price: float
    current_price: float
    entry_time: Optional[pd.Timestamp] = None
    entry_commission: float = 0.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    strategy_id: Optional[str] = None

    @property
    def cost_basis(self) -> float:
        """Total cost of position."""
        return self.quantity * self.entry_price

    @property
    def notional(self) -> float:
        """Gross exposure at the current price."""
        return abs(self.quantity * self.current_price)

    @property
    def unrealized_pnl(self) -> float:
        """Unrealized profit/loss, before commissions."""
        if self.side == PositionSide.LONG:
            return (self.current_price - self.entry_price) * self.quantity
        return (self.entry_price - self.current_price) * self.quantity

    @property
    def pnl_percentage(self) -> float:
        """Unrealized P&L as percentage of cost basis."""
        return self.unrealized_pnl / self.cost_basis * 100 if self.cost_basis > 0 else 0.0

    @property
    def market_value(self) -> float:
        """
        Cash the position would return if closed now, before exit costs.

        Longs are worth ``quantity * current_price``. Shorts lock up their
        entry notional as margin, so they are worth that margin plus the
        unrealized P&L: ``quantity * (2 * entry_price - current_price)``.
        """
        if self.side == PositionSide.LONG:
            return self.quantity * self.current_price
        return self.quantity * (2 * self.entry_price - self.current_price)

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'side': self.side.value,
            'quantity': self.quantity,
            'entry_price': self.entry_price,
            'current_price': self.current_price,
            'unrealized_pnl': self.unrealized_pnl,
            'pnl_percentage': self.pnl_percentage,
            'market_value': self.market_value,
            'entry_time': self.entry_time.isoformat() if self.entry_time is not None else None,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'strategy_id': self.strategy_id
        }


@dataclass
class Portfolio:
    """
    Cash plus open positions.

    Only ``open_position`` and ``close_position`` move cash; equity and
    drawdown are always derived from the positions, so
    ``equity == cash + sum(position.market_value)`` holds after every call.
    """
    cash: float
    positions: Dict[str, Position] = field(default_factory=dict)
    initial_capital: float = 0.0
    peak_equity: float = 0.0
    realized_pnl: float = 0.0

    def __post_init__(self):
        if self.initial_capital <= 0:
            self.initial_capital = self.cash
        if self.peak_equity <= 0:
            self.peak_equity = self.equity

    @property
    def position_value(self) -> float:
        return sum(p.market_value for p in self.positions.values())

    @property
    def equity(self) -> float:
        return self.cash + self.position_value

    @property
    def gross_exposure(self) -> float:
        return sum(p.notional for p in self.positions.values())

    @property
    def drawdown_percent(self) -> float:
        if self.peak_equity <= 0:
            return 0.0
        return max(0.0, (self.peak_equity - self.equity) / self.peak_equity * 100)

    def has_position(self, symbol: str) -> bool:
        return symbol in self.positions

    def get_position(self, symbol: str) -> Optional[Position]:
        return self.positions.get(symbol)

    def open_position(self, symbol: str, side: PositionSide, quantity: float, price: float,
                      commission: float = 0.0, timestamp: Optional[pd.Timestamp] = None,
                      stop_loss: Optional[float] = None, take_profit: Optional[float] = None,
                      strategy_id: Optional[str] = None) -> Position:
        """Open a new position, debiting notional plus commission from cash."""
        if symbol in self.positions:
            raise ValueError(f"Position already open for {symbol}")
        if quantity <= 0 or price <= 0:
            raise ValueError(f"Invalid position {quantity} @ {price} for {symbol}")

        position = Position(
            symbol=symbol,
            side=side,
            quantity=quantity,
            entry_price=price,
            current_price=price,
            entry_time=timestamp,
            entry_commission=commission,
            stop_loss=stop_loss,
            take_profit=take_profit,
            strategy_id=strategy_id
        )
        self.positions[symbol] = position
        self.cash -= quantity * price + commission
        self.update_peak()
        return position

    def mark_to_market(self, symbol: str, price: float) -> Optional[Position]:
        position = self.positions.get(symbol)
        if position is not None:
            position.current_price = price
            self.update_peak()
        return position

    def close_position(self, symbol: str, price: float, commission: float = 0.0) -> Tuple[Position, float]:
        """
        Close a position at ``price``.

        Returns:
            (closed position, realized P&L net of entry and exit commission)
        """
        position = self.positions.get(symbol)
        if position is None:
            raise KeyError(f"No open position for {symbol}")

        position.current_price = price
        pnl = position.unrealized_pnl - position.entry_commission - commission
        self.cash += position.market_value - commission
        self.realized_pnl += pnl
        del self.positions[symbol]
        self.update_peak()
        return position, pnl

    def update_peak(self):
        equity = self.equity
        if equity > self.peak_equity:
            self.peak_equity = equity

    def snapshot(self) -> dict:
        return {
            'cash': self.cash,
            'equity': self.equity,
            'position_value': self.position_value,
            'peak_equity': self.peak_equity,
            'drawdown_percent': self.drawdown_percent,
            'realized_pnl': self.realized_pnl,
            'positions': {s: p.to_dict() for s, p in self.positions.items()}
        }


@dataclass(frozen=True)
class TradeRequest:
    """A proposed entry submitted for validation."""
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    order_type: OrderType = OrderType.MARKET
    strategy_id: Optional[str] = None

    @property
    def notional(self) -> float:
        return self.quantity * self.price


class RiskSeverity(Enum):
    """Severity attached to checks and alerts."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class RiskCheck:
    """Outcome of one validation check."""
    name: str
    passed: bool
    reason: str
    severity: RiskSeverity

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'passed': self.passed,
            'reason': self.reason,
            'severity': self.severity.value
        }


@dataclass
class ValidationResult:
    """Full audit trail of a trade validation."""
    approved: bool
    adjusted_quantity: float
    checks: List[RiskCheck]
    risk_score: float
    recommended_stop_loss: float
    recommended_position_size: float

    @property
    def failed_checks(self) -> List[RiskCheck]:
        return [c for c in self.checks if not c.passed]

    @property
    def reasons(self) -> List[str]:
        return [f"{c.name}: {c.reason}" for c in self.failed_checks]

    def check(self, name: str) -> Optional[RiskCheck]:
        for c in self.checks:
            if c.name == name:
                return c
        return None

    def to_dict(self) -> dict:
        return {
            'approved': self.approved,
            'adjusted_quantity': self.adjusted_quantity,
            'checks': [c.to_dict() for c in self.checks],
            'risk_score': self.risk_score,
            'recommended_stop_loss': self.recommended_stop_loss,
            'recommended_position_size': self.recommended_position_size
        }


class RiskAlertType(Enum):
    PORTFOLIO_HEAT = "portfolio_heat"
    DRAWDOWN = "drawdown"
    DAILY_LOSS = "daily_loss"
    LEVERAGE = "leverage"
    CORRELATION = "correlation"


@dataclass(frozen=True)
class RiskAlert:
    """Early warning that a metric is approaching its limit."""
    alert_type: RiskAlertType
    severity: RiskSeverity
    message: str
    value: float
    limit: float

    def to_dict(self) -> dict:
        return {
            'type': self.alert_type.value,
            'severity': self.severity.value,
            'message': self.message,
            'value': self.value,
            'limit': self.limit
        }


@dataclass
class DailyRiskStats:
    """Per-session counters, reset by ``RiskManager.roll_day``."""
    date: Optional[datetime.date] = None
    start_of_day_equity: float = 0.0
    trades_count: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    realized_pnl: float = 0.0
    total_volume: float = 0.0

    def to_dict(self) -> dict:
        return {
            'date': self.date.isoformat() if self.date is not None else None,
            'start_of_day_equity': self.start_of_day_equity,
            'trades_count': self.trades_count,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'realized_pnl': self.realized_pnl,
            'total_volume': self.total_volume
        }


@dataclass(frozen=True)
class VolatilityData:
    daily_volatility: float  # Percent
    atr: float
    last_updated: Optional[pd.Timestamp] = None


class CircuitState(Enum):
    NORMAL = "normal"
    CIRCUIT_BROKEN = "circuit_broken"


@dataclass
class RiskReport:
    """Read-only risk snapshot."""
    timestamp: Optional[pd.Timestamp]
    portfolio_value: float
    cash: float
    portfolio_heat: float
    current_drawdown: float
    current_leverage: float
    daily_pnl: float
    daily_stats: DailyRiskStats
    active_positions: List[Position]
    risk_limits: object
    circuit_breaker_active: bool
    consecutive_losses: int
    risk_alerts: List[RiskAlert]

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat() if self.timestamp is not None else None,
            'portfolio_value': self.portfolio_value,
            'cash': self.cash,
            'portfolio_heat': self.portfolio_heat,
            'current_drawdown': self.current_drawdown,
            'current_leverage': self.current_leverage,
            'daily_pnl': self.daily_pnl,
            'daily_stats': self.daily_stats.to_dict(),
            'active_positions': [p.to_dict() for p in self.active_positions],
            'risk_limits': dict(self.risk_limits.__dict__),
            'circuit_breaker_active': self.circuit_breaker_active,
            'consecutive_losses': self.consecutive_losses,
            'risk_alerts': [a.to_dict() for a in self.risk_alerts]
        }


class RiskManager:
    """
    Stateful trade validator and portfolio keeper.

    Responsibilities:
    - Ordered pre-trade checks (size, heat, daily loss, correlation,
      volatility, circuit breaker, drawdown, leverage)
    - Conservative Kelly sizing and ATR stop-loss recommendations
    - Position bookkeeping for the engine that owns this instance
    - Consecutive-loss circuit breaker with cooldown
    - Early-warning risk alerts
    """

    def __init__(self, limits=None, portfolio: Optional[Portfolio] = None,
                 initial_capital: float = 10000.0, event_bus: Optional[EventBus] = None,
                 clock: Optional[Callable[[], pd.Timestamp]] = None):
        from ..config import RiskLimits
        self.limits = limits or RiskLimits()
        self.limits.validate()

        self.portfolio = portfolio if portfolio is not None else Portfolio(cash=initial_capital)
        self.event_bus = event_bus
        self.clock = clock

        self.daily_stats = DailyRiskStats(start_of_day_equity=self.portfolio.equity)
        self.volatility_data: Dict[str, VolatilityData] = {}
        self.correlations: Dict[FrozenSet[str], float] = {}

        self.circuit_state = CircuitState.NORMAL
        self.circuit_reason = ""
        self.circuit_tripped_at: Optional[pd.Timestamp] = None
        self.consecutive_losses = 0

        self._lock = threading.RLock()

        logger.info(f"Risk Manager initialized with portfolio value {self.portfolio.equity:,.2f}")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_trade(self, request: TradeRequest, strategy=None,
                       now: Optional[pd.Timestamp] = None) -> ValidationResult:
        """
        Run every pre-trade check.

        Args:
            request: Proposed entry
            strategy: Strategy whose track record drives Kelly sizing
            now: Evaluation time for the circuit-breaker cooldown

        Returns:
            ValidationResult; approved only if all checks pass
        """
        now = self._resolve_now(now)
        with self._lock:
            self.is_circuit_breaker_active(now)

            checks = [
                self._check_position_size(request),
                self._check_portfolio_heat(request),
                self._check_daily_loss(request),
                self._check_correlation(request),
                self._check_volatility(request),
                self._check_circuit_breaker(),
                self._check_drawdown(),
                self._check_leverage(request)
            ]
            approved = all(c.passed for c in checks)

            result = ValidationResult(
                approved=approved,
                adjusted_quantity=request.quantity if approved else 0.0,
                checks=checks,
                risk_score=self.calculate_risk_score(request),
                recommended_stop_loss=self.calculate_recommended_stop_loss(request),
                recommended_position_size=self.calculate_optimal_position_size(request, strategy)
            )

        if not approved:
            logger.warning(
                f"Trade rejected for {request.symbol} {request.side.value} "
                f"{request.quantity:.6f} @ {request.price:.2f}: {result.reasons}"
            )
        else:
            logger.debug(f"Trade approved for {request.symbol}, risk score {result.risk_score:.1f}")

        return result

    def _check_position_size(self, request: TradeRequest) -> RiskCheck:
        equity = self.portfolio.equity
        limit = equity * self.limits.max_position_size_percent / 100
        passed = equity > 0 and request.notional <= limit
        return RiskCheck(
            name='Position Size Limit',
            passed=passed,
            reason='OK' if passed else f"Position size {request.notional:.2f} exceeds limit {limit:.2f}",
            severity=RiskSeverity.HIGH
        )

    def _check_portfolio_heat(self, request: TradeRequest) -> RiskCheck:
        total_heat = self.get_portfolio_heat() + self._trade_heat(request)
        passed = total_heat <= self.limits.max_portfolio_heat
        return RiskCheck(
            name='Portfolio Heat Limit',
            passed=passed,
            reason='OK' if passed else
            f"Portfolio heat {total_heat:.2f}% exceeds limit {self.limits.max_portfolio_heat}%",
            severity=RiskSeverity.MEDIUM
        )

    def _check_daily_loss(self, request: TradeRequest) -> RiskCheck:
        projected = max(0.0, -self.daily_stats.realized_pnl) + request.notional * POTENTIAL_LOSS_FRACTION
        limit = self._daily_loss_limit()
        passed = projected <= limit
        return RiskCheck(
            name='Daily Loss Limit',
            passed=passed,
            reason='OK' if passed else f"Potential daily loss {projected:.2f} exceeds limit {limit:.2f}",
            severity=RiskSeverity.HIGH
        )

    def _check_correlation(self, request: TradeRequest) -> RiskCheck:
        risk = self.calculate_correlation_risk(request.symbol)
        passed = risk <= self.limits.max_correlation_risk
        return RiskCheck(
            name='Correlation Risk',
            passed=passed,
            reason='OK' if passed else
            f"Correlation risk {risk:.2f} exceeds limit {self.limits.max_correlation_risk}",
            severity=RiskSeverity.MEDIUM
        )

    def _check_volatility(self, request: TradeRequest) -> RiskCheck:
        data = self.volatility_data.get(request.symbol)
        if data is None:
            return RiskCheck('Volatility Risk', True, 'No volatility data available', RiskSeverity.LOW)

        high = data.daily_volatility > self.limits.max_volatility_threshold
        passed = not high or request.quantity <= self._volatility_adjusted_size(request)
        return RiskCheck(
            name='Volatility Risk',
            passed=passed,
            reason=f"High volatility detected: {data.daily_volatility:.2f}%" if high else 'OK',
            severity=RiskSeverity.MEDIUM
        )

    def _check_circuit_breaker(self) -> RiskCheck:
        broken = self.circuit_state == CircuitState.CIRCUIT_BROKEN
        return RiskCheck(
            name='Circuit Breaker',
            passed=not broken,
            reason=f"Circuit breaker active: {self.circuit_reason}" if broken else 'OK',
            severity=RiskSeverity.HIGH
        )

    def _check_drawdown(self) -> RiskCheck:
        drawdown = self.portfolio.drawdown_percent
        passed = drawdown <= self.limits.max_drawdown
        return RiskCheck(
            name='Drawdown Limit',
            passed=passed,
            reason='OK' if passed else
            f"Current drawdown {drawdown:.2f}% exceeds limit {self.limits.max_drawdown}%",
            severity=RiskSeverity.HIGH
        )

    def _check_leverage(self, request: TradeRequest) -> RiskCheck:
        equity = self.portfolio.equity
        leverage = (self.portfolio.gross_exposure + request.notional) / equity if equity > 0 else float('inf')
        passed = leverage <= self.limits.max_leverage
        return RiskCheck(
            name='Leverage Limit',
            passed=passed,
            reason='OK' if passed else
            f"Leverage {leverage:.2f}x exceeds limit {self.limits.max_leverage}x",
            severity=RiskSeverity.MEDIUM
        )

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def calculate_optimal_position_size(self, request: TradeRequest, strategy=None) -> float:
        """
        Conservative Kelly size, never above the requested quantity or
        ``equity * max_leverage / price``.
        """
        if request.price <= 0:
            return 0.0

        size = request.quantity
        performance = getattr(strategy, 'performance', None)
        if performance is not None and performance.total_trades > 0:
            win_rate = performance.win_rate / 100
            avg_win = performance.average_win
            avg_loss = performance.average_loss
            win_loss_ratio = avg_win / avg_loss if avg_loss > 0 else float('inf')

            if win_loss_ratio > 0:
                kelly = win_rate - (1 - win_rate) / win_loss_ratio
            else:
                kelly = -1.0
            conservative = max(KELLY_MIN, min(KELLY_MAX, kelly * KELLY_FRACTION))

            data = self.volatility_data.get(request.symbol)
            vol_adjustment = max(MIN_KELLY_VOLATILITY_FACTOR, 1 - data.daily_volatility / 100) if data else 1.0

            optimal = self.portfolio.equity * conservative * vol_adjustment / request.price
            size = min(optimal, request.quantity)

        leverage_cap = max(0.0, self.portfolio.equity) * self.limits.max_leverage / request.price
        return max(0.0, min(size, leverage_cap))

    def calculate_recommended_stop_loss(self, request: TradeRequest) -> float:
        """2x ATR from entry when volatility data exists, else a flat 2%."""
        data = self.volatility_data.get(request.symbol)
        is_buy = request.side == OrderSide.BUY

        if data is not None:
            distance = data.atr * STOP_LOSS_ATR_MULTIPLE
            return request.price - distance if is_buy else request.price + distance

        return request.price * (1 - FALLBACK_STOP_LOSS) if is_buy else request.price * (1 + FALLBACK_STOP_LOSS)

    def calculate_risk_score(self, request: TradeRequest) -> float:
        """Composite 0-100 score: size, volatility, correlation and heat, 25 points each."""
        equity = self.portfolio.equity
        score = 0.0
        if equity > 0:
            score += min(25.0, request.notional / equity * 100)
        else:
            score += 25.0

        data = self.volatility_data.get(request.symbol)
        if data is not None:
            score += min(25.0, data.daily_volatility)

        score += min(25.0, self.calculate_correlation_risk(request.symbol) * 100)
        score += min(25.0, self.get_portfolio_heat() / 4)
        return min(100.0, score)

    def _volatility_adjusted_size(self, request: TradeRequest) -> float:
        data = self.volatility_data.get(request.symbol)
        if data is None:
            return request.quantity
        return request.quantity * max(MIN_VOLATILITY_SIZE_FACTOR, 1 - data.daily_volatility / 100)

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def open_position(self, symbol: str, side: PositionSide, quantity: float, price: float,
                      commission: float = 0.0, now: Optional[pd.Timestamp] = None,
                      stop_loss: Optional[float] = None, take_profit: Optional[float] = None,
                      strategy_id: Optional[str] = None) -> Position:
        """Record a filled entry."""
        now = self._resolve_now(now)
        with self._lock:
            position = self.portfolio.open_position(
                symbol, side, quantity, price,
                commission=commission,
                timestamp=now,
                stop_loss=stop_loss,
                take_profit=take_profit,
                strategy_id=strategy_id
            )
            self.daily_stats.trades_count += 1
            self.daily_stats.total_volume += quantity * price

        logger.info(f"Opened {side.value} {symbol}: {quantity:.6f} @ {price:.2f}")
        self._publish_alerts(now)
        return position

    def mark_to_market(self, symbol: str, price: float) -> Optional[Position]:
        with self._lock:
            return self.portfolio.mark_to_market(symbol, price)

    def close_position(self, symbol: str, exit_price: float, commission: float = 0.0,
                       now: Optional[pd.Timestamp] = None) -> float:
        """
        Close a position and update loss streaks and daily stats.

        Returns:
            Realized P&L net of entry and exit commission
        """
        now = self._resolve_now(now)
        with self._lock:
            position, pnl = self.portfolio.close_position(symbol, exit_price, commission)

        logger.info(
            f"Closed {position.side.value} {symbol}: {position.quantity:.6f} @ {exit_price:.2f}, "
            f"P&L {pnl:,.2f}"
        )
        self.record_trade_result(pnl, now)
        self._publish_alerts(now)
        return pnl

    def record_trade_result(self, pnl: float, now: Optional[pd.Timestamp] = None):
        """Update daily stats and the loss streak; trip the breaker at the limit."""
        now = self._resolve_now(now)
        with self._lock:
            self.daily_stats.realized_pnl += pnl
            if pnl > 0:
                self.daily_stats.winning_trades += 1
                self.consecutive_losses = 0
                return

            self.daily_stats.losing_trades += 1
            self.consecutive_losses += 1
            should_trip = (
                self.consecutive_losses >= self.limits.max_consecutive_losses and
                self.circuit_state == CircuitState.NORMAL
            )

        if should_trip:
            self.trip_circuit_breaker(f"{self.consecutive_losses} consecutive losses", now)

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def trip_circuit_breaker(self, reason: str, now: Optional[pd.Timestamp] = None):
        now = self._resolve_now(now)
        with self._lock:
            self.circuit_state = CircuitState.CIRCUIT_BROKEN
            self.circuit_reason = reason
            self.circuit_tripped_at = now
            losses = self.consecutive_losses

        logger.warning(f"Circuit breaker activated: {reason} (daily P&L {self.daily_stats.realized_pnl:,.2f})")
        self._publish(EventType.CIRCUIT_BREAKER_TRIPPED, now, reason=reason, consecutive_losses=losses)

    def reset_circuit_breaker(self, now: Optional[pd.Timestamp] = None, reason: str = "Manual reset"):
        now = self._resolve_now(now)
        with self._lock:
            self.circuit_state = CircuitState.NORMAL
            self.circuit_reason = ""
            self.circuit_tripped_at = None
            self.consecutive_losses = 0

        logger.info(f"Circuit breaker reset: {reason}")
        self._publish(EventType.CIRCUIT_BREAKER_RESET, now, reason=reason)

    def is_circuit_breaker_active(self, now: Optional[pd.Timestamp] = None) -> bool:
        """Current breaker state; resets it first if the cooldown has elapsed."""
        now = self._resolve_now(now)
        with self._lock:
            if self.circuit_state == CircuitState.NORMAL:
                return False
            expired = self._cooldown_elapsed(now)

        if expired:
            self.reset_circuit_breaker(now, reason="Cooldown elapsed")
            return False
        return True

    def _cooldown_elapsed(self, now: Optional[pd.Timestamp]) -> bool:
        if self.circuit_tripped_at is None or now is None:
            return False
        elapsed = (now - self.circuit_tripped_at).total_seconds()
        return elapsed >= self.limits.circuit_breaker_cooldown_seconds

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    def update_volatility_data(self, symbol: str, prices: Sequence[float],
                               now: Optional[pd.Timestamp] = None):
        """Daily volatility (population std of returns, %) and mean absolute move."""
        values = np.asarray(list(prices), dtype=float)
        if len(values) < 2:
            return

        returns = np.diff(values) / values[:-1]
        volatility = float(np.std(returns)) * 100
        atr = float(np.mean(np.abs(np.diff(values))))

        with self._lock:
            self.volatility_data[symbol] = VolatilityData(volatility, atr, now)

    def update_correlations(self, price_history: Mapping[str, Sequence[float]]):
        """Pairwise correlation of simple returns for every symbol pair."""
        frame = pd.DataFrame({s: pd.Series(list(p), dtype=float) for s, p in price_history.items()})
        if len(frame.columns) < 2 or len(frame) < 3:
            return

        matrix = frame.pct_change().corr()
        symbols = list(matrix.columns)
        with self._lock:
            for i, a in enumerate(symbols):
                for b in symbols[i + 1:]:
                    value = matrix.loc[a, b]
                    if pd.notna(value):
                        self.correlations[frozenset((a, b))] = float(value)

    def set_correlation(self, symbol_a: str, symbol_b: str, value: float):
        if not -1.0 <= value <= 1.0:
            raise ValueError(f"Correlation must be in [-1, 1], got {value}")
        with self._lock:
            self.correlations[frozenset((symbol_a, symbol_b))] = value

    def get_correlation(self, symbol_a: str, symbol_b: str) -> float:
        return self.correlations.get(frozenset((symbol_a, symbol_b)), 0.0)

    def roll_day(self, now: Optional[pd.Timestamp]):
        """Start a new session when ``now`` falls on a new calendar day."""
        if now is None:
            return
        day = pd.Timestamp(now).date()

        with self._lock:
            if self.daily_stats.date == day:
                return
            first_session = self.daily_stats.date is None
            if first_session:
                self.daily_stats.date = day
                self.daily_stats.start_of_day_equity = self.portfolio.equity
                return
            self.daily_stats = DailyRiskStats(date=day, start_of_day_equity=self.portfolio.equity)

        logger.debug(f"Risk session rolled to {day}")
        self._publish(EventType.DAILY_RESET, now, date=day.isoformat())

    # ------------------------------------------------------------------
    # Metrics, alerts and reports
    # ------------------------------------------------------------------

    def get_portfolio_heat(self) -> float:
        equity = self.portfolio.equity
        if equity <= 0:
            return 0.0
        return self.portfolio.gross_exposure / equity * 100

    def get_current_leverage(self) -> float:
        equity = self.portfolio.equity
        return self.portfolio.gross_exposure / equity if equity > 0 else 0.0

    def calculate_correlation_risk(self, symbol: str) -> float:
        """Average of |correlation| x position weight over the other open positions."""
        equity = self.portfolio.equity
        others = [p for p in self.portfolio.positions.values() if p.symbol != symbol]
        if not others or equity <= 0:
            return 0.0

        total = sum(abs(self.get_correlation(symbol, p.symbol)) * p.notional / equity for p in others)
        return total / len(others)

    def _trade_heat(self, request: TradeRequest) -> float:
        equity = self.portfolio.equity
        return request.notional / equity * 100 if equity > 0 else float('inf')

    def _daily_loss_limit(self) -> float:
        base = self.daily_stats.start_of_day_equity or self.portfolio.equity
        return base * self.limits.max_daily_loss_percent / 100

    def daily_loss_limit_reached(self) -> bool:
        return -self.daily_stats.realized_pnl >= self._daily_loss_limit()

    def generate_risk_alerts(self) -> List[RiskAlert]:
        """Metrics that have crossed their early-warning fraction."""
        alerts = []
        limits = self.limits

        heat = self.get_portfolio_heat()
        if heat > limits.max_portfolio_heat * HEAT_WARNING:
            alerts.append(RiskAlert(
                RiskAlertType.PORTFOLIO_HEAT, RiskSeverity.MEDIUM,
                f"Portfolio heat at {heat:.1f}%, approaching limit",
                heat, limits.max_portfolio_heat
            ))

        drawdown = self.portfolio.drawdown_percent
        if drawdown > limits.max_drawdown * DRAWDOWN_WARNING:
            alerts.append(RiskAlert(
                RiskAlertType.DRAWDOWN, RiskSeverity.HIGH,
                f"Drawdown at {drawdown:.1f}%, approaching limit",
                drawdown, limits.max_drawdown
            ))

        daily_loss = -self.daily_stats.realized_pnl
        daily_limit = self._daily_loss_limit()
        if daily_loss > daily_limit * DAILY_LOSS_WARNING:
            alerts.append(RiskAlert(
                RiskAlertType.DAILY_LOSS, RiskSeverity.HIGH,
                f"Daily loss at {daily_loss:.2f}, approaching limit",
                daily_loss, daily_limit
            ))

        leverage = self.get_current_leverage()
        if leverage > limits.max_leverage * LEVERAGE_WARNING:
            alerts.append(RiskAlert(
                RiskAlertType.LEVERAGE, RiskSeverity.MEDIUM,
                f"Leverage at {leverage:.2f}x, approaching limit",
                leverage, limits.max_leverage
            ))

        correlation = max(
            (self.calculate_correlation_risk(s) for s in self.portfolio.positions),
            default=0.0
        )
        if correlation > limits.max_correlation_risk * CORRELATION_WARNING:
            alerts.append(RiskAlert(
                RiskAlertType.CORRELATION, RiskSeverity.MEDIUM,
                f"Correlation risk at {correlation:.2f}, approaching limit",
                correlation, limits.max_correlation_risk
            ))

        return alerts

    def generate_risk_report(self, now: Optional[pd.Timestamp] = None) -> RiskReport:
        """Snapshot of risk state. Never mutates the manager."""
        now = self._resolve_now(now)
        with self._lock:
            active = self.circuit_state == CircuitState.CIRCUIT_BROKEN and not self._cooldown_elapsed(now)
            return RiskReport(
                timestamp=now,
                portfolio_value=self.portfolio.equity,
                cash=self.portfolio.cash,
                portfolio_heat=self.get_portfolio_heat(),
                current_drawdown=self.portfolio.drawdown_percent,
                current_leverage=self.get_current_leverage(),
                daily_pnl=self.daily_stats.realized_pnl,
                daily_stats=replace(self.daily_stats),
                active_positions=[replace(p) for p in self.portfolio.positions.values()],
                risk_limits=replace(self.limits),
                circuit_breaker_active=active,
                consecutive_losses=self.consecutive_losses,
                risk_alerts=self.generate_risk_alerts()
            )

    def _publish_alerts(self, now: Optional[pd.Timestamp]):
        alerts = self.generate_risk_alerts()
        if alerts:
            for alert in alerts:
                logger.warning(f"Risk alert [{alert.severity.value}] {alert.message}")
            self._publish(EventType.RISK_ALERT, now, alerts=alerts)

    def _publish(self, event_type: EventType, now: Optional[pd.Timestamp], **payload):
        if self.event_bus is not None:
            self.event_bus.publish(event_type, timestamp=now, **payload)

    def _resolve_now(self, now: Optional[pd.Timestamp]) -> Optional[pd.Timestamp]:
        if now is not None:
            return now
        return self.clock() if self.clock is not None else None
