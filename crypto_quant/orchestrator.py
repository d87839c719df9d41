"""
Trading Engine Orchestrator
===========================
Live pipeline tying all components together:
    CANDLE → SIGNAL AGGREGATOR → ADVISORY BLEND → DAILY CAPS → RISK MANAGER → EXECUTION → MONITORING

Core principles enforced:
- One synchronous pass per candle, serialized per symbol
- Portfolio-wide state mutated under a single engine lock
- Risk rejections and execution failures never stop the pipeline
- Emergency stop closes everything and trips the circuit breaker
"""

import pandas as pd
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional
from enum import Enum
import json
import logging
import math
import threading

from .config import SystemConfig
from .data import Candle
from .errors import ConfigurationError, ExecutionError, TradingError
from .execution import OrderExecutor, OrderResult, OrderSide, OrderType, PaperExecutor
from .indicators import Signal
from .monitoring import AlertManager, EventBus, EventType, PerformanceReport, PerformanceTracker
from .risk import Position, PositionSide, RiskManager, RiskReport, TradeRequest
from .signals import AggregatedSignal, SignalAggregator
from .strategies import StrategyFactory, StrategyPerformance, TradingStrategy

logger = logging.getLogger(__name__)


class AdvisoryRecommendation(Enum):
    """Recommendation of an external advisory model."""
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"


class AdvisoryRiskLevel(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# Directional score of each recommendation, before confidence scaling
ADVISORY_SCORES = {
    AdvisoryRecommendation.STRONG_BUY: 1.0,
    AdvisoryRecommendation.BUY: 0.7,
    AdvisoryRecommendation.HOLD: 0.0,
    AdvisoryRecommendation.SELL: -0.7,
    AdvisoryRecommendation.STRONG_SELL: -1.0,
}

# Position size multiplier per advisory risk level
RISK_LEVEL_SIZING = {
    AdvisoryRiskLevel.LOW: 1.2,
    AdvisoryRiskLevel.MEDIUM: 1.0,
    AdvisoryRiskLevel.HIGH: 0.7,
}


@dataclass(frozen=True)
class AIAdvisory:
    """Optional external opinion blended into the technical signal."""
    recommendation: AdvisoryRecommendation
    confidence: float  # 0-100
    risk_level: AdvisoryRiskLevel = AdvisoryRiskLevel.MEDIUM
    reasoning: str = ""

    @property
    def score(self) -> float:
        return ADVISORY_SCORES[self.recommendation] * self.confidence / 100

    @classmethod
    def from_dict(cls, data: dict) -> 'AIAdvisory':
        try:
            return cls(
                recommendation=AdvisoryRecommendation(str(data['recommendation']).upper()),
                confidence=float(data['confidence']),
                risk_level=AdvisoryRiskLevel(str(data.get('riskLevel', data.get('risk_level', 'MEDIUM'))).upper()),
                reasoning=data.get('reasoning', '')
            )
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"Invalid advisory payload: {e}") from e


@dataclass
class TradingDecision:
    """Outcome of one strategy's evaluation of one candle."""
    symbol: str
    strategy_id: str
    action: Signal
    score: float  # Blended, in [-1, 1]
    confidence: float  # Blended, 0-100
    technical: AggregatedSignal
    advisory: Optional[AIAdvisory] = None
    timestamp: Optional[pd.Timestamp] = None
    outcome: str = "hold"
    order_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'strategy_id': self.strategy_id,
            'action': self.action.value,
            'score': self.score,
            'confidence': self.confidence,
            'technical': self.technical.to_dict(),
            'advisory': {
                'recommendation': self.advisory.recommendation.value,
                'confidence': self.advisory.confidence,
                'risk_level': self.advisory.risk_level.value,
                'reasoning': self.advisory.reasoning
            } if self.advisory is not None else None,
            'timestamp': self.timestamp.isoformat() if self.timestamp is not None else None,
            'outcome': self.outcome,
            'order_id': self.order_id
        }


class TradingEngine:
    """
    Live trading orchestrator.

    Coordinates the complete pipeline for every incoming candle:
    1. SIGNALS: Update the symbol's aggregator and score each strategy
    2. ADVISORY: Blend an optional advisory signal into the technical one
    3. LIMITS: Daily trade count, daily loss and open-position caps
    4. RISK: Risk manager approval and sizing
    5. EXECUTION: Orders through the injected executor
    6. MONITORING: Events, alerts and performance tracking
    """

    def __init__(self, config: Optional[SystemConfig] = None, executor: Optional[OrderExecutor] = None,
                 strategies: Optional[List[TradingStrategy]] = None, event_bus: Optional[EventBus] = None,
                 clock: Optional[Callable[[], pd.Timestamp]] = None):
        self.config = (config or SystemConfig()).validate()
        settings = self.config.engine

        self.executor = executor or PaperExecutor(commission_rate=settings.commission_rate)
        self.event_bus = event_bus or EventBus()
        self.clock = clock

        self.risk_manager = RiskManager(
            limits=self.config.risk,
            initial_capital=self.config.initial_capital,
            event_bus=self.event_bus,
            clock=clock
        )
        self.performance = PerformanceTracker(
            initial_capital=self.config.initial_capital,
            risk_free_rate=self.config.backtest.risk_free_rate,
            periods_per_year=self.config.backtest.periods_per_year
        )
        self.alerts = AlertManager(self.event_bus)

        self._lock = threading.RLock()
        self._symbol_locks: Dict[str, threading.Lock] = {}

        self.aggregators: Dict[str, SignalAggregator] = {
            symbol: SignalAggregator(symbol, self.config.aggregator) for symbol in settings.symbols
        }
        self.strategies: Dict[str, TradingStrategy] = {}
        # Track record each strategy arrived with; live closes are added on top
        self._baselines: Dict[str, StrategyPerformance] = {}
        for strategy in strategies or []:
            self.add_strategy(strategy)

        self.running = False
        self.daily_trades = 0
        self.trading_day = None
        self.last_update: Optional[pd.Timestamp] = None
        self.last_prices: Dict[str, float] = {}
        self.last_decisions: Dict[str, List[TradingDecision]] = {}
        self.pending_orders: Dict[str, OrderResult] = {}

        logger.info(
            f"TradingEngine initialized in {self.config.mode.value} mode for {settings.symbols} "
            f"with capital {self.config.initial_capital:,.2f}"
        )

    @property
    def portfolio(self):
        return self.risk_manager.portfolio

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Begin accepting trades. Requires at least one strategy."""
        with self._lock:
            if not self.strategies:
                raise ConfigurationError("Cannot start trading engine without strategies")
            if self.running:
                logger.warning("Trading engine already running")
                return
            self.running = True

        logger.info(f"Trading engine started with strategies {sorted(self.strategies)}")
        self.event_bus.publish(EventType.ENGINE_STARTED, timestamp=self._now())

    def stop(self):
        """Stop submitting new entries; optionally flatten the book."""
        with self._lock:
            if not self.running:
                return
            self.running = False
            if self.config.engine.close_positions_on_stop:
                self._close_all_positions("Engine stopped", self._now())

        logger.info("Trading engine stopped")
        self.event_bus.publish(EventType.ENGINE_STOPPED, timestamp=self._now())

    def add_strategy(self, strategy: TradingStrategy):
        strategy.validate()
        with self._lock:
            self.strategies[strategy.id] = strategy
            self._baselines.setdefault(strategy.id, replace(strategy.performance))
        logger.info(f"Strategy added: {strategy.name} ({strategy.id})")

    def remove_strategy(self, strategy_id: str) -> bool:
        with self._lock:
            removed = self.strategies.pop(strategy_id, None)
        if removed is None:
            logger.warning(f"Strategy {strategy_id} not registered")
            return False
        logger.info(f"Strategy removed: {strategy_id}")
        return True

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def process_market_data(self, symbol: str, candle: Candle,
                            advisory: Optional[AIAdvisory] = None) -> List[TradingDecision]:
        """
        Run one synchronous pass for a closed candle.

        Args:
            symbol: Trading pair the candle belongs to
            candle: Closed OHLCV bar
            advisory: Optional external recommendation to blend in

        Returns:
            One decision per active strategy applying to the symbol; empty
            while the engine is stopped
        """
        candle.validate()
        with self._symbol_lock(symbol):
            now = candle.close_time
            price = candle.close
            aggregator = self._aggregator(symbol)
            aggregator.add_candle(candle)
            self.executor.on_market_data(symbol, price, now)

            with self._lock:
                self._roll_day(now)
                self.last_update = now
                self.last_prices[symbol] = price
                self.risk_manager.mark_to_market(symbol, price)
                self.risk_manager.update_volatility_data(
                    symbol, aggregator.recent_closes(self.config.engine.volatility_lookback + 1), now
                )
                self._record_equity(now)
                strategies = [
                    s for _, s in sorted(self.strategies.items())
                    if s.is_active and s.applies_to(symbol)
                ]
                running = self.running

            self.event_bus.publish(EventType.MARKET_DATA_PROCESSED, timestamp=now, symbol=symbol, close=price)
            if not running:
                return []

            decisions = []
            for strategy in strategies:
                technical = aggregator.get_aggregated_signal(strategy.weight_table())
                decision = self._combine(symbol, strategy, technical, advisory, now)
                decisions.append(decision)
                self.event_bus.publish(
                    EventType.SIGNAL_GENERATED,
                    timestamp=now,
                    symbol=symbol,
                    strategy_id=strategy.id,
                    signal=decision.action.value,
                    confidence=decision.confidence,
                    score=decision.score
                )

            with self._lock:
                position = self.portfolio.get_position(symbol)
                if position is not None:
                    self._manage_position(position, decisions, price, now)
                else:
                    for decision in decisions:
                        if self._try_enter(decision, price, now):
                            break
                self.last_decisions[symbol] = decisions

            return decisions

    def _combine(self, symbol: str, strategy: TradingStrategy, technical: AggregatedSignal,
                 advisory: Optional[AIAdvisory], now: pd.Timestamp) -> TradingDecision:
        """Blend technical and advisory scores; pure technical when no advisory is given."""
        direction = {Signal.BUY: 1.0, Signal.SELL: -1.0}.get(technical.signal, 0.0)
        technical_score = direction * technical.confidence / 100

        if advisory is not None:
            settings = self.config.engine
            score = settings.technical_weight * technical_score + settings.advisory_weight * advisory.score
            confidence = (settings.technical_weight * technical.confidence +
                          settings.advisory_weight * advisory.confidence)
        else:
            score = technical_score
            confidence = technical.confidence

        if score > 0:
            action = Signal.BUY
        elif score < 0:
            action = Signal.SELL
        else:
            action = Signal.NEUTRAL

        logger.debug(
            f"{symbol} [{strategy.id}] technical {technical.signal.value} {technical.confidence:.1f}%, "
            f"blended score {score:+.3f} confidence {confidence:.1f}%"
        )
        return TradingDecision(
            symbol=symbol,
            strategy_id=strategy.id,
            action=action,
            score=score,
            confidence=confidence,
            technical=technical,
            advisory=advisory,
            timestamp=now
        )

    def _try_enter(self, decision: TradingDecision, price: float, now: pd.Timestamp) -> bool:
        settings = self.config.engine
        if decision.action == Signal.NEUTRAL:
            return False
        if abs(decision.score) <= settings.score_threshold or decision.confidence <= settings.confidence_threshold:
            decision.outcome = "below threshold"
            return False

        reasons = self._daily_limit_reasons()
        if reasons:
            self._reject(decision, reasons, now)
            return False

        strategy = self.strategies.get(decision.strategy_id)
        if strategy is None:
            return False
        side = OrderSide.BUY if decision.action == Signal.BUY else OrderSide.SELL
        quantity = self._position_size(strategy, decision, price)
        if quantity <= 0:
            self._reject(decision, ["Position size rounds to zero"], now)
            return False

        request = TradeRequest(decision.symbol, side, quantity, price, OrderType.MARKET, strategy.id)
        validation = self.risk_manager.validate_trade(request, strategy, now)
        if not validation.approved:
            self._reject(decision, validation.reasons, now)
            return False

        quantity = _floor(min(quantity, validation.recommended_position_size))
        if quantity <= 0:
            self._reject(decision, ["Recommended position size is zero"], now)
            return False

        order = self._place_order(decision.symbol, side, quantity, now)
        if order is None:
            decision.outcome = "execution failed"
            return False

        rm = strategy.risk_management
        fill = order.average_price
        if side == OrderSide.BUY:
            take_profit = fill * (1 + rm.take_profit_percentage / 100)
        else:
            take_profit = fill * (1 - rm.take_profit_percentage / 100)

        position_side = PositionSide.from_order_side(side)
        self.risk_manager.open_position(
            decision.symbol, position_side, order.executed_quantity, fill,
            commission=order.commission,
            now=now,
            stop_loss=validation.recommended_stop_loss,
            take_profit=take_profit,
            strategy_id=strategy.id
        )
        self.daily_trades += 1
        decision.outcome = "executed"
        decision.order_id = order.order_id

        logger.info(
            f"Trade executed: {side.value} {order.executed_quantity} {decision.symbol} @ {fill:.2f} "
            f"[{strategy.id}, confidence {decision.confidence:.1f}%]"
        )
        self.event_bus.publish(
            EventType.POSITION_OPENED, timestamp=now, symbol=decision.symbol,
            side=position_side.value, quantity=order.executed_quantity, price=fill
        )
        return True

    def _daily_limit_reasons(self) -> List[str]:
        settings = self.config.engine
        reasons = []
        if self.daily_trades >= settings.max_daily_trades:
            reasons.append(f"Daily trade limit reached ({settings.max_daily_trades})")
        if self.risk_manager.daily_loss_limit_reached():
            reasons.append("Daily loss limit reached")
        if len(self.portfolio.positions) >= settings.max_positions:
            reasons.append(f"Maximum open positions reached ({settings.max_positions})")
        return reasons

    def _position_size(self, strategy: TradingStrategy, decision: TradingDecision, price: float) -> float:
        """Cash at risk scaled by confidence and advisory risk level, capped by equity and cash."""
        if price <= 0:
            return 0.0
        settings = self.config.engine
        cash = self.portfolio.cash

        value = cash * strategy.risk_management.risk_per_trade * decision.confidence / 100
        if decision.advisory is not None:
            value *= RISK_LEVEL_SIZING[decision.advisory.risk_level]

        value = min(value, self.portfolio.equity * settings.max_position_fraction, cash * settings.cash_buffer)
        return _floor(max(0.0, value) / price)

    def _manage_position(self, position: Position, decisions: List[TradingDecision],
                         price: float, now: pd.Timestamp):
        """Stop loss, take profit and reversal exits for the owning strategy."""
        strategy = self.strategies.get(position.strategy_id)
        reason = None

        if strategy is not None:
            rm = strategy.risk_management
            pnl_pct = position.pnl_percentage
            if pnl_pct <= -rm.stop_loss_percentage:
                reason = f"Stop loss triggered at {pnl_pct:.2f}%"
            elif pnl_pct >= rm.take_profit_percentage:
                reason = f"Take profit triggered at {pnl_pct:.2f}%"
        else:
            is_long = position.side == PositionSide.LONG
            if position.stop_loss is not None and (price <= position.stop_loss if is_long else price >= position.stop_loss):
                reason = f"Stop loss hit at {price:.2f}"
            elif position.take_profit is not None and (price >= position.take_profit if is_long else price <= position.take_profit):
                reason = f"Take profit hit at {price:.2f}"

        if reason is None:
            held = Signal.BUY if position.side == PositionSide.LONG else Signal.SELL
            for decision in decisions:
                if decision.strategy_id != position.strategy_id:
                    continue
                if decision.action == held.opposite and decision.confidence > self.config.engine.reversal_confidence:
                    reason = f"Signal reversal with {decision.confidence:.1f}% confidence"

        if reason is not None:
            self._close_position(position.symbol, reason, now)

    def _close_position(self, symbol: str, reason: str, now: Optional[pd.Timestamp]) -> Optional[float]:
        """Flatten ``symbol`` through the executor. Returns realized P&L, or None if the order failed."""
        position = self.portfolio.get_position(symbol)
        if position is None:
            return None

        order = self._place_order(symbol, position.side.exit_side, position.quantity, now)
        if order is None:
            return None

        fill = order.average_price
        pnl = self.risk_manager.close_position(symbol, fill, order.commission, now)
        self.performance.record_trade(
            symbol=symbol,
            side=position.side.value,
            quantity=position.quantity,
            entry_price=position.entry_price,
            exit_price=fill,
            pnl=pnl,
            timestamp=now,
            strategy_id=position.strategy_id
        )
        if position.strategy_id is not None:
            self._refresh_strategy_performance(position.strategy_id, now)

        logger.info(f"Closed {symbol} position @ {fill:.2f}. P&L: {pnl:,.2f} ({reason})")
        self.event_bus.publish(EventType.POSITION_CLOSED, timestamp=now, symbol=symbol, pnl=pnl, reason=reason)
        return pnl

    def _refresh_strategy_performance(self, strategy_id: str, now: Optional[pd.Timestamp]):
        """Fold the live record into the strategy so Kelly sizing sees it; publish threshold breaches."""
        strategy = self.strategies.get(strategy_id)
        if strategy is None:
            return

        live = self.performance.get_strategy_performance(strategy_id)
        strategy.performance = self._baselines.get(strategy_id, StrategyPerformance()).combined(live)

        alerts = self.performance.check_performance_alerts(strategy_id, strategy.performance)
        if alerts:
            self.event_bus.publish(EventType.PERFORMANCE_ALERT, timestamp=now, strategy_id=strategy_id, alerts=alerts)

    def _close_all_positions(self, reason: str, now: Optional[pd.Timestamp]) -> List[str]:
        closed = []
        for symbol in list(self.portfolio.positions):
            if self._close_position(symbol, reason, now) is not None:
                closed.append(symbol)
        return closed

    def _place_order(self, symbol: str, side: OrderSide, quantity: float,
                     now: Optional[pd.Timestamp]) -> Optional[OrderResult]:
        """Submit a market order. Failures are logged and reported, never raised."""
        try:
            order = self.executor.place_order(symbol, side, OrderType.MARKET, quantity)
        except ExecutionError as e:
            logger.error(f"Order failed for {symbol}: {e}")
            self.event_bus.publish(EventType.TRADE_ERROR, timestamp=now, symbol=symbol, error=str(e))
            return None

        if not order.is_filled:
            if order.is_open:
                self.pending_orders[order.order_id] = order
            logger.warning(f"Order {order.order_id} for {symbol} not filled: {order.status.value}")
            return None

        self.event_bus.publish(
            EventType.TRADE_EXECUTED, timestamp=now, symbol=symbol, side=side.value,
            quantity=order.executed_quantity, price=order.average_price, order_id=order.order_id
        )
        return order

    def _reject(self, decision: TradingDecision, reasons: List[str], now: pd.Timestamp):
        decision.outcome = "rejected"
        logger.warning(f"Trade rejected for {decision.symbol} [{decision.strategy_id}]: {reasons}")
        self.event_bus.publish(EventType.TRADE_REJECTED, timestamp=now, symbol=decision.symbol, reasons=reasons)

    def _roll_day(self, now: pd.Timestamp):
        day = pd.Timestamp(now).date()
        if self.trading_day != day:
            if self.trading_day is not None:
                logger.info(f"New trading day {day}: resetting daily trade count ({self.daily_trades})")
            self.trading_day = day
            self.daily_trades = 0
        self.risk_manager.roll_day(now)

    def _record_equity(self, now: pd.Timestamp):
        equity = self.portfolio.equity
        exposure = self.portfolio.gross_exposure / equity if equity > 0 else 0.0
        self.performance.update_equity(now, equity, exposure)

    # ------------------------------------------------------------------
    # Controls and read-only reports
    # ------------------------------------------------------------------

    def emergency_stop(self, reason: str = "Emergency stop"):
        """Halt trading, cancel outstanding orders, flatten the book and trip the circuit breaker."""
        now = self._now()
        logger.critical(f"EMERGENCY STOP: {reason}")

        with self._lock:
            self.running = False

            for order_id, order in list(self.pending_orders.items()):
                try:
                    self.executor.cancel_order(order.symbol, order_id)
                except ExecutionError as e:
                    logger.error(f"Failed to cancel order {order_id}: {e}")
                self.pending_orders.pop(order_id, None)

            closed = self._close_all_positions(f"Emergency stop: {reason}", now)
            self.risk_manager.trip_circuit_breaker(f"Emergency stop: {reason}", now)

        logger.critical(f"Emergency stop complete: closed {closed}, remaining {list(self.portfolio.positions)}")
        self.event_bus.publish(EventType.EMERGENCY_STOP, timestamp=now, reason=reason, closed_positions=closed)

    def generate_risk_report(self) -> RiskReport:
        """Risk snapshot as of the clock, or the last processed candle without one."""
        now = self._now()
        if now is None:
            now = self.last_update
        return self.risk_manager.generate_risk_report(now)

    def generate_performance_report(self) -> PerformanceReport:
        return self.performance.get_metrics()

    def generate_strategy_report(self, strategy_id: str) -> StrategyPerformance:
        """Track record of one strategy: its starting record plus live closes."""
        with self._lock:
            strategy = self.strategies.get(strategy_id)
            if strategy is not None:
                return replace(strategy.performance)
            return self.performance.get_strategy_performance(strategy_id)

    def get_active_positions(self) -> List[Position]:
        """Copies of the open positions."""
        with self._lock:
            return [replace(p) for p in self.portfolio.positions.values()]

    def get_status(self) -> Dict:
        """Get comprehensive engine status."""
        with self._lock:
            portfolio = self.portfolio
            return {
                'mode': self.config.mode.value,
                'running': self.running,
                'symbols': sorted(self.aggregators),
                'strategies': sorted(self.strategies),
                'equity': portfolio.equity,
                'cash': portfolio.cash,
                'positions_count': len(portfolio.positions),
                'daily_trades': self.daily_trades,
                'trading_day': self.trading_day.isoformat() if self.trading_day is not None else None,
                'circuit_breaker': self.risk_manager.circuit_state.value,
                'consecutive_losses': self.risk_manager.consecutive_losses,
                'pending_orders': len(self.pending_orders),
                'last_prices': dict(self.last_prices),
                'alerts': len(self.alerts.alerts)
            }

    def _aggregator(self, symbol: str) -> SignalAggregator:
        with self._lock:
            if symbol not in self.aggregators:
                logger.info(f"Adding aggregator for new symbol {symbol}")
                self.aggregators[symbol] = SignalAggregator(symbol, self.config.aggregator)
            return self.aggregators[symbol]

    def _symbol_lock(self, symbol: str) -> threading.Lock:
        with self._lock:
            return self._symbol_locks.setdefault(symbol, threading.Lock())

    def _now(self) -> Optional[pd.Timestamp]:
        return self.clock() if self.clock is not None else None


def _floor(quantity: float, decimals: int = 6) -> float:
    factor = 10 ** decimals
    return math.floor(quantity * factor) / factor


def main():
    """Command-line entry point: backtest a preset strategy over a CSV of candles."""
    import argparse
    from .backtest import BacktestConfig, BacktestEngine, PerformanceAnalyzer
    from .data import load_candles_csv

    parser = argparse.ArgumentParser(description='Crypto Quant Backtester')
    parser.add_argument('--data', required=True, help='CSV file with OHLCV candles')
    parser.add_argument('--strategy', choices=StrategyFactory.strategy_ids(),
                        default='ma_crossover_trend', help='Preset strategy')
    parser.add_argument('--symbol', type=str, default='BTCUSDT', help='Trading pair')
    parser.add_argument('--timeframe', type=str, default='1h', help='Candle interval')
    parser.add_argument('--balance', type=float, help='Initial balance')
    parser.add_argument('--commission', type=float, help='Commission rate')
    parser.add_argument('--slippage', type=float, help='Slippage rate')
    parser.add_argument('--start-date', type=str, help='Backtest start date')
    parser.add_argument('--end-date', type=str, help='Backtest end date')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--output', type=str, help='Write the full result as JSON')

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = SystemConfig.load(args.config) if args.config else SystemConfig().validate()
        settings = config.backtest
        if args.commission is not None:
            settings.commission_rate = args.commission
        if args.slippage is not None:
            settings.slippage_rate = args.slippage

        backtest_config = BacktestConfig.from_settings(
            args.symbol,
            settings,
            initial_balance=args.balance if args.balance is not None else config.initial_capital,
            timeframe=args.timeframe,
            start_date=args.start_date,
            end_date=args.end_date
        )
        candles = load_candles_csv(args.data, args.timeframe)
        strategy = StrategyFactory.get_strategy(args.strategy)

        engine = BacktestEngine(backtest_config, settings, config.aggregator)
        result = engine.run_backtest(candles, strategy)
        analysis = PerformanceAnalyzer(settings.risk_free_rate, settings.periods_per_year).analyze(result)
    except TradingError as e:
        print(f"Backtest failed: {e}")
        return 1

    summary = {
        'strategy': strategy.name,
        'symbol': args.symbol,
        'initial_balance': backtest_config.initial_balance,
        'final_balance': result.final_balance,
        'total_return_pct': result.total_return_percentage,
        'annualized_return_pct': analysis.basic.annualized_return,
        'sharpe_ratio': result.sharpe_ratio,
        'sortino_ratio': analysis.risk.sortino_ratio,
        'max_drawdown_pct': result.max_drawdown_percentage,
        'win_rate': result.win_rate,
        'profit_factor': result.profit_factor,
        'total_trades': result.total_trades,
        'rating': f"{analysis.rating.rating} ({analysis.rating.score})"
    }

    print("\n" + "="*50)
    print("BACKTEST RESULTS")
    print("="*50)
    for key, value in summary.items():
        if isinstance(value, float):
            print(f"{key}: {value:.4f}")
        else:
            print(f"{key}: {value}")

    if analysis.rating.strengths:
        print(f"strengths: {', '.join(analysis.rating.strengths)}")
    if analysis.rating.weaknesses:
        print(f"weaknesses: {', '.join(analysis.rating.weaknesses)}")

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(result.to_dict(), f, indent=2)
        print(f"\nFull result written to {args.output}")

    return 0


if __name__ == "__main__":
    main()
