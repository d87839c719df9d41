"""
Monitoring Module
=================
Alert routing and live performance tracking.

Alerts arrive from the event bus (risk alerts, performance alerts,
circuit-breaker trips, emergency stops, execution errors) and are recorded
and logged with a severity. The performance tracker records the equity
curve and closed trades of a live engine, derives the same metrics the
backtester uses, and keeps a track record per strategy.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from enum import Enum
import logging
import threading

from .events import Event, EventBus, EventType
from ..strategies import StrategyPerformance
from .metrics import (
    periodic_returns,
    sharpe_ratio,
    sortino_ratio,
    max_drawdown,
    profit_factor,
)

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


@dataclass
class Alert:
    """Alert notification."""
    severity: AlertSeverity
    title: str
    message: str
    timestamp: Optional[pd.Timestamp] = None
    acknowledged: bool = False
    source: str = ""

    def to_dict(self) -> dict:
        return {
            'severity': self.severity.value,
            'title': self.title,
            'message': self.message,
            'timestamp': self.timestamp.isoformat() if self.timestamp is not None else None,
            'acknowledged': self.acknowledged,
            'source': self.source
        }


class PerformanceAlertType(Enum):
    LOW_WIN_RATE = "low_win_rate"
    LOW_PROFIT_FACTOR = "low_profit_factor"
    HIGH_DRAWDOWN = "high_drawdown"


@dataclass
class PerformanceAlert:
    """A strategy track record crossing a threshold."""
    alert_type: PerformanceAlertType
    severity: str  # 'medium' or 'high'
    strategy_id: str
    message: str
    value: float
    threshold: float

    def to_dict(self) -> dict:
        return {
            'type': self.alert_type.value,
            'severity': self.severity,
            'strategy_id': self.strategy_id,
            'message': self.message,
            'value': self.value,
            'threshold': self.threshold
        }


# Risk-manager severities mapped onto alert severities
_RISK_SEVERITY = {
    'low': AlertSeverity.INFO,
    'medium': AlertSeverity.WARNING,
    'high': AlertSeverity.CRITICAL,
    'critical': AlertSeverity.EMERGENCY,
}


class AlertManager:
    """Collects alerts from the event bus and dispatches them to handlers."""

    def __init__(self, event_bus: Optional[EventBus] = None, max_alerts: int = 1000):
        self.alerts: List[Alert] = []
        self.alert_handlers: List[Callable[[Alert], None]] = []
        self.max_alerts = max_alerts
        self._lock = threading.Lock()

        if event_bus is not None:
            self.attach(event_bus)

    def attach(self, event_bus: EventBus):
        """Subscribe to every event type that should raise an alert."""
        event_bus.subscribe(EventType.RISK_ALERT, self._on_risk_alert)
        event_bus.subscribe(EventType.PERFORMANCE_ALERT, self._on_performance_alert)
        event_bus.subscribe(EventType.CIRCUIT_BREAKER_TRIPPED, self._on_circuit_breaker)
        event_bus.subscribe(EventType.CIRCUIT_BREAKER_RESET, self._on_circuit_reset)
        event_bus.subscribe(EventType.EMERGENCY_STOP, self._on_emergency_stop)
        event_bus.subscribe(EventType.TRADE_ERROR, self._on_trade_error)

    def add_handler(self, handler: Callable[[Alert], None]):
        """Add custom alert handler."""
        self.alert_handlers.append(handler)

    def send_alert(self, severity: AlertSeverity, title: str, message: str,
                   source: str = "", timestamp: Optional[pd.Timestamp] = None) -> Alert:
        """Create and dispatch an alert."""
        alert = Alert(
            severity=severity,
            title=title,
            message=message,
            timestamp=timestamp,
            source=source
        )

        with self._lock:
            self.alerts.append(alert)
            if len(self.alerts) > self.max_alerts:
                self.alerts = self.alerts[-self.max_alerts:]

        log_method = getattr(logger, severity.value if severity != AlertSeverity.EMERGENCY else 'critical')
        log_method(f"[ALERT] {title}: {message}")

        for handler in self.alert_handlers:
            try:
                handler(alert)
            except Exception as e:
                logger.error(f"Alert handler error: {e}")

        return alert

    def get_recent_alerts(self, limit: int = 50, severity: Optional[AlertSeverity] = None) -> List[Alert]:
        """Most recent alerts, optionally filtered by severity."""
        with self._lock:
            alerts = list(self.alerts)
        if severity:
            alerts = [a for a in alerts if a.severity == severity]
        return alerts[-limit:]

    def acknowledge_all(self):
        with self._lock:
            for alert in self.alerts:
                alert.acknowledged = True

    def _on_risk_alert(self, event: Event):
        for risk_alert in event['alerts']:
            self.send_alert(
                _RISK_SEVERITY.get(risk_alert.severity.value, AlertSeverity.WARNING),
                risk_alert.alert_type.value.replace('_', ' ').title(),
                risk_alert.message,
                source="RiskManager",
                timestamp=event.timestamp
            )

    def _on_performance_alert(self, event: Event):
        for alert in event['alerts']:
            self.send_alert(
                _RISK_SEVERITY.get(alert.severity, AlertSeverity.WARNING),
                alert.alert_type.value.replace('_', ' ').title(),
                f"[{event['strategy_id']}] {alert.message}",
                source="PerformanceTracker",
                timestamp=event.timestamp
            )

    def _on_circuit_breaker(self, event: Event):
        self.send_alert(
            AlertSeverity.CRITICAL,
            "Circuit Breaker Tripped",
            f"{event['reason']} ({event['consecutive_losses']} consecutive losses)",
            source="RiskManager",
            timestamp=event.timestamp
        )

    def _on_circuit_reset(self, event: Event):
        self.send_alert(
            AlertSeverity.INFO,
            "Circuit Breaker Reset",
            event['reason'],
            source="RiskManager",
            timestamp=event.timestamp
        )

    def _on_emergency_stop(self, event: Event):
        self.send_alert(
            AlertSeverity.EMERGENCY,
            "EMERGENCY STOP",
            f"Trading halted: {event['reason']}",
            source="TradingEngine",
            timestamp=event.timestamp
        )

    def _on_trade_error(self, event: Event):
        self.send_alert(
            AlertSeverity.WARNING,
            "Execution Failure",
            f"{event['symbol']}: {event['error']}",
            source="Execution",
            timestamp=event.timestamp
        )


@dataclass
class PerformanceReport:
    """Snapshot of live trading performance."""
    initial_capital: float = 0.0
    current_equity: float = 0.0

    # Returns
    total_return: float = 0.0
    total_return_pct: float = 0.0
    last_return: float = 0.0

    # Risk-adjusted returns
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0

    # Drawdown
    current_drawdown: float = 0.0  # %
    max_drawdown: float = 0.0  # %

    # Win/Loss
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0  # %
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    realized_pnl: float = 0.0

    # Exposure
    avg_exposure: float = 0.0
    max_exposure: float = 0.0
    current_exposure: float = 0.0

    def to_dict(self) -> dict:
        return {k: (None if isinstance(v, float) and np.isinf(v) else v) for k, v in self.__dict__.items()}


class PerformanceTracker:
    """Tracks and calculates trading performance metrics."""

    def __init__(self, initial_capital: float = 10000.0, risk_free_rate: float = 0.02,
                 periods_per_year: int = 252, min_win_rate: float = 40.0,
                 min_profit_factor: float = 1.5, max_drawdown_pct: float = 10.0,
                 min_alert_trades: int = 10):
        self.initial_capital = initial_capital
        self.risk_free_rate = risk_free_rate
        self.periods_per_year = periods_per_year

        # Strategy alert thresholds; win rate and profit factor need min_alert_trades
        self.min_win_rate = min_win_rate
        self.min_profit_factor = min_profit_factor
        self.max_drawdown_pct = max_drawdown_pct
        self.min_alert_trades = min_alert_trades

        self.equity_curve: List[Tuple[pd.Timestamp, float]] = []
        self.exposure_series: List[float] = []
        self.trades: List[Dict] = []

        self.peak_equity = initial_capital

    def update_equity(self, timestamp: pd.Timestamp, equity: float, exposure: float = 0.0):
        """Record equity point. ``exposure`` is position value as a fraction of equity."""
        self.equity_curve.append((timestamp, equity))
        self.exposure_series.append(exposure)
        if equity > self.peak_equity:
            self.peak_equity = equity

    def record_trade(self, symbol: str, side: str, quantity: float,
                     entry_price: float, exit_price: float, pnl: float,
                     timestamp: Optional[pd.Timestamp] = None, strategy_id: Optional[str] = None):
        """Record a completed trade. P&L comes from matched entry and exit prices."""
        notional = quantity * entry_price
        self.trades.append({
            'symbol': symbol,
            'side': side,
            'quantity': quantity,
            'entry_price': entry_price,
            'exit_price': exit_price,
            'pnl': pnl,
            'pnl_pct': pnl / notional * 100 if notional > 0 else 0.0,
            'timestamp': timestamp,
            'strategy_id': strategy_id
        })

    def get_strategy_performance(self, strategy_id: str) -> StrategyPerformance:
        """Track record of the trades recorded for one strategy."""
        pnls = [t['pnl'] for t in self.trades if t['strategy_id'] == strategy_id]
        equities = [self.initial_capital] + list(self.initial_capital + np.cumsum(pnls))
        return StrategyPerformance.from_trade_pnls(
            pnls,
            initial_balance=self.initial_capital,
            max_drawdown_percentage=max_drawdown(equities)[1]
        )

    def check_performance_alerts(self, strategy_id: str,
                                 performance: StrategyPerformance) -> List[PerformanceAlert]:
        """Threshold breaches in a strategy's track record."""
        alerts = []
        enough_trades = performance.total_trades >= self.min_alert_trades

        if enough_trades and performance.win_rate < self.min_win_rate:
            alerts.append(PerformanceAlert(
                PerformanceAlertType.LOW_WIN_RATE, 'medium', strategy_id,
                f"Win rate {performance.win_rate:.1f}% below threshold",
                performance.win_rate, self.min_win_rate
            ))
        if enough_trades and performance.profit_factor < self.min_profit_factor:
            alerts.append(PerformanceAlert(
                PerformanceAlertType.LOW_PROFIT_FACTOR, 'high', strategy_id,
                f"Profit factor {performance.profit_factor:.2f} below threshold",
                performance.profit_factor, self.min_profit_factor
            ))
        if performance.max_drawdown_percentage > self.max_drawdown_pct:
            alerts.append(PerformanceAlert(
                PerformanceAlertType.HIGH_DRAWDOWN, 'high', strategy_id,
                f"Max drawdown {performance.max_drawdown_percentage:.2f}% exceeds threshold",
                performance.max_drawdown_percentage, self.max_drawdown_pct
            ))
        return alerts

    def get_metrics(self) -> PerformanceReport:
        """Calculate performance metrics."""
        report = PerformanceReport(initial_capital=self.initial_capital,
                                   current_equity=self.initial_capital)

        if self.equity_curve:
            equities = [self.initial_capital] + [e[1] for e in self.equity_curve]
            current_equity = equities[-1]
            report.current_equity = current_equity
            report.total_return = current_equity - self.initial_capital
            report.total_return_pct = report.total_return / self.initial_capital * 100

            returns = periodic_returns(equities)
            if len(returns) > 0:
                report.last_return = float(returns.iloc[-1])
                report.sharpe_ratio = sharpe_ratio(returns, self.risk_free_rate, self.periods_per_year)
                report.sortino_ratio = sortino_ratio(returns, self.risk_free_rate, self.periods_per_year)

            report.current_drawdown = (self.peak_equity - current_equity) / self.peak_equity * 100
            report.max_drawdown = max_drawdown(equities)[1]
            if report.max_drawdown > 0:
                report.calmar_ratio = report.total_return_pct / report.max_drawdown

        if self.trades:
            pnls = [t['pnl'] for t in self.trades]
            winning = [p for p in pnls if p > 0]
            losing = [p for p in pnls if p < 0]

            report.total_trades = len(pnls)
            report.winning_trades = len(winning)
            report.losing_trades = len(losing)
            report.win_rate = len(winning) / len(pnls) * 100
            report.avg_win = float(np.mean(winning)) if winning else 0.0
            report.avg_loss = float(abs(np.mean(losing))) if losing else 0.0
            report.profit_factor = profit_factor(pnls)
            report.realized_pnl = float(sum(pnls))

        if self.exposure_series:
            report.avg_exposure = float(np.mean(self.exposure_series))
            report.max_exposure = float(max(self.exposure_series))
            report.current_exposure = self.exposure_series[-1]

        return report

    def get_equity_series(self) -> pd.Series:
        """Get equity curve as pandas Series."""
        if not self.equity_curve:
            return pd.Series(dtype=float)

        timestamps = [e[0] for e in self.equity_curve]
        values = [e[1] for e in self.equity_curve]

        return pd.Series(values, index=timestamps)
