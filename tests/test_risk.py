from dataclasses import replace

import pandas as pd
import pytest

from crypto_quant.config import RiskLimits
from crypto_quant.execution import OrderSide
from crypto_quant.monitoring import AlertManager, AlertSeverity, EventBus, EventType
from crypto_quant.risk import (
    CircuitState,
    Portfolio,
    Position,
    PositionSide,
    RiskAlertType,
    RiskManager,
    TradeRequest,
)
from crypto_quant.strategies import StrategyPerformance


T0 = pd.Timestamp("2024-03-01 09:00:00")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def manager(bus):
    return RiskManager(initial_capital=10000.0, event_bus=bus)


def buy(symbol, quantity, price):
    return TradeRequest(symbol=symbol, side=OrderSide.BUY, quantity=quantity, price=price)


def test_small_trade_is_approved(manager):
    result = manager.validate_trade(buy("BTCUSDT", 0.01, 50000.0), now=T0)

    assert result.approved
    assert result.adjusted_quantity == 0.01
    assert result.failed_checks == []
    assert result.recommended_stop_loss == pytest.approx(50000.0 * 0.98)


def test_checks_run_in_order(manager):
    result = manager.validate_trade(buy("BTCUSDT", 1.0, 2000.0), now=T0)

    assert [c.name for c in result.checks] == [
        'Position Size Limit',
        'Portfolio Heat Limit',
        'Daily Loss Limit',
        'Correlation Risk',
        'Volatility Risk',
        'Circuit Breaker',
        'Drawdown Limit',
        'Leverage Limit',
    ]


def test_oversized_trade_rejected(manager):
    result = manager.validate_trade(buy("BTCUSDT", 1.0, 2000.0), now=T0)

    assert not result.approved
    assert result.adjusted_quantity == 0.0
    assert [c.name for c in result.failed_checks] == ['Position Size Limit']
    assert "exceeds limit 1000.00" in result.reasons[0]


def test_position_size_limit_is_inclusive(manager):
    assert manager.validate_trade(buy("BTCUSDT", 10.0, 100.0), now=T0).approved


def test_daily_loss_projection(bus):
    manager = RiskManager(RiskLimits(max_consecutive_losses=10), initial_capital=10000.0, event_bus=bus)
    manager.record_trade_result(-460.0, T0)

    result = manager.validate_trade(buy("BTCUSDT", 10.0, 100.0), now=T0)

    assert not result.check('Daily Loss Limit').passed
    assert not manager.daily_loss_limit_reached()
    manager.record_trade_result(-40.0, T0)
    assert manager.daily_loss_limit_reached()


def test_leverage_includes_new_trade():
    limits = RiskLimits(max_leverage=0.5, max_position_size_percent=60.0, max_portfolio_heat=100.0)
    manager = RiskManager(limits, initial_capital=10000.0)
    manager.open_position("ETHUSDT", PositionSide.LONG, 1.0, 3000.0, now=T0)

    result = manager.validate_trade(buy("BTCUSDT", 1.0, 3000.0), now=T0)

    assert not result.check('Leverage Limit').passed
    assert result.check('Portfolio Heat Limit').passed


def test_correlation_risk_blocks_correlated_entry():
    manager = RiskManager(RiskLimits(max_correlation_risk=0.2), initial_capital=10000.0)
    manager.open_position("ETHUSDT", PositionSide.LONG, 1.0, 3000.0, now=T0)
    manager.set_correlation("BTCUSDT", "ETHUSDT", 0.9)

    assert manager.calculate_correlation_risk("BTCUSDT") == pytest.approx(0.27)
    result = manager.validate_trade(buy("BTCUSDT", 0.01, 50000.0), now=T0)
    assert not result.check('Correlation Risk').passed


def test_update_correlations_from_prices(manager):
    prices = [100.0, 102.0, 101.0, 105.0, 104.0]
    manager.update_correlations({
        "BTCUSDT": prices,
        "ETHUSDT": [p * 2 for p in prices],
    })
    assert manager.get_correlation("ETHUSDT", "BTCUSDT") == pytest.approx(1.0)
    assert manager.get_correlation("BTCUSDT", "SOLUSDT") == 0.0


def test_set_correlation_range(manager):
    with pytest.raises(ValueError):
        manager.set_correlation("BTCUSDT", "ETHUSDT", 1.5)


def test_high_volatility_flagged(manager):
    manager.update_volatility_data("BTCUSDT", [100.0, 110.0] * 10, now=T0)

    result = manager.validate_trade(buy("BTCUSDT", 1.0, 100.0), now=T0)

    check = result.check('Volatility Risk')
    assert not check.passed
    assert check.reason.startswith("High volatility detected")
    assert manager.calculate_recommended_stop_loss(buy("BTCUSDT", 1.0, 100.0)) == pytest.approx(80.0)


def test_circuit_breaker_trips_and_cools_down(manager, bus):
    for _ in range(3):
        manager.record_trade_result(-10.0, T0)

    assert manager.circuit_state == CircuitState.CIRCUIT_BROKEN
    assert len(bus.history(EventType.CIRCUIT_BREAKER_TRIPPED)) == 1
    assert manager.is_circuit_breaker_active(T0 + pd.Timedelta(minutes=30))

    result = manager.validate_trade(buy("BTCUSDT", 0.01, 50000.0), now=T0 + pd.Timedelta(minutes=30))
    assert not result.check('Circuit Breaker').passed

    assert not manager.is_circuit_breaker_active(T0 + pd.Timedelta(hours=1))
    assert manager.circuit_state == CircuitState.NORMAL
    assert manager.consecutive_losses == 0
    assert bus.history(EventType.CIRCUIT_BREAKER_RESET)[-1]['reason'] == "Cooldown elapsed"


def test_winning_trade_resets_streak(manager):
    manager.record_trade_result(-10.0, T0)
    manager.record_trade_result(-10.0, T0)
    manager.record_trade_result(25.0, T0)
    manager.record_trade_result(-10.0, T0)

    assert manager.consecutive_losses == 1
    assert manager.circuit_state == CircuitState.NORMAL


def test_breaker_without_time_needs_manual_reset():
    manager = RiskManager(initial_capital=10000.0)
    manager.trip_circuit_breaker("Manual halt")

    assert manager.is_circuit_breaker_active()
    manager.reset_circuit_breaker()
    assert not manager.is_circuit_breaker_active()


def test_breaker_uses_injected_clock():
    now = {'value': T0}
    manager = RiskManager(initial_capital=10000.0, clock=lambda: now['value'])
    manager.trip_circuit_breaker("Manual halt")

    now['value'] = T0 + pd.Timedelta(minutes=59)
    assert manager.is_circuit_breaker_active()
    now['value'] = T0 + pd.Timedelta(minutes=61)
    assert not manager.is_circuit_breaker_active()


def test_kelly_sizing_caps_at_ten_percent(manager, trend_strategy):
    strategy = replace(trend_strategy, performance=StrategyPerformance.from_trade_pnls([100, 100, -50, 100]))

    assert manager.calculate_optimal_position_size(buy("BTCUSDT", 50.0, 100.0), strategy) == pytest.approx(10.0)
    assert manager.calculate_optimal_position_size(buy("BTCUSDT", 5.0, 100.0), strategy) == pytest.approx(5.0)


def test_kelly_sizing_floor_for_losing_history(manager, trend_strategy):
    strategy = replace(trend_strategy, performance=StrategyPerformance.from_trade_pnls([-10, -10]))

    assert manager.calculate_optimal_position_size(buy("BTCUSDT", 50.0, 100.0), strategy) == pytest.approx(1.0)


def test_sizing_without_history_capped_by_leverage(manager, trend_strategy):
    assert manager.calculate_optimal_position_size(buy("BTCUSDT", 5.0, 100.0), trend_strategy) == 5.0
    assert manager.calculate_optimal_position_size(buy("BTCUSDT", 500.0, 100.0)) == pytest.approx(100.0)


def test_short_position_accounting():
    portfolio = Portfolio(cash=10000.0)
    portfolio.open_position("BTCUSDT", PositionSide.SHORT, 2.0, 100.0, commission=1.0)
    assert portfolio.equity == pytest.approx(9999.0)

    position = portfolio.mark_to_market("BTCUSDT", 90.0)
    assert position.unrealized_pnl == pytest.approx(20.0)
    assert position.market_value == pytest.approx(220.0)
    assert portfolio.equity == pytest.approx(10019.0)

    closed, pnl = portfolio.close_position("BTCUSDT", 90.0, commission=1.0)
    assert pnl == pytest.approx(18.0)
    assert portfolio.cash == pytest.approx(10018.0)
    assert portfolio.equity == pytest.approx(portfolio.initial_capital + portfolio.realized_pnl)
    assert not portfolio.has_position("BTCUSDT")


def test_long_position_loss_feeds_drawdown():
    portfolio = Portfolio(cash=1000.0)
    portfolio.open_position("BTCUSDT", PositionSide.LONG, 1.0, 500.0)
    portfolio.mark_to_market("BTCUSDT", 400.0)

    assert portfolio.equity == pytest.approx(900.0)
    assert portfolio.drawdown_percent == pytest.approx(10.0)


def test_duplicate_position_rejected():
    portfolio = Portfolio(cash=1000.0)
    portfolio.open_position("BTCUSDT", PositionSide.LONG, 1.0, 100.0)
    with pytest.raises(ValueError):
        portfolio.open_position("BTCUSDT", PositionSide.LONG, 1.0, 100.0)


def test_position_pnl_percentage():
    position = Position("BTCUSDT", PositionSide.LONG, 2.0, 100.0, 110.0)
    assert position.pnl_percentage == pytest.approx(10.0)
    assert position.to_dict()['side'] == "LONG"


def test_heat_alert_published(manager, bus):
    alerts = AlertManager(bus)
    manager.open_position("BTCUSDT", PositionSide.LONG, 45.0, 100.0, now=T0)

    risk_alerts = manager.generate_risk_alerts()
    assert [a.alert_type for a in risk_alerts] == [RiskAlertType.PORTFOLIO_HEAT]
    assert bus.history(EventType.RISK_ALERT)
    assert alerts.get_recent_alerts(severity=AlertSeverity.WARNING)[-1].title == "Portfolio Heat"


def test_report_is_read_only(manager):
    manager.trip_circuit_breaker("Manual halt", T0)
    manager.open_position("BTCUSDT", PositionSide.LONG, 1.0, 100.0, now=T0)

    report = manager.generate_risk_report(now=T0 + pd.Timedelta(hours=2))
    report.active_positions[0].current_price = 1.0

    assert not report.circuit_breaker_active
    assert manager.circuit_state == CircuitState.CIRCUIT_BROKEN
    assert manager.portfolio.positions["BTCUSDT"].current_price == 100.0
    assert report.to_dict()['active_positions'][0]['symbol'] == "BTCUSDT"


def test_roll_day_resets_daily_stats(manager, bus):
    manager.roll_day(T0)
    manager.record_trade_result(-100.0, T0)
    manager.roll_day(T0 + pd.Timedelta(hours=3))
    assert manager.daily_stats.realized_pnl == -100.0

    manager.roll_day(T0 + pd.Timedelta(days=1))

    assert manager.daily_stats.realized_pnl == 0.0
    assert manager.daily_stats.date == (T0 + pd.Timedelta(days=1)).date()
    assert bus.history(EventType.DAILY_RESET)[-1]['date'] == "2024-03-02"


def test_close_position_records_result(manager):
    manager.open_position("BTCUSDT", PositionSide.LONG, 1.0, 100.0, commission=0.1, now=T0)
    manager.mark_to_market("BTCUSDT", 90.0)

    pnl = manager.close_position("BTCUSDT", 90.0, commission=0.09, now=T0)

    assert pnl == pytest.approx(-10.19)
    assert manager.consecutive_losses == 1
    assert manager.daily_stats.losing_trades == 1
    assert manager.portfolio.equity == pytest.approx(10000.0 - 10.19)
