import json
from dataclasses import replace

import pytest

from crypto_quant.backtest import BacktestConfig, BacktestEngine, TradeStatus
from crypto_quant.data import candles_to_dataframe
from crypto_quant.errors import ConfigurationError, DataValidationError, InsufficientDataError
from crypto_quant.execution import OrderSide
from crypto_quant.monitoring import EventBus, EventType
from crypto_quant.indicators import Signal
from crypto_quant.strategies import RiskManagementConfig, StrategyFactory, TradingRule


def run(candles, strategy, **config):
    engine = BacktestEngine(BacktestConfig(symbol="BTCUSDT", **config))
    return engine.run_backtest(candles, strategy)


def test_uptrend_produces_winning_longs(rising_candles, trend_strategy):
    result = run(rising_candles, trend_strategy)

    assert result.total_trades >= 5
    assert result.winning_trades == result.total_trades
    assert result.win_rate == 100.0
    assert result.final_balance > result.config.initial_balance
    assert all(t.side == OrderSide.BUY for t in result.trades)
    assert all(t.exit_reason.startswith("Take profit") for t in result.closed_trades)


def test_no_reentry_on_exit_candle(rising_candles, trend_strategy):
    result = run(rising_candles, trend_strategy)
    exits = {t.exit_time for t in result.closed_trades}
    assert not any(t.entry_time in exits for t in result.trades)


def test_equity_only_recorded_after_warmup(rising_candles, trend_strategy):
    result = run(rising_candles, trend_strategy)

    assert len(result.equity_curve) == len(rising_candles) - 50
    assert result.equity_curve[0].timestamp == rising_candles[50].close_time


def test_equity_accounting_holds_every_step(rising_candles, trend_strategy):
    engine = BacktestEngine(BacktestConfig(symbol="BTCUSDT"))

    def check(candle, portfolio):
        open_part = sum(p.unrealized_pnl - p.entry_commission for p in portfolio.positions.values())
        expected = portfolio.initial_capital + portfolio.realized_pnl + open_part
        assert portfolio.equity == pytest.approx(expected)
        assert portfolio.cash >= 0

    result = engine.run_backtest(rising_candles, trend_strategy, on_step=check)
    assert result.final_balance == pytest.approx(10000.0 + sum(t.pnl for t in result.closed_trades))


def test_runs_are_deterministic(oscillating_candles):
    strategy = StrategyFactory.get_strategy('multi_timeframe_confluence')
    first = run(oscillating_candles, strategy)
    second = run(oscillating_candles, strategy)

    assert json.dumps(first.to_dict(), sort_keys=True) == json.dumps(second.to_dict(), sort_keys=True)


def test_engine_can_be_reused(rising_candles, trend_strategy):
    engine = BacktestEngine(BacktestConfig(symbol="BTCUSDT"))
    first = engine.run_backtest(rising_candles, trend_strategy)
    second = engine.run_backtest(rising_candles, trend_strategy)
    assert first.to_dict() == second.to_dict()


def test_stop_loss_exit(make_candles, trend_strategy):
    closes = [100 * 1.01 ** i for i in range(57)]
    closes += [closes[-1] * 0.95 ** k for k in range(1, 16)]

    result = run(make_candles(closes), trend_strategy)

    stopped = [t for t in result.closed_trades if t.exit_reason.startswith("Stop loss")]
    assert stopped
    assert all(t.pnl < 0 for t in stopped)
    assert result.losing_trades >= 1


def test_open_position_closed_at_end(rising_candles, trend_strategy):
    patient = replace(trend_strategy, risk_management=RiskManagementConfig(0.10, 0.20, 2.0, 500.0, 0.02))

    result = run(rising_candles, patient)

    assert result.total_trades == 1
    trade = result.trades[0]
    assert trade.status == TradeStatus.CLOSED
    assert trade.exit_reason == "End of backtest"
    assert trade.exit_time == rising_candles[-1].close_time
    assert trade.pnl > 0


def test_date_range_filter(rising_candles, trend_strategy):
    result = run(rising_candles, trend_strategy, start_date=rising_candles[20].open_time)
    assert len(result.equity_curve) == 100 - 50

    result = run(rising_candles, trend_strategy, end_date=rising_candles[79].open_time)
    assert len(result.equity_curve) == 80 - 50


def test_dataframe_input(rising_candles, trend_strategy):
    from_candles = run(rising_candles, trend_strategy)
    from_frame = run(candles_to_dataframe(rising_candles), trend_strategy)

    assert from_frame.total_trades == from_candles.total_trades
    assert from_frame.final_balance == pytest.approx(from_candles.final_balance)


def test_unordered_dataframe_rejected(rising_candles, trend_strategy):
    frame = candles_to_dataframe(rising_candles).iloc[::-1]
    with pytest.raises(DataValidationError, match="strictly increasing"):
        run(frame, trend_strategy)


def test_events_published(rising_candles, trend_strategy):
    bus = EventBus()
    engine = BacktestEngine(BacktestConfig(symbol="BTCUSDT"), event_bus=bus)
    result = engine.run_backtest(rising_candles, trend_strategy)

    assert len(bus.history(EventType.POSITION_OPENED)) == len(result.trades)
    assert len(bus.history(EventType.POSITION_CLOSED)) == result.total_trades


def test_empty_data_rejected(trend_strategy):
    with pytest.raises(InsufficientDataError):
        run([], trend_strategy)


def test_short_data_rejected(make_candles, trend_strategy):
    with pytest.raises(InsufficientDataError, match="minimum 50"):
        run(make_candles([100.0 + i for i in range(30)]), trend_strategy)


def test_filter_leaving_too_few_candles(rising_candles, trend_strategy):
    with pytest.raises(InsufficientDataError):
        run(rising_candles, trend_strategy, start_date=rising_candles[100].open_time)


def test_malformed_candle_rejected(rising_candles, trend_strategy):
    candles = list(rising_candles)
    candles[10] = replace(candles[10], high=candles[10].low - 1)
    with pytest.raises(DataValidationError):
        run(candles, trend_strategy)


def test_invalid_strategy_rejected(rising_candles, trend_strategy):
    with pytest.raises(ConfigurationError):
        run(rising_candles, replace(trend_strategy, rules=[]))


def test_result_feeds_strategy_performance(rising_candles, trend_strategy):
    result = run(rising_candles, trend_strategy)
    performance = result.to_strategy_performance()

    assert performance.total_trades == result.total_trades
    assert performance.win_rate == 100.0
    assert result.to_dict()['profit_factor'] is None
    assert len(result.equity_frame()) == len(result.equity_curve)


def test_entries_gated_by_rules_for_their_direction(rising_candles, falling_candles, trend_strategy):
    strict_shorts = replace(trend_strategy, rules=[
        TradingRule('EMA and SMA bullish', Signal.BUY, 60, 2, 3),
        TradingRule('Only certain shorts', Signal.SELL, 100, 2, 3)
    ])
    assert run(rising_candles, strict_shorts).total_trades >= 5

    long_only = replace(trend_strategy, rules=[TradingRule('EMA and SMA bullish', Signal.BUY, 60, 2, 3)])
    assert run(falling_candles, long_only).trades == []
