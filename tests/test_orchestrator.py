from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import pytest

from crypto_quant.config import SystemConfig
from crypto_quant.errors import ConfigurationError, ExecutionError
from crypto_quant.execution import PaperExecutor
from crypto_quant.indicators import Signal
from crypto_quant.monitoring import AlertSeverity, EventBus, EventType, PerformanceAlertType
from crypto_quant.orchestrator import (
    AdvisoryRecommendation,
    AdvisoryRiskLevel,
    AIAdvisory,
    TradingEngine,
)
from crypto_quant.risk import CircuitState
from crypto_quant.strategies import StrategyFactory, StrategyPerformance


class FailingExecutor(PaperExecutor):
    """Paper executor whose exchange is down."""

    def place_order(self, symbol, side, order_type, quantity, price=None):
        raise ExecutionError(f"Exchange unavailable for {symbol}", symbol=symbol)


@pytest.fixture
def bus():
    return EventBus(history_size=5000)


@pytest.fixture
def engine(trend_strategy, bus):
    engine = TradingEngine(SystemConfig(), strategies=[trend_strategy], event_bus=bus)
    engine.start()
    return engine


def feed(engine, candles, symbol="BTCUSDT", advisory=None):
    return [engine.process_market_data(symbol, candle, advisory) for candle in candles]


def feed_until_position(engine, candles, symbol="BTCUSDT"):
    for index, candle in enumerate(candles):
        engine.process_market_data(symbol, candle)
        if engine.portfolio.has_position(symbol):
            return index
    raise AssertionError("no position was opened")


def test_constructor_registers_strategies(bus):
    presets = StrategyFactory.get_all_strategies()

    engine = TradingEngine(SystemConfig(), strategies=presets, event_bus=bus)

    assert sorted(engine.strategies) == sorted(s.id for s in presets)
    assert engine.get_status()['strategies'] == sorted(s.id for s in presets)


def test_start_requires_strategies():
    with pytest.raises(ConfigurationError):
        TradingEngine(SystemConfig()).start()


def test_stopped_engine_only_updates_market_data(trend_strategy, bus, rising_candles):
    engine = TradingEngine(SystemConfig(), strategies=[trend_strategy], event_bus=bus)

    assert engine.process_market_data("BTCUSDT", rising_candles[0]) == []
    assert engine.aggregators["BTCUSDT"].get_statistics()['data_points'] == 1
    assert len(bus.history(EventType.MARKET_DATA_PROCESSED)) == 1
    assert bus.history(EventType.SIGNAL_GENERATED) == []


def test_uptrend_is_traded(engine, bus, rising_candles):
    decisions = feed(engine, rising_candles)

    assert all(len(d) == 1 for d in decisions)
    executed = [d[0] for d in decisions if d[0].outcome == "executed"]
    assert executed
    assert all(d.action == Signal.BUY and d.order_id.startswith("PAPER-") for d in executed)
    assert bus.history(EventType.POSITION_OPENED)
    assert bus.history(EventType.TRADE_EXECUTED)

    report = engine.generate_performance_report()
    assert report.total_trades == len(bus.history(EventType.POSITION_CLOSED))
    assert report.total_trades >= 1
    assert report.winning_trades == report.total_trades


def test_take_profit_uses_strategy_percent(engine, bus, rising_candles):
    feed(engine, rising_candles)

    closed = bus.history(EventType.POSITION_CLOSED)
    assert closed
    assert all(e['reason'].startswith("Take profit triggered") for e in closed)


def test_one_decision_per_strategy(trend_strategy, bus, rising_candles):
    strategies = [trend_strategy, StrategyFactory.get_strategy('mean_reversion_rsi_bb')]
    engine = TradingEngine(SystemConfig(), strategies=strategies, event_bus=bus)
    engine.start()

    decisions = engine.process_market_data("BTCUSDT", rising_candles[0])

    assert [d.strategy_id for d in decisions] == ['mean_reversion_rsi_bb', 'trend_test']
    assert len(bus.history(EventType.SIGNAL_GENERATED)) == 2


def test_advisory_is_blended(engine, rising_candles):
    feed(engine, rising_candles[:59])
    advisory = AIAdvisory(AdvisoryRecommendation.BUY, 90.0, AdvisoryRiskLevel.LOW)

    decision = engine.process_market_data("BTCUSDT", rising_candles[59], advisory)[0]

    technical = decision.technical
    assert decision.score == pytest.approx(0.4 * technical.confidence / 100 + 0.6 * 0.7 * 0.9)
    assert decision.confidence == pytest.approx(0.4 * technical.confidence + 0.6 * 90.0)
    assert decision.advisory is advisory


def test_strong_advisory_alone_is_not_enough(engine, bus, flat_candles):
    advisory = AIAdvisory(AdvisoryRecommendation.STRONG_BUY, 100.0)

    decisions = feed(engine, flat_candles, advisory=advisory)

    last = decisions[-1][0]
    assert last.technical.signal == Signal.NEUTRAL
    assert last.score == pytest.approx(0.6)
    assert last.outcome == "below threshold"
    assert not engine.portfolio.positions
    assert bus.history(EventType.POSITION_OPENED) == []


def test_opposing_advisory_blocks_entry(engine, rising_candles):
    advisory = AIAdvisory(AdvisoryRecommendation.STRONG_SELL, 90.0)

    decisions = feed(engine, rising_candles, advisory=advisory)

    assert not any(d[0].outcome == "executed" for d in decisions)
    assert decisions[-1][0].action == Signal.SELL
    assert not engine.portfolio.positions


def test_advisory_from_dict():
    advisory = AIAdvisory.from_dict({'recommendation': 'buy', 'confidence': 80, 'riskLevel': 'low'})
    assert advisory.recommendation == AdvisoryRecommendation.BUY
    assert advisory.risk_level == AdvisoryRiskLevel.LOW
    assert advisory.score == pytest.approx(0.56)

    with pytest.raises(ConfigurationError):
        AIAdvisory.from_dict({'recommendation': 'MOON', 'confidence': 80})
    with pytest.raises(ConfigurationError):
        AIAdvisory.from_dict({'confidence': 80})


def test_execution_failure_is_reported_not_raised(trend_strategy, bus, rising_candles):
    engine = TradingEngine(SystemConfig(), executor=FailingExecutor(), strategies=[trend_strategy], event_bus=bus)
    engine.start()

    decisions = feed(engine, rising_candles)

    assert any(d[0].outcome == "execution failed" for d in decisions)
    assert not engine.portfolio.positions
    assert engine.running
    errors = bus.history(EventType.TRADE_ERROR)
    assert errors and "Exchange unavailable" in errors[0]['error']
    assert engine.alerts.get_recent_alerts(severity=AlertSeverity.WARNING)


def test_daily_trade_cap(trend_strategy, bus, rising_candles):
    config = SystemConfig()
    config.engine.max_daily_trades = 1
    engine = TradingEngine(config, strategies=[trend_strategy], event_bus=bus)
    engine.start()

    feed(engine, rising_candles)

    rejections = bus.history(EventType.TRADE_REJECTED)
    assert any("Daily trade limit reached (1)" in r['reasons'][0] for r in rejections)
    opened_days = [e.timestamp.date() for e in bus.history(EventType.POSITION_OPENED)]
    assert len(opened_days) == len(set(opened_days))


def test_emergency_stop_flattens_and_halts(engine, bus, rising_candles):
    index = feed_until_position(engine, rising_candles)

    engine.emergency_stop("Exchange outage")

    assert not engine.running
    assert engine.portfolio.positions == {}
    assert engine.risk_manager.circuit_state == CircuitState.CIRCUIT_BROKEN
    event = bus.history(EventType.EMERGENCY_STOP)[-1]
    assert event['reason'] == "Exchange outage"
    assert event['closed_positions'] == ["BTCUSDT"]
    assert engine.alerts.get_recent_alerts(severity=AlertSeverity.EMERGENCY)

    assert engine.process_market_data("BTCUSDT", rising_candles[index + 1]) == []


def test_stop_closes_positions(engine, bus, rising_candles):
    feed_until_position(engine, rising_candles)

    engine.stop()

    assert not engine.running
    assert engine.portfolio.positions == {}
    assert bus.history(EventType.POSITION_CLOSED)[-1]['reason'] == "Engine stopped"
    assert bus.history(EventType.ENGINE_STOPPED)


def test_orphaned_position_uses_price_levels(engine, bus, rising_candles, make_candles):
    index = feed_until_position(engine, rising_candles)
    position = engine.get_active_positions()[0]
    assert engine.remove_strategy('trend_test')
    assert not engine.remove_strategy('trend_test')

    last = rising_candles[index]
    crash = make_candles([last.close, last.close * 0.9], start=last.open_time)[1]
    engine.process_market_data("BTCUSDT", crash)

    assert crash.close < position.stop_loss
    assert engine.portfolio.positions == {}
    assert bus.history(EventType.POSITION_CLOSED)[-1]['reason'].startswith("Stop loss hit")


def test_reports_and_status(engine, rising_candles):
    feed_until_position(engine, rising_candles)

    positions = engine.get_active_positions()
    positions[0].quantity = 0.0
    assert engine.portfolio.positions["BTCUSDT"].quantity > 0

    risk = engine.generate_risk_report()
    assert risk.portfolio_value == pytest.approx(engine.portfolio.equity)
    assert len(risk.active_positions) == 1

    status = engine.get_status()
    assert status['running']
    assert status['positions_count'] == 1
    assert status['daily_trades'] == 1
    assert status['strategies'] == ['trend_test']
    assert status['circuit_breaker'] == CircuitState.NORMAL.value


def test_unknown_symbol_gets_an_aggregator(engine, make_candles):
    engine.process_market_data("SOLUSDT", make_candles([20.0])[0])
    assert "SOLUSDT" in engine.aggregators
    assert engine.last_prices["SOLUSDT"] == 20.0


def test_symbols_processed_concurrently(engine, make_candles):
    streams = {
        "BTCUSDT": make_candles([100 * 1.01 ** i for i in range(60)]),
        "ETHUSDT": make_candles([50 * 0.99 ** i for i in range(60)]),
    }

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(feed, engine, candles, symbol) for symbol, candles in streams.items()]
        for future in futures:
            future.result()

    for symbol in streams:
        assert engine.aggregators[symbol].get_statistics()['data_points'] == 60
    equity = engine.portfolio.cash + sum(p.market_value for p in engine.portfolio.positions.values())
    assert engine.portfolio.equity == pytest.approx(equity)


def test_live_closes_update_strategy_track_record(engine, bus, trend_strategy, rising_candles):
    feed(engine, rising_candles)

    closed = bus.history(EventType.POSITION_CLOSED)
    assert trend_strategy.performance.total_trades == len(closed)
    assert trend_strategy.performance.win_rate == 100.0
    assert trend_strategy.performance.total_return == pytest.approx(sum(e['pnl'] for e in closed))

    report = engine.generate_strategy_report('trend_test')
    assert report.total_trades == len(closed)
    assert report is not trend_strategy.performance
    assert bus.history(EventType.PERFORMANCE_ALERT) == []


def test_seeded_track_record_limits_live_size(trend_strategy, rising_candles):
    unseeded = TradingEngine(SystemConfig(), strategies=[trend_strategy], event_bus=EventBus())
    unseeded.start()
    index = feed_until_position(unseeded, rising_candles)
    unseeded_notional = unseeded.portfolio.positions["BTCUSDT"].quantity * rising_candles[index].close

    # 40% win rate at 1:1 pays nothing, so Kelly falls to its 1% floor
    weak = replace(trend_strategy, performance=StrategyPerformance.from_trade_pnls([10.0] * 4 + [-10.0] * 6))
    seeded = TradingEngine(SystemConfig(), strategies=[weak], event_bus=EventBus())
    seeded.start()
    index = feed_until_position(seeded, rising_candles)
    seeded_notional = seeded.portfolio.positions["BTCUSDT"].quantity * rising_candles[index].close

    assert unseeded_notional > 100.0
    assert seeded_notional == pytest.approx(0.01 * 10000.0, rel=1e-4)


def test_live_loss_shrinks_next_entry(engine, bus, trend_strategy, rising_candles, make_candles):
    index = feed_until_position(engine, rising_candles)
    first_notional = engine.portfolio.positions["BTCUSDT"].quantity * rising_candles[index].close

    last = rising_candles[index]
    crash = make_candles([last.close, last.close * 0.9], start=last.open_time)[1]
    engine.process_market_data("BTCUSDT", crash)
    assert bus.history(EventType.POSITION_CLOSED)[-1]['reason'].startswith("Stop loss triggered")
    assert trend_strategy.performance.losing_trades == 1

    recovery = make_candles([crash.close * 1.01 ** i for i in range(60)], start=crash.open_time)[1:]
    index = feed_until_position(engine, recovery)
    second_notional = engine.portfolio.positions["BTCUSDT"].quantity * recovery[index].close

    assert first_notional > 100.0
    assert second_notional <= 0.01 * 10000.0


def test_weak_track_record_raises_performance_alerts(bus, trend_strategy, rising_candles):
    weak = replace(trend_strategy, performance=StrategyPerformance.from_trade_pnls([10.0] * 3 + [-10.0] * 7))
    engine = TradingEngine(SystemConfig(), strategies=[weak], event_bus=bus)
    engine.start()

    feed_until_position(engine, rising_candles)
    engine.stop()

    event = bus.history(EventType.PERFORMANCE_ALERT)[-1]
    assert event['strategy_id'] == 'trend_test'
    assert [a.alert_type for a in event['alerts']] == [
        PerformanceAlertType.LOW_WIN_RATE, PerformanceAlertType.LOW_PROFIT_FACTOR
    ]
    titles = [a.title for a in engine.alerts.get_recent_alerts()]
    assert "Low Win Rate" in titles and "Low Profit Factor" in titles


def test_risk_report_uses_last_candle_time(engine, rising_candles):
    feed(engine, rising_candles[:2])
    engine.risk_manager.trip_circuit_breaker("Manual halt", rising_candles[1].close_time)
    assert engine.generate_risk_report().circuit_breaker_active

    engine.process_market_data("BTCUSDT", rising_candles[2])

    report = engine.generate_risk_report()
    assert report.timestamp == rising_candles[2].close_time
    assert not report.circuit_breaker_active
