import math

import pandas as pd
import pytest

from crypto_quant.backtest import (
    BacktestConfig,
    BacktestEngine,
    BacktestResult,
    BacktestTrade,
    EquityPoint,
    PerformanceAnalyzer,
)
from crypto_quant.backtest.performance import annualized_return
from crypto_quant.execution import OrderSide


def closed_trade(number, entry, exit, pnl, side=OrderSide.BUY):
    trade = BacktestTrade(
        id=f"BTCUSDT-{number:05d}",
        symbol="BTCUSDT",
        side=side,
        entry_time=pd.Timestamp(entry),
        entry_price=100.0,
        quantity=10.0,
        commission=1.0,
        reason="Strategy signal"
    )
    return trade.closed(pd.Timestamp(exit), 100.0 + pnl / 10, 1.0, pnl, "Take profit")


@pytest.fixture
def result():
    equities = [10000.0, 10100.0, 10050.0, 10250.0]
    curve = []
    peak = 0.0
    for day, equity in enumerate(equities):
        peak = max(peak, equity)
        curve.append(EquityPoint(
            timestamp=pd.Timestamp("2024-01-01") + pd.Timedelta(days=day),
            equity=equity,
            cash=equity,
            drawdown=peak - equity,
            drawdown_percentage=(peak - equity) / peak * 100
        ))

    trades = [
        closed_trade(1, "2024-01-01 00:00", "2024-01-01 05:00", 100.0),
        closed_trade(2, "2024-01-02 00:00", "2024-01-02 10:00", -50.0, OrderSide.SELL),
        closed_trade(3, "2024-02-05 00:00", "2024-02-05 03:00", 200.0),
    ]
    return BacktestResult(
        id="backtest_BTCUSDT_test",
        config=BacktestConfig(symbol="BTCUSDT"),
        strategy_id="test",
        final_balance=10250.0,
        total_return=250.0,
        total_return_percentage=2.5,
        max_drawdown=50.0,
        max_drawdown_percentage=50.0 / 10100.0 * 100,
        total_trades=3,
        winning_trades=2,
        losing_trades=1,
        win_rate=200 / 3,
        profit_factor=6.0,
        sharpe_ratio=0.0,
        trades=trades,
        equity_curve=curve
    )


def test_trade_analysis(result):
    trades = PerformanceAnalyzer().trade_analysis(result)

    assert trades.total_trades == 3
    assert trades.avg_win == pytest.approx(150.0)
    assert trades.avg_loss == pytest.approx(50.0)
    assert trades.avg_win_loss_ratio == pytest.approx(3.0)
    assert trades.largest_win == 200.0
    assert trades.largest_loss == -50.0
    assert trades.expectancy == pytest.approx(2 / 3 * 150 - 1 / 3 * 50)
    assert trades.max_consecutive_wins == 1
    assert trades.max_consecutive_losses == 1
    assert trades.avg_holding_hours == pytest.approx(6.0)


def test_drawdown_periods(result):
    drawdowns = PerformanceAnalyzer().drawdown_analysis(result)

    assert len(drawdowns.drawdown_periods) == 1
    period = drawdowns.drawdown_periods[0]
    assert period.start == pd.Timestamp("2024-01-03")
    assert period.duration == 1
    assert drawdowns.max_drawdown == pytest.approx(50.0)
    assert drawdowns.recovery_factor == pytest.approx(5.0)
    assert drawdowns.ulcer_index > 0


def test_exposure(result):
    exposure = PerformanceAnalyzer().exposure_analysis(result)

    assert exposure.market_exposure == pytest.approx(50.0)
    assert exposure.avg_position_size == pytest.approx(1000.0)
    assert exposure.long_short_ratio == pytest.approx(2.0)


def test_calendar_breakdown(result):
    analysis = PerformanceAnalyzer().analyze(result)

    assert analysis.monthly_pnl == {'2024-01': 50.0, '2024-02': 200.0}
    assert analysis.weekday_pnl == {'Monday': 300.0, 'Tuesday': -50.0}


def test_basic_metrics_and_rating(result):
    analysis = PerformanceAnalyzer().analyze(result)

    assert analysis.basic.trading_days == pytest.approx(3.0)
    assert analysis.basic.avg_trade_return == pytest.approx(250.0 / 3)
    assert analysis.basic.annualized_return == pytest.approx(annualized_return(2.5, 3.0))
    assert 0 <= analysis.rating.score <= 100
    assert analysis.rating.rating in {'EXCELLENT', 'GOOD', 'AVERAGE', 'POOR', 'VERY_POOR'}
    assert 'Strong profit factor' in analysis.rating.strengths
    assert 'High win rate' in analysis.rating.strengths
    assert 'Low returns' in analysis.rating.weaknesses
    assert 'Insufficient trading frequency' in analysis.rating.weaknesses


def test_annualized_return():
    assert annualized_return(10.0, 365.25) == pytest.approx(10.0)
    assert annualized_return(0.0, 30) == 0.0
    assert annualized_return(5.0, 0) == 0.0
    assert annualized_return(-100.0, 30) == -100.0
    assert annualized_return(-150.0, 30) == -100.0


def test_analysis_of_a_real_run(rising_candles, trend_strategy):
    result = BacktestEngine(BacktestConfig(symbol="BTCUSDT")).run_backtest(rising_candles, trend_strategy)
    analysis = PerformanceAnalyzer().analyze(result)

    assert analysis.trades.total_trades == result.total_trades
    assert analysis.trades.losing_trades == 0
    assert math.isinf(analysis.trades.avg_win_loss_ratio)
    assert 0 < analysis.exposure.market_exposure <= 100
    assert analysis.drawdowns.max_drawdown_percentage >= 0


def test_empty_result_is_safe():
    empty = BacktestResult(
        id="empty", config=BacktestConfig(symbol="BTCUSDT"), strategy_id="none",
        final_balance=10000.0, total_return=0.0, total_return_percentage=0.0,
        max_drawdown=0.0, max_drawdown_percentage=0.0, total_trades=0,
        winning_trades=0, losing_trades=0, win_rate=0.0, profit_factor=0.0,
        sharpe_ratio=0.0
    )
    analysis = PerformanceAnalyzer().analyze(empty)

    assert analysis.trades.total_trades == 0
    assert analysis.monthly_pnl == {}
    assert analysis.drawdowns.drawdown_periods == []
    assert analysis.rating.rating == 'VERY_POOR'
