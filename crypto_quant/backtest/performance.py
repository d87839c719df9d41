"""
Performance Analysis
====================
Post-run statistics for a ``BacktestResult``: risk-adjusted ratios,
return distribution, trade streaks, drawdown periods, calendar breakdown
and an overall rating.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List
import logging
import math

from ..monitoring.metrics import (
    consecutive_runs,
    downside_deviation,
    drawdown_series,
    periodic_returns,
    sortino_ratio,
    value_at_risk,
)
from ..execution import OrderSide
from .engine import BacktestResult

logger = logging.getLogger(__name__)


@dataclass
class BasicMetrics:
    total_return: float
    total_return_percentage: float
    annualized_return: float
    total_trades: int
    win_rate: float
    profit_factor: float
    avg_trade_return: float
    trading_days: float
    trades_per_day: float
    initial_balance: float
    final_balance: float


@dataclass
class RiskMetrics:
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    max_drawdown: float
    max_drawdown_percentage: float
    volatility: float  # Per-period, %
    downside_volatility: float  # Per-period, %
    var_95: float
    var_99: float
    skewness: float
    kurtosis: float  # Excess


@dataclass
class TradeAnalysis:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    avg_win_loss_ratio: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    expectancy: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    avg_holding_hours: float = 0.0


@dataclass
class DrawdownPeriod:
    start: pd.Timestamp
    end: pd.Timestamp
    max_drawdown: float
    max_drawdown_percentage: float
    duration: int  # Equity points


@dataclass
class DrawdownAnalysis:
    max_drawdown: float = 0.0
    max_drawdown_percentage: float = 0.0
    max_drawdown_duration: int = 0
    avg_drawdown: float = 0.0
    drawdown_periods: List[DrawdownPeriod] = field(default_factory=list)
    recovery_factor: float = 0.0
    ulcer_index: float = 0.0


@dataclass
class ExposureAnalysis:
    market_exposure: float = 0.0  # % of equity points with an open position
    avg_position_size: float = 0.0
    max_position_size: float = 0.0
    min_position_size: float = 0.0
    position_size_std: float = 0.0
    long_short_ratio: float = 0.0


@dataclass
class OverallRating:
    score: int
    rating: str
    strengths: List[str]
    weaknesses: List[str]
    recommendations: List[str]


@dataclass
class PerformanceAnalysis:
    basic: BasicMetrics
    risk: RiskMetrics
    trades: TradeAnalysis
    drawdowns: DrawdownAnalysis
    exposure: ExposureAnalysis
    monthly_pnl: Dict[str, float]
    weekday_pnl: Dict[str, float]
    rating: OverallRating


class PerformanceAnalyzer:
    """Derives the full analysis from a finished backtest."""

    def __init__(self, risk_free_rate: float = 0.02, periods_per_year: int = 252):
        self.risk_free_rate = risk_free_rate
        self.periods_per_year = periods_per_year

    def analyze(self, result: BacktestResult) -> PerformanceAnalysis:
        logger.info(f"Analyzing backtest {result.id}: {result.total_trades} trades")

        equities = [p.equity for p in result.equity_curve]
        returns = periodic_returns(equities)

        basic = self.basic_metrics(result)
        risk = self.risk_metrics(result, returns, basic.annualized_return)
        analysis = PerformanceAnalysis(
            basic=basic,
            risk=risk,
            trades=self.trade_analysis(result),
            drawdowns=self.drawdown_analysis(result),
            exposure=self.exposure_analysis(result),
            monthly_pnl=self._group_pnl(result, '%Y-%m'),
            weekday_pnl=self._group_pnl(result, '%A'),
            rating=self.overall_rating(result, basic, risk)
        )

        logger.info(
            f"Analysis of {result.id}: rating {analysis.rating.rating} ({analysis.rating.score}), "
            f"Sharpe {risk.sharpe_ratio:.2f}, max drawdown {risk.max_drawdown_percentage:.2f}%"
        )
        return analysis

    def basic_metrics(self, result: BacktestResult) -> BasicMetrics:
        days = self._duration_days(result)
        trading_days = max(1, math.ceil(days))
        return BasicMetrics(
            total_return=result.total_return,
            total_return_percentage=result.total_return_percentage,
            annualized_return=annualized_return(result.total_return_percentage, days),
            total_trades=result.total_trades,
            win_rate=result.win_rate,
            profit_factor=result.profit_factor,
            avg_trade_return=result.total_return / result.total_trades if result.total_trades else 0.0,
            trading_days=days,
            trades_per_day=result.total_trades / trading_days,
            initial_balance=result.config.initial_balance,
            final_balance=result.final_balance
        )

    def risk_metrics(self, result: BacktestResult, returns: pd.Series,
                     annualized: float) -> RiskMetrics:
        volatility = float(returns.std(ddof=1)) if len(returns) > 1 else 0.0
        if result.max_drawdown_percentage > 0:
            calmar = annualized / result.max_drawdown_percentage
        else:
            calmar = float('inf') if annualized > 0 else 0.0

        return RiskMetrics(
            sharpe_ratio=result.sharpe_ratio,
            sortino_ratio=sortino_ratio(returns, self.risk_free_rate, self.periods_per_year),
            calmar_ratio=calmar,
            max_drawdown=result.max_drawdown,
            max_drawdown_percentage=result.max_drawdown_percentage,
            volatility=volatility * 100,
            downside_volatility=downside_deviation(returns) * 100,
            var_95=value_at_risk(returns, 0.95),
            var_99=value_at_risk(returns, 0.99),
            skewness=self._moment(returns, 3, minimum=3),
            kurtosis=self._moment(returns, 4, minimum=4) - 3 if len(returns) >= 4 else 0.0
        )

    def trade_analysis(self, result: BacktestResult) -> TradeAnalysis:
        closed = result.closed_trades
        if not closed:
            return TradeAnalysis()

        pnls = [t.pnl for t in closed]
        wins = [p for p in pnls if p > 0]
        losses = [p for p in pnls if p < 0]
        avg_win = float(np.mean(wins)) if wins else 0.0
        avg_loss = float(abs(np.mean(losses))) if losses else 0.0
        win_rate = len(wins) / len(closed)
        max_wins, max_losses = consecutive_runs(pnls)
        holding = [t.holding_hours for t in closed if t.holding_hours is not None]

        if avg_loss > 0:
            ratio = avg_win / avg_loss
        else:
            ratio = float('inf') if avg_win > 0 else 0.0

        return TradeAnalysis(
            total_trades=len(closed),
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=win_rate * 100,
            avg_win=avg_win,
            avg_loss=avg_loss,
            avg_win_loss_ratio=ratio,
            largest_win=max(pnls),
            largest_loss=min(pnls),
            expectancy=win_rate * avg_win - (len(losses) / len(closed)) * avg_loss,
            max_consecutive_wins=max_wins,
            max_consecutive_losses=max_losses,
            avg_holding_hours=float(np.mean(holding)) if holding else 0.0
        )

    def drawdown_analysis(self, result: BacktestResult) -> DrawdownAnalysis:
        curve = result.equity_curve
        if len(curve) < 2:
            return DrawdownAnalysis()

        equity = pd.Series([p.equity for p in curve], index=[p.timestamp for p in curve], dtype=float)
        peak = equity.cummax()
        amount = peak - equity
        pct = drawdown_series(equity.tolist())
        pct.index = equity.index

        periods: List[DrawdownPeriod] = []
        underwater = (amount > 0).tolist()
        start = None
        for i, flag in enumerate(underwater + [False]):
            if flag and start is None:
                start = i
            elif not flag and start is not None:
                window = slice(start, i)
                periods.append(DrawdownPeriod(
                    start=equity.index[start],
                    end=equity.index[i - 1],
                    max_drawdown=float(amount.iloc[window].max()),
                    max_drawdown_percentage=float(pct.iloc[window].max()),
                    duration=i - start
                ))
                start = None

        total_return = curve[-1].equity - curve[0].equity
        deepest = max((p.max_drawdown for p in periods), default=0.0)

        return DrawdownAnalysis(
            max_drawdown=deepest,
            max_drawdown_percentage=max((p.max_drawdown_percentage for p in periods), default=0.0),
            max_drawdown_duration=max((p.duration for p in periods), default=0),
            avg_drawdown=float(np.mean([p.max_drawdown for p in periods])) if periods else 0.0,
            drawdown_periods=periods,
            recovery_factor=total_return / deepest if deepest > 0 else 0.0,
            ulcer_index=float(np.sqrt(np.mean(np.square(pct.to_numpy()))))
        )

    def exposure_analysis(self, result: BacktestResult) -> ExposureAnalysis:
        closed = result.closed_trades
        if not closed:
            return ExposureAnalysis()

        sizes = np.array([t.quantity * t.entry_price for t in closed], dtype=float)
        longs = sum(1 for t in closed if t.side == OrderSide.BUY)
        shorts = len(closed) - longs

        in_market = 0
        for point in result.equity_curve:
            if any(t.entry_time <= point.timestamp < t.exit_time for t in closed):
                in_market += 1
        total = len(result.equity_curve)

        return ExposureAnalysis(
            market_exposure=in_market / total * 100 if total else 0.0,
            avg_position_size=float(sizes.mean()),
            max_position_size=float(sizes.max()),
            min_position_size=float(sizes.min()),
            position_size_std=float(sizes.std()),
            long_short_ratio=longs / shorts if shorts else float(longs)
        )

    def overall_rating(self, result: BacktestResult, basic: BasicMetrics, risk: RiskMetrics) -> OverallRating:
        """Score 0-100 from returns, drawdown, consistency and efficiency, 25% each."""
        returns_score = min(30.0, max(0.0, basic.annualized_return / 2))
        risk_score = max(0.0, 30 - risk.max_drawdown_percentage)
        consistency_score = (result.win_rate / 100 * 15) + (min(3.0, max(0.0, risk.sharpe_ratio)) / 3 * 15)
        pf = result.profit_factor if not math.isinf(result.profit_factor) else 4.0
        efficiency_score = min(30.0, max(0.0, (pf - 1) * 10)) + min(10.0, basic.trades_per_day * 2)

        score = 0.25 * (returns_score + risk_score + consistency_score + efficiency_score)

        if score >= 80:
            rating = 'EXCELLENT'
        elif score >= 65:
            rating = 'GOOD'
        elif score >= 50:
            rating = 'AVERAGE'
        elif score >= 35:
            rating = 'POOR'
        else:
            rating = 'VERY_POOR'

        return OverallRating(
            score=int(round(score)),
            rating=rating,
            strengths=self._strengths(result),
            weaknesses=self._weaknesses(result),
            recommendations=self._recommendations(result)
        )

    @staticmethod
    def _strengths(result: BacktestResult) -> List[str]:
        strengths = []
        if result.total_return_percentage > 20:
            strengths.append('High returns')
        if result.win_rate > 60:
            strengths.append('High win rate')
        if result.max_drawdown_percentage < 10:
            strengths.append('Low drawdown')
        if result.sharpe_ratio > 1.5:
            strengths.append('Excellent risk-adjusted returns')
        if result.profit_factor > 2:
            strengths.append('Strong profit factor')
        return strengths

    @staticmethod
    def _weaknesses(result: BacktestResult) -> List[str]:
        weaknesses = []
        if result.total_return_percentage < 5:
            weaknesses.append('Low returns')
        if result.win_rate < 40:
            weaknesses.append('Low win rate')
        if result.max_drawdown_percentage > 25:
            weaknesses.append('High drawdown')
        if result.sharpe_ratio < 0.5:
            weaknesses.append('Poor risk-adjusted returns')
        if result.profit_factor < 1.2:
            weaknesses.append('Weak profit factor')
        if result.total_trades < 10:
            weaknesses.append('Insufficient trading frequency')
        return weaknesses

    @staticmethod
    def _recommendations(result: BacktestResult) -> List[str]:
        recommendations = []
        if result.max_drawdown_percentage > 20:
            recommendations.append('Consider tighter risk management and position sizing')
        if result.win_rate < 45:
            recommendations.append('Review entry criteria to improve signal quality')
        if result.profit_factor < 1.5:
            recommendations.append('Optimize profit targets and stop losses')
        if result.total_trades < 20:
            recommendations.append('Consider adjusting parameters for more trading opportunities')
        return recommendations

    @staticmethod
    def _moment(returns: pd.Series, order: int, minimum: int) -> float:
        """Standardized central moment with population std."""
        if len(returns) < minimum:
            return 0.0
        values = returns.to_numpy()
        std = values.std()
        if std == 0:
            return 0.0
        return float(np.mean(((values - values.mean()) / std) ** order))

    @staticmethod
    def _group_pnl(result: BacktestResult, fmt: str) -> Dict[str, float]:
        closed = result.closed_trades
        if not closed:
            return {}
        frame = pd.DataFrame({
            'key': [t.exit_time.strftime(fmt) for t in closed],
            'pnl': [t.pnl for t in closed]
        })
        return {str(k): float(v) for k, v in frame.groupby('key', sort=True)['pnl'].sum().items()}

    @staticmethod
    def _duration_days(result: BacktestResult) -> float:
        curve = result.equity_curve
        if len(curve) < 2:
            return 0.0
        return (curve[-1].timestamp - curve[0].timestamp).total_seconds() / 86400


def annualized_return(total_return_pct: float, days: float) -> float:
    """Compound annual growth rate, in percent."""
    if days <= 0:
        return 0.0
    base = 1 + total_return_pct / 100
    if base <= 0:
        return -100.0
    with np.errstate(over='ignore'):
        return float((np.power(base, 365.25 / days) - 1) * 100)
