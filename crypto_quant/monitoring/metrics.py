"""
Performance Metrics
===================
Return, drawdown and trade statistics shared by the backtest simulator,
the performance analyzer and the live performance tracker.
"""

from typing import Sequence, Tuple

import numpy as np
import pandas as pd


def periodic_returns(equity: Sequence[float]) -> pd.Series:
    """Simple returns between consecutive equity points."""
    series = pd.Series(list(equity), dtype=float)
    if len(series) < 2:
        return pd.Series(dtype=float)
    previous = series.shift(1)
    returns = (series - previous) / previous
    return returns.iloc[1:].replace([np.inf, -np.inf], np.nan).dropna().reset_index(drop=True)


def sharpe_ratio(returns: pd.Series, risk_free_rate: float = 0.02, periods_per_year: int = 252) -> float:
    """mean(r - rf_per_period) / std(r), population std, not annualized."""
    if len(returns) < 2:
        return 0.0
    std = float(returns.std(ddof=0))
    if std == 0:
        return 0.0
    excess = float(returns.mean()) - risk_free_rate / periods_per_year
    return excess / std


def downside_deviation(returns: pd.Series) -> float:
    downside = returns[returns < 0]
    if len(downside) < 2:
        return 0.0
    return float(downside.std(ddof=0))


def sortino_ratio(returns: pd.Series, risk_free_rate: float = 0.02, periods_per_year: int = 252) -> float:
    deviation = downside_deviation(returns)
    if deviation == 0:
        return 0.0
    return (float(returns.mean()) - risk_free_rate / periods_per_year) / deviation


def drawdown_series(equity: Sequence[float]) -> pd.Series:
    """Percent decline from the running peak at each point (0-100)."""
    series = pd.Series(list(equity), dtype=float)
    if series.empty:
        return series
    peak = series.cummax()
    return ((peak - series) / peak * 100).fillna(0.0)


def max_drawdown(equity: Sequence[float]) -> Tuple[float, float]:
    """
    Largest peak-to-trough decline.

    Returns:
        (amount, percentage) where percentage is relative to the running peak,
        e.g. [100, 120, 90] gives (30, 25.0)
    """
    series = pd.Series(list(equity), dtype=float)
    if len(series) < 2:
        return 0.0, 0.0
    peak = series.cummax()
    amount = float((peak - series).max())
    percentage = float(((peak - series) / peak).max() * 100)
    return amount, percentage


def profit_factor(pnls: Sequence[float]) -> float:
    """Gross profit over gross loss; infinite when there are only winners."""
    values = np.asarray(list(pnls), dtype=float)
    gross_profit = float(values[values > 0].sum())
    gross_loss = float(abs(values[values < 0].sum()))
    if gross_loss == 0:
        return float('inf') if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


def value_at_risk(returns: pd.Series, confidence: float = 0.95) -> float:
    """Historical VaR: the return at the (1 - confidence) quantile of sorted returns."""
    if len(returns) == 0:
        return 0.0
    ordered = np.sort(returns.to_numpy())
    index = int(np.floor((1 - confidence) * len(ordered)))
    return float(ordered[min(index, len(ordered) - 1)])


def consecutive_runs(pnls: Sequence[float]) -> Tuple[int, int]:
    """Longest winning and losing streaks."""
    max_wins = max_losses = wins = losses = 0
    for pnl in pnls:
        if pnl > 0:
            wins += 1
            losses = 0
        else:
            losses += 1
            wins = 0
        max_wins = max(max_wins, wins)
        max_losses = max(max_losses, losses)
    return max_wins, max_losses
