import math

import pandas as pd
import pytest

from crypto_quant.monitoring.metrics import (
    consecutive_runs,
    drawdown_series,
    max_drawdown,
    periodic_returns,
    profit_factor,
    sharpe_ratio,
    sortino_ratio,
    value_at_risk,
)


def test_max_drawdown_relative_to_running_peak():
    assert max_drawdown([100, 120, 90]) == (30.0, 25.0)
    assert max_drawdown([100, 110, 120]) == (0.0, 0.0)
    assert max_drawdown([100]) == (0.0, 0.0)


def test_drawdown_series():
    series = drawdown_series([100, 120, 90, 120])
    assert list(series) == pytest.approx([0.0, 0.0, 25.0, 0.0])


def test_periodic_returns():
    returns = periodic_returns([100, 110, 99])
    assert list(returns) == pytest.approx([0.1, -0.1])
    assert periodic_returns([100]).empty


def test_profit_factor():
    assert profit_factor([10, -5, 5]) == pytest.approx(3.0)
    assert math.isinf(profit_factor([10, 5]))
    assert profit_factor([]) == 0.0


def test_sharpe_needs_variation():
    assert sharpe_ratio(pd.Series([0.01])) == 0.0
    assert sharpe_ratio(pd.Series([0.01, 0.01, 0.01])) == 0.0
    assert sharpe_ratio(pd.Series([0.02, -0.01, 0.03, 0.01])) > 0


def test_sortino_uses_downside_only():
    returns = pd.Series([0.02, -0.01, 0.03, -0.02])
    assert sortino_ratio(returns) > sharpe_ratio(returns)
    assert sortino_ratio(pd.Series([0.01, 0.02])) == 0.0


def test_value_at_risk():
    returns = pd.Series([-0.05, -0.02, 0.0, 0.01, 0.02] * 4)
    assert value_at_risk(returns, 0.95) == -0.05
    assert value_at_risk(pd.Series(dtype=float)) == 0.0


def test_consecutive_runs():
    assert consecutive_runs([1, 1, -1, -1, -1, 2]) == (2, 3)
    assert consecutive_runs([]) == (0, 0)
