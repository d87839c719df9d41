import math

import pandas as pd
import pytest

from crypto_quant.data import Candle
from crypto_quant.indicators import IndicatorName, Signal
from crypto_quant.strategies import (
    IndicatorConfig,
    RiskManagementConfig,
    TradingRule,
    TradingStrategy,
)


START = pd.Timestamp("2024-01-01 00:00:00")


def build_candles(closes, start=START, freq="1h", volume=1000.0, spread=0.5):
    """Candles whose open is the previous close, with a fixed wick around the body."""
    step = pd.Timedelta(freq)
    candles = []
    previous = closes[0]
    for i, close in enumerate(closes):
        open_time = start + i * step
        open_price = previous
        candles.append(Candle(
            open_time=open_time,
            close_time=open_time + step,
            open=open_price,
            high=max(open_price, close) + spread,
            low=min(open_price, close) - spread,
            close=close,
            volume=volume
        ))
        previous = close
    return candles


@pytest.fixture
def make_candles():
    return build_candles


@pytest.fixture
def rising_candles():
    """Steady 1% rise per candle."""
    return build_candles([100 * 1.01 ** i for i in range(120)])


@pytest.fixture
def falling_candles():
    return build_candles([300 * 0.99 ** i for i in range(120)])


@pytest.fixture
def flat_candles():
    return build_candles([100.0] * 80, spread=0.0)


@pytest.fixture
def oscillating_candles():
    return build_candles([100 + 10 * math.sin(i / 5) for i in range(200)])


@pytest.fixture
def trend_strategy():
    """Trend follower with a low rule confidence so clean trends always qualify."""
    return TradingStrategy(
        id='trend_test',
        name='Trend Test',
        description='EMA and SMA trend follower used in tests.',
        indicators=[
            IndicatorConfig(IndicatorName.EMA_12, 0.4),
            IndicatorConfig(IndicatorName.EMA_26, 0.3),
            IndicatorConfig(IndicatorName.SMA_50, 0.3)
        ],
        rules=[
            TradingRule('EMA and SMA bullish', Signal.BUY, 60, 2, 3),
            TradingRule('EMA and SMA bearish', Signal.SELL, 60, 2, 3)
        ],
        risk_management=RiskManagementConfig(
            max_position_size=0.10,
            max_drawdown=0.20,
            stop_loss_percentage=2.0,
            take_profit_percentage=3.0,
            risk_per_trade=0.02
        )
    )
