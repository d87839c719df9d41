"""
Volume Indicators
=================
VWAP, On-Balance Volume, Money Flow Index and the Accumulation/Distribution line.
"""

import numpy as np
from collections import deque
from typing import Deque, Optional, Sequence
import logging

from .base import BaseIndicator, IndicatorResult, ScalarValue, Signal, clamp

logger = logging.getLogger(__name__)

TREND_WINDOW = 5
MIN_TREND_CANDLES = 10


def line_trend(values: Sequence[float]) -> float:
    """Relative change from the first to the last value of a short window."""
    if len(values) < 2:
        return 0.0
    first, last = values[0], values[-1]
    if first == 0:
        return float(np.sign(last))
    return (last - first) / abs(first)


def volume_ratio(volumes: Sequence[float], cap: float) -> float:
    """Latest volume over the window mean, capped."""
    if not volumes:
        return 1.0
    average = float(np.mean(volumes))
    if average <= 0:
        return 1.0
    return min(cap, volumes[-1] / average)


class VolumeWeightedAveragePrice(BaseIndicator):
    """VWAP over the retained history window."""

    def __init__(self):
        super().__init__("VWAP", 1)

    def _compute(self) -> Optional[IndicatorResult]:
        candles = list(self.history)
        cumulative_volume = sum(c.volume for c in candles)
        if cumulative_volume == 0:
            return None

        vwap = sum(c.typical_price * c.volume for c in candles) / cumulative_volume
        price = candles[-1].close
        deviation = (price - vwap) / vwap

        recent = self.volumes(3)
        average_recent = float(np.mean(recent))
        ratio = recent[-1] / average_recent if average_recent > 0 else 0.0

        if deviation < -0.005 and ratio > 1.2:
            signal = Signal.BUY
        elif deviation > 0.005 and ratio > 1.2:
            signal = Signal.SELL
        elif abs(deviation) > 0.02 and ratio > 1:
            signal = Signal.BUY if deviation > 0 else Signal.SELL
        else:
            signal = Signal.NEUTRAL

        strength = min(100.0, abs(deviation) * 5000) * volume_ratio(self.volumes(10), 2.0)
        return self._result(ScalarValue(vwap), signal, min(100.0, strength))


class _TrendLineIndicator(BaseIndicator):
    """Shared rules for cumulative volume lines (OBV, A/D)."""

    def __init__(self, name: str, volume_window: int):
        super().__init__(name, 1)
        self.volume_window = volume_window
        self.line_value = 0.0
        self._line: Deque[float] = deque(maxlen=TREND_WINDOW)

    def _reset_state(self):
        self.line_value = 0.0
        self._line.clear()

    def _compute(self) -> Optional[IndicatorResult]:
        value = ScalarValue(self.line_value)
        if len(self.history) < MIN_TREND_CANDLES:
            return self._result(value, Signal.NEUTRAL, 0)

        line_change = line_trend(list(self._line))
        price_change = line_trend(self.closes(TREND_WINDOW))

        if line_change > 0.02 and price_change > 0.01:
            signal = Signal.BUY
        elif line_change < -0.02 and price_change < -0.01:
            signal = Signal.SELL
        elif line_change > 0.02 and price_change < -0.005:
            # Bullish divergence: volume accumulating into a falling price
            signal = Signal.BUY
        elif line_change < -0.02 and price_change > 0.005:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        trend_strength = min(100.0, abs(line_change) * 100)
        strength = trend_strength * volume_ratio(self.volumes(self.volume_window), 2.0)
        return self._result(value, signal, min(100.0, strength))


class OnBalanceVolume(_TrendLineIndicator):
    """Running volume total signed by the close-to-close direction."""

    def __init__(self):
        super().__init__("OBV", volume_window=10)

    def _update(self, candle, previous):
        if previous is None:
            self.line_value = candle.volume
        elif candle.close > previous.close:
            self.line_value += candle.volume
        elif candle.close < previous.close:
            self.line_value -= candle.volume
        self._line.append(self.line_value)


class AccumulationDistributionLine(_TrendLineIndicator):
    """Running sum of close-location value times volume."""

    def __init__(self):
        super().__init__("AD_LINE", volume_window=5)

    def _update(self, candle, previous):
        price_range = candle.high - candle.low
        if price_range > 0:
            clv = ((candle.close - candle.low) - (candle.high - candle.close)) / price_range
            self.line_value += clv * candle.volume
        self._line.append(self.line_value)


class MoneyFlowIndex(BaseIndicator):
    """Volume-weighted RSI over typical prices, in [0, 100]."""

    def __init__(self, period: int = 14):
        super().__init__(f"MFI_{period}", period)

    def has_enough_data(self) -> bool:
        return len(self.history) >= self.period + 1

    @property
    def value(self) -> Optional[float]:
        if not self.has_enough_data():
            return None
        window = self.window(self.period + 1)
        positive = 0.0
        negative = 0.0
        for prev, current in zip(window[:-1], window[1:]):
            flow = current.typical_price * current.volume
            if current.typical_price > prev.typical_price:
                positive += flow
            elif current.typical_price < prev.typical_price:
                negative += flow

        if negative == 0:
            return 50.0 if positive == 0 else 100.0
        ratio = positive / negative
        return clamp(100 - 100 / (1 + ratio), 0.0, 100.0)

    def _compute(self) -> Optional[IndicatorResult]:
        mfi = self.value
        if mfi is None:
            return None

        if mfi < 30:
            signal = Signal.BUY
        elif mfi > 70:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        if mfi <= 20:
            strength = 100 - (mfi / 20) * 30
        elif mfi >= 80:
            strength = 70 + ((mfi - 80) / 20) * 30
        else:
            base = max(0.0, 50 - abs(mfi - 50))
            strength = base * volume_ratio(self.volumes(5), 1.5)

        return self._result(ScalarValue(mfi), signal, strength)
