"""
Oscillator Indicators
=====================
RSI, Stochastic, Williams %R and CCI.

Bounded oscillators are clamped to their domain: RSI in [0, 100],
Williams %R in [-100, 0].
"""

import numpy as np
from collections import deque
from typing import Deque, Optional
import logging

from .base import (
    BaseIndicator,
    IndicatorResult,
    ScalarValue,
    Signal,
    StochasticValue,
    WilderAverage,
    clamp
)

logger = logging.getLogger(__name__)


class RelativeStrengthIndex(BaseIndicator):
    """
    Wilder RSI.

    Average gain and loss are seeded with the mean of the first ``period``
    close-to-close changes and smoothed afterwards.
    """

    def __init__(self, period: int = 14, overbought: float = 70, oversold: float = 30):
        super().__init__(
            f"RSI_{period}",
            period,
            params={'period': period, 'overbought': overbought, 'oversold': oversold}
        )
        self.overbought = overbought
        self.oversold = oversold
        self._avg_gain = WilderAverage(period)
        self._avg_loss = WilderAverage(period)

    def _update(self, candle, previous):
        if previous is None:
            return
        change = candle.close - previous.close
        self._avg_gain.update(max(change, 0.0))
        self._avg_loss.update(max(-change, 0.0))

    def _reset_state(self):
        self._avg_gain.reset()
        self._avg_loss.reset()

    @property
    def value(self) -> Optional[float]:
        if not self._avg_loss.ready:
            return None
        avg_gain = self._avg_gain.value
        avg_loss = self._avg_loss.value
        if avg_loss == 0:
            # No movement at all reads as the midpoint, pure gains as 100
            return 50.0 if avg_gain == 0 else 100.0
        rs = avg_gain / avg_loss
        return clamp(100 - 100 / (1 + rs), 0.0, 100.0)

    def _compute(self) -> Optional[IndicatorResult]:
        rsi = self.value
        if rsi is None:
            return None

        if rsi < self.oversold:
            signal = Signal.BUY
        elif rsi > self.overbought:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        return self._result(ScalarValue(rsi), signal, self._strength(rsi))

    def _strength(self, rsi: float) -> float:
        if rsi <= self.oversold:
            return 100 - (rsi / self.oversold) * 50
        if rsi >= self.overbought:
            return 50 + ((rsi - self.overbought) / (100 - self.overbought)) * 50
        return max(0.0, 50 - abs(rsi - 50))


class StochasticOscillator(BaseIndicator):
    """Slow stochastic: %K smoothed over ``smooth_k`` bars, %D over ``smooth_d``."""

    def __init__(self, period: int = 14, smooth_k: int = 3, smooth_d: int = 3):
        super().__init__(
            f"STOCH_{period}",
            period,
            params={'period': period, 'smooth_k': smooth_k, 'smooth_d': smooth_d}
        )
        self.smooth_k = smooth_k
        self.smooth_d = smooth_d
        self._raw_k: Deque[float] = deque(maxlen=smooth_k)
        self._k: Deque[float] = deque(maxlen=smooth_d + 1)

    def _update(self, candle, previous):
        if len(self.history) < self.period:
            return
        window = self.window(self.period)
        highest = max(c.high for c in window)
        lowest = min(c.low for c in window)
        if highest == lowest:
            return

        self._raw_k.append((candle.close - lowest) / (highest - lowest) * 100)
        if len(self._raw_k) == self.smooth_k:
            self._k.append(float(np.mean(self._raw_k)))

    def _reset_state(self):
        self._raw_k.clear()
        self._k.clear()

    def _compute(self) -> Optional[IndicatorResult]:
        window = self.window(self.period)
        if max(c.high for c in window) == min(c.low for c in window):
            return None
        if len(self._k) < self.smooth_d:
            return None

        k_values = list(self._k)
        k = k_values[-1]
        d = float(np.mean(k_values[-self.smooth_d:]))
        prev_k = k_values[-2] if len(k_values) >= 2 else None

        if k < 20 and d < 20:
            signal = Signal.BUY
        elif k > 80 and d > 80:
            signal = Signal.SELL
        elif prev_k is not None and prev_k <= d < k and k < 50:
            signal = Signal.BUY
        elif prev_k is not None and prev_k >= d > k and k > 50:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        average = (k + d) / 2
        if average <= 20:
            strength = 100 - (average / 20) * 30
        elif average >= 80:
            strength = 70 + ((average - 80) / 20) * 30
        else:
            strength = max(20.0, 60 - abs(k - d))

        return self._result(StochasticValue(k, d), signal, strength)


class WilliamsR(BaseIndicator):
    """Williams %R in [-100, 0]; below -80 oversold, above -20 overbought."""

    def __init__(self, period: int = 14):
        super().__init__(f"WILLIAMS_R_{period}", period)

    def _compute(self) -> Optional[IndicatorResult]:
        window = self.window(self.period)
        highest = max(c.high for c in window)
        lowest = min(c.low for c in window)
        if highest == lowest:
            return None

        close = window[-1].close
        wr = clamp((highest - close) / (highest - lowest) * -100, -100.0, 0.0)

        if wr < -80:
            signal = Signal.BUY
        elif wr > -20:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        if wr <= -80:
            strength = 100 + (wr + 80) * 2.5
        elif wr >= -20:
            strength = 50 + (20 + wr) * 2.5
        else:
            strength = max(0.0, 50 - abs(wr + 50))

        return self._result(ScalarValue(wr), signal, strength)


class CommodityChannelIndex(BaseIndicator):
    """CCI = (TP - SMA(TP)) / (0.015 * mean deviation)."""

    CONSTANT = 0.015

    def __init__(self, period: int = 20):
        super().__init__(f"CCI_{period}", period)

    def _compute(self) -> Optional[IndicatorResult]:
        typical = np.array([c.typical_price for c in self.window(self.period)])
        mean_tp = typical.mean()
        mean_deviation = np.abs(typical - mean_tp).mean()
        if mean_deviation == 0:
            return None

        cci = float((typical[-1] - mean_tp) / (self.CONSTANT * mean_deviation))

        if cci < -100:
            signal = Signal.BUY
        elif cci > 100:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        magnitude = abs(cci)
        if magnitude >= 100:
            strength = min(100.0, 50 + (magnitude - 100) / 4)
        else:
            strength = magnitude / 2

        return self._result(ScalarValue(cci), signal, strength)
