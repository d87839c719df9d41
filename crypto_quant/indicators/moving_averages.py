"""
Moving Average Indicators
=========================
SMA, EMA, DEMA and MACD over candle closes.

EMA-family smoothing is Wilder style: seeded with the SMA of the first
``period`` closes, then ``(old * (period - 1) + close) / period``.
"""

from typing import Optional
import logging

from .base import (
    BaseIndicator,
    IndicatorResult,
    MACDValue,
    ScalarValue,
    Signal,
    WilderAverage
)

logger = logging.getLogger(__name__)


class SimpleMovingAverage(BaseIndicator):
    """Arithmetic mean of the last ``period`` closes."""

    THRESHOLD = 0.01

    def __init__(self, period: int = 20):
        super().__init__(f"SMA_{period}", period)

    def _compute(self) -> Optional[IndicatorResult]:
        closes = self.closes(self.period)
        sma = self.sma(closes, self.period)
        if not sma:
            return None

        price = closes[-1]
        deviation = (price - sma) / sma

        if deviation > self.THRESHOLD:
            signal = Signal.BUY
        elif deviation < -self.THRESHOLD:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        strength = min(100.0, abs(price / sma - 1) * 1000)
        return self._result(ScalarValue(sma), signal, strength)


class ExponentialMovingAverage(BaseIndicator):
    """
    Exponential moving average with slope confirmation.

    Buy when price sits more than 0.5% above a rising EMA, Sell when it
    sits more than 0.5% below a falling one.
    """

    THRESHOLD = 0.005

    def __init__(self, period: int = 12):
        super().__init__(f"EMA_{period}", period)
        self._ema = WilderAverage(period)

    def _update(self, candle, previous):
        self._ema.update(candle.close)

    def _reset_state(self):
        self._ema.reset()

    @property
    def value(self) -> Optional[float]:
        return self._ema.value

    def _compute(self) -> Optional[IndicatorResult]:
        ema = self._ema.value
        if not ema:
            return None

        price = self.latest.close
        deviation = (price - ema) / ema
        previous = self._ema.previous
        slope = (ema - previous) / previous if previous else 0.0

        if deviation > self.THRESHOLD and slope > 0:
            signal = Signal.BUY
        elif deviation < -self.THRESHOLD and slope < 0:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        strength = abs(deviation) * 500
        if previous:
            strength += abs(slope) * 1000
        return self._result(ScalarValue(ema), signal, min(100.0, strength))


class DoubleExponentialMovingAverage(BaseIndicator):
    """DEMA = 2 * EMA(close) - EMA(EMA(close)). Reacts faster than a plain EMA."""

    THRESHOLD = 0.002

    def __init__(self, period: int = 14):
        super().__init__(f"DEMA_{period}", period)
        self._ema = WilderAverage(period)
        self._ema_of_ema = WilderAverage(period)

    def _update(self, candle, previous):
        ema = self._ema.update(candle.close)
        if ema is not None:
            self._ema_of_ema.update(ema)

    def _reset_state(self):
        self._ema.reset()
        self._ema_of_ema.reset()

    def _compute(self) -> Optional[IndicatorResult]:
        if not self._ema_of_ema.ready:
            return None

        dema = 2 * self._ema.value - self._ema_of_ema.value
        if dema <= 0:
            return None

        price = self.latest.close
        deviation = (price - dema) / dema

        if deviation > self.THRESHOLD:
            signal = Signal.BUY
        elif deviation < -self.THRESHOLD:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        return self._result(ScalarValue(dema), signal, min(100.0, abs(deviation) * 1000))


class MACD(BaseIndicator):
    """
    Moving Average Convergence Divergence.

    Value is ``(macd, signal, histogram)``. Until the signal line has been
    seeded the result is ``(macd, 0, macd)`` with a Neutral classification.
    """

    def __init__(self, fast_period: int = 12, slow_period: int = 26, signal_period: int = 9):
        super().__init__(
            "MACD",
            slow_period,
            params={'fast': fast_period, 'slow': slow_period, 'signal': signal_period}
        )
        self._fast = WilderAverage(fast_period)
        self._slow = WilderAverage(slow_period)
        self._signal = WilderAverage(signal_period)
        self._macd: Optional[float] = None
        self._histogram: Optional[float] = None
        self._prev_histogram: Optional[float] = None

    def _update(self, candle, previous):
        fast = self._fast.update(candle.close)
        slow = self._slow.update(candle.close)
        if fast is None or slow is None:
            return

        self._macd = fast - slow
        signal = self._signal.update(self._macd)
        if signal is not None:
            self._prev_histogram = self._histogram
            self._histogram = self._macd - signal

    def _reset_state(self):
        self._fast.reset()
        self._slow.reset()
        self._signal.reset()
        self._macd = None
        self._histogram = None
        self._prev_histogram = None

    def _compute(self) -> Optional[IndicatorResult]:
        if self._macd is None:
            return None

        macd = self._macd
        if self._histogram is None:
            return self._result(MACDValue(macd, 0.0, macd), Signal.NEUTRAL, 0)

        signal_line = self._signal.value
        histogram = self._histogram
        prev = self._prev_histogram

        bullish_cross = prev is not None and prev <= 0 < histogram
        bearish_cross = prev is not None and prev >= 0 > histogram

        if bullish_cross or (macd > signal_line and macd > 0):
            signal = Signal.BUY
        elif bearish_cross or (macd < signal_line and macd < 0):
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        strength = min(100.0, abs(histogram) * 10000 + abs(macd) * 10000)
        return self._result(MACDValue(macd, signal_line, histogram), signal, strength)
