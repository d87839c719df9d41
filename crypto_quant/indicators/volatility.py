"""
Volatility Indicators
=====================
Bollinger Bands, Average True Range and Keltner Channels.
"""

from typing import Optional
import logging

from .base import (
    BandValue,
    BaseIndicator,
    IndicatorResult,
    ScalarValue,
    Signal,
    WilderAverage
)

logger = logging.getLogger(__name__)


class BollingerBands(BaseIndicator):
    """
    SMA(period) +/- ``num_std`` population standard deviations.

    Value carries %B and bandwidth; the aggregator reads bandwidth to
    classify the market regime.
    """

    MIDDLE_BAND_ZONE = 0.005

    def __init__(self, period: int = 20, num_std: float = 2.0):
        super().__init__(
            f"BB_{period}",
            period,
            params={'period': period, 'num_std': num_std}
        )
        self.num_std = num_std

    def _compute(self) -> Optional[IndicatorResult]:
        closes = self.closes(self.period + 1)
        window = closes[-self.period:]
        middle = self.sma(window, self.period)
        std = self.std_dev(window, self.period)
        price = window[-1]

        if std == 0:
            return self._result(BandValue(middle, middle, middle, 0.5, 0.0), Signal.NEUTRAL, 0)

        upper = middle + self.num_std * std
        lower = middle - self.num_std * std
        percent_b = (price - lower) / (upper - lower)
        bandwidth = (upper - lower) / middle
        change = price - closes[-2] if len(closes) > self.period else 0.0

        if price <= lower or percent_b <= 0:
            signal = Signal.BUY
        elif price >= upper or percent_b >= 1:
            signal = Signal.SELL
        elif abs(price - middle) / middle < self.MIDDLE_BAND_ZONE and change > 0 and percent_b > 0.5:
            signal = Signal.BUY
        elif abs(price - middle) / middle < self.MIDDLE_BAND_ZONE and change < 0 and percent_b < 0.5:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        if percent_b <= 0 or percent_b >= 1:
            strength = 100.0
        else:
            if percent_b <= 0.2 or percent_b >= 0.8:
                strength = 75.0
            else:
                strength = abs(percent_b - 0.5) * 100
            strength = min(100.0, strength * max(0.5, 1 - bandwidth))

        value = BandValue(upper, middle, lower, percent_b, bandwidth)
        return self._result(value, signal, strength)


class AverageTrueRange(BaseIndicator):
    """Wilder-smoothed true range. Informational only: always Neutral."""

    def __init__(self, period: int = 14):
        super().__init__(f"ATR_{period}", period)
        self._atr = WilderAverage(period)

    def _update(self, candle, previous):
        if previous is not None:
            self._atr.update(self.true_range(candle, previous))

    def _reset_state(self):
        self._atr.reset()

    @property
    def value(self) -> Optional[float]:
        return self._atr.value

    def _compute(self) -> Optional[IndicatorResult]:
        atr = self._atr.value
        if atr is None:
            return None
        price = self.latest.close
        strength = min(100.0, atr / price * 100 * 25)
        return self._result(ScalarValue(atr), Signal.NEUTRAL, strength)


class KeltnerChannels(BaseIndicator):
    """EMA(period) +/- multiplier * ATR(atr_period)."""

    def __init__(self, period: int = 20, atr_period: int = 10, multiplier: float = 2.0):
        super().__init__(
            f"KC_{period}",
            max(period, atr_period),
            params={'period': period, 'atr_period': atr_period, 'multiplier': multiplier}
        )
        self.multiplier = multiplier
        self._ema = WilderAverage(period)
        self._atr = WilderAverage(atr_period)

    def _update(self, candle, previous):
        self._ema.update(candle.close)
        if previous is not None:
            self._atr.update(self.true_range(candle, previous))

    def _reset_state(self):
        self._ema.reset()
        self._atr.reset()

    def _compute(self) -> Optional[IndicatorResult]:
        if not (self._ema.ready and self._atr.ready):
            return None

        middle = self._ema.value
        atr = self._atr.value
        upper = middle + self.multiplier * atr
        lower = middle - self.multiplier * atr
        width = upper - lower
        value = BandValue(upper, middle, lower)

        if width <= 0:
            return self._result(value, Signal.NEUTRAL, 0)

        closes = self.closes(2)
        price = closes[-1]
        change = closes[-1] - closes[-2] if len(closes) == 2 else 0.0
        position = (price - lower) / width

        if price > upper:
            signal = Signal.BUY
        elif price < lower:
            signal = Signal.SELL
        elif position > 0.7 and change > 0:
            signal = Signal.BUY
        elif position < 0.3 and change < 0:
            signal = Signal.SELL
        else:
            signal = Signal.NEUTRAL

        distance = abs(price - middle) / (width / 2) * 100
        strength = min(100.0, distance + min(50.0, atr / price * 2500))
        return self._result(value, signal, strength)
