"""
Indicator Base
==============
Shared types and the streaming base class for technical indicators.

Every indicator keeps only a bounded window of candles plus whatever
recurrence state it needs. Recurrence state is advanced when a candle
arrives; ``calculate()`` only reads it, so results are deterministic for
a given candle sequence no matter how often they are requested.
"""

import numpy as np
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence, Tuple, Union
import logging

from ..data import Candle

logger = logging.getLogger(__name__)

MIN_HISTORY = 200


class Signal(Enum):
    """Directional classification of an indicator or aggregate."""
    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"

    @property
    def opposite(self) -> 'Signal':
        if self is Signal.BUY:
            return Signal.SELL
        if self is Signal.SELL:
            return Signal.BUY
        return Signal.NEUTRAL


class IndicatorName(Enum):
    """Every indicator instance the aggregator can own."""
    SMA_20 = "SMA_20"
    SMA_50 = "SMA_50"
    EMA_5 = "EMA_5"
    EMA_12 = "EMA_12"
    EMA_26 = "EMA_26"
    DEMA_14 = "DEMA_14"
    MACD = "MACD"
    RSI_14 = "RSI_14"
    RSI_7 = "RSI_7"
    STOCH_14 = "STOCH_14"
    WILLIAMS_R_14 = "WILLIAMS_R_14"
    CCI_20 = "CCI_20"
    BB_20 = "BB_20"
    ATR_14 = "ATR_14"
    KC_20 = "KC_20"
    VWAP = "VWAP"
    OBV = "OBV"
    MFI_14 = "MFI_14"
    AD_LINE = "AD_LINE"


# Tagged indicator values: one scalar type plus a named tuple type per
# multi-output indicator.

@dataclass(frozen=True)
class ScalarValue:
    value: float

    @property
    def primary(self) -> float:
        return self.value

    def as_tuple(self) -> Tuple[float, ...]:
        return (self.value,)


@dataclass(frozen=True)
class MACDValue:
    macd: float
    signal: float
    histogram: float

    @property
    def primary(self) -> float:
        return self.macd

    def as_tuple(self) -> Tuple[float, ...]:
        return (self.macd, self.signal, self.histogram)


@dataclass(frozen=True)
class StochasticValue:
    k: float
    d: float

    @property
    def primary(self) -> float:
        return self.k

    def as_tuple(self) -> Tuple[float, ...]:
        return (self.k, self.d)


@dataclass(frozen=True)
class BandValue:
    """Bollinger bands (with %B and bandwidth) or Keltner channels."""
    upper: float
    middle: float
    lower: float
    percent_b: Optional[float] = None
    bandwidth: Optional[float] = None

    @property
    def primary(self) -> float:
        return self.middle

    def as_tuple(self) -> Tuple[float, ...]:
        values = (self.upper, self.middle, self.lower)
        if self.percent_b is not None:
            values += (self.percent_b, self.bandwidth)
        return values


IndicatorValue = Union[ScalarValue, MACDValue, StochasticValue, BandValue]


@dataclass(frozen=True)
class IndicatorResult:
    """Output of a single indicator for the latest candle."""
    name: str
    value: IndicatorValue
    signal: Signal
    strength: float
    params: Dict[str, float] = field(default_factory=dict)

    @property
    def is_scalar(self) -> bool:
        return isinstance(self.value, ScalarValue)

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'value': list(self.value.as_tuple()),
            'signal': self.signal.value,
            'strength': self.strength,
            'params': dict(self.params)
        }


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class WilderAverage:
    """
    Wilder-smoothed running average.

    Seeded with the simple average of the first ``period`` samples, then
    ``new = (old * (period - 1) + sample) / period``.
    """

    def __init__(self, period: int):
        self.period = period
        self.value: Optional[float] = None
        self.previous: Optional[float] = None
        self._seed: List[float] = []

    @property
    def ready(self) -> bool:
        return self.value is not None

    def update(self, sample: float) -> Optional[float]:
        if self.value is None:
            self._seed.append(sample)
            if len(self._seed) == self.period:
                self.value = sum(self._seed) / self.period
                self._seed = []
            return self.value

        self.previous = self.value
        self.value = (self.value * (self.period - 1) + sample) / self.period
        return self.value

    def reset(self):
        self.value = None
        self.previous = None
        self._seed = []


class BaseIndicator(ABC):
    """
    Base class for streaming indicators.

    Subclasses implement ``_compute()`` and, if they keep recurrence state,
    ``_update()`` and ``_reset_state()``.
    """

    def __init__(self, name: str, period: int, params: Optional[Dict[str, float]] = None):
        if period < 1:
            raise ValueError(f"{name}: period must be >= 1, got {period}")
        self.name = name
        self.period = period
        self.params: Dict[str, float] = dict(params or {'period': period})
        self.history: Deque[Candle] = deque(maxlen=max(MIN_HISTORY, 2 * period))

    def add_candle(self, candle: Candle):
        previous = self.history[-1] if self.history else None
        self.history.append(candle)
        self._update(candle, previous)

    def calculate(self) -> Optional[IndicatorResult]:
        if not self.has_enough_data():
            return None
        return self._compute()

    def has_enough_data(self) -> bool:
        return len(self.history) >= self.period

    def reset(self):
        self.history.clear()
        self._reset_state()

    @property
    def data_length(self) -> int:
        return len(self.history)

    @property
    def latest(self) -> Candle:
        return self.history[-1]

    def _update(self, candle: Candle, previous: Optional[Candle]):
        """Advance recurrence state. Default: window-only indicator."""

    def _reset_state(self):
        pass

    @abstractmethod
    def _compute(self) -> Optional[IndicatorResult]:
        pass

    # Window helpers

    def closes(self, count: Optional[int] = None) -> List[float]:
        candles = list(self.history)
        if count:
            candles = candles[-count:]
        return [c.close for c in candles]

    def volumes(self, count: Optional[int] = None) -> List[float]:
        candles = list(self.history)
        if count:
            candles = candles[-count:]
        return [c.volume for c in candles]

    def window(self, count: int) -> List[Candle]:
        return list(self.history)[-count:]

    @staticmethod
    def sma(values: Sequence[float], period: int) -> Optional[float]:
        if len(values) < period or period <= 0:
            return None
        return float(np.mean(values[-period:]))

    @staticmethod
    def std_dev(values: Sequence[float], period: int) -> Optional[float]:
        """Population standard deviation of the last ``period`` values."""
        if len(values) < period or period <= 0:
            return None
        return float(np.std(values[-period:]))

    @staticmethod
    def true_range(candle: Candle, previous: Optional[Candle]) -> float:
        if previous is None:
            return candle.high - candle.low
        return max(
            candle.high - candle.low,
            abs(candle.high - previous.close),
            abs(candle.low - previous.close)
        )

    def _result(self, value: IndicatorValue, signal: Signal, strength: float) -> IndicatorResult:
        return IndicatorResult(
            name=self.name,
            value=value,
            signal=signal,
            strength=clamp(float(strength), 0.0, 100.0),
            params=dict(self.params)
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name}, n={len(self.history)})"
