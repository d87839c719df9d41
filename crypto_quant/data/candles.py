"""
Market Data
===========
Candle records, bounded per-symbol history and pandas loaders.

The core never fetches data itself: candles are pushed in by a feed
(live) or loaded from a DataFrame/CSV (backtest).
"""

import pandas as pd
import numpy as np
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, List, Optional
import logging

from ..errors import DataValidationError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('open', 'high', 'low', 'close', 'volume')


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. Immutable once produced."""
    open_time: pd.Timestamp
    close_time: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3

    @property
    def weighted_price(self) -> float:
        """Close-weighted price used as the simulated execution price."""
        return (self.open + self.high + self.low + 2 * self.close) / 5

    def validate(self):
        """Raise DataValidationError if the bar is malformed."""
        values = (self.open, self.high, self.low, self.close, self.volume)
        if any(v is None or not np.isfinite(v) for v in values):
            raise DataValidationError(f"Candle at {self.open_time} has non-finite values")
        if min(self.open, self.high, self.low, self.close) <= 0:
            raise DataValidationError(f"Candle at {self.open_time} has non-positive prices")
        if self.volume < 0:
            raise DataValidationError(f"Candle at {self.open_time} has negative volume")
        if self.high < self.low:
            raise DataValidationError(
                f"Candle at {self.open_time}: high {self.high} < low {self.low}"
            )
        if not (self.low <= self.open <= self.high and self.low <= self.close <= self.high):
            raise DataValidationError(
                f"Candle at {self.open_time}: open/close outside the high-low range"
            )
        if self.close_time < self.open_time:
            raise DataValidationError(f"Candle at {self.open_time} closes before it opens")

    def to_dict(self) -> dict:
        return {
            'open_time': self.open_time.isoformat(),
            'close_time': self.close_time.isoformat(),
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume
        }


class CandleHistory:
    """Rolling, bounded candle buffer for one symbol."""

    def __init__(self, symbol: str, max_size: int = 400):
        self.symbol = symbol
        self.max_size = max_size
        self._candles: Deque[Candle] = deque(maxlen=max_size)

    def append(self, candle: Candle):
        if self._candles and candle.open_time < self._candles[-1].open_time:
            raise DataValidationError(
                f"{self.symbol}: candle at {candle.open_time} is older than "
                f"{self._candles[-1].open_time}"
            )
        self._candles.append(candle)

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self):
        return iter(self._candles)

    @property
    def latest(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    def closes(self, count: Optional[int] = None) -> List[float]:
        closes = [c.close for c in self._candles]
        return closes[-count:] if count else closes

    def clear(self):
        self._candles.clear()

    def to_frame(self) -> pd.DataFrame:
        """History as a DataFrame indexed by open time."""
        return candles_to_dataframe(self._candles)


def validate_candles(candles: Iterable[Candle]) -> List[Candle]:
    """Validate every candle and check chronological order."""
    checked = []
    previous = None
    for candle in candles:
        candle.validate()
        if previous is not None and candle.open_time <= previous.open_time:
            raise DataValidationError(
                f"Candles out of order: {candle.open_time} after {previous.open_time}"
            )
        checked.append(candle)
        previous = candle
    return checked


def candles_from_dataframe(df: pd.DataFrame, interval: Optional[str] = None) -> List[Candle]:
    """
    Convert an OHLCV DataFrame into candles.

    Args:
        df: Frame with open/high/low/close/volume columns and either an
            ``open_time`` column or a DatetimeIndex. A ``close_time`` column
            is optional.
        interval: Pandas offset alias used to derive close times when the
            frame has none (defaults to the spacing of the first two rows).

    Returns:
        Candles in frame order

    Raises:
        DataValidationError: on missing columns or open times that are not
            strictly increasing
    """
    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise DataValidationError(f"Missing OHLCV columns: {missing}")

    frame = df.copy()
    if 'open_time' in frame.columns:
        frame = frame.reset_index(drop=True)
        frame['open_time'] = pd.to_datetime(frame['open_time'])
    elif isinstance(frame.index, pd.DatetimeIndex):
        frame['open_time'] = frame.index
        frame = frame.reset_index(drop=True)
    else:
        raise DataValidationError("DataFrame needs an 'open_time' column or a DatetimeIndex")

    times = frame['open_time']
    if not (times.is_monotonic_increasing and times.is_unique):
        raise DataValidationError("DataFrame open times must be strictly increasing")

    if 'close_time' in frame.columns:
        frame['close_time'] = pd.to_datetime(frame['close_time'])
    else:
        if interval:
            step = pd.Timedelta(interval)
        elif len(frame) > 1:
            step = frame['open_time'].iloc[1] - frame['open_time'].iloc[0]
        else:
            step = pd.Timedelta(0)
        frame['close_time'] = frame['open_time'] + step

    candles = [
        Candle(
            open_time=pd.Timestamp(row.open_time),
            close_time=pd.Timestamp(row.close_time),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume)
        )
        for row in frame.itertuples(index=False)
    ]

    logger.debug(f"Loaded {len(candles)} candles from DataFrame")
    return candles


def candles_to_dataframe(candles: Iterable[Candle]) -> pd.DataFrame:
    rows = [
        {
            'open_time': c.open_time,
            'close_time': c.close_time,
            'open': c.open,
            'high': c.high,
            'low': c.low,
            'close': c.close,
            'volume': c.volume
        }
        for c in candles
    ]
    if not rows:
        return pd.DataFrame(columns=['open_time', 'close_time', *REQUIRED_COLUMNS])
    return pd.DataFrame(rows).set_index('open_time', drop=False)


def load_candles_csv(filepath: str, interval: Optional[str] = None) -> List[Candle]:
    """Load candles from a CSV file with an open_time column."""
    df = pd.read_csv(filepath)
    df.columns = [col.strip().lower() for col in df.columns]
    if 'open_time' not in df.columns:
        for alias in ('timestamp', 'date', 'datetime', 'time'):
            if alias in df.columns:
                df = df.rename(columns={alias: 'open_time'})
                break
    logger.info(f"Reading candles from {filepath}")
    return candles_from_dataframe(df, interval=interval)
