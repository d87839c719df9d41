"""
Signal Aggregator
=================
Combines every indicator of one symbol into a single weighted trade signal.

Pipeline per candle:
    feed indicators → detect regime → adjust weights → score → decide
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

import pandas as pd

from ..config import MarketRegime
from ..data import Candle, CandleHistory
from ..indicators import (
    BaseIndicator,
    IndicatorName,
    IndicatorResult,
    Signal,
    build_default_indicators
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalBreakdown:
    """Contribution of one indicator to the aggregate."""
    signal: Signal
    weight: float
    strength: float

    def to_dict(self) -> dict:
        return {'signal': self.signal.value, 'weight': self.weight, 'strength': self.strength}


@dataclass(frozen=True)
class AggregatedSignal:
    """Final weighted decision for a symbol at one candle."""
    symbol: str
    signal: Signal
    confidence: float
    buy_score: float
    sell_score: float
    regime: MarketRegime
    breakdown: Dict[IndicatorName, SignalBreakdown] = field(default_factory=dict)
    timestamp: Optional[pd.Timestamp] = None

    @property
    def is_actionable(self) -> bool:
        return self.signal != Signal.NEUTRAL

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'signal': self.signal.value,
            'confidence': self.confidence,
            'buy_score': self.buy_score,
            'sell_score': self.sell_score,
            'regime': self.regime.value,
            'breakdown': {name.value: b.to_dict() for name, b in self.breakdown.items()},
            'timestamp': self.timestamp.isoformat() if self.timestamp is not None else None
        }


@dataclass
class MarketSnapshot:
    """Latest price context plus every ready indicator result."""
    symbol: str
    price: float
    price_change: float
    price_change_pct: float
    volume: float
    regime: MarketRegime
    indicators: Dict[IndicatorName, IndicatorResult]
    timestamp: pd.Timestamp

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'price': self.price,
            'price_change': self.price_change,
            'price_change_pct': self.price_change_pct,
            'volume': self.volume,
            'regime': self.regime.value,
            'indicators': {name.value: r.to_dict() for name, r in self.indicators.items()},
            'timestamp': self.timestamp.isoformat()
        }


class SignalAggregator:
    """
    Owns one instance of every indicator for a symbol.

    Responsibilities:
    - Feed each candle to all indicators
    - Classify market regime from Bollinger bandwidth
    - Apply regime-specific weight multipliers
    - Emit Buy/Sell only when the winning side clears the confluence margin
    """

    def __init__(self, symbol: str, config=None):
        from ..config import AggregatorConfig
        self.config = config or AggregatorConfig()
        self.config.validate()

        self.symbol = symbol
        self.indicators: Dict[IndicatorName, BaseIndicator] = build_default_indicators()
        self.history = CandleHistory(symbol, self.config.history_size)

        self._results: Dict[IndicatorName, IndicatorResult] = {}
        self._regime = MarketRegime.UNKNOWN

    def add_candle(self, candle: Candle):
        """Feed one closed candle to every indicator and refresh results."""
        self.history.append(candle)
        for indicator in self.indicators.values():
            indicator.add_candle(candle)

        results = {}
        for name, indicator in self.indicators.items():
            result = indicator.calculate()
            if result is not None:
                results[name] = result
        self._results = results
        self._regime = self._detect_regime()

        logger.debug(
            f"{self.symbol} candle {candle.open_time}: "
            f"{len(results)}/{len(self.indicators)} indicators ready, regime {self._regime.value}"
        )

    def _detect_regime(self) -> MarketRegime:
        atr = self._results.get(IndicatorName.ATR_14)
        bands = self._results.get(IndicatorName.BB_20)
        if atr is None or bands is None:
            return MarketRegime.UNKNOWN

        bandwidth = bands.value.bandwidth or 0.0
        if bandwidth > self.config.volatile_bandwidth:
            return MarketRegime.VOLATILE
        if bandwidth < self.config.ranging_bandwidth:
            return MarketRegime.RANGING
        return MarketRegime.TRENDING

    def get_market_regime(self) -> MarketRegime:
        return self._regime

    def adjusted_weights(self, weights: Optional[Dict[IndicatorName, float]] = None) -> Dict[IndicatorName, float]:
        """Base weights (config default or a strategy's table) times regime multipliers."""
        base = weights if weights is not None else self.config.weights
        multipliers = self.config.regime_multipliers.get(self._regime, {})
        return {name: weight * multipliers.get(name, 1.0) for name, weight in base.items()}

    def get_aggregated_signal(self, weights: Optional[Dict[IndicatorName, float]] = None) -> AggregatedSignal:
        """
        Weighted Buy/Sell scoring over every ready indicator.

        Args:
            weights: Optional indicator weight table (e.g. a strategy's);
                defaults to the configured table

        Returns:
            AggregatedSignal with confidence in [0, 100]
        """
        adjusted = self.adjusted_weights(weights)

        total_weight = 0.0
        buy_score = 0.0
        sell_score = 0.0
        breakdown: Dict[IndicatorName, SignalBreakdown] = {}

        for name, weight in adjusted.items():
            if weight <= 0:
                continue
            result = self._results.get(name)
            if result is None:
                continue

            total_weight += weight
            breakdown[name] = SignalBreakdown(result.signal, weight, result.strength)

            if result.signal == Signal.BUY:
                buy_score += weight * result.strength / 100
            elif result.signal == Signal.SELL:
                sell_score += weight * result.strength / 100

        if total_weight > 0:
            buy_score /= total_weight
            sell_score /= total_weight

        margin = self.config.min_confluence
        if buy_score > sell_score and buy_score - sell_score >= margin:
            signal = Signal.BUY
            confidence = min(100.0, buy_score * 100)
        elif sell_score > buy_score and sell_score - buy_score >= margin:
            signal = Signal.SELL
            confidence = min(100.0, sell_score * 100)
        else:
            signal = Signal.NEUTRAL
            confidence = min(100.0, max(buy_score, sell_score) * 100)

        latest = self.history.latest
        return AggregatedSignal(
            symbol=self.symbol,
            signal=signal,
            confidence=confidence,
            buy_score=buy_score,
            sell_score=sell_score,
            regime=self._regime,
            breakdown=breakdown,
            timestamp=latest.close_time if latest else None
        )

    def get_indicator(self, name: IndicatorName) -> BaseIndicator:
        return self.indicators[name]

    def get_result(self, name: IndicatorName) -> Optional[IndicatorResult]:
        return self._results.get(name)

    def get_all_results(self) -> Dict[IndicatorName, IndicatorResult]:
        return dict(self._results)

    def get_market_snapshot(self) -> Optional[MarketSnapshot]:
        latest = self.history.latest
        if latest is None:
            return None

        closes = self.history.closes(2)
        change = closes[-1] - closes[-2] if len(closes) == 2 else 0.0
        change_pct = change / closes[-2] * 100 if len(closes) == 2 else 0.0

        return MarketSnapshot(
            symbol=self.symbol,
            price=latest.close,
            price_change=change,
            price_change_pct=change_pct,
            volume=latest.volume,
            regime=self._regime,
            indicators=dict(self._results),
            timestamp=latest.close_time
        )

    def recent_closes(self, count: int) -> List[float]:
        return self.history.closes(count)

    def get_statistics(self) -> dict:
        return {
            'symbol': self.symbol,
            'data_points': len(self.history),
            'indicators_total': len(self.indicators),
            'indicators_ready': len(self._results),
            'ready': sorted(name.value for name in self._results),
            'regime': self._regime.value
        }

    def reset(self):
        """Clear all state for re-use across backtest runs."""
        self.history.clear()
        for indicator in self.indicators.values():
            indicator.reset()
        self._results = {}
        self._regime = MarketRegime.UNKNOWN
