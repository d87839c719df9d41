"""
Indicator Library
=================
Streaming technical indicators, one stateful instance per symbol.
"""
from typing import Dict

from .base import (
    BaseIndicator,
    IndicatorName,
    IndicatorResult,
    IndicatorValue,
    ScalarValue,
    MACDValue,
    StochasticValue,
    BandValue,
    Signal,
    WilderAverage
)
from .moving_averages import (
    SimpleMovingAverage,
    ExponentialMovingAverage,
    DoubleExponentialMovingAverage,
    MACD
)
from .oscillators import (
    RelativeStrengthIndex,
    StochasticOscillator,
    WilliamsR,
    CommodityChannelIndex
)
from .volatility import BollingerBands, AverageTrueRange, KeltnerChannels
from .volume import (
    VolumeWeightedAveragePrice,
    OnBalanceVolume,
    MoneyFlowIndex,
    AccumulationDistributionLine
)


def build_default_indicators() -> Dict[IndicatorName, BaseIndicator]:
    """Fresh instance of every indicator the aggregator tracks."""
    return {
        IndicatorName.SMA_20: SimpleMovingAverage(20),
        IndicatorName.SMA_50: SimpleMovingAverage(50),
        IndicatorName.EMA_5: ExponentialMovingAverage(5),
        IndicatorName.EMA_12: ExponentialMovingAverage(12),
        IndicatorName.EMA_26: ExponentialMovingAverage(26),
        IndicatorName.DEMA_14: DoubleExponentialMovingAverage(14),
        IndicatorName.MACD: MACD(12, 26, 9),
        IndicatorName.RSI_14: RelativeStrengthIndex(14),
        IndicatorName.RSI_7: RelativeStrengthIndex(7),
        IndicatorName.STOCH_14: StochasticOscillator(14, 3, 3),
        IndicatorName.WILLIAMS_R_14: WilliamsR(14),
        IndicatorName.CCI_20: CommodityChannelIndex(20),
        IndicatorName.BB_20: BollingerBands(20, 2.0),
        IndicatorName.ATR_14: AverageTrueRange(14),
        IndicatorName.KC_20: KeltnerChannels(20, 10, 2.0),
        IndicatorName.VWAP: VolumeWeightedAveragePrice(),
        IndicatorName.OBV: OnBalanceVolume(),
        IndicatorName.MFI_14: MoneyFlowIndex(14),
        IndicatorName.AD_LINE: AccumulationDistributionLine()
    }


__all__ = [
    'BaseIndicator',
    'IndicatorName',
    'IndicatorResult',
    'IndicatorValue',
    'ScalarValue',
    'MACDValue',
    'StochasticValue',
    'BandValue',
    'Signal',
    'WilderAverage',
    'SimpleMovingAverage',
    'ExponentialMovingAverage',
    'DoubleExponentialMovingAverage',
    'MACD',
    'RelativeStrengthIndex',
    'StochasticOscillator',
    'WilliamsR',
    'CommodityChannelIndex',
    'BollingerBands',
    'AverageTrueRange',
    'KeltnerChannels',
    'VolumeWeightedAveragePrice',
    'OnBalanceVolume',
    'MoneyFlowIndex',
    'AccumulationDistributionLine',
    'build_default_indicators'
]
