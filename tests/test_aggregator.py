import pytest

from crypto_quant.config import AggregatorConfig, MarketRegime
from crypto_quant.errors import ConfigurationError, DataValidationError
from crypto_quant.indicators import IndicatorName, Signal
from crypto_quant.signals import SignalAggregator
from crypto_quant.strategies import StrategyFactory


def aggregator_for(candles, symbol="BTCUSDT"):
    aggregator = SignalAggregator(symbol)
    for candle in candles:
        aggregator.add_candle(candle)
    return aggregator


def test_trend_preset_buys_a_clean_uptrend(make_candles):
    candles = make_candles([100 * 1.01 ** i for i in range(60)])
    aggregator = aggregator_for(candles)
    strategy = StrategyFactory.get_strategy('ma_crossover_trend')

    signal = aggregator.get_aggregated_signal(strategy.weight_table())

    assert signal.signal == Signal.BUY
    assert signal.confidence >= 60
    assert signal.is_actionable
    assert set(signal.breakdown) == {IndicatorName.EMA_12, IndicatorName.EMA_26, IndicatorName.MACD}
    assert signal.timestamp == candles[-1].close_time


def test_trend_preset_sells_a_clean_downtrend(falling_candles):
    aggregator = aggregator_for(falling_candles)
    strategy = StrategyFactory.get_strategy('ma_crossover_trend')

    signal = aggregator.get_aggregated_signal(strategy.weight_table())

    assert signal.signal == Signal.SELL
    assert signal.sell_score > signal.buy_score


def test_flat_market_is_neutral(flat_candles):
    aggregator = aggregator_for(flat_candles)

    signal = aggregator.get_aggregated_signal()

    assert signal.signal == Signal.NEUTRAL
    assert signal.confidence == 0
    assert aggregator.get_market_regime() == MarketRegime.RANGING


def test_confidence_is_bounded(oscillating_candles):
    aggregator = SignalAggregator("ETHUSDT")
    for candle in oscillating_candles:
        aggregator.add_candle(candle)
        signal = aggregator.get_aggregated_signal()
        assert 0 <= signal.confidence <= 100
        assert 0 <= signal.buy_score <= 1
        assert 0 <= signal.sell_score <= 1


def test_regime_unknown_until_bands_ready(make_candles):
    aggregator = aggregator_for(make_candles([100 + i for i in range(10)]))
    assert aggregator.get_market_regime() == MarketRegime.UNKNOWN


def test_strong_trend_is_volatile(rising_candles):
    aggregator = aggregator_for(rising_candles)
    assert aggregator.get_market_regime() == MarketRegime.VOLATILE


def test_regime_multipliers_applied(rising_candles):
    aggregator = aggregator_for(rising_candles)
    weights = aggregator.adjusted_weights()
    defaults = AggregatorConfig().weights
    assert weights[IndicatorName.ATR_14] == pytest.approx(defaults[IndicatorName.ATR_14] * 1.5)
    assert weights[IndicatorName.RSI_14] == pytest.approx(defaults[IndicatorName.RSI_14])


def test_statistics_and_snapshot(make_candles):
    candles = make_candles([100.0, 101.0, 103.0])
    aggregator = aggregator_for(candles)

    stats = aggregator.get_statistics()
    assert stats['data_points'] == 3
    assert stats['indicators_total'] == len(IndicatorName)
    assert stats['indicators_ready'] == len(stats['ready'])

    snapshot = aggregator.get_market_snapshot()
    assert snapshot.price == 103.0
    assert snapshot.price_change == pytest.approx(2.0)
    assert snapshot.price_change_pct == pytest.approx(2.0 / 101.0 * 100)
    assert snapshot.to_dict()['symbol'] == "BTCUSDT"


def test_empty_aggregator_has_no_snapshot():
    aggregator = SignalAggregator("BTCUSDT")
    assert aggregator.get_market_snapshot() is None
    signal = aggregator.get_aggregated_signal()
    assert signal.signal == Signal.NEUTRAL
    assert signal.timestamp is None


def test_reset_clears_everything(rising_candles):
    aggregator = aggregator_for(rising_candles)
    aggregator.reset()

    assert aggregator.get_all_results() == {}
    assert aggregator.get_market_regime() == MarketRegime.UNKNOWN
    assert aggregator.get_statistics()['data_points'] == 0


def test_out_of_order_candle_rejected(make_candles):
    candles = make_candles([100.0, 101.0])
    aggregator = aggregator_for(candles[1:])
    with pytest.raises(DataValidationError):
        aggregator.add_candle(candles[0])


def test_invalid_config_rejected():
    with pytest.raises(ConfigurationError):
        SignalAggregator("BTCUSDT", AggregatorConfig(min_confluence=2.0))
