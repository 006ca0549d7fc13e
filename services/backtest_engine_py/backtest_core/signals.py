"""
Uniform signal interface over the indicator library.

``evaluate`` takes a strategy name, the history prefix up to and
including the current bar, and the run configuration, and returns either
a directional ``Signal`` or a ``KeltnerChannel``.  Nothing is cached:
each call recomputes the indicator over the prefix it is given.
"""
from __future__ import annotations

import enum
from typing import Callable, Dict, Optional, Sequence, Union

from .candles import Candle
from .config import STRATEGIES, BacktestConfig
from .errors import UnknownStrategy
from .indicators import (
    KeltnerChannel,
    Signal,
    keltner_channel,
    moving_average_crossover,
    rsi,
    rsi_signal,
)

SignalResult = Union[Signal, KeltnerChannel]


class Strategy(str, enum.Enum):
    KELTNER_CHANNEL = "keltnerChannel"
    MOVING_AVERAGE_CROSSOVER = "movingAverageCrossover"
    RSI_OVERBOUGHT_OVERSOLD = "rsiOverboughtOversold"


def resolve_strategy(name: Union[str, Strategy]) -> Strategy:
    """Return the ``Strategy`` for ``name`` or raise ``UnknownStrategy``."""
    try:
        return Strategy(name)
    except ValueError:
        raise UnknownStrategy(str(name), STRATEGIES) from None


def _keltner(candles: Sequence[Candle], config: BacktestConfig) -> KeltnerChannel:
    return keltner_channel(candles, config.keltner)


def _crossover(candles: Sequence[Candle], config: BacktestConfig) -> Signal:
    return moving_average_crossover(
        candles,
        short_length=config.crossover.short_length,
        long_length=config.crossover.long_length,
    )


def _rsi(candles: Sequence[Candle], config: BacktestConfig) -> Signal:
    return rsi_signal(rsi(candles), config.rsi.oversold, config.rsi.overbought)


_EVALUATORS: Dict[Strategy, Callable[[Sequence[Candle], BacktestConfig], SignalResult]] = {
    Strategy.KELTNER_CHANNEL: _keltner,
    Strategy.MOVING_AVERAGE_CROSSOVER: _crossover,
    Strategy.RSI_OVERBOUGHT_OVERSOLD: _rsi,
}


def evaluate(
    name: Union[str, Strategy],
    candles: Sequence[Candle],
    config: BacktestConfig,
) -> SignalResult:
    return _EVALUATORS[resolve_strategy(name)](candles, config)


def keltner_decision(close: float, channel: KeltnerChannel, long: Optional[bool] = None) -> Signal:
    """
    Contrarian band rule: buy below bottom_min, sell above top_max.

    With ``long`` given, only the rule for that side is checked, so a
    close that breaks both bands of an inverted channel still sells a
    held position.
    """
    if long is not True and close < channel.bottom_min:
        return Signal.BUY
    if long is not False and close > channel.top_max:
        return Signal.SELL
    return Signal.HOLD


def decide(candle: Candle, result: SignalResult, long: Optional[bool] = None) -> Signal:
    """Reduce any evaluator result to a directional signal for ``candle``."""
    if isinstance(result, KeltnerChannel):
        return keltner_decision(candle.close, result, long)
    return result
