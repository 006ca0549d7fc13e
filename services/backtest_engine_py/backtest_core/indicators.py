"""Technical indicators over candle sequences, using numpy and pandas.

The scalar functions (``sma``, ``ema``, ``atr``, ``keltner_channel``,
``rsi`` ...) evaluate one history prefix and return the value for its
last bar.  ``keltner_channel_series`` evaluates every prefix of a frame
at once; row ``i`` matches ``keltner_channel(candles[:i + 1])``.

All functions are pure.  A window longer than the supplied history
raises ``InsufficientData`` instead of averaging over fewer values.
"""
from __future__ import annotations

import enum
from dataclasses import asdict, dataclass
from typing import Iterator, Sequence

import numpy as np
import pandas as pd

from .candles import Candle, closing_prices
from .config import KeltnerConfig
from .errors import InsufficientData


class Signal(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


@dataclass(frozen=True)
class KeltnerChannel:
    mid: float
    top_min: float
    top_max: float
    bottom_min: float
    bottom_max: float

    def to_dict(self) -> dict:
        return asdict(self)


def sma(values: Sequence[float], length: int) -> float:
    """Arithmetic mean of the last ``length`` values."""
    if length < 1 or length > len(values):
        raise InsufficientData(length, len(values))
    return float(np.mean(np.asarray(values[-length:], dtype=float)))


def ema(values: Sequence[float], length: int) -> float:
    """
    Exponential moving average with ``alpha = 2 / (length + 1)``.

    The recursion is seeded with the first value and folds the whole
    sequence; ``length`` only sets the smoothing factor, it does not
    select a trailing window.
    """
    if len(values) == 0:
        raise InsufficientData(1, 0)
    alpha = 2.0 / (length + 1)
    series = pd.Series(values, dtype=float)
    return float(series.ewm(alpha=alpha, adjust=False).mean().iloc[-1])


def moving_average(ma_type: str, values: Sequence[float], length: int) -> float:
    if ma_type == "EMA":
        return ema(values, length)
    return sma(values, length)


def true_range(candles: Sequence[Candle]) -> Iterator[float]:
    """Yield the true range of each candle; the first bar uses high - low."""
    prev_close = None
    for candle in candles:
        if prev_close is None:
            yield candle.high - candle.low
        else:
            yield max(
                candle.high - candle.low,
                abs(candle.high - prev_close),
                abs(candle.low - prev_close),
            )
        prev_close = candle.close


def atr(candles: Sequence[Candle], length: int) -> float:
    return sma(list(true_range(candles)), length)


def keltner_channel(candles: Sequence[Candle], config: KeltnerConfig) -> KeltnerChannel:
    """
    Keltner Channel for the last bar of ``candles``: a moving average of
    closes (``mid``) with bands offset by ATR multiples.
    """
    if len(candles) < config.min_history:
        raise InsufficientData(config.min_history, len(candles), "candles")
    band = atr(candles, config.atr_length)
    mid = moving_average(
        config.moving_average_type,
        closing_prices(candles),
        config.moving_average_length,
    )
    return KeltnerChannel(
        mid=mid,
        top_min=mid + band * config.atr_multiplier_min,
        top_max=mid + band * config.atr_multiplier_max,
        bottom_min=mid - band * config.atr_multiplier_min,
        bottom_max=mid - band * config.atr_multiplier_max,
    )


def rsi(candles: Sequence[Candle]) -> float:
    """
    Relative Strength Index over the whole prefix.  Gains are positive
    close-to-close differences; every other difference is a loss.  A
    series without losses scores 100, a flat series scores 50.
    """
    if len(candles) < 2:
        raise InsufficientData(2, len(candles), "candles")
    diffs = np.diff(np.asarray(closing_prices(candles), dtype=float))
    gains = diffs[diffs > 0]
    losses = np.abs(diffs[diffs <= 0])
    avg_gain = float(gains.mean()) if gains.size else 0.0
    avg_loss = float(losses.mean()) if losses.size else 0.0
    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))


def rsi_signal(value: float, oversold: float = 30.0, overbought: float = 70.0) -> Signal:
    if value > overbought:
        return Signal.SELL
    if value < oversold:
        return Signal.BUY
    return Signal.HOLD


def moving_average_crossover(
    candles: Sequence[Candle], short_length: int = 5, long_length: int = 20
) -> Signal:
    """Compare the short and long SMA of closes at the last bar."""
    closes = closing_prices(candles)
    long_ma = sma(closes, long_length)
    short_ma = sma(closes, short_length)
    if short_ma > long_ma:
        return Signal.BUY
    if short_ma < long_ma:
        return Signal.SELL
    return Signal.HOLD


def keltner_channel_series(df: pd.DataFrame, config: KeltnerConfig) -> pd.DataFrame:
    """
    Keltner Channel for every prefix of ``df`` (columns high, low, close).
    Rows with fewer than ``config.min_history`` bars of history are NaN.
    """
    high, low, close = df["high"], df["low"], df["close"]
    prev_close = close.shift(1)
    tr = pd.concat(
        [high - low, (high - prev_close).abs(), (low - prev_close).abs()], axis=1
    ).max(axis=1)
    band = tr.rolling(window=config.atr_length, min_periods=config.atr_length).mean()
    if config.moving_average_type == "EMA":
        alpha = 2.0 / (config.moving_average_length + 1)
        mid = close.ewm(alpha=alpha, adjust=False).mean()
    else:
        length = config.moving_average_length
        mid = close.rolling(window=length, min_periods=length).mean()
    out = pd.DataFrame(
        {
            "mid": mid,
            "top_min": mid + band * config.atr_multiplier_min,
            "top_max": mid + band * config.atr_multiplier_max,
            "bottom_min": mid - band * config.atr_multiplier_min,
            "bottom_max": mid - band * config.atr_multiplier_max,
        },
        index=df.index,
    )
    warmup = np.arange(len(df)) + 1 < config.min_history
    out.loc[warmup, :] = np.nan
    return out
