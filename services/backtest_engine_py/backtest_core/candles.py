"""Candle (OHLCV bar) record and conversions.

Rows arrive from the exchange as Binance kline arrays
``[open_time, open, high, low, close, volume, close_time, ...]`` with
prices encoded as strings.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence

import pandas as pd

from .errors import MalformedCandle

KLINE_FIELDS = 7

FRAME_COLUMNS = ["open_time", "open", "high", "low", "close", "volume", "close_time"]


@dataclass(frozen=True)
class Candle:
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int

    @classmethod
    def placeholder(cls) -> "Candle":
        """Zero-filled stand-in for a row that could not be parsed."""
        return cls(0, 0.0, 0.0, 0.0, 0.0, 0.0, 0)

    @property
    def is_placeholder(self) -> bool:
        return self.open_time == 0 and self.close_time == 0 and self.close == 0.0


def parse_kline(row: Sequence, index: int = 0) -> Candle:
    """
    Convert one kline array into a ``Candle``.  Raises ``MalformedCandle``
    when the row is empty, truncated, or holds non-numeric values.
    """
    if not row or len(row) < KLINE_FIELDS:
        raise MalformedCandle(index, row)
    try:
        return Candle(
            open_time=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            close_time=int(row[6]),
        )
    except (TypeError, ValueError) as exc:
        raise MalformedCandle(index, row) from exc


def valid_candles(candles: Iterable[Candle]) -> List[Candle]:
    """Drop zero-filled placeholders, keeping order."""
    return [c for c in candles if not c.is_placeholder]


def closing_prices(candles: Iterable[Candle]) -> List[float]:
    return [c.close for c in candles]


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """
    Build a DataFrame indexed by UTC open time.  Placeholders are kept so
    the frame lines up with the candle list position by position.
    """
    df = pd.DataFrame(
        [
            (c.open_time, c.open, c.high, c.low, c.close, c.volume, c.close_time)
            for c in candles
        ],
        columns=FRAME_COLUMNS,
    )
    df["date"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)
    df = df.set_index("date")
    df[["open", "high", "low", "close", "volume"]] = df[
        ["open", "high", "low", "close", "volume"]
    ].astype(float)
    return df
