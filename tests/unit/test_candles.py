import pytest

from backtest_core.candles import Candle, candles_to_frame, parse_kline, valid_candles
from backtest_core.errors import MalformedCandle

ROW = [
    1690848000000, "29230.01", "29300.00", "29100.50", "29250.75", "12.5",
    1690851599999, "365000.0", 420, "6.1", "178000.0", "0",
]


def test_parse_kline():
    candle = parse_kline(ROW)
    assert candle == Candle(1690848000000, 29230.01, 29300.0, 29100.5, 29250.75, 12.5, 1690851599999)
    assert candle.open_time < candle.close_time
    assert not candle.is_placeholder


@pytest.mark.parametrize("row", [None, [], ROW[:5], ROW[:6]])
def test_parse_kline_truncated(row):
    with pytest.raises(MalformedCandle):
        parse_kline(row, index=3)


def test_parse_kline_non_numeric():
    row = list(ROW)
    row[4] = "n/a"
    with pytest.raises(MalformedCandle) as exc:
        parse_kline(row, index=7)
    assert exc.value.index == 7


def test_placeholder():
    p = Candle.placeholder()
    assert p.is_placeholder
    assert (p.open, p.high, p.low, p.close, p.volume) == (0, 0, 0, 0, 0)


def test_valid_candles_drops_placeholders():
    real = parse_kline(ROW)
    assert valid_candles([real, Candle.placeholder(), real]) == [real, real]


def test_candles_to_frame():
    df = candles_to_frame([parse_kline(ROW)])
    assert list(df.columns) == ["open_time", "open", "high", "low", "close", "volume", "close_time"]
    assert str(df.index.tz) == "UTC"
    assert df["close"].iloc[0] == 29250.75
