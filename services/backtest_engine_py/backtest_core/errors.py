"""Exception types raised by the backtest engine.

Only ``DataUnavailable`` and ``AdapterFailure`` abort a run.  The
indicator failures are recovered by the simulator one candle at a time,
and ``MalformedCandle`` never leaves the fetcher.
"""
from __future__ import annotations


class BacktestError(Exception):
    """Base class for every error raised by the engine."""


class DataUnavailable(BacktestError):
    """The data source returned no candles for the requested range."""


class MalformedCandle(BacktestError):
    """A kline row is missing fields or cannot be converted to numbers."""

    def __init__(self, index: int, row: object):
        super().__init__(f"kline at index {index} is missing or incomplete: {row!r}")
        self.index = index
        self.row = row


class IndicatorEvaluationFailure(BacktestError):
    """An indicator could not be computed for a given history prefix."""


class InsufficientData(IndicatorEvaluationFailure):
    """Fewer values were supplied than the indicator window requires."""

    def __init__(self, required: int, available: int, what: str = "values"):
        super().__init__(f"need at least {required} {what}, got {available}")
        self.required = required
        self.available = available


class AdapterFailure(BacktestError):
    """Network, authentication or rate-limit failure from the data source."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UnknownStrategy(BacktestError):
    """A signal name that is not one of the selectable strategies."""

    def __init__(self, name: str, available: list[str]):
        super().__init__(
            f"Unknown strategy '{name}'. Available: {', '.join(available)}"
        )
        self.name = name
