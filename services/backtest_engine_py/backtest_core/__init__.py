"""Core utilities for the backtest engine.

This package provides helpers for fetching historical candles from a
Binance-compatible API, computing technical indicators, evaluating
trading signals, and simulating an all-in/all-out strategy against a
buy-and-hold baseline.  Indicator and signal functions are side‑effect
free and deterministic when given the same inputs.
"""

from .candles import Candle, candles_to_frame, parse_kline
from .config import (
    STRATEGIES,
    ApiConfig,
    BacktestConfig,
    CrossoverConfig,
    KeltnerConfig,
    RsiConfig,
    candle_size_to_interval,
    to_utc_millis,
)
from .errors import (
    AdapterFailure,
    BacktestError,
    DataUnavailable,
    IndicatorEvaluationFailure,
    InsufficientData,
    MalformedCandle,
    UnknownStrategy,
)
from .indicators import (
    KeltnerChannel,
    Signal,
    atr,
    ema,
    keltner_channel,
    keltner_channel_series,
    moving_average,
    moving_average_crossover,
    rsi,
    rsi_signal,
    sma,
    true_range,
)
from .signals import Strategy, decide, evaluate, resolve_strategy
from .ohlc_fetcher import fetch_series
from .backtester import (
    BacktestReport,
    BacktestSimulator,
    BacktestState,
    TradeEvent,
    TradeType,
    run_backtest,
)

__all__ = [
    "Candle",
    "candles_to_frame",
    "parse_kline",
    "STRATEGIES",
    "ApiConfig",
    "BacktestConfig",
    "CrossoverConfig",
    "KeltnerConfig",
    "RsiConfig",
    "candle_size_to_interval",
    "to_utc_millis",
    "AdapterFailure",
    "BacktestError",
    "DataUnavailable",
    "IndicatorEvaluationFailure",
    "InsufficientData",
    "MalformedCandle",
    "UnknownStrategy",
    "KeltnerChannel",
    "Signal",
    "atr",
    "ema",
    "keltner_channel",
    "keltner_channel_series",
    "moving_average",
    "moving_average_crossover",
    "rsi",
    "rsi_signal",
    "sma",
    "true_range",
    "Strategy",
    "decide",
    "evaluate",
    "resolve_strategy",
    "fetch_series",
    "BacktestReport",
    "BacktestSimulator",
    "BacktestState",
    "TradeEvent",
    "TradeType",
    "run_backtest",
]
