"""Configuration models for the data source and the backtest run.

Every run receives its configuration explicitly.  ``from_env`` builds a
model from environment variables; values are stripped of whitespace and
surrounding quotes so ``.env`` entries like ``KEY="value" `` still work.
"""
from __future__ import annotations

import datetime as dt
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import UnknownStrategy

STRATEGIES = [
    "keltnerChannel",
    "movingAverageCrossover",
    "rsiOverboughtOversold",
]

DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
        v = v[1:-1].strip()
    return v or default


class ApiConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.binance.us/api/v3/"
    timeout: float = 5.0
    api_key: Optional[str] = None
    limit: int = Field(1000, ge=1, le=1000)
    max_retries: int = Field(3, ge=1)
    backoff_base: float = 1.5
    page_pause: float = 0.12

    @classmethod
    def from_env(cls) -> "ApiConfig":
        return cls(
            base_url=_env("BINANCE_BASE_URL", cls.model_fields["base_url"].default),
            timeout=float(_env("BINANCE_TIMEOUT", "5") or "5"),
            api_key=_env("BINANCE_API_KEY"),
            max_retries=int(_env("BINANCE_MAX_RETRIES", "3") or "3"),
            backoff_base=float(_env("BINANCE_BACKOFF_BASE_SECS", "1.5") or "1.5"),
        )

    @property
    def klines_url(self) -> str:
        return self.base_url.rstrip("/") + "/klines"


class KeltnerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    atr_multiplier_min: float = 1.5
    atr_multiplier_max: float = 3.5
    atr_length: int = Field(88, ge=1)
    moving_average_length: int = Field(34, ge=1)
    moving_average_type: str = "EMA"

    @property
    def min_history(self) -> int:
        return max(self.atr_length, self.moving_average_length)


class CrossoverConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    short_length: int = Field(5, ge=1)
    long_length: int = Field(20, ge=1)


class RsiConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    oversold: float = 30.0
    overbought: float = 70.0


class BacktestConfig(BaseModel):
    """
    Parameters of one backtest run.  ``fee_maker``, ``fee_taker`` and
    ``slippage`` are accepted for compatibility with saved settings but
    the simulation does not apply them.  ``history_size`` is reserved.
    """

    model_config = ConfigDict(frozen=True)

    candle_size: int = Field(60, ge=1, description="Bar interval in minutes")
    history_size: int = 10
    fee_maker: float = 0.15
    fee_taker: float = 0.15
    slippage: float = 0.05
    initial_balance: float = Field(1000.0, gt=0)
    strategy: str = "keltnerChannel"
    incremental: bool = True
    keltner: KeltnerConfig = Field(default_factory=KeltnerConfig)
    crossover: CrossoverConfig = Field(default_factory=CrossoverConfig)
    rsi: RsiConfig = Field(default_factory=RsiConfig)

    @field_validator("strategy")
    @classmethod
    def _known_strategy(cls, v: str) -> str:
        if v not in STRATEGIES:
            raise UnknownStrategy(v, STRATEGIES)
        return v

    @property
    def interval(self) -> str:
        return candle_size_to_interval(self.candle_size)

    @classmethod
    def from_env(cls) -> "BacktestConfig":
        return cls(
            strategy=_env("BACKTEST_STRATEGY", "keltnerChannel"),
            candle_size=int(_env("BACKTEST_CANDLE_SIZE", "60") or "60"),
            initial_balance=float(_env("BACKTEST_INITIAL_BALANCE", "1000") or "1000"),
        )


def candle_size_to_interval(minutes: int) -> str:
    """Map a bar size in minutes to a Binance interval string."""
    if minutes <= 0:
        raise ValueError("candle size must be positive")
    if minutes % (7 * 1440) == 0:
        return f"{minutes // (7 * 1440)}w"
    if minutes % 1440 == 0:
        return f"{minutes // 1440}d"
    if minutes % 60 == 0:
        return f"{minutes // 60}h"
    return f"{minutes}m"


def to_utc_millis(date: str, time: str = "00:00") -> int:
    """Convert ``YYYY-MM-DD`` and ``HH:MM`` in UTC to epoch milliseconds."""
    year, month, day = (int(p) for p in date.split("-"))
    hours, minutes = (int(p) for p in time.split(":")[:2])
    ts = dt.datetime(year, month, day, hours, minutes, tzinfo=dt.timezone.utc)
    return int(ts.timestamp() * 1000)


def format_millis(ms: int) -> str:
    return dt.datetime.fromtimestamp(ms / 1000, tz=dt.timezone.utc).strftime(DATE_FORMAT)
