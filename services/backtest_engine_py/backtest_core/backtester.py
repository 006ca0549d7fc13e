"""
All-in/all-out backtesting engine driven by indicator signals.

The simulator walks the candle series in order.  For every bar it
evaluates the configured strategy over the history up to and including
that bar (never later bars), buys with the whole balance on a buy signal
while flat and sells the whole position on a sell signal while long.
Only one position exists at a time and fees/slippage are not applied.

For the Keltner strategy the channel of every prefix is precomputed in
one pass with ``keltner_channel_series``; setting
``BacktestConfig.incremental`` to False re-evaluates the full prefix at
every bar through the signal evaluator instead.  Both produce the same
trades.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass, field
from typing import List, Optional, Sequence

import httpx
import pandas as pd

from .candles import Candle, candles_to_frame, valid_candles
from .config import ApiConfig, BacktestConfig, format_millis
from .errors import DataUnavailable, IndicatorEvaluationFailure, InsufficientData
from .indicators import KeltnerChannel, Signal, keltner_channel_series
from .ohlc_fetcher import fetch_series
from .signals import Strategy, decide, evaluate, keltner_decision, resolve_strategy

logger = logging.getLogger("backtester")


class PositionState(str, enum.Enum):
    FLAT = "FLAT"
    LONG = "LONG"


class TradeType(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass
class BacktestState:
    balance: float = 1000.0
    position: float = 0.0
    trade_count: int = 0

    @property
    def state(self) -> PositionState:
        return PositionState.LONG if self.position > 0 else PositionState.FLAT

    def buy(self, price: float) -> None:
        self.position = self.balance / price
        self.balance = 0.0
        self.trade_count += 1

    def sell(self, price: float) -> None:
        self.balance = self.position * price
        self.position = 0.0
        self.trade_count += 1

    def valuation(self, price: float) -> float:
        return self.balance + self.position * price


@dataclass(frozen=True)
class TradeEvent:
    type: TradeType
    price: float
    time: int
    index: int
    reason: str = ""


@dataclass
class BacktestReport:
    final_balance: float
    profit: float
    buy_and_hold_profit: float
    initial_price: float
    final_price: float
    initial_time: int
    final_time: int
    trade_count: int
    trades: List[TradeEvent] = field(default_factory=list)
    candle_count: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        out = asdict(self)
        out["trades"] = [
            {**asdict(t), "type": t.type.value} for t in self.trades
        ]
        return out

    def summary_lines(self) -> List[str]:
        return [
            f"Final Balance: {self.final_balance}",
            f"Profit: {self.profit}",
            f"Buy and Hold Profit: {self.buy_and_hold_profit}",
            f"Initial Price: {self.initial_price} on {format_millis(self.initial_time)}",
            f"Final Price: {self.final_price} on {format_millis(self.final_time)}",
            f"Total Trades: {self.trade_count}",
        ]


def buy_and_hold_profit(initial_price: float, final_price: float, capital: float = 1000.0) -> float:
    return (final_price - initial_price) / initial_price * capital


_REASONS = {
    (Strategy.KELTNER_CHANNEL, Signal.BUY): "Keltner Channel below bottomMin",
    (Strategy.KELTNER_CHANNEL, Signal.SELL): "Keltner Channel above topMax",
}


class BacktestSimulator:
    """Runs one strategy over one candle series; holds no state between runs."""

    def __init__(self, config: Optional[BacktestConfig] = None):
        self.config = config or BacktestConfig()
        self.strategy = resolve_strategy(self.config.strategy)

    def _precompute(self, history: Sequence[Candle]) -> Optional[pd.DataFrame]:
        if not self.config.incremental or self.strategy is not Strategy.KELTNER_CHANNEL:
            return None
        return keltner_channel_series(candles_to_frame(history), self.config.keltner)

    def _signal_at(self, history: List[Candle], channels: Optional[pd.DataFrame], long: bool) -> Signal:
        candle = history[-1]
        if channels is None:
            return decide(candle, evaluate(self.strategy, history, self.config), long)
        row = channels.iloc[len(history) - 1]
        if row.isna().any():
            raise InsufficientData(self.config.keltner.min_history, len(history), "candles")
        return keltner_decision(candle.close, KeltnerChannel(**row.astype(float).to_dict()), long)

    def _reason(self, signal: Signal) -> str:
        return _REASONS.get((self.strategy, signal), f"{self.strategy.value} {signal.value}")

    def run(self, candles: Sequence[Candle]) -> BacktestReport:
        if not candles:
            raise DataUnavailable("Historical data is undefined or empty.")
        usable = valid_candles(candles)
        if not usable:
            raise DataUnavailable("Historical data holds no well-formed candles.")
        if usable[0].close == 0:
            raise DataUnavailable("First close price is zero; buy-and-hold is undefined.")
        logger.info("Length of historical data: %d", len(candles))

        state = BacktestState(balance=self.config.initial_balance)
        trades: List[TradeEvent] = []
        channels = self._precompute(usable)
        history: List[Candle] = []
        skipped = 0

        for index, candle in enumerate(candles):
            if candle.is_placeholder:
                logger.warning("Problematic candle at index %d skipped", index)
                skipped += 1
                continue
            history.append(candle)
            try:
                signal = self._signal_at(history, channels, state.state is PositionState.LONG)
                if state.state is PositionState.FLAT and signal is Signal.BUY:
                    state.buy(candle.close)
                    trade_type = TradeType.BUY
                elif state.state is PositionState.LONG and signal is Signal.SELL:
                    state.sell(candle.close)
                    trade_type = TradeType.SELL
                else:
                    continue
            except InsufficientData as exc:
                logger.debug("Not enough history at index %d: %s", index, exc)
                skipped += 1
                continue
            except (IndicatorEvaluationFailure, ArithmeticError) as exc:
                logger.warning("Error processing %s at index %d: %s", self.strategy.value, index, exc)
                skipped += 1
                continue

            reason = self._reason(signal)
            trades.append(TradeEvent(trade_type, candle.close, candle.close_time, index, reason))
            logger.info(
                "%s at %s on %s (Signal: %s)",
                trade_type.value.capitalize(), candle.close, format_millis(candle.close_time), reason,
            )

        first, last = usable[0], usable[-1]
        final_balance = state.valuation(last.close)
        return BacktestReport(
            final_balance=final_balance,
            profit=final_balance - self.config.initial_balance,
            buy_and_hold_profit=buy_and_hold_profit(first.close, last.close, self.config.initial_balance),
            initial_price=first.close,
            final_price=last.close,
            initial_time=first.close_time,
            final_time=last.close_time,
            trade_count=state.trade_count,
            trades=trades,
            candle_count=len(candles),
            skipped=skipped,
        )


async def run_backtest(
    asset: str,
    currency: str,
    start_ts: int,
    end_ts: int,
    config: Optional[BacktestConfig] = None,
    api_config: Optional[ApiConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[BacktestReport]:
    """
    Fetch ``asset``/``currency`` candles for ``[start_ts, end_ts]`` and
    simulate the configured strategy over them.  Returns None when the
    exchange has no data for the range; ``AdapterFailure`` propagates.
    """
    config = config or BacktestConfig()
    simulator = BacktestSimulator(config)
    candles = await fetch_series(
        f"{asset}{currency}", config.interval, start_ts, end_ts,
        api_config=api_config, transport=transport,
    )
    try:
        report = simulator.run(candles)
    except DataUnavailable as exc:
        logger.error("%s", exc)
        return None
    for line in report.summary_lines():
        logger.info(line)
    return report
