"""
FastAPI application exposing endpoints for candle data, signal
evaluation, and backtesting.  The API is stateless: every request builds
its own configuration and simulator, so concurrent requests never share
a balance or position.
"""
from __future__ import annotations
import logging
import datetime as dt
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, ValidationInfo

from backtest_core import (
    AdapterFailure,
    ApiConfig,
    BacktestConfig,
    BacktestSimulator,
    DataUnavailable,
    IndicatorEvaluationFailure,
    KeltnerChannel,
    Signal,
    UnknownStrategy,
    decide,
    evaluate,
    fetch_series,
)

logger = logging.getLogger("indicator_api")
app = FastAPI(title="Keltner Backtest API")


@lru_cache
def get_api_config() -> ApiConfig:
    return ApiConfig.from_env()


# ----------------------------------------------------------------------
# Models
# ----------------------------------------------------------------------
class CandleResponse(BaseModel):
    date: dt.datetime
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int


class RangeRequest(BaseModel):
    asset: str = Field(..., description="Base asset, e.g. BTC")
    currency: str = Field(..., description="Quote currency, e.g. USDC")
    start: dt.datetime
    end: dt.datetime
    settings: BacktestConfig = Field(default_factory=BacktestConfig)

    @field_validator("end")
    @classmethod
    def _validate_dates(cls, v: dt.datetime, info: ValidationInfo) -> dt.datetime:
        start = info.data.get("start")
        if start and _as_utc(v) <= _as_utc(start):
            raise ValueError("end must be after start")
        return v

    @property
    def symbol(self) -> str:
        return f"{self.asset}{self.currency}".upper()


class SignalRequest(RangeRequest):
    strategy: Optional[str] = Field(
        None, description="Signal name; defaults to settings.strategy"
    )


def _as_utc(ts: dt.datetime) -> dt.datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=dt.timezone.utc)
    return ts.astimezone(dt.timezone.utc)


def _to_ms(ts: dt.datetime) -> int:
    return int(_as_utc(ts).timestamp() * 1000)


# ----------------------------------------------------------------------
# Error mapping
# ----------------------------------------------------------------------
@app.exception_handler(UnknownStrategy)
async def _unknown_strategy(request: Request, exc: UnknownStrategy) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(AdapterFailure)
async def _adapter_failure(request: Request, exc: AdapterFailure) -> JSONResponse:
    status = exc.status_code if exc.status_code in (401, 429) else 502
    return JSONResponse(status_code=status, content={"detail": str(exc)})


async def _fetch(symbol: str, interval: str, start: dt.datetime, end: dt.datetime, api_config: ApiConfig):
    candles = await fetch_series(symbol, interval, _to_ms(start), _to_ms(end), api_config=api_config)
    if not candles:
        raise HTTPException(
            status_code=404,
            detail="No candles returned for the given symbol/interval/time range",
        )
    return candles


# ----------------------------------------------------------------------
# Endpoints
# ----------------------------------------------------------------------
@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/data/candles", response_model=List[CandleResponse])
async def get_candles(
    symbol: str = Query(..., description="Trading pair, e.g. BTCUSDC"),
    interval: str = Query("1h", description="Interval: 1m, 5m, 1h, 4h, 1d…"),
    start: dt.datetime = Query(...),
    end: dt.datetime = Query(...),
    api_config: ApiConfig = Depends(get_api_config),
) -> List[CandleResponse]:
    """Return the candles for the given range, placeholders excluded."""
    candles = await _fetch(symbol, interval, start, end, api_config)
    return [
        CandleResponse(
            date=dt.datetime.fromtimestamp(c.open_time / 1000, tz=dt.timezone.utc),
            open_time=c.open_time,
            open=c.open,
            high=c.high,
            low=c.low,
            close=c.close,
            volume=c.volume,
            close_time=c.close_time,
        )
        for c in candles
        if not c.is_placeholder
    ]


@app.post("/signals/evaluate")
async def evaluate_signal(
    req: SignalRequest, api_config: ApiConfig = Depends(get_api_config)
) -> Dict[str, Any]:
    """Evaluate one strategy at the last bar of the requested range."""
    strategy = req.strategy or req.settings.strategy
    candles = await _fetch(req.symbol, req.settings.interval, req.start, req.end, api_config)
    history = [c for c in candles if not c.is_placeholder]
    try:
        result = evaluate(strategy, history, req.settings)
    except IndicatorEvaluationFailure as e:
        raise HTTPException(status_code=422, detail=str(e))
    signal: Signal = decide(history[-1], result)
    return {
        "strategy": strategy,
        "signal": signal.value,
        "keltner": result.to_dict() if isinstance(result, KeltnerChannel) else None,
        "candles": len(candles),
    }


@app.post("/backtest/run")
async def run_backtest(
    req: RangeRequest, api_config: ApiConfig = Depends(get_api_config)
) -> Dict[str, Any]:
    """
    Run a signal-driven backtest.  Fetches the candles, simulates the
    configured strategy, and returns the report with its trade list.
    """
    simulator = BacktestSimulator(req.settings)
    candles = await _fetch(req.symbol, req.settings.interval, req.start, req.end, api_config)
    try:
        report = simulator.run(candles)
    except DataUnavailable as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception:
        logger.exception("Unhandled error in /backtest/run")
        raise HTTPException(status_code=500, detail="Internal server error")
    return report.to_dict()
