# backtest_core/ohlc_fetcher.py
"""Fetch historical candles from a Binance-compatible ``/klines`` endpoint.

The endpoint returns at most ``limit`` rows per call, so a range is
walked page by page and merged into one ordered list.  Rows that are
missing fields are replaced by zero-filled placeholders and logged.
429 and 5xx responses are retried with exponential backoff; any other
HTTP or transport failure is raised as ``AdapterFailure``.

All timestamps are UTC epoch milliseconds.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
import os
from typing import List, Optional

import httpx

from .candles import Candle, parse_kline
from .config import ApiConfig
from .errors import AdapterFailure, MalformedCandle

# ──────────────────────────────────────────────────────────────────────────────
# Logging
# ──────────────────────────────────────────────────────────────────────────────

logger = logging.getLogger("ohlc_fetcher")
if not logger.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(_h)
logger.setLevel(os.getenv("BACKTEST_LOG_LEVEL", "INFO").upper())

# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

_INTERVAL_UNITS = {"m": 60_000, "h": 3_600_000, "d": 86_400_000, "w": 7 * 86_400_000}


def _iso(ms: int) -> str:
    return dt.datetime.fromtimestamp(ms / 1000, tz=dt.timezone.utc).isoformat()


def interval_to_ms(interval: str) -> Optional[int]:
    unit = interval[-1:].lower()
    try:
        n = int(interval[:-1])
    except ValueError:
        return None
    mult = _INTERVAL_UNITS.get(unit)
    return None if mult is None else n * mult


def _masked(key: Optional[str]) -> str:
    return f"...{key[-4:]}" if key and len(key) >= 4 else "(none)"


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict):
        return str(body.get("msg") or body)
    return str(body)


def parse_klines(rows: list, offset: int = 0) -> List[Candle]:
    """Parse kline rows, substituting a placeholder for each malformed row."""
    candles: List[Candle] = []
    for i, row in enumerate(rows):
        try:
            candles.append(parse_kline(row, offset + i))
        except MalformedCandle as exc:
            logger.warning("%s; using zero-filled placeholder", exc)
            candles.append(Candle.placeholder())
    return candles

# ──────────────────────────────────────────────────────────────────────────────
# Binance
# ──────────────────────────────────────────────────────────────────────────────

async def _fetch_binance_klines(
    client: httpx.AsyncClient,
    config: ApiConfig,
    symbol: str,
    interval: str,
    start_ts: int,
    end_ts: int,
) -> list:
    params = {
        "symbol": symbol,
        "interval": interval,
        "startTime": start_ts,
        "endTime": end_ts,
        "limit": config.limit,
    }
    for attempt in range(1, config.max_retries + 1):
        try:
            resp = await client.get(config.klines_url, params=params)
        except httpx.HTTPError as e:
            raise AdapterFailure(f"Binance request failed: {e}") from e
        status = resp.status_code

        if status == 429 or 500 <= status < 600:
            msg = _error_message(resp)
            if attempt == config.max_retries:
                raise AdapterFailure(f"Binance error {status}: {msg}", status_code=status)
            delay = config.backoff_base * (2 ** (attempt - 1))
            logger.warning("Binance %s on attempt %s: %s (backoff %.2fs)", status, attempt, msg, delay)
            await asyncio.sleep(delay)
            continue

        if status >= 400:
            raise AdapterFailure(
                f"Binance error {status}: {_error_message(resp)} (key={_masked(config.api_key)})",
                status_code=status,
            )

        try:
            rows = resp.json()
        except ValueError as e:
            raise AdapterFailure(f"Binance returned invalid JSON: {e}") from e
        if not isinstance(rows, list):
            raise AdapterFailure(f"Binance returned unexpected payload: {rows!r}")
        return rows

    raise AdapterFailure("Binance request failed after retries.")


async def fetch_series(
    symbol: str,
    interval: str,
    start_ts: int,
    end_ts: int,
    api_config: Optional[ApiConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[Candle]:
    """
    Return the candles of ``symbol`` at ``interval`` whose open time lies
    in ``[start_ts, end_ts]``, merged across pages and ordered by open
    time.  An empty list means the exchange had no data for the range.
    """
    config = api_config or ApiConfig()
    logger.info(
        "Fetching data for symbol: %s, interval: %s, startTime: %s, endTime: %s",
        symbol, interval, _iso(start_ts), _iso(end_ts),
    )
    interval_ms = interval_to_ms(interval)
    if not interval_ms:
        raise AdapterFailure(f"Unsupported interval {interval!r}")
    if start_ts >= end_ts:
        return []

    headers = {"X-MBX-APIKEY": config.api_key} if config.api_key else {}
    candles: List[Candle] = []
    last_open_time = -1
    step = interval_ms * config.limit

    async with httpx.AsyncClient(headers=headers, timeout=config.timeout, transport=transport) as client:
        cur_start = start_ts
        while cur_start <= end_ts:
            cur_end = min(cur_start + step - 1, end_ts)
            rows = await _fetch_binance_klines(client, config, symbol, interval, cur_start, cur_end)
            page = parse_klines(rows, offset=len(candles))
            for candle in page:
                if candle.is_placeholder:
                    candles.append(candle)
                elif candle.open_time > last_open_time:
                    candles.append(candle)
                    last_open_time = candle.open_time

            # an empty window just means a gap in the exchange's history
            cur_start = max(cur_end + 1, last_open_time + interval_ms)
            if cur_start <= end_ts and config.page_pause:
                await asyncio.sleep(config.page_pause)

    if not candles:
        logger.warning("No data returned from Binance.")
    return candles
