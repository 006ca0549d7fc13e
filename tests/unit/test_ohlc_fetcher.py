import logging

import httpx
import pytest

from backtest_core.config import ApiConfig
from backtest_core.errors import AdapterFailure
from backtest_core.ohlc_fetcher import fetch_series, interval_to_ms, parse_klines

HOUR = 3_600_000
BASE = 1_690_848_000_000

FAST = ApiConfig(base_url="https://api.test/api/v3/", limit=2, backoff_base=0, page_pause=0)


def _row(i, close=100.0):
    open_time = BASE + i * HOUR
    return [
        open_time, str(close), str(close + 1), str(close - 1), str(close), "3.5",
        open_time + HOUR - 1, "350.0", 12, "1.0", "100.0", "0",
    ]


def _exchange(rows, calls):
    """Serve ``rows`` the way /klines does: filter by range, cap at limit."""

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        params = request.url.params
        start, end = int(params["startTime"]), int(params["endTime"])
        page = [r for r in rows if start <= r[0] <= end][: int(params["limit"])]
        return httpx.Response(200, json=page)

    return httpx.MockTransport(handler)


def test_interval_to_ms():
    assert interval_to_ms("1h") == HOUR
    assert interval_to_ms("15m") == 15 * 60_000
    assert interval_to_ms("1d") == 24 * HOUR
    assert interval_to_ms("bogus") is None


def test_parse_klines_substitutes_placeholder(caplog):
    with caplog.at_level(logging.WARNING, logger="ohlc_fetcher"):
        candles = parse_klines([_row(0), [BASE, "1.0"], _row(1)])
    assert [c.is_placeholder for c in candles] == [False, True, False]
    assert "index 1" in caplog.text


@pytest.mark.asyncio
async def test_fetch_series_paginates():
    rows = [_row(i, 100.0 + i) for i in range(5)]
    calls = []
    candles = await fetch_series(
        "BTCUSDC", "1h", BASE, BASE + 4 * HOUR, api_config=FAST, transport=_exchange(rows, calls)
    )

    assert [c.close for c in candles] == [100.0, 101.0, 102.0, 103.0, 104.0]
    assert len(calls) == 3
    assert calls[0].url.path == "/api/v3/klines"
    assert calls[0].url.params["symbol"] == "BTCUSDC"
    assert calls[0].url.params["interval"] == "1h"
    assert int(calls[1].url.params["startTime"]) == BASE + 2 * HOUR


@pytest.mark.asyncio
async def test_fetch_series_drops_duplicates_at_page_seams():
    rows = [_row(0), _row(1), _row(2)]

    def handler(request):
        # every page repeats the last bar of the previous one
        params = request.url.params
        start, end = int(params["startTime"]) - HOUR, int(params["endTime"])
        page = [r for r in rows if start <= r[0] <= end][: int(params["limit"])]
        return httpx.Response(200, json=page)

    candles = await fetch_series(
        "BTCUSDC", "1h", BASE, BASE + 2 * HOUR, api_config=FAST, transport=httpx.MockTransport(handler)
    )
    assert [c.open_time for c in candles] == [BASE, BASE + HOUR, BASE + 2 * HOUR]


@pytest.mark.asyncio
async def test_fetch_series_sends_api_key():
    calls = []
    config = ApiConfig(api_key="k-123", page_pause=0)
    await fetch_series("BTCUSDC", "1h", BASE, BASE + HOUR, api_config=config, transport=_exchange([_row(0)], calls))
    assert calls[0].headers["X-MBX-APIKEY"] == "k-123"


@pytest.mark.asyncio
async def test_fetch_series_empty_range():
    calls = []
    candles = await fetch_series("BTCUSDC", "1h", BASE, BASE + HOUR, api_config=FAST, transport=_exchange([], calls))
    assert candles == []


@pytest.mark.asyncio
async def test_fetch_series_keeps_placeholders():
    rows = [_row(0), ["broken"], _row(1)]
    candles = await fetch_series(
        "BTCUSDC", "1h", BASE, BASE + HOUR,
        api_config=ApiConfig(page_pause=0),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=rows)),
    )
    assert len(candles) == 3
    assert candles[1].is_placeholder


@pytest.mark.asyncio
async def test_fetch_series_retries_rate_limit():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(429, json={"code": -1003, "msg": "Too many requests"})
        return httpx.Response(200, json=[_row(0)])

    candles = await fetch_series(
        "BTCUSDC", "1h", BASE, BASE + HOUR, api_config=FAST, transport=httpx.MockTransport(handler)
    )
    assert len(attempts) == 2
    assert len(candles) == 1


@pytest.mark.asyncio
async def test_fetch_series_gives_up_after_retries():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, text="unavailable"))
    with pytest.raises(AdapterFailure) as exc:
        await fetch_series("BTCUSDC", "1h", BASE, BASE + HOUR, api_config=FAST, transport=transport)
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_fetch_series_auth_failure_is_not_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(401, json={"code": -2015, "msg": "Invalid API-key"})

    with pytest.raises(AdapterFailure) as exc:
        await fetch_series("BTCUSDC", "1h", BASE, BASE + HOUR, api_config=FAST, transport=httpx.MockTransport(handler))
    assert exc.value.status_code == 401
    assert "Invalid API-key" in str(exc.value)
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_fetch_series_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(AdapterFailure):
        await fetch_series("BTCUSDC", "1h", BASE, BASE + HOUR, api_config=FAST, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_series_unsupported_interval():
    with pytest.raises(AdapterFailure):
        await fetch_series("BTCUSDC", "1x", BASE, BASE + HOUR, api_config=FAST)
