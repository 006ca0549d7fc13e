"""
End-to-end runs: a mocked /klines endpoint feeds ``run_backtest`` and the
command line entry point, exercising pagination, simulation and the
report together.
"""
import json

import httpx
import numpy as np
import pytest

from backtest_app import cli
from backtest_core import (
    AdapterFailure,
    ApiConfig,
    BacktestConfig,
    BacktestSimulator,
    KeltnerConfig,
    parse_kline,
    run_backtest,
)

HOUR = 3_600_000
BASE = 1_690_848_000_000
BARS = 400


def _rows(n=BARS, seed=11):
    rng = np.random.RandomState(seed)
    closes = 30_000 + np.cumsum(rng.normal(0, 120, n))
    rows = []
    for i, close in enumerate(closes):
        open_time = BASE + i * HOUR
        spread = abs(rng.normal(0, 60))
        rows.append([
            open_time, f"{close:.2f}", f"{close + spread:.2f}", f"{close - spread:.2f}",
            f"{close:.2f}", "10.0", open_time + HOUR - 1, "0", 0, "0", "0", "0",
        ])
    return rows


def _transport(rows):
    def handler(request):
        params = request.url.params
        start, end = int(params["startTime"]), int(params["endTime"])
        page = [r for r in rows if start <= r[0] <= end][: int(params["limit"])]
        return httpx.Response(200, json=page)

    return httpx.MockTransport(handler)


API = ApiConfig(limit=100, page_pause=0, backoff_base=0)


@pytest.mark.asyncio
async def test_run_backtest_with_default_keltner_settings():
    rows = _rows()
    report = await run_backtest(
        "BTC", "USDC", BASE, BASE + (BARS - 1) * HOUR, api_config=API, transport=_transport(rows)
    )

    assert report is not None
    assert report.candle_count == BARS
    # 88-bar ATR: the first 87 bars only warm up
    assert report.skipped == 87
    assert report.trade_count == len(report.trades)
    assert all(t.index >= 87 for t in report.trades)
    assert report.initial_price == float(rows[0][4])
    assert report.final_price == float(rows[-1][4])
    expected_bh = (report.final_price - report.initial_price) / report.initial_price * 1000
    assert report.buy_and_hold_profit == pytest.approx(expected_bh)
    assert report.profit == pytest.approx(report.final_balance - 1000)


@pytest.mark.asyncio
async def test_incremental_matches_full_recompute():
    rows = _rows(seed=5)
    keltner = KeltnerConfig(atr_multiplier_min=0.8, atr_multiplier_max=1.2, atr_length=20, moving_average_length=10)
    fast = BacktestConfig(keltner=keltner)
    slow = BacktestConfig(keltner=keltner, incremental=False)

    a = await run_backtest("BTC", "USDC", BASE, BASE + (BARS - 1) * HOUR, fast, API, _transport(rows))
    candles = [parse_kline(r, i) for i, r in enumerate(rows)]
    b = BacktestSimulator(slow).run(candles)

    assert a.trade_count > 0
    assert [(t.type, t.index) for t in a.trades] == [(t.type, t.index) for t in b.trades]
    assert a.final_balance == pytest.approx(b.final_balance)


@pytest.mark.asyncio
async def test_run_backtest_without_data_returns_none():
    report = await run_backtest("BTC", "USDC", BASE, BASE + 10 * HOUR, api_config=API, transport=_transport([]))
    assert report is None


@pytest.mark.asyncio
async def test_run_backtest_propagates_adapter_failure():
    transport = httpx.MockTransport(lambda request: httpx.Response(418, text="banned"))
    with pytest.raises(AdapterFailure):
        await run_backtest("BTC", "USDC", BASE, BASE + 10 * HOUR, api_config=API, transport=transport)


@pytest.fixture
def fake_run(monkeypatch):
    seen = {}

    def install(result):
        async def fake(asset, currency, start_ts, end_ts, config=None, api_config=None, transport=None):
            seen.update(asset=asset, currency=currency, start=start_ts, end=end_ts, config=config)
            if isinstance(result, Exception):
                raise result
            return result

        monkeypatch.setattr(cli, "run_backtest", fake)
        return seen

    return install


def test_cli_prints_summary(fake_run, capsys):
    rows = _rows(n=120)
    candles = [parse_kline(r, i) for i, r in enumerate(rows)]
    report = BacktestSimulator().run(candles)
    seen = fake_run(report)

    code = cli.main(["--asset", "ETH", "--currency", "USDT", "--start-date", "2023-08-01", "--end-date", "2023-08-06"])

    assert code == 0
    assert seen["asset"] == "ETH"
    assert seen["start"] == BASE
    assert seen["end"] == BASE + 5 * 24 * HOUR
    assert seen["config"].strategy == "keltnerChannel"
    out = capsys.readouterr().out
    assert "Total Trades:" in out
    assert "Buy and Hold Profit:" in out


def test_cli_json_and_strategy(fake_run, capsys):
    candles = [parse_kline(r, i) for i, r in enumerate(_rows(n=30))]
    report = BacktestSimulator(BacktestConfig(strategy="rsiOverboughtOversold")).run(candles)
    seen = fake_run(report)

    code = cli.main(["--strategy", "rsiOverboughtOversold", "--full-recompute", "--json"])

    assert code == 0
    assert seen["config"].strategy == "rsiOverboughtOversold"
    assert seen["config"].incremental is False
    data = json.loads(capsys.readouterr().out)
    assert data["candle_count"] == 30


def test_cli_without_report(fake_run):
    fake_run(None)
    assert cli.main([]) == 1


def test_cli_adapter_failure(fake_run):
    fake_run(AdapterFailure("Binance error 401: Invalid API-key", status_code=401))
    assert cli.main([]) == 1
