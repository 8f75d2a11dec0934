"""Tests for divtrader.main — CLI backtest mode."""

import pytest

from divtrader.backtest.synthetic import generate_candles
from divtrader.data.candle_store import save_candles_csv
from divtrader.main import _run_cli, parse_date_ms
from divtrader.repos.backtest_repo import BacktestRepo


def test_parse_date_ms():
    assert parse_date_ms("2024-01-01") == 1_704_067_200_000
    assert parse_date_ms(None) is None
    with pytest.raises(ValueError):
        parse_date_ms("01/02/2024")


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "cli.db")
    monkeypatch.setenv("DB_PATH", path)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    return path


def test_synthetic_backtest(db_path, capsys):
    _run_cli([
        "--synthetic", "--pair", "ETH-USDT",
        "--start", "2024-01-01", "--end", "2024-01-20", "--seed", "9",
    ])
    out = capsys.readouterr().out
    assert "ETH-USDT (1h)" in out
    assert "SYNTHETIC" in out
    runs = BacktestRepo(db_path).get_runs()
    assert len(runs) == 1
    assert runs[0]["synthetic"] is True


def test_candle_file_backtest(db_path, tmp_path, capsys):
    start = 1_700_000_000_000
    candles_path = str(tmp_path / "btc.csv")
    save_candles_csv(generate_candles(start, start + 299 * 3_600_000, "1h", seed=2), candles_path)

    _run_cli(["--candles", candles_path])
    assert "exchange" in capsys.readouterr().out
    assert BacktestRepo(db_path).get_runs()[0]["synthetic"] is False
