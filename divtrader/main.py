"""divtrader — application entry point.

Builds the FastAPI internal server and provides the CLI entry point for
the backtest, live-signal and serve modes.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI

from divtrader.api.routers import router

app = FastAPI(title="divtrader Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("divtrader")


def parse_date_ms(value: Optional[str]) -> Optional[int]:
    """``YYYY-MM-DD`` (UTC midnight) to epoch milliseconds."""
    if value is None:
        return None
    day = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return int(day.timestamp() * 1000)


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli(argv: Optional[list[str]] = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio

    from divtrader.config import load_config
    from divtrader.repos.db import init_db

    parser = argparse.ArgumentParser(description="divtrader divergence signal bot")
    parser.add_argument(
        "--mode",
        choices=["backtest", "live", "serve"],
        default="backtest",
        help="Run mode (default: backtest)",
    )
    parser.add_argument("--pair", help="Backtest pair (default: first TRADING_PAIRS entry)")
    parser.add_argument("--timeframe", help="Kline interval (default: TIMEFRAME)")
    parser.add_argument("--start", help="Backtest start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="Backtest end date (YYYY-MM-DD)")
    parser.add_argument("--seed", type=int, help="Seed for the synthetic fallback")
    parser.add_argument(
        "--candles",
        help="Backtest a local .csv or .parquet candle file instead of fetching",
    )
    parser.add_argument(
        "--synthetic",
        action="store_true",
        help="Skip the exchange and backtest synthetic data",
    )
    args = parser.parse_args(argv)

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db(config.db_path)

    if args.mode == "backtest":
        _run_backtest(config, args)
    elif args.mode == "live":
        asyncio.run(_run_live(config))
    else:
        asyncio.run(_serve(config))


def _build_services(config, with_client: bool = True):
    from divtrader.backtest.runner import BacktestRunner
    from divtrader.broker.bingx_client import BingXClient
    from divtrader.repos.backtest_repo import BacktestRepo
    from divtrader.repos.suggestion_repo import SuggestionRepo

    client = (
        BingXClient(config.bingx_base_url, config.bingx_api_key or None)
        if with_client else None
    )
    backtest_repo = BacktestRepo(config.db_path)
    suggestion_repo = SuggestionRepo(config.db_path)
    runner = BacktestRunner(client, backtest_repo)
    return client, runner, backtest_repo, suggestion_repo


def _params_for(config, args):
    from divtrader.models.backtest_params import BacktestParams

    return BacktestParams(
        pair=args.pair or config.trading_pairs[0],
        timeframe=args.timeframe or config.timeframe,
        start_time=parse_date_ms(args.start),
        end_time=parse_date_ms(args.end),
        initial_balance=config.account_balance,
        rsi_period=config.rsi_period,
        oversold=config.rsi_oversold,
        overbought=config.rsi_overbought,
        divergence_tolerance_ms=config.divergence_tolerance_ms,
        seed=args.seed,
    )


def _run_backtest(config, args) -> None:
    """Run one backtest and print its summary."""
    import asyncio

    from divtrader.backtest.engine import simulate
    from divtrader.cli.dashboard import print_backtest_summary
    from divtrader.data.candle_store import load_candles

    params = _params_for(config, args)
    client, runner, backtest_repo, _ = _build_services(config, not args.synthetic)

    if args.candles:
        candles = load_candles(args.candles)
        result = simulate(candles, params)
        run_id = backtest_repo.insert_result(result)
    else:
        outcome = asyncio.run(runner.run(params))
        result, run_id = outcome.result, outcome.run_id

    print_backtest_summary(result.to_dict())
    logger.info("Stored backtest run %s", run_id)


def _risk_governor(config, bus=None):
    from divtrader.risk.governor import RiskGovernor

    listener = None
    if bus is not None:
        def listener(channel: str, payload: dict) -> None:
            bus.publish(channel, payload)

    return RiskGovernor(config.risk_limits(), config.account_balance, listener)


async def _serve_api(config) -> None:
    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=config.api_port, log_level="info")
    server = uvicorn.Server(uvi_config)
    logger.info("API available at http://localhost:%d", config.api_port)
    await server.serve()


async def _serve(config) -> None:
    """API only: backtests, risk control and stored suggestions."""
    from divtrader.api.routers import configure_routers

    _, runner, backtest_repo, suggestion_repo = _build_services(config)
    configure_routers(
        governor=_risk_governor(config),
        runner=runner,
        backtest_repo=backtest_repo,
        suggestion_repo=suggestion_repo,
    )
    await _serve_api(config)


async def _run_live(config) -> None:
    """Start the API server and a live signal task per pair."""
    import asyncio
    import signal

    from divtrader.api.routers import configure_routers
    from divtrader.cli.dashboard import print_risk_status
    from divtrader.engine import LiveSignalEngine
    from divtrader.engine_manager import EngineManager
    from divtrader.events import EventBus
    from divtrader.models.backtest_params import BacktestParams

    client, runner, backtest_repo, suggestion_repo = _build_services(config)
    bus = EventBus()
    governor = _risk_governor(config, bus)
    params = BacktestParams(
        timeframe=config.timeframe,
        initial_balance=config.account_balance,
        rsi_period=config.rsi_period,
        oversold=config.rsi_oversold,
        overbought=config.rsi_overbought,
        divergence_tolerance_ms=config.divergence_tolerance_ms,
    )
    engine = LiveSignalEngine(
        client,
        bus,
        params,
        governor=governor,
        repo=suggestion_repo,
        timeframe=config.timeframe,
        max_candles=config.max_candles_in_memory,
        ttl_minutes=config.suggestion_ttl_minutes,
        account_balance=config.account_balance,
        stop_loss_pct=config.stop_loss_pct,
        take_profit_pct=config.take_profit_pct,
    )
    manager = EngineManager(
        engine, bus, list(config.trading_pairs), config.poll_interval_seconds,
    )
    configure_routers(
        governor=governor,
        runner=runner,
        backtest_repo=backtest_repo,
        suggestion_repo=suggestion_repo,
        engine_manager=manager,
    )

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, manager.stop_all)

    logger.info(
        "Starting divtrader live signals for %s on %s",
        ", ".join(config.trading_pairs), config.timeframe,
    )
    results = await asyncio.gather(
        _serve_api(config),
        manager.run_all(),
        return_exceptions=True,
    )
    logger.info("divtrader stopped. Results: %s", results)
    print_risk_status(governor.get_risk_status())


if __name__ == "__main__":
    _run_cli()
