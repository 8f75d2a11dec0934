"""One-shot script to download historical klines to a Parquet file.

Usage (from the project root):
    python -m scripts.collect_data --pair BTC-USDT --timeframe 1h --days 90
"""

import argparse
import asyncio
import logging
import time

from divtrader.broker.bingx_client import BingXClient
from divtrader.config import load_config
from divtrader.data.candle_store import save_candles_parquet

logger = logging.getLogger("divtrader.scripts")


async def _main(pair: str, timeframe: str, days: int, out: str) -> None:
    config = load_config()
    client = BingXClient(config.bingx_base_url, config.bingx_api_key or None)
    end = int(time.time() * 1000)
    start = end - days * 24 * 60 * 60 * 1000
    candles = await client.fetch_history(pair, timeframe, start, end)
    if not candles:
        logger.error("No candles returned for %s %s", pair, timeframe)
        return
    save_candles_parquet(candles, out)
    logger.info("Done → %s (%d candles)", out, len(candles))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Download BingX klines to Parquet")
    parser.add_argument("--pair", default="BTC-USDT")
    parser.add_argument("--timeframe", default="1h")
    parser.add_argument("--days", type=int, default=90)
    parser.add_argument("--out", help="Output path (default: data/<pair>_<timeframe>.parquet)")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    out = args.out or f"data/{args.pair}_{args.timeframe}.parquet"
    asyncio.run(_main(args.pair, args.timeframe, args.days, out))
