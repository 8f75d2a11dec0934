"""Candle files — load and save OHLCV series as CSV or Parquet via pandas."""

import logging
import pathlib

import pandas as pd

from divtrader.strategy.models import Candle, validate_series

logger = logging.getLogger("divtrader.data")

COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


def candles_to_frame(candles: list[Candle]) -> pd.DataFrame:
    return pd.DataFrame(
        [(c.timestamp, c.open, c.high, c.low, c.close, c.volume) for c in candles],
        columns=COLUMNS,
    )


def frame_to_candles(df: pd.DataFrame) -> list[Candle]:
    """Convert a frame with the OHLCV columns into sorted, de-duplicated candles.

    Raises:
        ValueError: If a required column is missing.
    """
    missing = [c for c in COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Candle data missing column(s): {', '.join(missing)}")

    clean = (
        df[COLUMNS]
        .dropna()
        .drop_duplicates(subset="timestamp", keep="last")
        .sort_values("timestamp")
    )
    dropped = len(df) - len(clean)
    if dropped:
        logger.warning("Dropped %d incomplete or duplicate candle rows", dropped)

    candles = [
        Candle(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in clean.itertuples(index=False)
    ]
    validate_series(candles)
    return candles


def load_candles_csv(path: str) -> list[Candle]:
    return frame_to_candles(pd.read_csv(path))


def save_candles_csv(candles: list[Candle], path: str) -> None:
    pathlib.Path(path).parent.mkdir(parents=True, exist_ok=True)
    candles_to_frame(candles).to_csv(path, index=False)
    logger.info("Saved %d candles to %s", len(candles), path)


def load_candles_parquet(path: str) -> list[Candle]:
    return frame_to_candles(pd.read_parquet(path, engine="pyarrow"))


def save_candles_parquet(candles: list[Candle], path: str) -> None:
    pathlib.Path(path).parent.mkdir(parents=True, exist_ok=True)
    candles_to_frame(candles).to_parquet(path, engine="pyarrow", index=False)
    logger.info("Saved %d candles to %s", len(candles), path)


def load_candles(path: str) -> list[Candle]:
    """Load candles, picking the reader from the file extension."""
    if path.endswith(".parquet"):
        return load_candles_parquet(path)
    if path.endswith(".csv"):
        return load_candles_csv(path)
    raise ValueError(f"Unsupported candle file type: {path}")
