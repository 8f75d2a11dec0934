"""Broker data models — BingX kline normalisation and ticker snapshots."""

import math
from dataclasses import dataclass
from typing import Any

from divtrader.strategy.models import Candle

_TIME_KEYS = ("time", "timestamp", "openTime", "t")


@dataclass(frozen=True)
class Ticker:
    """24-hour ticker snapshot for one symbol."""

    symbol: str
    price: float
    volume: float
    change_pct: float


def _number(value: Any, field_name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Kline field {field_name!r} is not numeric: {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"Kline field {field_name!r} is not finite: {value!r}")
    return number


def normalize_kline(raw: Any) -> Candle:
    """Convert one exchange kline into a ``Candle``.

    Accepts the positional form ``[time, open, high, low, close, volume, ...]``
    (spot endpoint) and the object form ``{"time", "open", "high", "low",
    "close", "volume"}`` (swap endpoint; ``timestamp`` / ``openTime`` are
    also accepted for the time field).  Numbers may arrive as strings.

    Raises:
        ValueError: If the row is malformed.
    """
    if isinstance(raw, (list, tuple)):
        if len(raw) < 6:
            raise ValueError(f"Positional kline needs 6 fields, got {len(raw)}")
        ts, o, h, l, c, v = raw[:6]
    elif isinstance(raw, dict):
        ts = next((raw[k] for k in _TIME_KEYS if k in raw), None)
        if ts is None:
            raise ValueError(f"Kline object has no time field: {sorted(raw)}")
        try:
            o, h, l, c, v = (raw[k] for k in ("open", "high", "low", "close", "volume"))
        except KeyError as exc:
            raise ValueError(f"Kline object missing field {exc.args[0]!r}") from None
    else:
        raise ValueError(f"Unsupported kline shape: {type(raw).__name__}")

    return Candle(
        timestamp=int(_number(ts, "time")),
        open=_number(o, "open"),
        high=_number(h, "high"),
        low=_number(l, "low"),
        close=_number(c, "close"),
        volume=_number(v, "volume"),
    )


def normalize_klines(rows: list) -> list[Candle]:
    """Normalise, sort ascending and drop duplicate timestamps."""
    by_time: dict[int, Candle] = {}
    for row in rows:
        candle = normalize_kline(row)
        by_time[candle.timestamp] = candle
    return [by_time[t] for t in sorted(by_time)]
