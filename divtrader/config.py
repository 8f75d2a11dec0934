"""divtrader — application configuration.

Loads .env variables into a typed config object.
Validates limits and value combinations on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from divtrader.risk.governor import RiskLimits


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    bingx_base_url: str
    bingx_api_key: str
    trading_pairs: tuple[str, ...]
    timeframe: str
    rsi_period: int
    rsi_oversold: float
    rsi_overbought: float
    divergence_tolerance_ms: int
    max_account_risk: float
    stop_loss_pct: float
    take_profit_pct: float
    max_open_positions: int
    max_daily_loss: float
    max_weekly_loss: float
    emergency_stop_loss: float
    max_concentration: float
    account_balance: float
    max_candles_in_memory: int
    suggestion_ttl_minutes: int
    poll_interval_seconds: int
    db_path: str
    log_level: str
    api_port: int

    def risk_limits(self) -> RiskLimits:
        return RiskLimits(
            max_open_positions=self.max_open_positions,
            max_daily_loss=self.max_daily_loss,
            max_weekly_loss=self.max_weekly_loss,
            emergency_stop_loss=self.emergency_stop_loss,
            max_concentration=self.max_concentration,
            max_account_risk=self.max_account_risk,
        )


def _float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _int(name: str, default: str) -> int:
    raw = os.environ.get(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _validate(config: Config) -> None:
    if not 0 < config.max_account_risk <= 0.05:
        raise ValueError(
            f"MAX_ACCOUNT_RISK must be within (0, 0.05], got {config.max_account_risk}"
        )
    if config.stop_loss_pct >= config.take_profit_pct:
        raise ValueError(
            f"STOP_LOSS_PCT ({config.stop_loss_pct}) must be below "
            f"TAKE_PROFIT_PCT ({config.take_profit_pct})"
        )
    for name in ("max_daily_loss", "max_weekly_loss", "emergency_stop_loss", "max_concentration"):
        value = getattr(config, name)
        if not 0 < value < 1:
            raise ValueError(f"{name.upper()} must be within (0, 1), got {value}")
    if not config.trading_pairs:
        raise ValueError("TRADING_PAIRS must name at least one pair")
    if config.account_balance <= 0:
        raise ValueError(f"ACCOUNT_BALANCE must be positive, got {config.account_balance}")
    if config.max_candles_in_memory < 100:
        raise ValueError(
            f"MAX_CANDLES_IN_MEMORY must be at least 100, got {config.max_candles_in_memory}"
        )


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Every variable has a default; public market data needs no API key.
    Raises ``ValueError`` naming the offending variable when a value is
    malformed or an invalid combination is configured.
    """
    load_dotenv(dotenv_path=env_path)

    pairs = tuple(
        p.strip().upper()
        for p in os.environ.get("TRADING_PAIRS", "BTC-USDT,ETH-USDT").split(",")
        if p.strip()
    )

    config = Config(
        bingx_base_url=os.environ.get("BINGX_BASE_URL", "https://open-api.bingx.com"),
        bingx_api_key=os.environ.get("BINGX_API_KEY", ""),
        trading_pairs=pairs,
        timeframe=os.environ.get("TIMEFRAME", "1h"),
        rsi_period=_int("RSI_PERIOD", "14"),
        rsi_oversold=_float("RSI_OVERSOLD", "30"),
        rsi_overbought=_float("RSI_OVERBOUGHT", "70"),
        divergence_tolerance_ms=_int("DIVERGENCE_TOLERANCE_MS", "300000"),
        max_account_risk=_float("MAX_ACCOUNT_RISK", "0.02"),
        stop_loss_pct=_float("STOP_LOSS_PCT", "0.015"),
        take_profit_pct=_float("TAKE_PROFIT_PCT", "0.04"),
        max_open_positions=_int("MAX_OPEN_POSITIONS", "3"),
        max_daily_loss=_float("MAX_DAILY_LOSS", "0.06"),
        max_weekly_loss=_float("MAX_WEEKLY_LOSS", "0.10"),
        emergency_stop_loss=_float("EMERGENCY_STOP_LOSS", "0.08"),
        max_concentration=_float("MAX_CONCENTRATION", "0.5"),
        account_balance=_float("ACCOUNT_BALANCE", "10000"),
        max_candles_in_memory=_int("MAX_CANDLES_IN_MEMORY", "1000"),
        suggestion_ttl_minutes=_int("SUGGESTION_TTL_MINUTES", "30"),
        poll_interval_seconds=_int("POLL_INTERVAL_SECONDS", "60"),
        db_path=os.environ.get("DB_PATH", "data/divtrader.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_int("API_PORT", "8080"),
    )
    _validate(config)
    return config
