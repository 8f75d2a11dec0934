"""Internal API routers — status, risk control, backtests and suggestions.

No business logic, no DB access. Delegates to the governor, the backtest
runner, the repos and the live engine manager injected at startup.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from divtrader.backtest.engine import BacktestCancelled, InsufficientDataError
from divtrader.models.backtest_params import BacktestParams

logger = logging.getLogger("divtrader.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_governor = None          # RiskGovernor
_runner = None            # BacktestRunner
_backtest_repo = None     # BacktestRepo
_suggestion_repo = None   # SuggestionRepo
_engine_manager = None    # EngineManager
_started_at: float = time.time()


def configure_routers(
    governor=None,
    runner=None,
    backtest_repo=None,
    suggestion_repo=None,
    engine_manager=None,
) -> None:
    """Inject dependencies from the application startup.

    Any argument may be omitted (or a duck-type passed in tests); endpoints
    that need a missing dependency answer ``503``.
    """
    global _governor, _runner, _backtest_repo, _suggestion_repo, _engine_manager  # noqa: PLW0603
    _governor = governor
    _runner = runner
    _backtest_repo = backtest_repo
    _suggestion_repo = suggestion_repo
    _engine_manager = engine_manager


def _require(dependency, name: str):
    if dependency is None:
        raise HTTPException(status_code=503, detail=f"{name} not configured")
    return dependency


def _now_ms() -> int:
    return int(time.time() * 1000)


# ── Health / status ──────────────────────────────────────────────────────


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/status")
async def get_status():
    """Risk status plus live-engine status when running."""
    status: dict = {"uptime_seconds": round(time.time() - _started_at, 1)}
    status["risk"] = _governor.get_risk_status() if _governor is not None else None
    status["live"] = _engine_manager.get_status() if _engine_manager is not None else None
    return status


# ── Risk control ─────────────────────────────────────────────────────────


@router.post("/risk/reset-emergency-stop")
async def reset_emergency_stop():
    governor = _require(_governor, "Risk governor")
    governor.reset_emergency_stop()
    logger.warning("Emergency stop reset via API")
    return {"status": "ok", "state": governor.state.value}


@router.post("/risk/reset-daily")
async def reset_daily():
    governor = _require(_governor, "Risk governor")
    governor.reset_daily()
    return {"status": "ok", "state": governor.state.value}


# ── Backtests ────────────────────────────────────────────────────────────


@router.post("/backtest")
async def run_backtest(body: dict):
    """Run a backtest with the given parameter overrides.

    The body is a (possibly empty) ``BacktestParams`` dict.  Unknown keys
    and invalid values answer ``422``.
    """
    runner = _require(_runner, "Backtest runner")
    try:
        params = BacktestParams.from_dict(body)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    try:
        outcome = await runner.run(params)
    except InsufficientDataError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except BacktestCancelled as exc:
        raise HTTPException(status_code=409, detail=f"Backtest cancelled at candle {exc.index}")

    return {"run_id": outcome.run_id, "result": outcome.result.to_dict()}


@router.get("/backtests")
async def list_backtests(limit: int = Query(default=10, ge=1, le=100)):
    repo = _require(_backtest_repo, "Backtest repository")
    return {"runs": repo.get_runs(limit=limit)}


@router.get("/backtests/{run_id}")
async def get_backtest(run_id: int):
    repo = _require(_backtest_repo, "Backtest repository")
    result = repo.get_result(run_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Backtest {run_id} not found")
    return {"run_id": run_id, "result": result.to_dict()}


# ── Suggestions ──────────────────────────────────────────────────────────


@router.get("/suggestions")
async def get_suggestions(
    pair: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=200),
):
    """Unexpired live suggestions, newest first."""
    now = _now_ms()
    if _suggestion_repo is not None:
        found = _suggestion_repo.get_active(now, pair=pair, limit=limit)
    elif _engine_manager is not None:
        found = [
            s for s in _engine_manager.engine.recent_suggestions(pair)
            if not s.is_expired(now)
        ][:limit]
    else:
        found = []
    return {"suggestions": [s.to_dict() for s in found]}
