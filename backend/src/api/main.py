"""
Backend API: admin controls for the sync subsystem plus a read-through fixtures endpoint.
"""

import asyncio
import hmac
import logging
import sys
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Load .env and ensure backend/src is on path
backend_dir = Path(__file__).resolve().parent.parent.parent
load_dotenv(backend_dir / ".env")
sys.path.insert(0, str(backend_dir / "src"))

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Config
from database.cache import FIXTURES, CacheError
from football_api.client import UpstreamError
from sync.commands import (
    PopulateAction,
    SchedulerAction,
    SyncAction,
    ValidationError,
    execute_sync_command,
    parse_force_scope,
    parse_populate_action,
    parse_scheduler_action,
    parse_sync_action,
    parse_window_days,
)
from sync.models import OutcomeStatus, TaskKey, TaskPriority
from sync.populator import FULL_PROFILE, QUICK_PROFILE, PopulationAlreadyRunning, PopulationJob
from sync.services import SyncServices, build_services

logger = logging.getLogger(__name__)

LONG_SYNC_ACTIONS = {
    SyncAction.START_SYNC,
    SyncAction.SMART_SYNC,
    SyncAction.FORCE_SYNC,
    SyncAction.HISTORICAL_SYNC,
}


class SyncRequest(BaseModel):
    action: Optional[str] = None
    type: Optional[str] = None
    days: Optional[Any] = None
    wait: bool = False


class SchedulerRequest(BaseModel):
    action: Optional[str] = None
    config: Optional[Dict[str, Any]] = None


class PopulateRequest(BaseModel):
    action: Optional[str] = None
    leagues: Optional[List[Any]] = None
    past_days: Optional[Any] = None
    future_days: Optional[Any] = None
    batch_size: Optional[Any] = None
    batch_delay: Optional[float] = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Unauthorized(Exception):
    pass


def get_services(request: Request) -> SyncServices:
    return request.app.state.services


def require_admin(
    services: SyncServices = Depends(get_services),
    x_admin_token: Optional[str] = Header(None),
):
    token = services.config.admin_token
    if not token:
        return
    if not x_admin_token or not hmac.compare_digest(x_admin_token, token):
        raise _Unauthorized()


def _detach(app: FastAPI, coro, name: str):
    """Run coro in the background, keeping a reference until it finishes."""
    task = asyncio.create_task(coro, name=name)
    app.state.background.add(task)

    def _done(t: asyncio.Task):
        app.state.background.discard(t)
        if not t.cancelled() and t.exception() is not None:
            logger.error("Background operation failed", extra={
                "operation": name,
                "error": str(t.exception())
            })

    task.add_done_callback(_done)
    return task


def _api_usage(services: SyncServices) -> Dict[str, Any]:
    api = services.api
    return {
        "calls_today": api.calls_today,
        "daily_limit": services.config.daily_request_limit,
        "usage": round(api.budget_usage(), 4),
    }


def create_app(config: Optional[Config] = None, services: Optional[SyncServices] = None) -> FastAPI:
    """
    Build the API. Services are created in the lifespan unless injected (tests).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        svc = services if services is not None else build_services(config or Config())
        app.state.services = svc
        app.state.background = set()
        if owned and svc.config.scheduler_autostart:
            svc.scheduler.start()
        try:
            yield
        finally:
            for task in list(app.state.background):
                task.cancel()
            if owned:
                await svc.aclose()

    app = FastAPI(title="Matchday Cache Sync API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(_Unauthorized)
    async def _unauthorized(request: Request, exc: _Unauthorized):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(PopulationAlreadyRunning)
    async def _population_running(request: Request, exc: PopulationAlreadyRunning):
        return JSONResponse(status_code=409, content={
            "error": str(exc),
            "stats": get_services(request).populator.get_stats()
        })

    @app.exception_handler(CacheError)
    @app.exception_handler(UpstreamError)
    async def _dependency_error(request: Request, exc: Exception):
        logger.error("Dependency failure", extra={
            "path": request.url.path,
            "error": str(exc),
            "error_type": type(exc).__name__
        })
        return JSONResponse(status_code=502, content={"error": str(exc)})

    admin = [Depends(require_admin)]

    @app.get("/api/admin/sync", dependencies=admin)
    def sync_status(services: SyncServices = Depends(get_services)):
        return {
            "stats": services.orchestrator.get_stats(),
            "availableActions": [action.value for action in SyncAction],
            "timestamp": _now_iso(),
        }

    @app.post("/api/admin/sync", dependencies=admin)
    async def sync_command(body: SyncRequest, request: Request, services: SyncServices = Depends(get_services)):
        action = parse_sync_action(body.action)
        orchestrator = services.orchestrator

        # Validate parameters before anything is queued
        scope = parse_force_scope(body.type) if action == SyncAction.FORCE_SYNC else None
        days = parse_window_days(body.days) if action == SyncAction.HISTORICAL_SYNC else None

        if action in LONG_SYNC_ACTIONS and not body.wait:
            _detach(request.app, execute_sync_command(orchestrator, action, scope, days), action.value)
            return {
                "message": f"{action.value} started",
                "status": "started",
                "stats": orchestrator.get_stats(),
                "timestamp": _now_iso(),
            }

        result = await execute_sync_command(orchestrator, action, scope, days)
        return {
            "message": f"{action.value} completed",
            "status": "completed",
            "result": result,
            "stats": orchestrator.get_stats(),
            "timestamp": _now_iso(),
        }

    @app.get("/api/admin/scheduler", dependencies=admin)
    def scheduler_status(services: SyncServices = Depends(get_services)):
        return {
            "schedulerStatus": services.scheduler.status(),
            "availableActions": [action.value for action in SchedulerAction],
            "timestamp": _now_iso(),
        }

    @app.post("/api/admin/scheduler", dependencies=admin)
    async def scheduler_command(body: SchedulerRequest, services: SyncServices = Depends(get_services)):
        action = parse_scheduler_action(body.action)
        scheduler = services.scheduler

        if action == SchedulerAction.START:
            scheduler.start()
        elif action == SchedulerAction.STOP:
            scheduler.stop()
        elif action == SchedulerAction.RESTART:
            scheduler.restart()
        elif action == SchedulerAction.UPDATE_CONFIG:
            if body.config is None:
                raise ValidationError("Missing config parameter for update_config")
            scheduler.update_config(body.config)

        return {
            "status": action.value,
            "schedulerStatus": scheduler.status(),
            "timestamp": _now_iso(),
        }

    @app.get("/api/admin/populate", dependencies=admin)
    def populate_status(services: SyncServices = Depends(get_services)):
        return {
            "stats": services.populator.get_stats(),
            "availableActions": [action.value for action in PopulateAction],
            "timestamp": _now_iso(),
        }

    @app.post("/api/admin/populate", dependencies=admin)
    async def populate_command(body: PopulateRequest, services: SyncServices = Depends(get_services)):
        action = parse_populate_action(body.action)
        populator = services.populator

        if action == PopulateAction.START_QUICK:
            stats = populator.start(QUICK_PROFILE)
        elif action == PopulateAction.START_FULL:
            stats = populator.start(FULL_PROFILE)
        elif action == PopulateAction.START_MASSIVE:
            options = {
                name: value for name, value in (
                    ("past_days", body.past_days),
                    ("future_days", body.future_days),
                    ("batch_size", body.batch_size),
                ) if value is not None
            }
            job = PopulationJob.custom(body.leagues, batch_delay=body.batch_delay, **options)
            stats = populator.start(job)
        elif action == PopulateAction.STOP:
            populator.stop()
            stats = populator.get_stats()
        else:
            stats = populator.get_stats()

        return {"status": action.value, "stats": stats, "timestamp": _now_iso()}

    @app.get("/api/admin/dashboard", dependencies=admin)
    async def dashboard(services: SyncServices = Depends(get_services)):
        return {
            "cache": await services.cache.stats(),
            "sync": services.orchestrator.get_stats(),
            "scheduler": services.scheduler.status(),
            "population": services.populator.get_stats(),
            "apiUsage": _api_usage(services),
            "timestamp": _now_iso(),
        }

    @app.get("/api/fixtures")
    async def get_fixtures(
        league: int = Query(..., description="API-Football league id"),
        date_str: Optional[str] = Query(None, alias="date", description="YYYY-MM-DD (default: today UTC)"),
        services: SyncServices = Depends(get_services),
    ):
        """Serve a league's fixtures for one date from cache, syncing on a miss."""
        try:
            day = date.fromisoformat(date_str) if date_str else datetime.now(timezone.utc).date()
        except ValueError:
            raise ValidationError(f"Invalid date {date_str!r}, expected YYYY-MM-DD") from None

        key = TaskKey.fixtures(league, day)
        payload = await services.cache.get(FIXTURES, key.canonical)
        if payload is not None:
            return {"league": league, "date": day.isoformat(), "source": "cache", "fixtures": payload}

        outcome = await services.orchestrator.sync_fixtures(league, day, priority=TaskPriority.HIGH)
        if outcome.status == OutcomeStatus.FAILED:
            raise UpstreamError(outcome.error or "Fixture sync failed")

        payload = await services.cache.get(FIXTURES, key.canonical)
        return {
            "league": league,
            "date": day.isoformat(),
            "source": "upstream",
            "fixtures": payload or [],
            "outcome": outcome.to_dict(),
        }

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
