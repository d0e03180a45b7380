"""
Punchclock HTTP surface.

Thin FastAPI layer over TrackerEngine. Every session change goes through the
engine's state machine; nothing here touches the store directly.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import Config
from .engine import TrackerEngine
from .errors import ConstraintError, NotFoundError, TrackerError
from .log import recent_logs, setup_logging
from .models import DEFAULT_PROJECT_COLOR, TimeEntry
from .surface import SurfaceIntent, parse_menu_event

logger = logging.getLogger("punchclock.api")


# ── Request / response models ──────────────────────────────────

class ProjectRef(BaseModel):
    project_id: int


class ProjectRequest(BaseModel):
    name: str
    color: str = DEFAULT_PROJECT_COLOR


class EntryUpdateRequest(BaseModel):
    project_id: int
    start_time: datetime
    end_time: datetime


class IntentRequest(BaseModel):
    """Either a raw menu id ('stop', 'project_<id>') or an explicit action."""
    menu_id: Optional[str] = None
    action: Optional[str] = None
    project_id: Optional[int] = None


class LogEntry(BaseModel):
    timestamp: str
    level: str
    logger: str
    message: str


class LogsResponse(BaseModel):
    logs: List[LogEntry]
    count: int


# ── Helpers ────────────────────────────────────────────────────

def _http_error(e: TrackerError) -> HTTPException:
    if isinstance(e, NotFoundError):
        status = 404
    elif isinstance(e, ConstraintError):
        status = 409
    else:
        status = 503
    logger.warning(f"{type(e).__name__}: {e}")
    return HTTPException(status_code=status, detail=str(e))


def _entry_dict(entry: Optional[TimeEntry]) -> Optional[dict]:
    if entry is None:
        return None
    data = asdict(entry)
    data["start_time"] = entry.start_time.isoformat()
    data["end_time"] = entry.end_time.isoformat() if entry.end_time else None
    return data


def get_engine(request: Request) -> TrackerEngine:
    return request.app.state.engine


router = APIRouter(prefix="/api")


# ── Session ────────────────────────────────────────────────────

@router.get("/session")
async def get_session(engine: TrackerEngine = Depends(get_engine)):
    """Current session snapshot with elapsed seconds."""
    return engine.get_session_state().to_dict()


@router.post("/session/start")
async def start_session(request: ProjectRef, engine: TrackerEngine = Depends(get_engine)):
    engine.activity.touch()
    try:
        await engine.start_session(request.project_id)
    except TrackerError as e:
        raise _http_error(e) from e
    return engine.get_session_state().to_dict()


@router.post("/session/stop")
async def stop_session(engine: TrackerEngine = Depends(get_engine)):
    """Stop the running entry. Stopping while idle is not an error."""
    engine.activity.touch()
    try:
        entry = await engine.stop_session()
    except TrackerError as e:
        raise _http_error(e) from e
    return {"stopped": _entry_dict(entry), "session": engine.get_session_state().to_dict()}


@router.post("/session/switch")
async def switch_session(request: ProjectRef, engine: TrackerEngine = Depends(get_engine)):
    engine.activity.touch()
    try:
        await engine.switch_to(request.project_id)
    except TrackerError as e:
        raise _http_error(e) from e
    return engine.get_session_state().to_dict()


@router.post("/session/select")
async def select_project(request: ProjectRef, engine: TrackerEngine = Depends(get_engine)):
    try:
        await engine.select_project(request.project_id)
    except TrackerError as e:
        raise _http_error(e) from e
    return engine.get_session_state().to_dict()


# ── Settings ───────────────────────────────────────────────────

@router.get("/settings")
async def get_settings(engine: TrackerEngine = Depends(get_engine)):
    return engine.settings.current.model_dump(mode="json")


@router.patch("/settings")
async def patch_settings(partial: dict = Body(...), engine: TrackerEngine = Depends(get_engine)):
    """Deep-merge a partial settings document; takes effect on the next evaluator tick."""
    try:
        settings = await engine.update_settings(partial)
    except TrackerError as e:
        raise _http_error(e) from e
    return settings.model_dump(mode="json")


# ── Projects ───────────────────────────────────────────────────

@router.get("/projects")
async def list_projects(engine: TrackerEngine = Depends(get_engine)):
    projects = await engine.list_projects()
    return {"projects": [asdict(p) for p in projects], "count": len(projects)}


@router.post("/projects", status_code=201)
async def create_project(request: ProjectRequest, engine: TrackerEngine = Depends(get_engine)):
    try:
        project = await engine.create_project(request.name, request.color)
    except TrackerError as e:
        raise _http_error(e) from e
    return asdict(project)


@router.patch("/projects/{project_id}")
async def update_project(project_id: int, request: ProjectRequest, engine: TrackerEngine = Depends(get_engine)):
    try:
        project = await engine.update_project(project_id, request.name, request.color)
    except TrackerError as e:
        raise _http_error(e) from e
    return asdict(project)


@router.delete("/projects/{project_id}")
async def delete_project(project_id: int, engine: TrackerEngine = Depends(get_engine)):
    """Delete a project with all its entries; a timer running on it is stopped first."""
    try:
        removed = await engine.delete_project(project_id)
    except TrackerError as e:
        raise _http_error(e) from e
    return {"deleted": project_id, "entries_removed": removed}


# ── Entries ────────────────────────────────────────────────────

@router.get("/entries")
async def list_entries(
    limit: int = 50,
    project_id: Optional[int] = None,
    engine: TrackerEngine = Depends(get_engine),
):
    entries = await engine.list_entries(limit=limit, project_id=project_id)
    return {"entries": entries, "count": len(entries)}


@router.patch("/entries/{entry_id}")
async def update_entry(entry_id: int, request: EntryUpdateRequest, engine: TrackerEngine = Depends(get_engine)):
    try:
        entry = await engine.update_entry(entry_id, request.project_id, request.start_time, request.end_time)
    except TrackerError as e:
        raise _http_error(e) from e
    return _entry_dict(entry)


@router.delete("/entries/{entry_id}")
async def delete_entry(entry_id: int, engine: TrackerEngine = Depends(get_engine)):
    try:
        await engine.delete_entry(entry_id)
    except TrackerError as e:
        raise _http_error(e) from e
    return {"deleted": entry_id}


@router.get("/totals")
async def get_totals(engine: TrackerEngine = Depends(get_engine)):
    """Closed seconds for today and the last 7 days."""
    try:
        return await engine.totals()
    except TrackerError as e:
        raise _http_error(e) from e


# ── Activity & status surface ──────────────────────────────────

@router.post("/activity")
async def record_activity(engine: TrackerEngine = Depends(get_engine)):
    """User input heartbeat for the idle watchdog."""
    engine.activity.touch()
    return {"ok": True}


@router.get("/surface")
async def get_surface(engine: TrackerEngine = Depends(get_engine)):
    update = engine.surface.last_pushed or engine.surface.build()
    return update.to_dict()


@router.post("/surface/intent")
async def surface_intent(request: IntentRequest, engine: TrackerEngine = Depends(get_engine)):
    if request.menu_id is not None:
        intent = parse_menu_event(request.menu_id)
        if intent is None:
            raise HTTPException(status_code=400, detail=f"Unknown menu item: {request.menu_id}")
    elif request.action == "stop" or (request.action == "start-project" and request.project_id is not None):
        intent = SurfaceIntent(action=request.action, project_id=request.project_id)
    else:
        raise HTTPException(status_code=400, detail="Expected menu_id, action 'stop', or action 'start-project' with project_id")

    engine.activity.touch()
    try:
        await engine.handle_intent(intent)
    except TrackerError as e:
        raise _http_error(e) from e
    return engine.get_session_state().to_dict()


# ── Logs ───────────────────────────────────────────────────────

@router.get("/logs", response_model=LogsResponse)
async def get_logs(limit: int = 50):
    """Recent server log lines from the in-memory buffer."""
    logs = recent_logs(limit)
    return LogsResponse(logs=[LogEntry(**entry) for entry in logs], count=len(logs))


# ── App factory ────────────────────────────────────────────────

def create_app(config: Optional[Config] = None, engine: Optional[TrackerEngine] = None) -> FastAPI:
    config = config or (engine.config if engine else Config.from_env())
    engine = engine or TrackerEngine(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(config.log_level)
        await engine.start()
        logger.info(f"Punchclock engine started (db={config.db_path})")
        yield
        await engine.shutdown()
        logger.info("Punchclock engine stopped")

    app = FastAPI(
        title="Punchclock",
        description="Local time tracking server",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app
