"""
Classroom World - FastAPI Backend
World state, reward and cadence endpoints for the classroom app.
"""

import secrets
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .cadence import CadenceService, tick
from .config import ServerConfig, WorldConfig, get_server_config, get_world_config, get_config_summary
from .daily import claim_daily_care_event
from .database import db, ensure_world_tables, PostgresWorldStore
from .errors import WorldValidationError
from .logger import logger
from .models import (
    WorldSnapshot, WorldView, GrantResult, AchievementsResult, ClaimResult, TickResult,
    WorldActionRequest, GrantXpRequest, GrantAchievementsRequest, SelectImageRequest, HealthStatus,
)
from .signals import ClassroomSignals, PostgresClassroomSignals
from .store import WorldStore
from .world import grant_xp, grant_achievements, get_snapshot, set_overlay_enabled, select_image


log = logger.getChild("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    world_config = get_world_config()

    # Startup
    await db.connect()
    await ensure_world_tables(db)
    app.state.store = PostgresWorldStore(db)
    app.state.signals = PostgresClassroomSignals(db)

    cadence_service = None
    if world_config.background_ticks_enabled:
        cadence_service = CadenceService(
            app.state.store,
            app.state.signals,
            interval_seconds=world_config.tick_interval_seconds,
            config=world_config,
        )
        await cadence_service.start()
    app.state.cadence_service = cadence_service

    log.info(f"Server started (version {__version__})")
    yield
    # Shutdown
    if cadence_service:
        await cadence_service.stop()
    log.info("Server shutting down")
    await db.disconnect()


app = FastAPI(
    title="Classroom World",
    description="Per-student classroom world: XP, cosmetics, daily care and weekly evaluation",
    version=__version__,
    lifespan=lifespan
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_server_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# DEPENDENCIES
# ============================================

def get_store(request: Request) -> WorldStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="World store not initialised")
    return store


def get_signals(request: Request) -> ClassroomSignals:
    signals = getattr(request.app.state, "signals", None)
    if signals is None:
        raise HTTPException(status_code=503, detail="Classroom signals not initialised")
    return signals


# ============================================
# HEALTH & STATUS
# ============================================

@app.get("/health", response_model=HealthStatus)
async def health_check():
    """Check API and database health."""
    return HealthStatus(
        status="healthy",
        version=__version__,
        database="connected" if db._pool is not None else "disconnected",
    )


@app.get("/api/config")
async def config_summary(
    world: WorldConfig = Depends(get_world_config),
    server: ServerConfig = Depends(get_server_config)
):
    """Effective settings, secrets masked."""
    return get_config_summary(world, server)


# ============================================
# WORLD
# ============================================

WORLD_PATH = "/api/classrooms/{classroom_id}/students/{user_id}/world"


@app.get(WORLD_PATH, response_model=WorldSnapshot)
async def get_world(
    classroom_id: str,
    user_id: str,
    store: WorldStore = Depends(get_store),
    config: WorldConfig = Depends(get_world_config)
):
    """Current world state, today's care event and the latest weekly result."""
    return await get_snapshot(store, user_id, classroom_id, config=config)


@app.post(WORLD_PATH)
async def world_action(
    classroom_id: str,
    user_id: str,
    request: WorldActionRequest,
    store: WorldStore = Depends(get_store),
    config: WorldConfig = Depends(get_world_config)
):
    """Claim today's care event or toggle the overlay."""
    if request.action == "claim_daily":
        result: ClaimResult = await claim_daily_care_event(store, user_id, classroom_id, config=config)
        return result

    if request.action == "set_overlay":
        if request.enabled is None:
            raise HTTPException(status_code=400, detail="'enabled' is required for set_overlay")
        snapshot: WorldSnapshot = await set_overlay_enabled(
            store, user_id, classroom_id, request.enabled, config=config
        )
        return snapshot

    raise HTTPException(status_code=400, detail=f"Unknown action: {request.action}")


@app.post(WORLD_PATH + "/xp", response_model=GrantResult)
async def world_grant_xp(
    classroom_id: str,
    user_id: str,
    request: GrantXpRequest,
    store: WorldStore = Depends(get_store),
    config: WorldConfig = Depends(get_world_config)
):
    try:
        return await grant_xp(store, user_id, classroom_id, request.source, request.metadata, config=config)
    except WorldValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post(WORLD_PATH + "/achievements", response_model=AchievementsResult)
async def world_grant_achievements(
    classroom_id: str,
    user_id: str,
    request: GrantAchievementsRequest,
    store: WorldStore = Depends(get_store),
    config: WorldConfig = Depends(get_world_config)
):
    try:
        return await grant_achievements(store, user_id, classroom_id, request.items, config=config)
    except WorldValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post(WORLD_PATH + "/image", response_model=WorldView)
async def world_select_image(
    classroom_id: str,
    user_id: str,
    request: SelectImageRequest,
    store: WorldStore = Depends(get_store),
    config: WorldConfig = Depends(get_world_config)
):
    try:
        return await select_image(store, user_id, classroom_id, request.image_index, config=config)
    except WorldValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ============================================
# CRON
# ============================================

@app.post("/api/cron/world-tick", response_model=TickResult)
async def cron_world_tick(
    authorization: Optional[str] = Header(None),
    store: WorldStore = Depends(get_store),
    signals: ClassroomSignals = Depends(get_signals),
    server: ServerConfig = Depends(get_server_config),
    config: WorldConfig = Depends(get_world_config)
):
    """Run one cadence tick; called by the external periodic driver."""
    if not server.cron_secret:
        raise HTTPException(status_code=500, detail="Cron secret not configured")
    expected = f"Bearer {server.cron_secret}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        return await tick(store, signals, config=config)
    except Exception as e:
        log.exception("Cron tick failed")
        raise HTTPException(status_code=500, detail=str(e))
