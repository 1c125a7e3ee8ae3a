from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException

from ..core.config import Settings, settings
from ..core.timeutil import now_utc, now_local
from ..domain.errors import SourceUnavailableError, TransientIOError
from ..domain.models import Coordinate
from ..drivers.sim_source import PatternConfig, SimulatedByteSource
from ..services.live import LiveStateListener
from ..services.pipeline import StreamPipeline
from ..storage.sqlite_repo import SQLiteRepository
from .schemas import (
    CommandRequest,
    LocationRequest,
    SimManualRequest,
    SimPatternRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Dependency getters (imported from main via circular-safe approach) ---
# We define them here as callables that main.py will set via app.dependency_overrides.
def get_pipeline() -> StreamPipeline:  # overridden in main
    raise RuntimeError("Pipeline dependency not configured")

def get_live() -> LiveStateListener:  # overridden in main
    raise RuntimeError("Live state dependency not configured")

def get_repo() -> SQLiteRepository:  # overridden in main
    raise RuntimeError("Repo dependency not configured")

def get_sim_source() -> SimulatedByteSource:  # overridden in main
    raise RuntimeError("Simulated source dependency not configured")

def get_settings() -> Settings:  # overridden in main
    return settings


def _pipeline_status(svc: StreamPipeline) -> dict:
    return {"ok": True, "state": svc.state.value}


@router.get("/live")
async def live(
    svc: StreamPipeline = Depends(get_pipeline),
    listener: LiveStateListener = Depends(get_live),
    cfg: Settings = Depends(get_settings),
):
    state = listener.live
    loc = svc.location
    pub = svc.publisher
    return {
        "app": cfg.app_name,
        "mode": state.mode,
        "now_local": now_local().isoformat(),
        "pipeline": svc.state.value,
        "location": {
            "latitude": loc.latitude,
            "longitude": loc.longitude,
            "set": loc.is_set,
        },
        "batch": {"fill": svc.batch_fill, "capacity": svc.batch_capacity},
        "last_reading": {
            "species": state.last_species,
            "value": state.last_value,
            "ts_utc": state.last_reading_utc.isoformat() if state.last_reading_utc else None,
        },
        "recent_values": state.recent_values,
        "last_mean": {
            "value": state.last_mean,
            "ts_utc": state.last_mean_utc.isoformat() if state.last_mean_utc else None,
        },
        "broker": {
            "state": pub.state.value,
            "buffer_enabled": pub.buffer_enabled,
            "buffered": pub.buffered,
        },
        "stats": svc.stats.as_dict(),
    }


@router.post("/pipeline/start")
async def pipeline_start(svc: StreamPipeline = Depends(get_pipeline)):
    try:
        started = await svc.start()
    except SourceUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not started:
        raise HTTPException(status_code=409, detail="Pipeline already running")
    return _pipeline_status(svc)


@router.post("/pipeline/stop")
async def pipeline_stop(svc: StreamPipeline = Depends(get_pipeline)):
    await svc.stop()
    return _pipeline_status(svc)


async def _send_command(svc: StreamPipeline, command: str) -> dict:
    try:
        await svc.send_control_command(command)
    except TransientIOError as e:
        raise HTTPException(status_code=503, detail=f"Command not delivered: {e}")
    return {"ok": True, "command": command, "state": svc.state.value}


@router.post("/pipeline/command")
async def pipeline_command(req: CommandRequest, svc: StreamPipeline = Depends(get_pipeline)):
    return await _send_command(svc, req.command)


@router.post("/pipeline/shutdown-sensor")
async def pipeline_shutdown_sensor(
    svc: StreamPipeline = Depends(get_pipeline),
    cfg: Settings = Depends(get_settings),
):
    return await _send_command(svc, cfg.shutdown_command)


@router.post("/location")
async def update_location(req: LocationRequest, svc: StreamPipeline = Depends(get_pipeline)):
    coord = Coordinate(latitude=req.latitude, longitude=req.longitude)
    svc.on_location_update(coord)
    return {"ok": True, "latitude": coord.latitude, "longitude": coord.longitude, "set": coord.is_set}


@router.get("/readings")
async def readings(
    minutes: int = 60,
    limit: int = 5000,
    repo: SQLiteRepository = Depends(get_repo),
):
    end = now_utc()
    start = end - timedelta(minutes=max(1, minutes))
    rows = await repo.query_readings(start.isoformat(), end.isoformat(), limit=min(limit, 20000))
    return {
        "start_utc": start.isoformat(),
        "end_utc": end.isoformat(),
        "rows": [
            {
                "ts_utc": r.ts_utc.isoformat() if r.ts_utc else None,
                "sensor_serial": r.sensor_serial,
                "species": r.species,
                "ppb": r.ppb,
                "temperature_c": r.temperature_c,
                "value": r.value_micrograms,
                "phenomenon_time": r.phenomenon_time,
            }
            for r in rows
        ],
    }


@router.get("/batches")
async def batches(
    minutes: int = 240,
    limit: int = 2000,
    repo: SQLiteRepository = Depends(get_repo),
):
    end = now_utc()
    start = end - timedelta(minutes=max(1, minutes))
    rows = await repo.query_batches(start.isoformat(), end.isoformat(), limit=min(limit, 20000))
    return {
        "start_utc": start.isoformat(),
        "end_utc": end.isoformat(),
        "rows": [
            {
                "ts_utc": b.ts_utc.isoformat(),
                "sensor_serial": b.sensor_serial,
                "species": b.species,
                "mean_value": b.mean_value,
                "sample_count": b.sample_count,
                "latitude": b.latitude,
                "longitude": b.longitude,
                "published": b.published,
                "topic": b.topic,
            }
            for b in rows
        ],
    }


# --- Simulation endpoints ---
@router.get("/sim/status")
async def sim_status(source: SimulatedByteSource = Depends(get_sim_source)):
    return source.status()


@router.post("/sim/enable")
async def sim_enable(source: SimulatedByteSource = Depends(get_sim_source)):
    source.enable()
    return {"ok": True, "enabled": True}


@router.post("/sim/disable")
async def sim_disable(source: SimulatedByteSource = Depends(get_sim_source)):
    source.disable()
    return {"ok": True, "enabled": False}


@router.post("/sim/manual")
async def sim_set_manual(req: SimManualRequest, source: SimulatedByteSource = Depends(get_sim_source)):
    source.set_manual(req.ppb, species=req.species, temperature_c=req.temperature_c)
    return {"ok": True, "mode": "manual", "ppb": req.ppb}


@router.post("/sim/pattern")
async def sim_set_pattern(req: SimPatternRequest, source: SimulatedByteSource = Depends(get_sim_source)):
    cfg = PatternConfig(**req.model_dump())
    source.set_pattern(cfg)
    return {"ok": True, "pattern": cfg.__dict__}


# --- Settings ---

RESTART_REQUIRED_KEYS = frozenset({
    "source_mode", "serial_port", "serial_baudrate", "frame_delimiter",
    "frame_buffer_capacity", "batch_capacity", "broker_host", "broker_port",
    "broker_client_id", "sqlite_path",
})

_HIDDEN_KEYS = frozenset({"broker_password"})


@router.get("/settings")
async def get_settings_api(cfg: Settings = Depends(get_settings)):
    current = {
        key: getattr(cfg, key)
        for key in Settings.model_fields
        if key not in _HIDDEN_KEYS
    }
    return {
        "settings": current,
        "restart_required_keys": sorted(RESTART_REQUIRED_KEYS),
    }
