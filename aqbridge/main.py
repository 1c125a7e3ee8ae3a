from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

from .core.config import Settings, settings
from .core.log import configure_logging

from .api.routes import router as api_router
from .api import routes as routes_module

from .domain.errors import SourceUnavailableError
from .domain.interfaces import BrokerTransport, ByteSource
from .drivers.mqtt_paho import PahoTransport
from .drivers.sim_source import SimulatedByteSource
from .services.live import LiveStateListener
from .services.pipeline import StreamPipeline
from .services.publisher import ConnectionState
from .services.wiring import build_pipeline, build_publisher, build_source, fixed_location
from .storage.sqlite_repo import SQLiteRepository


logger = logging.getLogger(__name__)


def _log_broker_state(state: ConnectionState) -> None:
    logger.info("Broker state: %s", state.value)


def create_app(
    cfg: Settings = settings,
    source: Optional[ByteSource] = None,
    transport: Optional[BrokerTransport] = None,
    repo: Optional[SQLiteRepository] = None,
    setup_logging: bool = True,
) -> FastAPI:
    source = source or build_source(cfg)
    transport = transport or PahoTransport()
    repo = repo or SQLiteRepository(cfg.sqlite_path)

    publisher = build_publisher(cfg, transport)
    publisher.set_state_callback(_log_broker_state)
    pipeline = build_pipeline(cfg, source, publisher, repo)
    live = LiveStateListener(mode=cfg.source_mode)
    pipeline.add_listener(live)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if setup_logging:
            configure_logging(cfg)
        logger.info("Starting %s (source=%s broker=%s:%s)", cfg.app_name, cfg.source_mode, cfg.broker_host, cfg.broker_port)

        await repo.init()
        publisher.start()

        location = fixed_location(cfg)
        if location is not None:
            pipeline.on_location_update(location)

        if cfg.autostart:
            try:
                await pipeline.start()
            except SourceUnavailableError as e:
                logger.error("Pipeline not started: %s", e)

        try:
            yield
        finally:
            await pipeline.stop()
            publisher.stop()
            logger.info("Shutdown complete")

    def get_pipeline() -> StreamPipeline:
        return pipeline

    def get_live() -> LiveStateListener:
        return live

    def get_repo() -> SQLiteRepository:
        return repo

    def get_sim_source() -> SimulatedByteSource:
        if not isinstance(source, SimulatedByteSource):
            raise HTTPException(status_code=404, detail="Simulated source not available (source_mode is not 'sim').")
        return source

    def get_settings() -> Settings:
        return cfg

    app = FastAPI(title=cfg.app_name, lifespan=lifespan)

    # Make the dependency functions in routes resolve to the real ones
    app.dependency_overrides[routes_module.get_pipeline] = get_pipeline
    app.dependency_overrides[routes_module.get_live] = get_live
    app.dependency_overrides[routes_module.get_repo] = get_repo
    app.dependency_overrides[routes_module.get_sim_source] = get_sim_source
    app.dependency_overrides[routes_module.get_settings] = get_settings

    app.include_router(api_router, prefix="/api")
    app.state.pipeline = pipeline
    app.state.publisher = publisher
    return app


app = create_app()
