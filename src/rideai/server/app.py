"""FastAPI application for the RideAI orchestration service."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import SystemConfig
from ..system import RideAISystem
from .routes import router

# Global system instance (set during lifespan)
_system: Optional[RideAISystem] = None

logger = logging.getLogger("rideai.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global _system

    config: SystemConfig = app.state.config
    system: RideAISystem = app.state.system or RideAISystem(config)

    logger.info(f"Starting RideAI service (instance: {config.instance_id})")
    await system.start()
    _system = system

    chains = ", ".join(f"{k}={'>'.join(v)}" for k, v in sorted(config.chains.items()))
    logger.info(f"Provider chains: {chains}")
    logger.info(
        f"Interaction memory initialized "
        f"(backend: {config.memory.backend.value}, retention: {config.memory.retention_days} days)"
    )

    sweep_task = asyncio.create_task(
        _memory_sweep_loop(system, config.memory.sweep_interval_seconds)
    )

    yield

    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass
    logger.info("Shutting down RideAI service")
    await system.stop()
    _system = None


async def _memory_sweep_loop(system: RideAISystem, interval_seconds: float) -> None:
    """Background task that periodically prunes expired interactions and cache entries."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            deleted = system.sweep_memory()
            if deleted > 0:
                logger.info(
                    f"Memory sweep: deleted {deleted} interactions "
                    f"(retention: {system.config.memory.retention_days} days)"
                )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Memory sweep failed")


def create_app(
    config: Optional[SystemConfig] = None,
    system: Optional[RideAISystem] = None,
) -> FastAPI:
    """Create FastAPI application.

    Args:
        config: Service configuration. If None, loads from environment.
        system: Pre-built system (tests inject one wired with fakes).

    Returns:
        Configured FastAPI application.
    """
    if config is None:
        config = system.config if system is not None else SystemConfig.from_env()

    app = FastAPI(
        title="RideAI",
        description="AI request orchestration for rideshare operator consoles",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Stored for lifespan access
    app.state.config = config
    app.state.system = system

    # Server is bound to localhost by default; only local consoles call it
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "service": "rideai",
            "version": "0.1.0",
            "docs": "/docs",
        }

    return app


def run_server(
    config: Optional[SystemConfig] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    log_level: str = "info",
):
    """Run the HTTP server.

    Args:
        config: Service configuration. If None, loads from environment.
        host: Override host from config.
        port: Override port from config.
        log_level: Logging level.
    """
    if config is None:
        config = SystemConfig.from_env()

    app = create_app(config)

    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=log_level,
    )
