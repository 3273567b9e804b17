"""Relay server: rebroadcasts task updates between sessions."""

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from task_crafter.config import Config
from task_crafter.websocket.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


def create_relay_app(config: Config | None = None) -> FastAPI:
    """Create the relay FastAPI application.

    The relay keeps no task state: only the set of live connections.
    """
    from task_crafter.api.websocket import router as ws_router

    config = config or Config()
    manager = ConnectionManager(queue_size=config.relay_queue_size)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(f"[Relay] Accepting clients from {', '.join(config.client_origins)}")
        try:
            yield
        finally:
            await manager.close_all()

    app = FastAPI(
        title="TaskCrafter Relay",
        description="Rebroadcasts task updates between sessions",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.connection_manager = manager
    app.state.client_origins = config.client_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.client_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.include_router(ws_router)

    @app.get("/health")
    async def health() -> dict[str, int | str]:
        return {"status": "ok", "connections": len(manager.active_connections)}

    return app


def main() -> int:
    """Run the relay server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s [%(name)s:%(lineno)d] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config = Config()
    uvicorn.run(
        create_relay_app(config),
        host=config.relay_host,
        port=config.relay_port,
        log_level="info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
