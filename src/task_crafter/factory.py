"""Dependency injection factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from task_crafter.config import Config
from task_crafter.relay.client import RelayClient
from task_crafter.storage.local_storage import LocalStorage
from task_crafter.storage.task_repository import TaskRepository
from task_crafter.store.task_store import TaskStore

logger = logging.getLogger(__name__)

# Global config instance for dependency injection
_config: Config | None = None


def get_config() -> Config:
    """Get or create Config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def create_repository(config: Config) -> TaskRepository:
    """Create task persistence for the configured storage directory."""
    return TaskRepository(LocalStorage(config.storage_dir))


def create_relay_client(config: Config) -> RelayClient:
    """Create relay client (not started)."""
    return RelayClient(
        config.relay_url,
        reconnect_attempts=config.reconnect_attempts,
        reconnect_delay=config.reconnect_delay,
        queue_size=config.relay_queue_size,
    )


def create_task_store(
    config: Config, repository: TaskRepository, relay_client: RelayClient
) -> TaskStore:
    """Create the session's task store and wire the sync policy."""
    store = TaskStore(
        repository,
        relay_client,
        reject_dependency_cycles=config.reject_dependency_cycles,
    )
    if config.sync_policy == "last_write_wins":
        relay_client.subscribe(store.apply_remote)
        logger.info("[Factory] Remote updates are merged (last write wins)")
    else:
        logger.info("[Factory] Remote updates are not merged into the local store")
    return store


def get_task_store(request: Request) -> TaskStore:
    """FastAPI dependency: the store owned by this application instance."""
    return request.app.state.task_store


def get_relay_client(request: Request) -> RelayClient:
    """FastAPI dependency: the relay client owned by this application instance."""
    return request.app.state.relay_client


def get_repository(request: Request) -> TaskRepository:
    """FastAPI dependency: the persistence adapter of this application instance."""
    return request.app.state.repository


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle - relay connection startup and shutdown."""
    config: Config = app.state.config
    relay_client: RelayClient = app.state.relay_client
    if config.relay_enabled:
        logger.info("[Lifespan] Starting relay client...")
        await relay_client.start()
    try:
        yield
    finally:
        logger.info("[Lifespan] Stopping relay client...")
        await relay_client.stop()


def create_app(config: Config | None = None) -> FastAPI:
    """Create FastAPI application (composition root)."""
    from task_crafter.api.tasks import router as tasks_router

    config = config or get_config()
    repository = create_repository(config)
    relay_client = create_relay_client(config)
    store = create_task_store(config, repository, relay_client)

    app = FastAPI(
        title="TaskCrafter",
        description="Personal task management with session sync",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.repository = repository
    app.state.relay_client = relay_client
    app.state.task_store = store

    app.include_router(tasks_router, prefix="/api")

    return app
