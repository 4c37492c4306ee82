"""OCDash FastAPI backend: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ocdash import config
from ocdash.dashboard import StoreRegistry
from ocdash.file_watcher import FileWatcher
from ocdash.observability import initialize as initialize_observability, shutdown as shutdown_observability
from ocdash.paths import canonical_project_root, default_storage_root
from ocdash.routers.dashboard import dashboard_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("ocdash")

file_watcher = FileWatcher()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("OCDash backend starting up")
    initialize_observability(app)

    storage_root = default_storage_root()
    project_root = canonical_project_root(config.PROJECT_ROOT)
    registry = StoreRegistry(storage_root, poll_interval_ms=config.POLL_INTERVAL_MS)
    store = registry.get_store(project_root)

    app.state.registry = registry
    app.state.project_root = project_root
    if not hasattr(app.state, "resolve_source"):
        app.state.resolve_source = None

    logger.info("Serving project %s from storage %s", project_root, storage_root)

    if config.WATCH_ENABLED:
        await file_watcher.start(registry, store.watch_paths())

    yield

    logger.info("OCDash backend shutting down")
    await file_watcher.stop()
    shutdown_observability(app)


app = FastAPI(
    title="OCDash API",
    description="Read-only dashboard API over agent runtime session artifacts",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow the Vite dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(dashboard_router)


def run() -> None:
    import uvicorn

    uvicorn.run("ocdash.main:app", host=config.HOST, port=config.PORT)
