from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from download_server.config import Settings
from download_server.headers import preflight_headers
from download_server.logger_config import setup_logger
from download_server.monitor import Monitor
from download_server.routes import build_router, json_response
from download_server.schemas import ErrorResponse
from download_server.services.counter_store import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
)
from download_server.services.download_tracker import DownloadTracker
from download_server.services.storage_manager import StorageManager


def build_counter_store(settings: Settings) -> CounterStore:
    if settings.redis_url:
        return RedisCounterStore.from_url(settings.redis_url, prefix=settings.counter_prefix)
    return InMemoryCounterStore(prefix=settings.counter_prefix)


async def handle_http_exception(request: Request, exc: StarletteHTTPException):
    # Unknown routes and known paths with the wrong method both answer 404
    if exc.status_code in (404, 405):
        return json_response(ErrorResponse(error="Not found"), status_code=404)
    return json_response(ErrorResponse(error=str(exc.detail)), status_code=exc.status_code)


def create_app(
    settings: Optional[Settings] = None,
    object_store: Optional[StorageManager] = None,
    counter_store: Optional[CounterStore] = None,
) -> FastAPI:
    """Create the download server application."""
    settings = settings or Settings.from_env()
    logger = setup_logger(
        debug=settings.debug,
        logs_dir=settings.logs_dir,
        logzio_token=settings.logzio_token,
        logzio_url=settings.logzio_url,
    )

    object_store = object_store or StorageManager(Path(settings.data_dir), Path(settings.temp_dir))
    counter_store = counter_store or build_counter_store(settings)
    monitor = Monitor(
        failure_threshold=settings.failure_threshold,
        window_seconds=settings.failure_window_seconds,
    )
    tracker = DownloadTracker(
        counter_store,
        monitor=monitor,
        max_queue_size=settings.counter_queue_size,
        workers=settings.counter_workers,
        drain_timeout=settings.shutdown_drain_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await object_store.initialize()
        await tracker.start()
        yield
        await tracker.close()
        await counter_store.close()

    app = FastAPI(
        title="Download Server",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.object_store = object_store
    app.state.counter_store = counter_store
    app.state.download_tracker = tracker
    app.state.monitor = monitor

    @app.middleware("http")
    async def cors_preflight(request: Request, call_next):
        if request.method == "OPTIONS":
            logger.debug(f"Handling CORS preflight for path: {request.url.path}")
            return Response(status_code=200, headers=preflight_headers(settings.cors_allow_headers))
        return await call_next(request)

    app.include_router(build_router())
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)

    logger.debug(f"Download server created (auth {'on' if settings.auth_required else 'off'}, debug {settings.debug})")
    return app


def run():
    settings = Settings.from_env()
    logger = setup_logger(
        debug=settings.debug,
        logs_dir=settings.logs_dir,
        logzio_token=settings.logzio_token,
        logzio_url=settings.logzio_url,
    )
    logger.info("Starting download server...")
    logger.info(f"Data directory: {settings.data_dir}")
    logger.info(f"Counter backend: {'redis' if settings.redis_url else 'in-memory'}")
    uvicorn.run("download_server.main:create_app", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
