"""Application entry point for the sitemap builder service."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
import logging
import signal
from typing import Any

from fastapi import FastAPI, Request
from starlette.responses import Response
import uvicorn

from sitemap_builder.api import (
    batches_router,
    conversion_router,
    downloads_router,
    sitemaps_router,
)
from sitemap_builder.config import Settings, get_settings
from sitemap_builder.database import (
    DatabaseHealthCheckResult,
    close_database,
    initialize_database,
    run_startup_database_health_check,
)
from sitemap_builder.services.cleanup import CleanupService
from sitemap_builder.services.scheduler import SchedulerService
from sitemap_builder.utils.logging import (
    add_request_logging_middleware,
    setup_logging,
)

__all__ = ["app", "create_app", "main"]

_HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)

_lifecycle_logger = logging.getLogger("sitemap_builder.lifecycle")


class _InflightTracker:
    """Counts running requests so shutdown can wait for them to drain."""

    def __init__(self) -> None:
        self.count = 0
        self._drained = asyncio.Event()
        self._drained.set()

    def enter(self) -> None:
        self.count += 1
        self._drained.clear()

    def leave(self) -> None:
        self.count = max(0, self.count - 1)
        if self.count == 0:
            self._drained.set()

    async def drain(self, timeout_seconds: int) -> bool:
        if self.count == 0:
            return True
        try:
            await asyncio.wait_for(self._drained.wait(), timeout=timeout_seconds)
        except TimeoutError:
            return False
        return True


def _install_signal_handlers(app: FastAPI) -> dict[signal.Signals, Any]:
    """Record SIGTERM/SIGINT on app state, chaining to uvicorn's handlers."""

    previous_handlers: dict[signal.Signals, Any] = {
        handled: signal.getsignal(handled) for handled in _HANDLED_SIGNALS
    }

    def _on_signal(signum: int, frame: object | None) -> None:
        received = signal.Signals(signum)
        if app.state.shutdown_signal is None:
            app.state.shutdown_signal = received.name
            _lifecycle_logger.warning(
                "shutdown_signal_received", extra={"signal": received.name}
            )
        previous = previous_handlers[received]
        if callable(previous):
            previous(signum, frame)

    for handled in _HANDLED_SIGNALS:
        signal.signal(handled, _on_signal)
    return previous_handlers


def _restore_signal_handlers(previous_handlers: dict[signal.Signals, Any]) -> None:
    for handled, previous in previous_handlers.items():
        signal.signal(handled, previous)


async def _prepare_storage(
    settings: Settings, cleanup_service: CleanupService
) -> DatabaseHealthCheckResult:
    await initialize_database()
    health = await run_startup_database_health_check()
    settings.SITEMAP_OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

    # Records may have expired while the service was down.
    purged = await cleanup_service.purge_expired()
    _lifecycle_logger.info(
        "startup_storage_ready",
        extra={
            "sitemap_output_dir": str(settings.SITEMAP_OUTPUT_DIR),
            "database_healthy": health.is_healthy,
            "purged_records": purged.total,
        },
    )
    return health


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    cleanup_service = CleanupService()
    scheduler_service = SchedulerService.from_settings(settings)
    app.state.scheduler_service = scheduler_service
    app.state.shutdown_signal = None

    previous_handlers = _install_signal_handlers(app)
    app.state.database_health = await _prepare_storage(settings, cleanup_service)
    scheduler_service.register_cleanup_job(
        cleanup_service.purge_expired,
        seconds=settings.CLEANUP_INTERVAL_SECONDS,
    )
    await scheduler_service.start()

    try:
        yield
    finally:
        inflight: _InflightTracker = app.state.inflight
        drained = await inflight.drain(settings.SHUTDOWN_GRACE_PERIOD_SECONDS)
        await scheduler_service.shutdown()
        _lifecycle_logger.info(
            "shutdown_summary",
            extra={
                "graceful_shutdown": drained,
                "abandoned_requests": inflight.count,
                "signal": app.state.shutdown_signal,
            },
        )
        _restore_signal_handlers(previous_handlers)
        await close_database()


def _health_payload(app: FastAPI) -> dict[str, Any]:
    scheduler_service: SchedulerService | None = getattr(
        app.state, "scheduler_service", None
    )
    database_health: DatabaseHealthCheckResult | None = getattr(
        app.state, "database_health", None
    )
    return {
        "status": "ok",
        "scheduler_running": bool(scheduler_service and scheduler_service.running),
        "jobs": (
            [job.job_id for job in scheduler_service.list_jobs()]
            if scheduler_service is not None
            else []
        ),
        "database": (
            {
                "integrity_ok": database_health.integrity_ok,
                "orphaned_rows": database_health.orphaned_rows,
            }
            if database_health is not None
            else None
        ),
    }


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings)

    app = FastAPI(title="Sitemap Builder", lifespan=lifespan)
    app.state.settings = settings
    app.state.inflight = _InflightTracker()

    @app.middleware("http")
    async def track_inflight_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        inflight: _InflightTracker = app.state.inflight
        inflight.enter()
        try:
            return await call_next(request)
        finally:
            inflight.leave()

    add_request_logging_middleware(app)
    for router in (conversion_router, batches_router, sitemaps_router, downloads_router):
        app.include_router(router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, Any]:
        return _health_payload(app)

    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "sitemap_builder.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=False,
    )
