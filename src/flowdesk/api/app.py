"""FastAPI application factory for the flowdesk streaming API.

Per-app resources (store, stream backend, controller) are created inside
the lifespan so every asyncio object belongs to the serving event loop.
Tests pass their own store to ``create_app`` and use ``with
TestClient(app)`` so the lifespan runs.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flowcore import metrics
from flowcore.config import get_config
from flowcore.errors import validate_error_type
from flowcore.logging_setup import configure_logging
from flowcore.store import ChatStore, create_store
from flowcore.stream import (
    AbortHandler,
    ResumeHandler,
    StreamError,
    StreamSessionController,
    create_backend,
)
from flowdesk import __version__
from flowdesk.api.deps import Services
from flowdesk.api.routes.agent import router as agent_router
from flowdesk.api.routes.chats import router as chats_router
from flowdesk.api.routes.projects import router as projects_router

log = logging.getLogger(__name__)

ERROR_STATUS = {
    "chat-not-found": 404,
    "task-not-found": 404,
    "project-not-found": 404,
    "stream-not-found": 404,
    "stream-conflict": 409,
    "broker-unavailable": 503,
}


async def _sweep_loop(services: Services, interval_s: float) -> None:
    while True:
        await asyncio.sleep(interval_s)
        try:
            dropped = await services.backend.registry.sweep()
        except Exception:  # noqa: BLE001
            log.exception("registry sweep failed")
            continue
        if dropped:
            log.debug("registry sweep dropped %d stream(s)", dropped)


def create_app(store: ChatStore | None = None) -> FastAPI:
    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = get_config()
        configure_logging(cfg.logging)
        own_store = store is None
        chat_store = store if store is not None else create_store(cfg.storage)
        backend = await create_backend(cfg.stream, cfg.broker)
        controller = StreamSessionController(
            chat_store,
            backend.registry,
            backend.pubsub,
            abort_channel_prefix=cfg.stream.abort_channel_prefix,
        )
        services = Services(
            store=chat_store,
            backend=backend,
            controller=controller,
            resume=ResumeHandler(chat_store, backend.registry),
            abort=AbortHandler(
                chat_store,
                backend.pubsub,
                channel_prefix=cfg.stream.abort_channel_prefix,
                publish_timeout_s=cfg.stream.abort_publish_timeout_s,
            ),
        )
        app.state.services = services
        sweeper = asyncio.create_task(
            _sweep_loop(services, cfg.stream.sweep_interval_s),
            name="registry-sweep",
        )
        log.info("flowdesk api started backend=%s", backend.name)
        try:
            yield
        finally:
            await controller.shutdown()
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            await backend.aclose()
            if own_store:
                chat_store.close()
            log.info("flowdesk api stopped")

    app = FastAPI(
        title="flowdesk API",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )

    # Dev CORS (UI on :3000); x-chat-id / x-stream-id must be readable
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-chat-id", "x-stream-id"],
    )

    @app.exception_handler(StreamError)
    async def _stream_error(request: Request, exc: StreamError):  # noqa: D401
        error_type = validate_error_type(exc.error_type)
        status = ERROR_STATUS.get(error_type, 500)
        metrics.inc("api_errors_total", {"error_type": error_type})
        return JSONResponse(
            {"error_type": error_type, "message": str(exc)}, status_code=status
        )

    @app.get("/health")
    def health():  # noqa: D401
        return {"status": "ok", "version": __version__}

    @app.get("/config")
    def config():  # noqa: D401
        cfg = get_config()
        return {
            "stream": {
                "backend": cfg.stream.backend,
                "retention_seconds": cfg.stream.retention_seconds,
                "max_stream_age_seconds": cfg.stream.max_stream_age_seconds,
                "abort_publish_timeout_s": cfg.stream.abort_publish_timeout_s,
            },
            "storage": {"backend": cfg.storage.backend},
            "agent": {"chunk_delay_ms": cfg.agent.chunk_delay_ms},
        }

    @app.get("/metrics")
    def metrics_snapshot():  # noqa: D401
        if not get_config().metrics.enabled:
            return {"enabled": False}
        return metrics.snapshot()

    app.include_router(agent_router)
    app.include_router(chats_router)
    app.include_router(projects_router)

    @app.middleware("http")
    async def _metrics_mw(request: Request, call_next):  # noqa: D401
        if not get_config().metrics.enabled:
            return await call_next(request)
        start = time.time()
        route = request.scope.get("route")
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            route = request.scope.get("route") or route
            path = getattr(route, "path", request.url.path)
            duration_ms = (time.time() - start) * 1000.0
            labels = {"route": path, "method": request.method}
            metrics.inc("api_request_total", labels)
            metrics.observe("api_request_latency_ms", duration_ms, labels)
            if status >= 400:
                metrics.inc(
                    "api_request_errors_total", labels | {"status": status}
                )

    return app


app = create_app()


def main() -> None:  # pragma: no cover
    import uvicorn

    uvicorn.run(
        "flowdesk.api.app:app", host="127.0.0.1", port=8000, reload=False
    )


if __name__ == "__main__":  # pragma: no cover
    main()
