"""FastAPI application wiring for chatdesk.

- Configures logging, Prometheus metrics and per-IP rate limiting.
- Builds the runtime (providers, tools, persistence, event bus) and starts
  and stops it with the application lifespan.
- Exposes the message ingress route plus health, version and readiness probes.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .routers import messages
from .runtime import ChatdeskRuntime, create_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime: ChatdeskRuntime = app.state.runtime
    await runtime.start()
    logger.info("chatdesk %s started", __version__)
    try:
        yield
    finally:
        await runtime.stop()


def create_app(runtime: ChatdeskRuntime | None = None) -> FastAPI:
    app = FastAPI(title="chatdesk", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime or create_runtime()
    init_logging(app)
    app.state.limiter = messages.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    app.include_router(messages.router)

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )

    @app.get("/api/health")
    async def health():
        """Liveness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    @app.get("/api/ready")
    async def ready():
        """Readiness: generation providers and persistence health."""
        report = await app.state.runtime.readiness()
        status_code = 200 if report["status"] == "ready" else 503
        return JSONResponse(report, status_code=status_code)

    return app


app = create_app()
