from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration

from .api.routes import search as search_routes
from .logging_config import configure_structlog, get_logger
from .metrics import PrometheusMiddleware, get_metrics
from .orchestrator import SearchOrchestrator, SearchServices, build_services
from .settings import settings
from .utils import add_cors, add_request_id_tracing

# Configure structured logging (must be done before any logging calls)
configure_structlog(json_logs=settings.json_logs)

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        release=settings.SENTRY_RELEASE or "venue-search@dev",
        integrations=[FastApiIntegration()],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )

logger = get_logger(__name__)

API_PREFIX = "/v1"


def create_app(services: SearchServices | None = None) -> FastAPI:
    """
    Build the HTTP app around one ``SearchServices``.

    Production wiring happens in the lifespan; tests pass a prebuilt services
    object holding fake capabilities.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        current = services or build_services(settings)
        app.state.services = current
        app.state.orchestrator = SearchOrchestrator(current)
        if current.sweeper is not None:
            current.sweeper.start()
        logger.info("search_service_started", caches=sorted(current.caches.caches))
        try:
            yield
        finally:
            await current.aclose()
            logger.info("search_service_stopped")

    app = FastAPI(
        title="Venue Search API",
        version="0.1.0",
        description="Multilingual venue search orchestration",
        lifespan=lifespan,
    )
    add_cors(app, settings.allow_origins)
    add_request_id_tracing(app)
    app.add_middleware(PrometheusMiddleware)

    app.include_router(search_routes.router, prefix=API_PREFIX)

    @app.get("/health")
    async def health():
        """Liveness plus a snapshot of gate occupancy and cache sizes."""
        current: SearchServices | None = getattr(app.state, "services", None)
        if current is None:
            return JSONResponse(content={"status": "starting"}, status_code=503)
        body = {
            "status": "healthy",
            "service": settings.SERVICE_NAME,
            "version": "0.1.0",
            "admission": current.gate.stats(),
            "caches": {name: stats["size"] for name, stats in current.caches.stats().items()},
        }
        return JSONResponse(content=body, status_code=200)

    @app.get("/metrics")
    def metrics():
        """Expose Prometheus metrics."""
        current: SearchServices | None = getattr(app.state, "services", None)
        if current is not None:
            current.caches.export_metrics()
        try:
            return get_metrics()
        except Exception:  # pragma: no cover
            logger.exception("metrics_export_failed")
            raise HTTPException(status_code=503, detail="metrics unavailable")

    if settings.DEBUG and settings.DEV_ROUTES_ENABLED:

        @app.post("/dev/cache/clear")
        def dev_clear_caches():
            app.state.services.caches.clear_all()
            return {"ok": True, "cleared": True}

        @app.get("/dev/cache/stats")
        def dev_cache_stats():
            current: SearchServices = app.state.services
            return {
                "caches": current.caches.stats(),
                "dedup": current.dedup.stats(),
                "admission": current.gate.stats(),
            }

    return app


app = create_app()
