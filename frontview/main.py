"""FastAPI application entrypoint.
Configures CORS, builds the analytics state in the lifespan and includes routers.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import get_settings
from .state import AnalyticsState, build_state
from .routers import analytics as analytics_router
from .routers import cache as cache_router
from .routers import tables as tables_router


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def create_app(analytics: Optional[AnalyticsState] = None) -> FastAPI:
    """Build the application.

    Args:
        analytics: Pre-built state (tests, scripts). When omitted the
            lifespan builds one from settings and closes it on shutdown.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = analytics is None
        app.state.analytics = analytics or build_state(settings)
        logger.info("[STARTUP] Analytics state ready")
        if not await app.state.analytics.store.ping():
            # Don't raise - cache failures are soft, queries still run
            logger.warning(f"[STARTUP] Redis unreachable at {settings.REDIS_URL}, serving without cache hits")
        try:
            yield
        finally:
            if owned:
                await app.state.analytics.close()

    app = FastAPI(
        title="frontview analytics API",
        description="""
        Cached aggregate queries for the exposure dashboard.

        This API provides endpoints for:
        - Stat cards and grouped breakdowns with period comparison
        - Historical and future (maturity) time series
        - Raw table browsing, distinct values and column listing
        - Query cache administration
        """,
        version="1.0.0",
        lifespan=lifespan,
    )
    if analytics is not None:
        app.state.analytics = analytics

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    app.include_router(analytics_router.router)
    app.include_router(tables_router.router)
    app.include_router(cache_router.router)

    return app


app = create_app()
