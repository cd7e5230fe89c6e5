import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from slotfinder import __version__
from slotfinder.config import Settings
from slotfinder.controllers.events import router as events_router
from slotfinder.controllers.health import router as health_router
from slotfinder.controllers.stats import router as stats_router
from slotfinder.controllers.tasks import router as tasks_router
from slotfinder.errors import register_exception_handlers
from slotfinder.middleware import RequestTraceMiddleware
from slotfinder.ratelimit import (
    KeyExtractor,
    RateLimiter,
    RateLimitMiddleware,
    build_rate_limiter,
    select_key_extractor,
)
from slotfinder.state import SharedState


def create_app(
    shared: SharedState,
    settings: Settings,
    *,
    limiter: RateLimiter | None = None,
    key_extractor: KeyExtractor | None = None,
) -> FastAPI:
    """Build the HTTP app around an already constructed shared state."""
    app = FastAPI(title="Slotfinder API", version=__version__)
    app.state.shared = shared
    app.state.settings = settings
    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.server.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["Authorization", "Accept", "Content-Type"],
    )

    if (settings.rate_limit.enabled or settings.debug.request) and key_extractor is None:
        key_extractor = select_key_extractor(settings.server)

    if settings.rate_limit.enabled:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=limiter or build_rate_limiter(settings.rate_limit),
            key_extractor=key_extractor,
        )

    if settings.debug.request:
        logging.getLogger("slotfinder.http").setLevel(logging.DEBUG)
        app.add_middleware(RequestTraceMiddleware, key_extractor=key_extractor)

    app.include_router(health_router)
    app.include_router(stats_router)
    app.include_router(events_router)
    app.include_router(tasks_router)
    return app
