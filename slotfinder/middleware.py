"""Debug request tracing, enabled by REQUEST_DEBUG.

Each request is logged with the client identity the rate limiter would use
and whether the storage lock was already held when it arrived, which is the
usual cause of slow responses in a single-adaptor process.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from slotfinder.ratelimit import KeyExtractor

logger = logging.getLogger("slotfinder.http")


class RequestTraceMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, key_extractor: KeyExtractor):
        super().__init__(app)
        self._key_extractor = key_extractor

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        client = self._key_extractor.extract(request) or "-"
        shared = getattr(request.app.state, "shared", None)
        contended = bool(shared and shared.locked)
        logger.debug(
            "request start method=%s path=%s client=%s storage_busy=%s",
            request.method,
            request.url.path,
            client,
            contended,
        )
        try:
            response = await call_next(request)
        except Exception as e:
            logger.warning(
                "request failed method=%s path=%s client=%s dur_ms=%d err=%r",
                request.method,
                request.url.path,
                client,
                (time.monotonic() - start) * 1000,
                e,
            )
            raise
        logger.debug(
            "request end method=%s path=%s client=%s status=%d dur_ms=%d",
            request.method,
            request.url.path,
            client,
            response.status_code,
            (time.monotonic() - start) * 1000,
        )
        return response
