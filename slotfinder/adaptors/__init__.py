"""Storage adaptors and the runtime factory that picks one."""

import logging

from slotfinder.adaptors.base import Adaptor
from slotfinder.adaptors.errors import AdaptorError, Backend, Conflict, NotFound, Unauthorized
from slotfinder.adaptors.memory import MemoryAdaptor
from slotfinder.config import Settings

logger = logging.getLogger("slotfinder.adaptors")


async def create_adaptor(settings: Settings) -> Adaptor:
    """Construct the adaptor named by ``STORAGE_BACKEND``."""
    backend = settings.storage.backend
    if backend == "sql":
        # psycopg is only needed when the SQL backend is selected
        from slotfinder.adaptors.sql import SqlAdaptor

        adaptor: Adaptor = await SqlAdaptor.open(settings.postgres, retries=settings.storage.retries)
    else:
        adaptor = MemoryAdaptor()
    logger.info("Using %s storage adaptor", backend)
    return adaptor


__all__ = [
    "Adaptor",
    "AdaptorError",
    "Backend",
    "Conflict",
    "MemoryAdaptor",
    "NotFound",
    "Unauthorized",
    "create_adaptor",
]
