import hmac
import logging

from fastapi import APIRouter, Header

from slotfinder.batch.cleanup import run_cleanup
from slotfinder.dependencies import AppSettings, Shared
from slotfinder.errors import UnauthorizedError
from slotfinder.models.scheduling import DeleteResult

logger = logging.getLogger("slotfinder.tasks")
router = APIRouter()


def _validate_cron_key(x_cron_key: str | None, expected: str) -> None:
    """Check the shared secret when one is configured."""
    if not expected:
        return
    if not x_cron_key or not hmac.compare_digest(x_cron_key, expected):
        logger.warning("Rejected cleanup request with missing or incorrect cron key")
        raise UnauthorizedError(detail="Missing or incorrect X-Cron-Key header")


@router.get("/tasks/cleanup", response_model=DeleteResult)
async def cleanup(
    shared: Shared,
    settings: AppSettings,
    x_cron_key: str | None = Header(None, alias="X-Cron-Key"),
) -> DeleteResult:
    """Delete events older than the configured retention window."""
    _validate_cron_key(x_cron_key, settings.server.cron_key)
    return await run_cleanup(shared, settings.cleanup.retention_days)
