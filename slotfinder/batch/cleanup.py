"""
Stale event cleanup.

Deletes events (and their people) whose creation time is older than the
configured retention window. Used three ways:

- ``cleanup_worker`` runs in the server process, one pass per interval,
  until shutdown is signalled.
- ``GET /tasks/cleanup`` runs a single pass on demand.
- This module can be run directly for a one-off pass:

Usage:
    python -m slotfinder.batch.cleanup [--retention-days N]

Arguments:
    --retention-days N    Override CLEANUP_RETENTION_DAYS for this run
"""

import argparse
import asyncio
import logging
import sys
from datetime import UTC, datetime, timedelta

from slotfinder.adaptors import create_adaptor
from slotfinder.config import CleanupSettings, get_settings
from slotfinder.models.scheduling import DeleteResult
from slotfinder.shutdown import ShutdownSignal
from slotfinder.state import SharedState

logger = logging.getLogger("slotfinder.cleanup")


def cleanup_cutoff(retention_days: int, now: datetime | None = None) -> datetime:
    return (now or datetime.now(UTC)) - timedelta(days=retention_days)


async def run_cleanup(
    shared: SharedState,
    retention_days: int,
    now: datetime | None = None,
) -> DeleteResult:
    """Run one cleanup pass under the shared-state lock.

    Adaptor errors propagate to the caller.
    """
    cutoff = cleanup_cutoff(retention_days, now)
    logger.info("Running cleanup task (cutoff=%s)", cutoff.isoformat())
    async with shared.session() as adaptor:
        result = await adaptor.delete_events(cutoff)
    logger.info(
        "Cleanup successful: %d events and %d people removed",
        result.event_count,
        result.person_count,
    )
    return result


async def cleanup_worker(
    shutdown: ShutdownSignal,
    shared: SharedState,
    settings: CleanupSettings,
) -> None:
    """Run a cleanup pass every ``interval_sec`` until shutdown.

    Shutdown is checked again after the timer fires, so a signal that lands
    together with the timer skips the pass. Failed passes are logged and the
    next one still runs a full interval later.
    """
    logger.info(
        "Cleanup worker started interval=%ss retention=%dd",
        settings.interval_sec,
        settings.retention_days,
    )
    while not shutdown.is_set():
        try:
            await asyncio.wait_for(shutdown.wait(), timeout=settings.interval_sec)
            break
        except asyncio.TimeoutError:
            pass
        if shutdown.is_set():
            break
        try:
            await run_cleanup(shared, settings.retention_days)
        except Exception:
            logger.exception("Scheduled cleanup failed")
    logger.info("Cleanup worker stopped")


async def _main(retention_days: int | None) -> DeleteResult:
    settings = get_settings()
    days = retention_days if retention_days is not None else settings.cleanup.retention_days
    shared = SharedState(await create_adaptor(settings))
    try:
        return await run_cleanup(shared, days)
    finally:
        await shared.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Delete events older than the retention window")
    parser.add_argument("--retention-days", type=int, default=None)
    args = parser.parse_args(argv)
    if args.retention_days is not None and args.retention_days < 1:
        parser.error("--retention-days must be >= 1")

    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    )
    result = asyncio.run(_main(args.retention_days))
    print(f"Removed {result.event_count} events and {result.person_count} people")
    return 0


if __name__ == "__main__":
    sys.exit(main())
