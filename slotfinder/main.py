import asyncio
import logging
import sys

from pydantic import ValidationError

from slotfinder.app import create_app
from slotfinder.batch.cleanup import cleanup_worker
from slotfinder.config import Settings, get_settings
from slotfinder.lifespan import cleanup_resources, setup_resources
from slotfinder.shutdown import ShutdownSignal, SignalSetupError
from slotfinder.transport import TransportBindError, bind_listener, parse_listen_address, serve

logger = logging.getLogger("slotfinder")


async def run(settings: Settings | None = None) -> None:
    """Run the service until a termination signal arrives.

    Startup order: adaptor and shared state, signal handlers, listener,
    cleanup worker, then the HTTP server. On shutdown the server stops
    accepting and the process waits for the cleanup worker before
    releasing storage.
    """
    settings = settings or get_settings()
    address = parse_listen_address(settings.server.listen_addr)

    resources = await setup_resources(settings)
    shutdown = ShutdownSignal()
    try:
        shutdown.install()
        app = create_app(resources.shared, settings, limiter=resources.limiter)
        listener = bind_listener(address, settings.server.socket_mode)
        logger.info("Slotfinder API listening at %s", address)

        resources.background_tasks.append(
            asyncio.create_task(cleanup_worker(shutdown, resources.shared, settings.cleanup))
        )
        await serve(app, listener, shutdown)
    finally:
        shutdown.trigger()
        await cleanup_resources(resources)
        shutdown.uninstall()
    logger.info("Shutdown complete")


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    )
    try:
        asyncio.run(run())
    except (SignalSetupError, TransportBindError) as e:
        logger.critical("Fatal startup error: %s", e)
        return 1
    except (ValidationError, ValueError) as e:
        logger.critical("Invalid configuration: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
