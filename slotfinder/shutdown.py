"""Termination signal fan-out.

Turns the first SIGINT, SIGTERM, SIGHUP or SIGQUIT into a single event that
any number of tasks can await, before or after it fires.

Usage:
    shutdown = ShutdownSignal()
    shutdown.install()
    ...
    await shutdown.wait()
"""

import asyncio
import logging
import signal

logger = logging.getLogger("slotfinder.shutdown")

SHUTDOWN_SIGNALS: tuple[signal.Signals, ...] = (
    signal.SIGINT,
    signal.SIGTERM,
    signal.SIGHUP,
    signal.SIGQUIT,
)


class SignalSetupError(RuntimeError):
    """Raised when a termination handler cannot be installed."""


class ShutdownSignal:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed: list[signal.Signals] = []
        self.received: signal.Signals | None = None

    def install(
        self,
        signals: tuple[signal.Signals, ...] = SHUTDOWN_SIGNALS,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Register handlers on the running loop.

        Raises:
            SignalSetupError: If any handler cannot be registered. Handlers
                installed before the failure are removed again.
        """
        self._loop = loop or asyncio.get_running_loop()
        for sig in signals:
            try:
                self._loop.add_signal_handler(sig, self._handle, sig)
            except (NotImplementedError, RuntimeError, ValueError, OSError) as e:
                self.uninstall()
                raise SignalSetupError(f"Failed to attach handler for {sig.name}: {e}") from e
            self._installed.append(sig)
        logger.debug("Shutdown handlers installed for %s", ", ".join(s.name for s in self._installed))

    def uninstall(self) -> None:
        if self._loop is None:
            return
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed.clear()

    def _handle(self, sig: signal.Signals) -> None:
        if self._event.is_set():
            logger.info("Received %s, shutdown already in progress", sig.name)
            return
        logger.info("Received %s, shutting down", sig.name)
        self.received = sig
        self._event.set()

    def trigger(self) -> None:
        """Fire the shutdown event without an OS signal."""
        if not self._event.is_set():
            logger.info("Shutdown requested")
            self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
