"""Listener binding and serving.

``LISTEN_ADDR`` is either ``host:port`` or ``unix:/path/to.sock``. Sockets are
bound here rather than by uvicorn so bind failures surface before any
background work starts, and so unix socket permissions can be applied.
"""

import asyncio
import contextlib
import logging
import os
import socket
import stat
from dataclasses import dataclass

import uvicorn

from slotfinder.config import UNIX_PREFIX
from slotfinder.shutdown import ShutdownSignal

logger = logging.getLogger("slotfinder.transport")

DEFAULT_PORT = 3000


class TransportBindError(RuntimeError):
    """Raised when the configured listener cannot be bound."""


@dataclass(frozen=True)
class ListenAddress:
    host: str | None = None
    port: int | None = None
    path: str | None = None

    @property
    def is_unix(self) -> bool:
        return self.path is not None

    def __str__(self) -> str:
        if self.is_unix:
            return f"{UNIX_PREFIX}{self.path}"
        host = f"[{self.host}]" if self.host and ":" in self.host else self.host
        return f"{host}:{self.port}"


def parse_listen_address(value: str) -> ListenAddress:
    value = value.strip()
    if value.startswith(UNIX_PREFIX):
        path = value[len(UNIX_PREFIX):]
        if not path:
            raise ValueError("unix listen address needs a path")
        return ListenAddress(path=path)

    if value.startswith("["):
        host, sep, rest = value[1:].partition("]")
        if not sep:
            raise ValueError(f"invalid listen address: {value!r}")
        port_str = rest[1:] if rest.startswith(":") else ""
    else:
        host, sep, port_str = value.rpartition(":")
        if not sep:
            host, port_str = value, ""
    try:
        port = int(port_str) if port_str else DEFAULT_PORT
    except ValueError:
        raise ValueError(f"invalid port in listen address: {value!r}")
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range in listen address: {value!r}")
    return ListenAddress(host=host or "0.0.0.0", port=port)


def _remove_stale_socket(path: str) -> None:
    try:
        mode = os.stat(path).st_mode
    except FileNotFoundError:
        return
    except OSError as e:
        logger.warning("Could not stat %s: %s", path, e)
        return
    if not stat.S_ISSOCK(mode):
        return
    logger.info("Socket at %s already exists, trying to remove", path)
    try:
        os.remove(path)
    except OSError as e:
        logger.warning(
            "Failed to remove existing socket at %s, binding may fail: %s", path, e
        )


def bind_listener(address: ListenAddress, socket_mode: int | None = None) -> socket.socket:
    """Bind (but do not accept on) the configured listener.

    Raises:
        TransportBindError: If binding or applying the socket mode fails.
    """
    if address.is_unix:
        _remove_stale_socket(address.path)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(address.path)
        except OSError as e:
            sock.close()
            raise TransportBindError(f"Failed to bind to unix socket at {address.path}: {e}") from e
        if socket_mode is not None:
            try:
                os.chmod(address.path, socket_mode)
            except OSError as e:
                sock.close()
                raise TransportBindError(
                    f"Failed to set mode {socket_mode:o} on {address.path}: {e}"
                ) from e
        return sock

    try:
        family = socket.AF_INET6 if ":" in address.host else socket.AF_INET
        return socket.create_server((address.host, address.port), family=family)
    except OSError as e:
        raise TransportBindError(f"Failed to bind to TCP socket at {address}: {e}") from e


class Server(uvicorn.Server):
    """uvicorn server that leaves signal handling to ``ShutdownSignal``."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        return None


async def serve(app, listener: socket.socket, shutdown: ShutdownSignal) -> None:
    """Serve ``app`` on ``listener`` until shutdown fires.

    Once shutdown is observed no new connections are accepted; in-flight
    requests are allowed to finish.
    """
    config = uvicorn.Config(app, log_config=None, lifespan="on")
    server = Server(config)

    async def _stop_on_shutdown() -> None:
        await shutdown.wait()
        logger.info("Stopping listener")
        server.should_exit = True

    watcher = asyncio.create_task(_stop_on_shutdown())
    try:
        await server.serve(sockets=[listener])
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
