"""Storage adaptor interface.

The service depends on this abstraction, never on a concrete backend, so the
in-memory and SQL implementations can be swapped from configuration.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import secrets
import string
from abc import ABC, abstractmethod
from datetime import datetime

from slotfinder.adaptors.errors import Unauthorized
from slotfinder.models.scheduling import (
    DeleteResult,
    Event,
    EventKind,
    Person,
    ScheduleBounds,
    Stats,
    TimeRange,
)

EVENT_ID_ATTEMPTS = 10
_PBKDF2_ITERATIONS = 200_000


def generate_event_id(length: int = 10) -> str:
    chars = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(chars) for _ in range(length))


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt), _PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${_PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        _, iterations, salt, expected = password_hash.split("$")
        digest = hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt), int(iterations))
    except ValueError:
        return False
    return hmac.compare_digest(digest.hex(), expected)


async def new_password_hash(password: str | None) -> str | None:
    """Hash ``password`` in a worker thread, or return None if it is unset."""
    if not password:
        return None
    return await asyncio.to_thread(hash_password, password)


async def check_password(existing: Person | None, password: str | None) -> None:
    """Raise Unauthorized unless ``password`` unlocks ``existing``.

    People without a stored hash accept any caller. The key derivation runs
    in a worker thread so the event loop keeps serving while it is computed.
    """
    if existing is None or not existing.password_hash:
        return
    if not password or not await asyncio.to_thread(verify_password, password, existing.password_hash):
        raise Unauthorized(f"Password does not match for {existing.name!r}")


class Adaptor(ABC):
    """Capability interface over all durable state.

    All methods may raise a subclass of ``AdaptorError``. Implementations
    own any retry policy; callers never retry.
    """

    @abstractmethod
    async def create_event(
        self,
        name: str,
        timezone: str,
        bounds: ScheduleBounds,
        kind: EventKind,
    ) -> str:
        """Persist a new event and return its id."""
        raise NotImplementedError

    @abstractmethod
    async def get_event(self, event_id: str) -> Event:
        raise NotImplementedError

    @abstractmethod
    async def get_people(self, event_id: str) -> list[Person]:
        """Return the event's people in creation order."""
        raise NotImplementedError

    @abstractmethod
    async def get_person(self, event_id: str, name: str) -> Person:
        raise NotImplementedError

    @abstractmethod
    async def update_person(
        self,
        event_id: str,
        name: str,
        availability: list[TimeRange],
        password: str | None = None,
    ) -> Person:
        """Create the person or overwrite their availability.

        Raises:
            NotFound: If the event does not exist.
            Unauthorized: If a password is stored and ``password`` does not
                match it. Stored state is left untouched.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete_events(self, older_than: datetime) -> DeleteResult:
        """Delete events created strictly before ``older_than`` with their people."""
        raise NotImplementedError

    @abstractmethod
    async def get_stats(self) -> Stats:
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources. Called once at process exit."""
        return None
