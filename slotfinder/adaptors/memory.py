"""In-memory adaptor.

State lives in plain dicts for the life of the process. Password hashing is
the only await inside an operation; ``update_person`` checks its snapshot is
still current afterwards and reports a lost race as ``Conflict``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from slotfinder.adaptors.base import (
    EVENT_ID_ATTEMPTS,
    Adaptor,
    check_password,
    generate_event_id,
    new_password_hash,
)
from slotfinder.adaptors.errors import Conflict, NotFound
from slotfinder.models.scheduling import (
    DeleteResult,
    Event,
    EventKind,
    Person,
    ScheduleBounds,
    Stats,
    TimeRange,
)

logger = logging.getLogger("slotfinder.adaptors.memory")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MemoryAdaptor(Adaptor):
    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = generate_event_id,
    ) -> None:
        self._clock = clock
        self._id_factory = id_factory
        self._events: dict[str, Event] = {}
        # dicts keep insertion order, which is the people ordering
        self._people: dict[str, dict[str, Person]] = {}
        self._stats = Stats()

    async def create_event(
        self,
        name: str,
        timezone: str,
        bounds: ScheduleBounds,
        kind: EventKind,
    ) -> str:
        for _ in range(EVENT_ID_ATTEMPTS):
            event_id = self._id_factory()
            if event_id not in self._events:
                break
        else:
            raise Conflict("Failed to generate unique event ID")

        self._events[event_id] = Event(
            id=event_id,
            name=name,
            timezone=timezone,
            bounds=bounds,
            kind=kind,
            created_at=self._clock(),
        )
        self._people[event_id] = {}
        self._stats.event_count += 1
        logger.debug("Created event id=%s", event_id)
        return event_id

    async def get_event(self, event_id: str) -> Event:
        event = self._events.get(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found")
        return event.model_copy(deep=True)

    async def get_people(self, event_id: str) -> list[Person]:
        people = self._people.get(event_id)
        if people is None:
            raise NotFound(f"Event {event_id} not found")
        return [p.model_copy(deep=True) for p in people.values()]

    async def get_person(self, event_id: str, name: str) -> Person:
        person = self._people.get(event_id, {}).get(name)
        if person is None:
            raise NotFound(f"Person {name} not found in event {event_id}")
        return person.model_copy(deep=True)

    async def update_person(
        self,
        event_id: str,
        name: str,
        availability: list[TimeRange],
        password: str | None = None,
    ) -> Person:
        people = self._people.get(event_id)
        if people is None:
            raise NotFound(f"Event {event_id} not found")

        existing = people.get(name)
        await check_password(existing, password)
        password_hash = await new_password_hash(password) if existing is None else None

        if self._people.get(event_id) is not people or people.get(name) is not existing:
            raise Conflict(f"Person {name} was modified concurrently in event {event_id}")

        if existing is None:
            person = Person(
                event_id=event_id,
                name=name,
                availability=list(availability),
                password_hash=password_hash,
                created_at=self._clock(),
            )
            self._stats.person_count += 1
        else:
            person = existing.model_copy(update={"availability": list(availability)})
        people[name] = person
        return person.model_copy(deep=True)

    async def delete_events(self, older_than: datetime) -> DeleteResult:
        doomed = [eid for eid, event in self._events.items() if event.created_at < older_than]
        result = DeleteResult()
        for event_id in doomed:
            del self._events[event_id]
            result.person_count += len(self._people.pop(event_id, {}))
            result.event_count += 1
        return result

    async def get_stats(self) -> Stats:
        return self._stats.model_copy()
