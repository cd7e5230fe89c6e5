"""PostgreSQL adaptor backed by a psycopg connection pool."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

import psycopg
from psycopg import errors as pg_errors
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from slotfinder.adaptors.base import (
    EVENT_ID_ATTEMPTS,
    Adaptor,
    check_password,
    generate_event_id,
    new_password_hash,
)
from slotfinder.adaptors.errors import Backend, Conflict, NotFound
from slotfinder.config import PostgresSettings
from slotfinder.models.scheduling import (
    DeleteResult,
    Event,
    EventKind,
    Person,
    ScheduleBounds,
    Stats,
    TimeRange,
)

logger = logging.getLogger("slotfinder.adaptors.sql")

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    timezone TEXT NOT NULL,
    kind TEXT NOT NULL,
    earliest TIME NOT NULL,
    latest TIME NOT NULL,
    days JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_created_at ON events (created_at);
CREATE TABLE IF NOT EXISTS people (
    id BIGSERIAL PRIMARY KEY,
    event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    password_hash TEXT,
    availability JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    UNIQUE (event_id, name)
);
CREATE TABLE IF NOT EXISTS stats (
    id SMALLINT PRIMARY KEY CHECK (id = 1),
    event_count BIGINT NOT NULL DEFAULT 0,
    person_count BIGINT NOT NULL DEFAULT 0
);
INSERT INTO stats (id) VALUES (1) ON CONFLICT DO NOTHING;
"""

_EVENT_COLUMNS = "id, name, timezone, kind, earliest, latest, days, created_at"
_PERSON_COLUMNS = "name, availability, password_hash, created_at"


def _row_to_event(row: tuple[Any, ...]) -> Event:
    return Event(
        id=row[0],
        name=row[1],
        timezone=row[2],
        kind=EventKind(row[3]),
        bounds=ScheduleBounds(earliest=row[4], latest=row[5], days=row[6]),
        created_at=row[7].astimezone(UTC),
    )


def _row_to_person(event_id: str, row: tuple[Any, ...]) -> Person:
    return Person(
        event_id=event_id,
        name=row[0],
        availability=[TimeRange.model_validate(r) for r in row[1]],
        password_hash=row[2],
        created_at=row[3].astimezone(UTC),
    )


def _availability_json(availability: list[TimeRange]) -> Jsonb:
    return Jsonb([r.model_dump(mode="json") for r in availability])


class SqlAdaptor(Adaptor):
    """Adaptor storing events and people in PostgreSQL.

    Transient connection failures are retried by re-acquiring a pooled
    connection up to ``retries`` times before surfacing ``Backend``.
    """

    def __init__(self, pool: AsyncConnectionPool, *, retries: int = 1) -> None:
        self._pool = pool
        self._retries = max(0, retries)

    @classmethod
    async def open(cls, settings: PostgresSettings, *, retries: int = 1) -> "SqlAdaptor":
        pool = AsyncConnectionPool(
            settings.get_dsn(),
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            timeout=settings.pool_timeout,
            max_lifetime=settings.pool_max_lifetime,
            max_idle=settings.pool_max_idle,
            reconnect_timeout=settings.pool_reconnect_timeout,
            check=AsyncConnectionPool.check_connection,
            kwargs={"autocommit": True},
            open=False,
        )
        try:
            await pool.open()
        except psycopg.Error as e:
            raise Backend(f"Failed to open database pool: {e}") from e
        logger.info(
            "Database connection pool initialized (min=%d, max=%d, timeout=%ss)",
            settings.pool_min_size,
            settings.pool_max_size,
            settings.pool_timeout,
        )
        adaptor = cls(pool, retries=retries)
        try:
            await adaptor.ensure_schema()
        except Exception:
            await pool.close()
            raise
        return adaptor

    async def close(self) -> None:
        await self._pool.close()
        logger.info("Database connection pool closed")

    async def _run(self, op: Callable[[psycopg.AsyncConnection], Awaitable[T]]) -> T:
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                async with self._pool.connection() as conn:
                    return await op(conn)
            except pg_errors.UniqueViolation as e:
                raise Conflict(str(e)) from e
            except psycopg.OperationalError as e:
                if attempt == attempts:
                    raise Backend(f"Database unavailable: {e}") from e
                logger.warning(
                    "Database operation failed (attempt %d/%d), re-acquiring connection: %s",
                    attempt,
                    attempts,
                    e,
                )
            except psycopg.Error as e:
                raise Backend(str(e)) from e
        raise Backend("Database unavailable")

    async def ensure_schema(self) -> None:
        async def op(conn):
            await conn.execute(SCHEMA)

        await self._run(op)

    async def create_event(
        self,
        name: str,
        timezone: str,
        bounds: ScheduleBounds,
        kind: EventKind,
    ) -> str:
        now = datetime.now(UTC)

        async def op(conn):
            for _ in range(EVENT_ID_ATTEMPTS):
                event_id = generate_event_id()
                try:
                    async with conn.transaction():
                        await conn.execute(
                            f"""INSERT INTO events ({_EVENT_COLUMNS})
                               VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
                            (
                                event_id,
                                name,
                                timezone,
                                kind.value,
                                bounds.earliest,
                                bounds.latest,
                                Jsonb(bounds.days),
                                now,
                            ),
                        )
                        await conn.execute("UPDATE stats SET event_count = event_count + 1 WHERE id = 1")
                    return event_id
                except pg_errors.UniqueViolation:
                    continue
            raise Conflict("Failed to generate unique event ID")

        return await self._run(op)

    async def get_event(self, event_id: str) -> Event:
        async def op(conn):
            cur = await conn.execute(f"SELECT {_EVENT_COLUMNS} FROM events WHERE id = %s", (event_id,))
            row = await cur.fetchone()
            if not row:
                raise NotFound(f"Event {event_id} not found")
            return _row_to_event(row)

        return await self._run(op)

    async def get_people(self, event_id: str) -> list[Person]:
        async def op(conn):
            cur = await conn.execute("SELECT 1 FROM events WHERE id = %s", (event_id,))
            if not await cur.fetchone():
                raise NotFound(f"Event {event_id} not found")
            cur = await conn.execute(
                f"SELECT {_PERSON_COLUMNS} FROM people WHERE event_id = %s ORDER BY created_at, id",
                (event_id,),
            )
            return [_row_to_person(event_id, row) async for row in cur]

        return await self._run(op)

    async def get_person(self, event_id: str, name: str) -> Person:
        async def op(conn):
            cur = await conn.execute(
                f"SELECT {_PERSON_COLUMNS} FROM people WHERE event_id = %s AND name = %s",
                (event_id, name),
            )
            row = await cur.fetchone()
            if not row:
                raise NotFound(f"Person {name} not found in event {event_id}")
            return _row_to_person(event_id, row)

        return await self._run(op)

    async def update_person(
        self,
        event_id: str,
        name: str,
        availability: list[TimeRange],
        password: str | None = None,
    ) -> Person:
        async def op(conn):
            async with conn.transaction():
                cur = await conn.execute("SELECT 1 FROM events WHERE id = %s", (event_id,))
                if not await cur.fetchone():
                    raise NotFound(f"Event {event_id} not found")
                cur = await conn.execute(
                    f"SELECT {_PERSON_COLUMNS} FROM people WHERE event_id = %s AND name = %s FOR UPDATE",
                    (event_id, name),
                )
                row = await cur.fetchone()
                existing = _row_to_person(event_id, row) if row else None
                await check_password(existing, password)

                if existing is None:
                    person = Person(
                        event_id=event_id,
                        name=name,
                        availability=list(availability),
                        password_hash=await new_password_hash(password),
                        created_at=datetime.now(UTC),
                    )
                    await conn.execute(
                        """INSERT INTO people (event_id, name, password_hash, availability, created_at)
                           VALUES (%s, %s, %s, %s, %s)""",
                        (
                            event_id,
                            name,
                            person.password_hash,
                            _availability_json(person.availability),
                            person.created_at,
                        ),
                    )
                    await conn.execute("UPDATE stats SET person_count = person_count + 1 WHERE id = 1")
                    return person

                await conn.execute(
                    "UPDATE people SET availability = %s WHERE event_id = %s AND name = %s",
                    (_availability_json(availability), event_id, name),
                )
                return existing.model_copy(update={"availability": list(availability)})

        return await self._run(op)

    async def delete_events(self, older_than: datetime) -> DeleteResult:
        async def op(conn):
            async with conn.transaction():
                cur = await conn.execute(
                    "DELETE FROM people WHERE event_id IN (SELECT id FROM events WHERE created_at < %s)",
                    (older_than,),
                )
                person_count = max(cur.rowcount, 0)
                cur = await conn.execute("DELETE FROM events WHERE created_at < %s", (older_than,))
                event_count = max(cur.rowcount, 0)
            return DeleteResult(event_count=event_count, person_count=person_count)

        return await self._run(op)

    async def get_stats(self) -> Stats:
        async def op(conn):
            cur = await conn.execute("SELECT event_count, person_count FROM stats WHERE id = 1")
            row = await cur.fetchone()
            if not row:
                return Stats()
            return Stats(event_count=row[0], person_count=row[1])

        return await self._run(op)
