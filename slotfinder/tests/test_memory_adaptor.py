"""Tests for the in-memory storage adaptor."""

import asyncio
import time
from datetime import timedelta
from unittest.mock import patch

import pytest

from slotfinder.adaptors.errors import Conflict, NotFound, Unauthorized
from slotfinder.adaptors.memory import MemoryAdaptor
from slotfinder.models.scheduling import EventKind
from slotfinder.tests.factories import slot, team_sync_bounds


class TestEvents:

    @pytest.mark.asyncio
    async def test_created_event_is_fetched_unchanged(self, adaptor, clock):
        bounds = team_sync_bounds()
        event_id = await adaptor.create_event("Team Sync", "Europe/Berlin", bounds, EventKind.SPECIFIC_DATES)

        event = await adaptor.get_event(event_id)

        assert event.id == event_id
        assert event.name == "Team Sync"
        assert event.timezone == "Europe/Berlin"
        assert event.bounds == bounds
        assert event.kind == EventKind.SPECIFIC_DATES
        assert event.created_at == clock.now

    @pytest.mark.asyncio
    async def test_event_ids_are_unique(self, adaptor):
        ids = {
            await adaptor.create_event(f"e{i}", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
            for i in range(50)
        }
        assert len(ids) == 50

    @pytest.mark.asyncio
    async def test_missing_event_raises_not_found(self, adaptor):
        with pytest.raises(NotFound):
            await adaptor.get_event("nope")

    @pytest.mark.asyncio
    async def test_id_collisions_exhausted_raise_conflict(self, clock):
        adaptor = MemoryAdaptor(clock=clock, id_factory=lambda: "same")
        await adaptor.create_event("a", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)

        with pytest.raises(Conflict):
            await adaptor.create_event("b", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)

    @pytest.mark.asyncio
    async def test_returned_event_is_a_copy(self, adaptor):
        event_id = await adaptor.create_event("a", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        event = await adaptor.get_event(event_id)
        event.bounds.days.append("2030-01-01")

        again = await adaptor.get_event(event_id)
        assert "2030-01-01" not in again.bounds.days


class TestPeople:

    @pytest.mark.asyncio
    async def test_team_sync_scenario(self, adaptor):
        event_id = await adaptor.create_event("Team Sync", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        slots = [slot(2, 9, 11), slot(3, 14, 16)]

        await adaptor.update_person(event_id, "Alice", slots)
        people = await adaptor.get_people(event_id)

        assert [p.name for p in people] == ["Alice"]
        assert people[0].availability == slots

    @pytest.mark.asyncio
    async def test_people_keep_creation_order(self, adaptor):
        event_id = await adaptor.create_event("e", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        for name in ["Carol", "Alice", "Bob"]:
            await adaptor.update_person(event_id, name, [])
        await adaptor.update_person(event_id, "Alice", [slot(2, 9, 10)])

        first = [p.name for p in await adaptor.get_people(event_id)]
        second = [p.name for p in await adaptor.get_people(event_id)]

        assert first == ["Carol", "Alice", "Bob"]
        assert first == second

    @pytest.mark.asyncio
    async def test_update_overwrites_availability(self, adaptor):
        event_id = await adaptor.create_event("e", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        await adaptor.update_person(event_id, "Alice", [slot(2, 9, 10)])
        await adaptor.update_person(event_id, "Alice", [slot(3, 12, 13)])

        person = await adaptor.get_person(event_id, "Alice")
        assert person.availability == [slot(3, 12, 13)]

    @pytest.mark.asyncio
    async def test_names_are_case_sensitive(self, adaptor):
        event_id = await adaptor.create_event("e", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        await adaptor.update_person(event_id, "alice", [])
        await adaptor.update_person(event_id, "Alice", [])

        assert len(await adaptor.get_people(event_id)) == 2

    @pytest.mark.asyncio
    async def test_update_person_on_missing_event(self, adaptor):
        with pytest.raises(NotFound):
            await adaptor.update_person("missing", "Alice", [])

    @pytest.mark.asyncio
    async def test_get_missing_person(self, adaptor):
        event_id = await adaptor.create_event("e", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        with pytest.raises(NotFound):
            await adaptor.get_person(event_id, "Nobody")

    @pytest.mark.asyncio
    async def test_get_people_on_missing_event(self, adaptor):
        with pytest.raises(NotFound):
            await adaptor.get_people("missing")


class TestPasswords:

    @pytest.mark.asyncio
    async def test_unprotected_person_accepts_any_caller(self, adaptor):
        event_id = await adaptor.create_event("e", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        await adaptor.update_person(event_id, "Alice", [slot(2, 9, 10)])

        await adaptor.update_person(event_id, "Alice", [slot(2, 10, 11)])
        await adaptor.update_person(event_id, "Alice", [slot(2, 11, 12)], password="anything")

        person = await adaptor.get_person(event_id, "Alice")
        assert person.availability == [slot(2, 11, 12)]
        assert person.password_hash is None

    @pytest.mark.asyncio
    async def test_wrong_password_is_rejected_and_state_kept(self, adaptor):
        event_id = await adaptor.create_event("e", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        await adaptor.update_person(event_id, "Alice", [slot(2, 9, 10)], password="hunter2")

        with pytest.raises(Unauthorized):
            await adaptor.update_person(event_id, "Alice", [slot(3, 9, 10)], password="wrong")
        with pytest.raises(Unauthorized):
            await adaptor.update_person(event_id, "Alice", [slot(3, 9, 10)])

        person = await adaptor.get_person(event_id, "Alice")
        assert person.availability == [slot(2, 9, 10)]

    @pytest.mark.asyncio
    async def test_correct_password_allows_update(self, adaptor):
        event_id = await adaptor.create_event("e", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        await adaptor.update_person(event_id, "Alice", [slot(2, 9, 10)], password="hunter2")

        await adaptor.update_person(event_id, "Alice", [slot(3, 9, 10)], password="hunter2")

        person = await adaptor.get_person(event_id, "Alice")
        assert person.availability == [slot(3, 9, 10)]
        assert person.password_hash and "hunter2" not in person.password_hash

    @pytest.mark.asyncio
    async def test_hashing_leaves_event_loop_running(self, adaptor):
        event_id = await adaptor.create_event("e", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.005)
                ticks += 1

        def slow_hash(password):
            time.sleep(0.2)
            return "pbkdf2_sha256$1$00$00"

        task = asyncio.create_task(ticker())
        try:
            with patch("slotfinder.adaptors.base.hash_password", slow_hash):
                await adaptor.update_person(event_id, "Alice", [], password="secret")
        finally:
            task.cancel()

        assert ticks >= 10

    @pytest.mark.asyncio
    async def test_racing_first_writes_keep_one_person(self, adaptor):
        event_id = await adaptor.create_event("e", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)

        def slow_hash(password):
            time.sleep(0.05)
            return f"pbkdf2_sha256$1$00${password}"

        with patch("slotfinder.adaptors.base.hash_password", slow_hash):
            results = await asyncio.gather(
                adaptor.update_person(event_id, "Alice", [slot(2, 9, 10)], password="one"),
                adaptor.update_person(event_id, "Alice", [slot(3, 9, 10)], password="two"),
                return_exceptions=True,
            )

        assert sum(isinstance(r, Conflict) for r in results) == 1
        assert len(await adaptor.get_people(event_id)) == 1
        assert (await adaptor.get_stats()).person_count == 1


class TestDeleteEvents:

    @pytest.mark.asyncio
    async def test_cutoff_is_strict(self, adaptor, clock):
        old_id = await adaptor.create_event("old", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        await adaptor.update_person(old_id, "Alice", [])
        await adaptor.update_person(old_id, "Bob", [])
        clock.advance(seconds=1)
        boundary_id = await adaptor.create_event("boundary", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        cutoff = clock.now
        clock.advance(days=1)
        new_id = await adaptor.create_event("new", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)

        result = await adaptor.delete_events(cutoff)

        assert (result.event_count, result.person_count) == (1, 2)
        with pytest.raises(NotFound):
            await adaptor.get_event(old_id)
        with pytest.raises(NotFound):
            await adaptor.get_people(old_id)
        assert (await adaptor.get_event(boundary_id)).name == "boundary"
        assert (await adaptor.get_event(new_id)).name == "new"

    @pytest.mark.asyncio
    async def test_second_pass_deletes_nothing(self, adaptor, clock):
        await adaptor.create_event("old", "UTC", team_sync_bounds(), EventKind.SPECIFIC_DATES)
        cutoff = clock.now + timedelta(seconds=1)

        first = await adaptor.delete_events(cutoff)
        second = await adaptor.delete_events(cutoff)

        assert first.event_count == 1
        assert (second.event_count, second.person_count) == (0, 0)


class TestStats:

    @pytest.mark.asyncio
    async def test_counts_everything_ever_created(self, adaptor, clock):
        event_id = await adaptor.create_event("e", "UTC", team_sync_bounds(), EventKind.DAYS_OF_WEEK)
        await adaptor.update_person(event_id, "Alice", [])
        await adaptor.update_person(event_id, "Alice", [slot(2, 9, 10)])
        await adaptor.update_person(event_id, "Bob", [])
        await adaptor.delete_events(clock.now + timedelta(seconds=1))

        stats = await adaptor.get_stats()

        assert (stats.event_count, stats.person_count) == (1, 2)
