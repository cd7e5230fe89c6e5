import re
import logging
from datetime import time
from typing import Optional, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter
from pydantic import BaseModel, field_validator, model_validator

from slotfinder.dependencies import Shared
from slotfinder.errors import BadRequestError
from slotfinder.models.scheduling import (
    Event,
    EventKind,
    PeopleResponse,
    PersonResponse,
    ScheduleBounds,
    TimeRange,
)

logger = logging.getLogger("slotfinder.events")
router = APIRouter()

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
WEEKDAY_RE = re.compile(r"^[0-6]$")
MAX_NAME_LENGTH = 100


class CreateEventRequest(BaseModel):
    name: str
    timezone: str
    kind: EventKind = EventKind.SPECIFIC_DATES
    earliest: time
    latest: time
    days: List[str]

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v or len(v) > 200:
            raise ValueError("name must be 1-200 characters")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone: {v}")
        return v

    @model_validator(mode="after")
    def validate_schedule(self) -> "CreateEventRequest":
        if self.earliest >= self.latest:
            raise ValueError("earliest must be before latest")
        if not self.days:
            raise ValueError("days must not be empty")
        pattern = DATE_RE if self.kind == EventKind.SPECIFIC_DATES else WEEKDAY_RE
        for d in self.days:
            if not pattern.match(d):
                raise ValueError(f"invalid day for {self.kind.value} event: {d}")
        # drop duplicates, keep the submitted order
        self.days = list(dict.fromkeys(self.days))
        return self


class UpdatePersonRequest(BaseModel):
    availability: List[TimeRange]
    password: Optional[str] = None

    @field_validator("availability")
    @classmethod
    def validate_availability(cls, v: List[TimeRange]) -> List[TimeRange]:
        for r in v:
            if r.end <= r.start:
                raise ValueError(f"slot ends before it starts: {r.start.isoformat()}")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v) > 200:
            raise ValueError("password must be at most 200 characters")
        return v or None


def _clean_person_name(name: str) -> str:
    name = name.strip()
    if not name or len(name) > MAX_NAME_LENGTH:
        raise BadRequestError(detail=f"Person name must be 1-{MAX_NAME_LENGTH} characters")
    return name


@router.post("/event", status_code=201, response_model=Event)
async def create_event(req: CreateEventRequest, shared: Shared) -> Event:
    logger.info("POST /event name=%s kind=%s days=%d", req.name, req.kind.value, len(req.days))
    bounds = ScheduleBounds(earliest=req.earliest, latest=req.latest, days=req.days)
    async with shared.session() as adaptor:
        event_id = await adaptor.create_event(req.name, req.timezone, bounds, req.kind)
        event = await adaptor.get_event(event_id)
    logger.info("Created event id=%s", event_id)
    return event


@router.get("/event/{event_id}", response_model=Event)
async def get_event(event_id: str, shared: Shared) -> Event:
    async with shared.session() as adaptor:
        return await adaptor.get_event(event_id)


@router.get("/event/{event_id}/people", response_model=PeopleResponse)
async def get_people(event_id: str, shared: Shared) -> PeopleResponse:
    async with shared.session() as adaptor:
        people = await adaptor.get_people(event_id)
    return PeopleResponse(people=[PersonResponse.from_person(p) for p in people])


@router.get("/event/{event_id}/people/{person_name}", response_model=PersonResponse)
async def get_person(event_id: str, person_name: str, shared: Shared) -> PersonResponse:
    name = _clean_person_name(person_name)
    async with shared.session() as adaptor:
        person = await adaptor.get_person(event_id, name)
    return PersonResponse.from_person(person)


@router.patch("/event/{event_id}/people/{person_name}", response_model=PersonResponse)
async def update_person(
    event_id: str,
    person_name: str,
    req: UpdatePersonRequest,
    shared: Shared,
) -> PersonResponse:
    name = _clean_person_name(person_name)
    logger.info("PATCH /event/%s/people/%s slots=%d", event_id, name, len(req.availability))
    async with shared.session() as adaptor:
        person = await adaptor.update_person(event_id, name, req.availability, req.password)
    return PersonResponse.from_person(person)
