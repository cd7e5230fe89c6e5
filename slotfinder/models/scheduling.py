from datetime import datetime, time
from enum import Enum

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    SPECIFIC_DATES = "specific_dates"
    DAYS_OF_WEEK = "days_of_week"


class ScheduleBounds(BaseModel):
    """Earliest and latest selectable slot, plus the selectable days.

    ``days`` holds ISO dates for ``specific_dates`` events and weekday
    numbers (Monday is ``0``) for ``days_of_week`` events.
    """

    earliest: time
    latest: time
    days: list[str]


class TimeRange(BaseModel):
    start: datetime
    end: datetime


class Event(BaseModel):
    id: str
    name: str
    timezone: str
    bounds: ScheduleBounds
    kind: EventKind
    created_at: datetime


class Person(BaseModel):
    event_id: str
    name: str
    availability: list[TimeRange] = Field(default_factory=list)
    password_hash: str | None = None
    created_at: datetime


class DeleteResult(BaseModel):
    event_count: int = 0
    person_count: int = 0


class Stats(BaseModel):
    event_count: int = 0
    person_count: int = 0


class PersonResponse(BaseModel):
    name: str
    availability: list[TimeRange]
    created_at: datetime

    @classmethod
    def from_person(cls, person: Person) -> "PersonResponse":
        return cls(name=person.name, availability=person.availability, created_at=person.created_at)


class PeopleResponse(BaseModel):
    people: list[PersonResponse]


class StatsResponse(Stats):
    version: str
