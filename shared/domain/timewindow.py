"""
Time Window Algebra

Pure functions over weekday sets and half-open time-of-day intervals.
A section meeting ending at 10:00 and one starting at 10:00 do not overlap.
"""

from collections.abc import Iterable
from datetime import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Weekday(str, Enum):
    """Day-of-week tag used in section schedules."""

    MONDAY = "MON"
    TUESDAY = "TUE"
    WEDNESDAY = "WED"
    THURSDAY = "THU"
    FRIDAY = "FRI"
    SATURDAY = "SAT"
    SUNDAY = "SUN"

    @classmethod
    def parse(cls, value: Any) -> "Weekday":
        """Accept 'MON', 'MONDAY' or 'Monday' spellings."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        for day in cls:
            if text in (day.value, day.name):
                return day
        raise ValueError(f"Invalid day: {value}")


class TimeWindow(BaseModel):
    """Weekly recurring meeting window: a set of days plus [start, end)."""

    model_config = ConfigDict(frozen=True)

    days: frozenset[Weekday] = Field(..., min_length=1)
    start_time: time
    end_time: time

    @field_validator("days", mode="before")
    @classmethod
    def parse_days(cls, v: Any) -> frozenset[Weekday]:
        if isinstance(v, (str, Weekday)):
            v = [v]
        return frozenset(Weekday.parse(day) for day in v)

    @model_validator(mode="after")
    def check_interval(self) -> "TimeWindow":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    def overlaps(self, other: "TimeWindow") -> bool:
        return conflicts(self, other)


def days_overlap(days_a: Iterable[Weekday], days_b: Iterable[Weekday]) -> bool:
    """Return True when the two day sets share at least one day."""
    return not set(days_a).isdisjoint(days_b)


def times_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open interval overlap: ``start_a < end_b and start_b < end_a``."""
    return start_a < end_b and start_b < end_a


def conflicts(window_a: TimeWindow, window_b: TimeWindow) -> bool:
    """Two windows conflict when they share a day and their times overlap."""
    return days_overlap(window_a.days, window_b.days) and times_overlap(
        window_a.start_time, window_a.end_time, window_b.start_time, window_b.end_time
    )
