"""Slot boundary planning.

Produces the boundaries a generation run should insert. Nothing here touches
storage: working hours come in as plain values and boundaries come out as
UTC-naive datetimes, matching how slots are persisted.

Working hours are local wall-clock intervals per weekday (0 = Monday). Each
day's openings minus its breaks gives the bookable intervals; every interval
is cut into consecutive slots of the requested length and a trailing
remainder shorter than that length is dropped. Slots with an edge inside a
DST gap are not planned, so the boundaries of a day never overlap in UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterator, Mapping
from zoneinfo import ZoneInfo

from ..utils.time import local_to_utc_naive, wall_clock_exists
from .errors import InvalidRange


@dataclass(frozen=True)
class TimeRange:
    start: time
    end: time

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise InvalidRange(f"interval start {self.start} must be earlier than end {self.end}")


@dataclass(frozen=True)
class WorkingDay:
    openings: tuple[TimeRange, ...]
    breaks: tuple[TimeRange, ...] = field(default_factory=tuple)

    def intervals(self) -> list[tuple[int, int]]:
        """Bookable intervals as minute offsets from midnight, breaks removed."""
        segments = _merge(sorted(_minutes(r) for r in self.openings))
        for brk in sorted(_minutes(r) for r in self.breaks):
            segments = [piece for seg in segments for piece in _subtract(seg, brk)]
        return segments


WorkingWeek = Mapping[int, WorkingDay]


@dataclass(frozen=True)
class SlotBoundary:
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class GenerationReport:
    created: int
    skipped: int


def validate_generation_request(
    *,
    slot_duration_minutes: int,
    start_date: date,
    end_date: date,
    today: date,
    min_generation_days: int,
    max_generation_days: int,
    min_slot_duration_minutes: int = 1,
) -> None:
    if slot_duration_minutes <= 0:
        raise InvalidRange("slot duration must be positive")
    if slot_duration_minutes < min_slot_duration_minutes:
        raise InvalidRange(f"slot duration must be at least {min_slot_duration_minutes} minutes")
    if start_date > end_date:
        raise InvalidRange("start date must not be after end date")
    earliest = today + timedelta(days=min_generation_days)
    latest = today + timedelta(days=max_generation_days)
    if start_date < earliest or end_date > latest:
        raise InvalidRange(
            f"range must lie within {earliest.isoformat()} and {latest.isoformat()}"
        )


def iter_days(start_date: date, end_date: date) -> Iterator[date]:
    day = start_date
    while day <= end_date:
        yield day
        day += timedelta(days=1)


def plan_day(
    day: date,
    week: WorkingWeek,
    *,
    slot_duration_minutes: int,
    zone: ZoneInfo,
) -> list[SlotBoundary]:
    working_day = week.get(day.weekday())
    if working_day is None:
        return []

    boundaries: list[SlotBoundary] = []
    for begin, end in working_day.intervals():
        t = begin
        while t + slot_duration_minutes <= end:
            opens, closes = _clock(t), _clock(t + slot_duration_minutes)
            # A slot touching a DST gap has no real wall-clock edge; drop it.
            if wall_clock_exists(day, opens, zone) and wall_clock_exists(day, closes, zone):
                boundaries.append(
                    SlotBoundary(
                        start_time=local_to_utc_naive(day, opens, zone),
                        end_time=local_to_utc_naive(day, closes, zone),
                    )
                )
            t += slot_duration_minutes
    return boundaries


def plan_slots(
    start_date: date,
    end_date: date,
    week: WorkingWeek,
    *,
    slot_duration_minutes: int,
    zone: ZoneInfo,
) -> Iterator[tuple[date, list[SlotBoundary]]]:
    """Yield ``(day, boundaries)`` for every day in the inclusive range."""
    for day in iter_days(start_date, end_date):
        yield day, plan_day(day, week, slot_duration_minutes=slot_duration_minutes, zone=zone)


def _minutes(r: TimeRange) -> tuple[int, int]:
    return r.start.hour * 60 + r.start.minute, r.end.hour * 60 + r.end.minute


def _clock(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def _merge(segments: list[tuple[int, int]]) -> list[tuple[int, int]]:
    merged: list[tuple[int, int]] = []
    for start, end in segments:
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _subtract(segment: tuple[int, int], cut: tuple[int, int]) -> list[tuple[int, int]]:
    start, end = segment
    cut_start, cut_end = cut
    if cut_end <= start or cut_start >= end:
        return [segment]
    pieces = []
    if cut_start > start:
        pieces.append((start, cut_start))
    if cut_end < end:
        pieces.append((cut_end, end))
    return pieces
