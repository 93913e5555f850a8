"""
Availability service - free time windows for a staff member at a location.

Working-hours rules are stored as local wall-clock ranges per weekday. They
are converted to UTC per local date with the location's zone, merged, and
the staff member's blocking appointments (at any location) are subtracted.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, Optional

from sqlalchemy.orm import Session

from ...config import AVAILABILITY_MAX_RANGE_DAYS, DEFAULT_SLOT_MINUTES
from ...exceptions import ValidationError
from ...models import Location, Service, Staff, StaffWorkingHours
from ...shared.timezones import ensure_utc, local_to_utc, utc_to_local
from ...shared.validators import parse_hhmm
from ...tenant import TenantContext, scoped_reference
from .repository import SchedulingRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open UTC interval [start, end)"""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


def sunday_based_weekday(day: date) -> int:
    """0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def working_intervals(
    rules: list[StaffWorkingHours], tz_name: str, range_start: datetime, range_end: datetime
) -> Iterator[TimeWindow]:
    """
    Yield UTC working intervals clipped to [range_start, range_end), in start order.

    Iteration begins one local day before range_start so a shift that started
    the previous evening and runs past midnight is included.
    """
    first_day = utc_to_local(range_start, tz_name).date() - timedelta(days=1)
    last_day = utc_to_local(range_end, tz_name).date()

    by_weekday: dict[int, list[tuple]] = {}
    for rule in rules:
        start_t, end_t = parse_hhmm(rule.start_time), parse_hhmm(rule.end_time)
        by_weekday.setdefault(rule.day_of_week, []).append((start_t, end_t))

    day = first_day
    while day <= last_day:
        day_windows = []
        for start_t, end_t in by_weekday.get(sunday_based_weekday(day), []):
            end_day = day if end_t > start_t else day + timedelta(days=1)
            start_utc = local_to_utc(day, start_t, tz_name)
            end_utc = local_to_utc(end_day, end_t, tz_name)
            start_utc, end_utc = max(start_utc, range_start), min(end_utc, range_end)
            if end_utc > start_utc:
                day_windows.append(TimeWindow(start_utc, end_utc))
        yield from sorted(day_windows, key=lambda w: w.start)
        day += timedelta(days=1)


def merge_windows(windows: Iterable[TimeWindow]) -> Iterator[TimeWindow]:
    """Merge overlapping or touching windows. Input must be sorted by start."""
    current: Optional[TimeWindow] = None
    for window in windows:
        if current is None:
            current = window
        elif window.start <= current.end:
            current = TimeWindow(current.start, max(current.end, window.end))
        else:
            yield current
            current = window
    if current is not None:
        yield current


def subtract_busy(
    window: TimeWindow, busy: Iterable[TimeWindow], min_duration: timedelta
) -> Iterator[TimeWindow]:
    """Free parts of `window` not covered by `busy` (sorted by start), at least min_duration long"""
    cursor = window.start
    for block in busy:
        if block.end <= cursor:
            continue
        if block.start >= window.end:
            break
        gap_end = min(block.start, window.end)
        if gap_end - cursor >= min_duration:
            yield TimeWindow(cursor, gap_end)
        cursor = max(cursor, block.end)
        if cursor >= window.end:
            return
    if window.end - cursor >= min_duration:
        yield TimeWindow(cursor, window.end)


def iter_start_times(
    windows: Iterable[TimeWindow], duration_minutes: int, step_minutes: int = DEFAULT_SLOT_MINUTES
) -> Iterator[datetime]:
    """Bookable start times every `step_minutes` inside each free window"""
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    for window in windows:
        start = window.start
        while start + duration <= window.end:
            yield start
            start += step


class FreeSlots:
    """
    Lazy, restartable sequence of free windows.

    Each iteration re-runs the computation. Appointments are loaded per working
    interval, so stopping early (e.g. itertools.islice) avoids reading the rest
    of the range.
    """

    def __init__(
        self,
        db: Session,
        staff_id: int,
        tz_name: str,
        rules: list[StaffWorkingHours],
        duration_minutes: int,
        range_start: datetime,
        range_end: datetime,
    ):
        self.db = db
        self.staff_id = staff_id
        self.tz_name = tz_name
        self.rules = rules
        self.duration_minutes = duration_minutes
        self.range_start = range_start
        self.range_end = range_end
        self.repo = SchedulingRepository()

    def __iter__(self) -> Iterator[TimeWindow]:
        if self.range_end <= self.range_start or not self.rules:
            return
        min_duration = timedelta(minutes=self.duration_minutes)
        intervals = working_intervals(self.rules, self.tz_name, self.range_start, self.range_end)
        for window in merge_windows(intervals):
            if window.duration < min_duration:
                continue
            busy = [
                TimeWindow(ensure_utc(a.start_time), ensure_utc(a.end_time))
                for a in self.repo.blocking_between(self.db, self.staff_id, window.start, window.end)
            ]
            yield from subtract_busy(window, busy, min_duration)

    def start_times(self, step_minutes: int = DEFAULT_SLOT_MINUTES) -> Iterator[datetime]:
        return iter_start_times(self, self.duration_minutes, step_minutes)


class AvailabilityService:
    """Service layer for availability lookups"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def free_slots(
        self,
        staff_id: int,
        location_id: int,
        service_duration_minutes: int,
        range_start: datetime,
        range_end: datetime,
        tenant: TenantContext,
    ) -> FreeSlots:
        """Free windows of at least service_duration_minutes in [range_start, range_end)"""
        if service_duration_minutes is None or service_duration_minutes <= 0:
            raise ValidationError("Service duration must be positive")
        range_start, range_end = ensure_utc(range_start), ensure_utc(range_end)
        if range_end - range_start > timedelta(days=AVAILABILITY_MAX_RANGE_DAYS):
            raise ValidationError(
                f"Availability range cannot exceed {AVAILABILITY_MAX_RANGE_DAYS} days",
                details={"max_days": AVAILABILITY_MAX_RANGE_DAYS},
            )

        staff = scoped_reference(self.db, Staff, staff_id, tenant, label="Staff")
        location = scoped_reference(self.db, Location, location_id, tenant, label="Location")
        rules = self.repo.get_working_hours(self.db, staff.id, location.id) if staff.is_active else []

        logger.debug(
            f"🔍 Availability for staff {staff.id} at location {location.id} ({location.timezone}): "
            f"{range_start.isoformat()} - {range_end.isoformat()}"
        )
        return FreeSlots(
            self.db,
            staff.id,
            location.timezone,
            rules,
            service_duration_minutes,
            range_start,
            range_end,
        )

    def free_slots_for_service(
        self,
        staff_id: int,
        location_id: int,
        service_id: int,
        range_start: datetime,
        range_end: datetime,
        tenant: TenantContext,
    ) -> tuple[Service, FreeSlots]:
        service = scoped_reference(self.db, Service, service_id, tenant, label="Service")
        slots = self.free_slots(
            staff_id, location_id, service.duration_minutes, range_start, range_end, tenant
        )
        return service, slots
