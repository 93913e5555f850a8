from __future__ import annotations

from datetime import date, time, timedelta
from itertools import islice

import pytest

from conftest import MONDAY, utc
from practicehub.domain.scheduling.availability_service import (
    AvailabilityService,
    TimeWindow,
    iter_start_times,
    merge_windows,
    subtract_busy,
    sunday_based_weekday,
)
from practicehub.domain.scheduling.schemas import AppointmentCreate
from practicehub.domain.scheduling.service import SchedulingService
from practicehub.exceptions import ValidationError
from practicehub.models import Staff, StaffWorkingHours
from practicehub.shared.timezones import local_to_utc


@pytest.fixture
def availability(db) -> AvailabilityService:
    return AvailabilityService(db)


def windows(slots) -> list[tuple]:
    return [(w.start, w.end) for w in slots]


class TestFreeSlots:
    def test_full_working_day_when_nothing_booked(self, availability, staff, location, tenant):
        slots = availability.free_slots(
            staff.id, location.id, 30, MONDAY, MONDAY + timedelta(days=1), tenant
        )
        # 09:00-17:00 EST
        assert windows(slots) == [(utc(2030, 3, 4, 14), utc(2030, 3, 4, 22))]

    def test_booked_appointment_is_carved_out(
        self, availability, db, staff, location, service, client_record, tenant
    ):
        SchedulingService(db).create(
            AppointmentCreate(
                locationId=location.id,
                staffId=staff.id,
                clientId=client_record.id,
                serviceId=service.id,
                startTime=utc(2030, 3, 4, 15, 0),
                endTime=utc(2030, 3, 4, 15, 30),
            ),
            tenant,
        )
        slots = availability.free_slots(
            staff.id, location.id, 30, MONDAY, MONDAY + timedelta(days=1), tenant
        )
        assert windows(slots) == [
            (utc(2030, 3, 4, 14), utc(2030, 3, 4, 15)),
            (utc(2030, 3, 4, 15, 30), utc(2030, 3, 4, 22)),
        ]

    def test_canceled_appointment_releases_time(
        self, availability, db, staff, location, service, client_record, tenant
    ):
        scheduler = SchedulingService(db)
        appointment = scheduler.create(
            AppointmentCreate(
                locationId=location.id,
                staffId=staff.id,
                clientId=client_record.id,
                serviceId=service.id,
                startTime=utc(2030, 3, 4, 15, 0),
                endTime=utc(2030, 3, 4, 15, 30),
            ),
            tenant,
        )
        scheduler.cancel(appointment.id, "rescheduling elsewhere", tenant)
        slots = availability.free_slots(
            staff.id, location.id, 30, MONDAY, MONDAY + timedelta(days=1), tenant
        )
        assert windows(slots) == [(utc(2030, 3, 4, 14), utc(2030, 3, 4, 22))]

    def test_gap_shorter_than_service_is_dropped(self, availability, staff, location, tenant):
        # Range ends 20 minutes into the working day
        slots = availability.free_slots(
            staff.id, location.id, 30, utc(2030, 3, 4, 12), utc(2030, 3, 4, 14, 20), tenant
        )
        assert list(slots) == []

    def test_spring_forward_weekend(self, availability, staff, location, tenant):
        slots = availability.free_slots(
            staff.id, location.id, 30, utc(2030, 3, 9), utc(2030, 3, 11), tenant
        )
        assert windows(slots) == [
            (utc(2030, 3, 9, 14), utc(2030, 3, 9, 22)),  # Saturday, EST
            (utc(2030, 3, 10, 13), utc(2030, 3, 10, 21)),  # Sunday, EDT
        ]

    def test_fall_back_night_shift(
        self, availability, db, org, location, service, client_record, tenant
    ):
        night = Staff(organization_id=org.id, name="Night Nurse")
        db.add(night)
        db.commit()
        db.add(
            StaffWorkingHours(
                organization_id=org.id,
                staff_id=night.id,
                day_of_week=6,  # Saturday
                start_time="23:00",
                end_time="03:00",
            )
        )
        db.commit()

        # 23:00 EDT Saturday to 03:00 EST Sunday is five hours, 01:00-02:00 twice
        slots = availability.free_slots(
            night.id, location.id, 30, utc(2030, 11, 2, 12), utc(2030, 11, 3, 12), tenant
        )
        assert windows(slots) == [(utc(2030, 11, 3, 3), utc(2030, 11, 3, 8))]

        # 01:30-02:00 EST, the second pass through the repeated hour
        SchedulingService(db).create(
            AppointmentCreate(
                locationId=location.id,
                staffId=night.id,
                clientId=client_record.id,
                serviceId=service.id,
                startTime=utc(2030, 11, 3, 6, 30),
                endTime=utc(2030, 11, 3, 7, 0),
            ),
            tenant,
        )
        slots = availability.free_slots(
            night.id, location.id, 30, utc(2030, 11, 2, 12), utc(2030, 11, 3, 12), tenant
        )
        assert windows(slots) == [
            (utc(2030, 11, 3, 3), utc(2030, 11, 3, 6, 30)),
            (utc(2030, 11, 3, 7), utc(2030, 11, 3, 8)),
        ]

    def test_shift_spanning_midnight(self, availability, db, org, location, tenant):
        night = Staff(organization_id=org.id, name="Night Nurse")
        db.add(night)
        db.commit()
        db.add(
            StaffWorkingHours(
                organization_id=org.id,
                staff_id=night.id,
                day_of_week=1,  # Monday
                start_time="22:00",
                end_time="02:00",
            )
        )
        db.commit()

        whole = availability.free_slots(
            night.id, location.id, 30, MONDAY, MONDAY + timedelta(days=2), tenant
        )
        assert windows(whole) == [(utc(2030, 3, 5, 3), utc(2030, 3, 5, 7))]

        # Range starting after midnight local still sees the tail of Monday's shift
        tail = availability.free_slots(
            night.id, location.id, 30, utc(2030, 3, 5, 5), utc(2030, 3, 6), tenant
        )
        assert windows(tail) == [(utc(2030, 3, 5, 5), utc(2030, 3, 5, 7))]

    def test_location_specific_rules(self, availability, db, org, location, tenant):
        from practicehub.models import Location

        branch = Location(organization_id=org.id, name="Branch", timezone="America/New_York")
        roaming = Staff(organization_id=org.id, name="Dr. Patel")
        db.add_all([branch, roaming])
        db.commit()
        db.add(
            StaffWorkingHours(
                organization_id=org.id,
                staff_id=roaming.id,
                location_id=branch.id,
                day_of_week=1,
                start_time="09:00",
                end_time="12:00",
            )
        )
        db.commit()

        at_main = availability.free_slots(
            roaming.id, location.id, 30, MONDAY, MONDAY + timedelta(days=1), tenant
        )
        at_branch = availability.free_slots(
            roaming.id, branch.id, 30, MONDAY, MONDAY + timedelta(days=1), tenant
        )
        assert list(at_main) == []
        assert windows(at_branch) == [(utc(2030, 3, 4, 14), utc(2030, 3, 4, 17))]

    def test_inactive_staff_has_no_availability(self, availability, db, staff, location, tenant):
        staff.is_active = False
        db.commit()
        slots = availability.free_slots(
            staff.id, location.id, 30, MONDAY, MONDAY + timedelta(days=1), tenant
        )
        assert list(slots) == []

    def test_empty_or_inverted_range(self, availability, staff, location, tenant):
        assert list(availability.free_slots(staff.id, location.id, 30, MONDAY, MONDAY, tenant)) == []
        assert (
            list(
                availability.free_slots(
                    staff.id, location.id, 30, MONDAY, MONDAY - timedelta(days=1), tenant
                )
            )
            == []
        )

    def test_range_limit(self, availability, staff, location, tenant):
        with pytest.raises(ValidationError):
            availability.free_slots(
                staff.id, location.id, 30, MONDAY, MONDAY + timedelta(days=91), tenant
            )

    def test_non_positive_duration(self, availability, staff, location, tenant):
        with pytest.raises(ValidationError):
            availability.free_slots(
                staff.id, location.id, 0, MONDAY, MONDAY + timedelta(days=1), tenant
            )

    def test_lazy_and_restartable(self, availability, staff, location, tenant):
        slots = availability.free_slots(
            staff.id, location.id, 30, MONDAY, MONDAY + timedelta(days=60), tenant
        )
        first_three = list(islice(slots, 3))
        assert len(first_three) == 3
        assert first_three[0].start == utc(2030, 3, 4, 14)
        # A second pass starts over from the beginning
        assert next(iter(slots)) == first_three[0]

    def test_start_times_respect_step(self, availability, staff, location, tenant):
        slots = availability.free_slots(
            staff.id, location.id, 60, MONDAY, MONDAY + timedelta(days=1), tenant
        )
        starts = list(slots.start_times(step_minutes=60))
        assert starts[0] == utc(2030, 3, 4, 14)
        assert starts[-1] == utc(2030, 3, 4, 21)
        assert len(starts) == 8

    def test_service_from_other_org_rejected(self, availability, db, other_org, staff, location, tenant):
        from practicehub.models import Service

        foreign = Service(organization_id=other_org.id, name="Foreign", duration_minutes=30)
        db.add(foreign)
        db.commit()
        with pytest.raises(ValidationError):
            availability.free_slots_for_service(
                staff.id, location.id, foreign.id, MONDAY, MONDAY + timedelta(days=1), tenant
            )


class TestIntervalHelpers:
    def test_merge_touching_windows(self):
        merged = list(
            merge_windows(
                [
                    TimeWindow(utc(2030, 1, 1, 9), utc(2030, 1, 1, 12)),
                    TimeWindow(utc(2030, 1, 1, 12), utc(2030, 1, 1, 13)),
                    TimeWindow(utc(2030, 1, 1, 15), utc(2030, 1, 1, 16)),
                ]
            )
        )
        assert windows(merged) == [
            (utc(2030, 1, 1, 9), utc(2030, 1, 1, 13)),
            (utc(2030, 1, 1, 15), utc(2030, 1, 1, 16)),
        ]

    def test_subtract_busy_drops_short_gaps(self):
        window = TimeWindow(utc(2030, 1, 1, 9), utc(2030, 1, 1, 12))
        busy = [
            TimeWindow(utc(2030, 1, 1, 9, 20), utc(2030, 1, 1, 10)),
            TimeWindow(utc(2030, 1, 1, 11, 45), utc(2030, 1, 1, 13)),
        ]
        free = list(subtract_busy(window, busy, timedelta(minutes=30)))
        assert windows(free) == [(utc(2030, 1, 1, 10), utc(2030, 1, 1, 11, 45))]

    def test_iter_start_times(self):
        window = TimeWindow(utc(2030, 1, 1, 9), utc(2030, 1, 1, 10))
        assert list(iter_start_times([window], 30, 15)) == [
            utc(2030, 1, 1, 9),
            utc(2030, 1, 1, 9, 15),
            utc(2030, 1, 1, 9, 30),
        ]

    def test_sunday_based_weekday(self):
        assert sunday_based_weekday(date(2030, 3, 3)) == 0
        assert sunday_based_weekday(date(2030, 3, 4)) == 1
        assert sunday_based_weekday(date(2030, 3, 9)) == 6


class TestLocalToUtc:
    def test_ambiguous_fall_back_takes_first_occurrence(self):
        assert local_to_utc(date(2030, 11, 3), time(1, 30), "America/New_York") == utc(2030, 11, 3, 5, 30)

    def test_nonexistent_spring_forward_shifts_forward(self):
        assert local_to_utc(date(2030, 3, 10), time(2, 30), "America/New_York") == utc(2030, 3, 10, 7, 30)

    def test_unknown_zone_falls_back_to_default(self):
        assert local_to_utc(date(2030, 3, 4), time(9), "Not/AZone") == utc(2030, 3, 4, 14)
