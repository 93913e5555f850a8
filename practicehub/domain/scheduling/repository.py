"""Scheduling repository - Database operations for appointments and working hours"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import Appointment, Staff, StaffWorkingHours
from .state_machine import BLOCKING_STATUSES

BLOCKING_VALUES = [s.value for s in BLOCKING_STATUSES]


class SchedulingRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_appointment(
        db: Session, appointment_id: int, organization_id: int, lock: bool = False
    ) -> Optional[Appointment]:
        query = db.query(Appointment).filter(
            Appointment.id == appointment_id, Appointment.organization_id == organization_id
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def lock_staff(db: Session, staff_id: int) -> Optional[Staff]:
        """SELECT ... FOR UPDATE on the staff row; serializes bookings per staff member"""
        return db.query(Staff).filter(Staff.id == staff_id).with_for_update().first()

    @staticmethod
    def _blocking_query(db: Session, staff_id: int, start: datetime, end: datetime):
        return db.query(Appointment).filter(
            Appointment.staff_id == staff_id,
            Appointment.status.in_(BLOCKING_VALUES),
            Appointment.start_time < end,
            Appointment.end_time > start,
        )

    @staticmethod
    def find_overlapping(
        db: Session,
        staff_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> list[Appointment]:
        """Blocking appointments for the staff member intersecting [start, end)"""
        query = SchedulingRepository._blocking_query(db, staff_id, start, end)
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.all()

    @staticmethod
    def blocking_between(
        db: Session, staff_id: int, start: datetime, end: datetime
    ) -> list[Appointment]:
        """Blocking appointments intersecting [start, end), ordered by start"""
        return (
            SchedulingRepository._blocking_query(db, staff_id, start, end)
            .order_by(Appointment.start_time)
            .all()
        )

    @staticmethod
    def get_working_hours(db: Session, staff_id: int, location_id: int) -> list[StaffWorkingHours]:
        """Rules for this location plus location-agnostic rules"""
        return (
            db.query(StaffWorkingHours)
            .filter(
                StaffWorkingHours.staff_id == staff_id,
                or_(
                    StaffWorkingHours.location_id == location_id,
                    StaffWorkingHours.location_id.is_(None),
                ),
            )
            .order_by(StaffWorkingHours.day_of_week, StaffWorkingHours.start_time)
            .all()
        )

    @staticmethod
    def add_appointment(db: Session, appointment: Appointment) -> Appointment:
        db.add(appointment)
        db.flush()
        return appointment
