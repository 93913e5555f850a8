"""Scheduling service - Business logic for booking and appointment lifecycle"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from ...models import Appointment, Client, Location, Service, Staff
from ...shared.retry import run_in_transaction
from ...shared.timezones import ensure_utc, utcnow
from ...tenant import TenantContext, require_staff, scoped_reference
from ..events import AppointmentCompleted, publish
from .repository import SchedulingRepository
from .schemas import AppointmentCreate, AppointmentReschedule, AppointmentStatus
from .state_machine import ensure_transition, is_terminal

logger = logging.getLogger(__name__)


class SchedulingService:
    """Service layer for appointment business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_appointment(self, appointment_id: int, tenant: TenantContext, lock: bool = False) -> Appointment:
        appointment = self.repo.get_appointment(
            self.db, appointment_id, tenant.organization_id, lock=lock
        )
        if not appointment:
            raise NotFoundError("Appointment not found", details={"id": appointment_id})
        if tenant.is_client and appointment.client_id != tenant.client_id:
            raise NotFoundError("Appointment not found", details={"id": appointment_id})
        return appointment

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create(self, data: AppointmentCreate, tenant: TenantContext) -> Appointment:
        """Book an appointment. Overlap check and insert commit together."""
        start, end = self._validate_range(data.startTime, data.endTime)
        if tenant.is_client and data.clientId != tenant.client_id:
            raise PermissionDenied("Clients can only book appointments for themselves")

        def work() -> Appointment:
            location = scoped_reference(self.db, Location, data.locationId, tenant, label="Location")
            service = scoped_reference(self.db, Service, data.serviceId, tenant, label="Service")
            client = scoped_reference(self.db, Client, data.clientId, tenant, label="Client")
            staff = scoped_reference(self.db, Staff, data.staffId, tenant, label="Staff")
            if not staff.is_active:
                raise ValidationError("Staff member is not active", details={"staffId": staff.id})
            if not location.is_active:
                raise ValidationError("Location is not active", details={"locationId": location.id})
            self._validate_duration(service, start, end)

            self.repo.lock_staff(self.db, staff.id)
            self._ensure_no_overlap(staff.id, start, end)

            initial = AppointmentStatus.PENDING if tenant.is_client else AppointmentStatus.SCHEDULED
            appointment = Appointment(
                organization_id=tenant.organization_id,
                location_id=location.id,
                staff_id=staff.id,
                client_id=client.id,
                service_id=service.id,
                start_time=start,
                end_time=end,
                status=initial.value,
                notes=data.notes,
            )
            return self.repo.add_appointment(self.db, appointment)

        appointment = self._commit(work, "create appointment")
        logger.info(
            f"✅ Appointment {appointment.id} booked for staff {appointment.staff_id} "
            f"{start.isoformat()} - {end.isoformat()}"
        )
        return appointment

    def reschedule(
        self, appointment_id: int, data: AppointmentReschedule, tenant: TenantContext
    ) -> Appointment:
        """Move an appointment; the overlap check ignores the appointment's own row"""
        start, end = self._validate_range(data.startTime, data.endTime)

        def work() -> Appointment:
            appointment = self.get_appointment(appointment_id, tenant, lock=True)
            if is_terminal(appointment.status):
                raise ConflictError(
                    f"Cannot reschedule a {appointment.status} appointment",
                    code="InvalidStatusTransition",
                    details={"current": appointment.status},
                )
            self._validate_duration(appointment.service, start, end)

            self.repo.lock_staff(self.db, appointment.staff_id)
            self._ensure_no_overlap(
                appointment.staff_id, start, end, exclude_appointment_id=appointment.id
            )
            appointment.start_time = start
            appointment.end_time = end
            if data.notes is not None:
                appointment.notes = data.notes
            self.db.flush()
            return appointment

        appointment = self._commit(work, "reschedule appointment")
        logger.info(f"🔄 Appointment {appointment.id} rescheduled to {start.isoformat()}")
        return appointment

    def cancel(
        self, appointment_id: int, reason: Optional[str], tenant: TenantContext
    ) -> Appointment:
        """Cancel a non-terminal appointment. The row is kept; ledgers are untouched."""

        def work() -> Appointment:
            appointment = self.get_appointment(appointment_id, tenant, lock=True)
            appointment.status = ensure_transition(
                appointment.status, AppointmentStatus.CANCELED
            ).value
            appointment.cancellation_reason = reason
            self.db.flush()
            return appointment

        appointment = self._commit(work, "cancel appointment")
        logger.info(f"🚫 Appointment {appointment.id} canceled: {reason or 'no reason given'}")
        return appointment

    def transition(
        self, appointment_id: int, target: AppointmentStatus, tenant: TenantContext
    ) -> Appointment:
        """Single forward step through the status machine"""
        target = AppointmentStatus(target)
        if target == AppointmentStatus.COMPLETED:
            return self.complete(appointment_id, tenant)
        if target == AppointmentStatus.CANCELED:
            return self.cancel(appointment_id, None, tenant)
        require_staff(tenant)

        def work() -> Appointment:
            appointment = self.get_appointment(appointment_id, tenant, lock=True)
            appointment.status = ensure_transition(appointment.status, target).value
            self.db.flush()
            return appointment

        appointment = self._commit(work, f"mark appointment {target.value}")
        logger.info(f"📋 Appointment {appointment.id} -> {appointment.status}")
        return appointment

    def complete(self, appointment_id: int, tenant: TenantContext) -> Appointment:
        """
        Mark an appointment completed and publish AppointmentCompleted.

        Ledger handlers run inside the same transaction, so the status change,
        credit debit, charge and points award commit or roll back together.
        """
        require_staff(tenant)

        def work() -> Appointment:
            appointment = self.get_appointment(appointment_id, tenant, lock=True)
            appointment.status = ensure_transition(
                appointment.status, AppointmentStatus.COMPLETED
            ).value
            appointment.completed_at = utcnow()
            self.db.flush()
            publish(
                AppointmentCompleted(
                    client_id=appointment.client_id,
                    appointment_id=appointment.id,
                    service_price=float(appointment.service.price or 0),
                    organization_id=appointment.organization_id,
                ),
                self.db,
            )
            return appointment

        appointment = self._commit(work, "complete appointment")
        logger.info(f"✅ Appointment {appointment.id} completed")
        return appointment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_range(start: datetime, end: datetime) -> tuple[datetime, datetime]:
        start, end = ensure_utc(start), ensure_utc(end)
        if start is None or end is None or end <= start:
            raise ValidationError("endTime must be after startTime")
        return start, end

    @staticmethod
    def _validate_duration(service: Service, start: datetime, end: datetime) -> None:
        required = timedelta(minutes=service.duration_minutes)
        if end - start < required:
            raise ValidationError(
                f"Appointment must be at least {service.duration_minutes} minutes for {service.name}",
                details={"durationMinutes": service.duration_minutes},
            )

    def _ensure_no_overlap(
        self,
        staff_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> None:
        conflicts = self.repo.find_overlapping(
            self.db, staff_id, start, end, exclude_appointment_id=exclude_appointment_id
        )
        if conflicts:
            logger.warning(
                f"⚠️ Booking conflict for staff {staff_id}: {start.isoformat()} overlaps "
                f"appointment(s) {[a.id for a in conflicts]}"
            )
            raise ConflictError(
                "Appointment time conflicts with existing booking",
                details={"conflictingAppointmentIds": [a.id for a in conflicts]},
            )

    def _commit(self, work, operation: str):
        try:
            return run_in_transaction(self.db, work, operation)
        except IntegrityError as e:
            # Exclusion constraint backstop on PostgreSQL
            logger.warning(f"⚠️ Integrity violation during {operation}: {e.orig}")
            raise ConflictError("Appointment time conflicts with existing booking") from e
