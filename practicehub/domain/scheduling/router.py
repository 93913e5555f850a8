"""Scheduling router - FastAPI endpoints for appointments and availability"""

import logging
from datetime import datetime
from itertools import islice
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...auth import get_tenant_context
from ...database import get_db
from ...rate_limiter import create_rate_limiter
from ...tenant import TenantContext
from .availability_service import AvailabilityService
from .schemas import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatusUpdate,
    AvailabilityResponse,
    AvailabilityWindow,
)
from .service import SchedulingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])
availability_router = APIRouter(prefix="/availability", tags=["Availability"])

limit_bookings = create_rate_limiter(limit=30, window_seconds=60, key_prefix="bookings")


def get_scheduling_service(db: Session = Depends(get_db)) -> SchedulingService:
    """Dependency injection for SchedulingService"""
    return SchedulingService(db)


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db)


# ============================================================================
# BOOKING
# ============================================================================


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: AppointmentCreate,
    tenant: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
    _: None = Depends(limit_bookings),
):
    """Book an appointment; 409 when the staff member is already booked"""
    return AppointmentResponse.from_model(service.create(data, tenant))


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    tenant: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return AppointmentResponse.from_model(service.get_appointment(appointment_id, tenant))


@router.patch("/{appointment_id}", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: AppointmentReschedule,
    tenant: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Move an appointment to a new time"""
    return AppointmentResponse.from_model(service.reschedule(appointment_id, data, tenant))


# ============================================================================
# STATUS CHANGES
# ============================================================================


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: Optional[AppointmentCancel] = None,
    tenant: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    reason = data.reason if data else None
    return AppointmentResponse.from_model(service.cancel(appointment_id, reason, tenant))


@router.post("/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    tenant: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Advance the appointment one step (confirm, start, no-show)"""
    return AppointmentResponse.from_model(service.transition(appointment_id, data.status, tenant))


@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    tenant: TenantContext = Depends(get_tenant_context),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Complete the visit; applies membership credits, charges and reward points"""
    return AppointmentResponse.from_model(service.complete(appointment_id, tenant))


# ============================================================================
# AVAILABILITY
# ============================================================================


@availability_router.get("", response_model=AvailabilityResponse)
async def get_availability(
    staffId: int,
    locationId: int,
    serviceId: int,
    range_start: datetime = Query(..., alias="from"),
    range_end: datetime = Query(..., alias="to"),
    slotMinutes: Optional[int] = Query(None, ge=5, le=240),
    limit: int = Query(200, ge=1, le=1000),
    tenant: TenantContext = Depends(get_tenant_context),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Free windows (and optionally bookable start times) for a staff member"""
    booked_service, slots = service.free_slots_for_service(
        staffId, locationId, serviceId, range_start, range_end, tenant
    )
    windows = [AvailabilityWindow(start=w.start, end=w.end) for w in islice(slots, limit)]
    start_times = list(islice(slots.start_times(slotMinutes), limit)) if slotMinutes else None
    return AvailabilityResponse(
        staffId=staffId,
        locationId=locationId,
        serviceId=serviceId,
        timezone=slots.tz_name,
        durationMinutes=booked_service.duration_minutes,
        windows=windows,
        slots=start_times,
    )
