"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from ...shared.timezones import ensure_utc


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Offset-less timestamps on the wire are UTC
    return ensure_utc(value)


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment"""

    locationId: int
    staffId: int
    clientId: int
    serviceId: int
    startTime: datetime
    endTime: datetime
    notes: Optional[str] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_times(cls, v):
        return _to_utc(v)

    @model_validator(mode="after")
    def check_time_order(self):
        if self.endTime <= self.startTime:
            raise ValueError("endTime must be after startTime")
        return self


class AppointmentReschedule(BaseModel):
    """Schema for moving an appointment to a new time"""

    startTime: datetime
    endTime: datetime
    notes: Optional[str] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_times(cls, v):
        return _to_utc(v)

    @model_validator(mode="after")
    def check_time_order(self):
        if self.endTime <= self.startTime:
            raise ValueError("endTime must be after startTime")
        return self


class AppointmentCancel(BaseModel):
    reason: Optional[str] = None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    id: int
    organizationId: int
    locationId: int
    staffId: int
    clientId: int
    serviceId: int
    startTime: datetime
    endTime: datetime
    status: AppointmentStatus
    notes: Optional[str] = None
    cancellationReason: Optional[str] = None
    completedAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            organizationId=appointment.organization_id,
            locationId=appointment.location_id,
            staffId=appointment.staff_id,
            clientId=appointment.client_id,
            serviceId=appointment.service_id,
            startTime=ensure_utc(appointment.start_time),
            endTime=ensure_utc(appointment.end_time),
            status=appointment.status,
            notes=appointment.notes,
            cancellationReason=appointment.cancellation_reason,
            completedAt=ensure_utc(appointment.completed_at),
        )


class AvailabilityWindow(BaseModel):
    start: datetime
    end: datetime


class AvailabilityResponse(BaseModel):
    staffId: int
    locationId: int
    serviceId: int
    timezone: str
    durationMinutes: int
    windows: list[AvailabilityWindow]
    slots: Optional[list[datetime]] = None
