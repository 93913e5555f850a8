"""Appointment status transitions"""

from ...exceptions import ConflictError
from .schemas import AppointmentStatus

BLOCKING_STATUSES = frozenset(
    {
        AppointmentStatus.PENDING,
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
    }
)
TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELED, AppointmentStatus.NO_SHOW}
)

# Linear happy path; each status may only advance one step
_NEXT_STEP = {
    AppointmentStatus.PENDING: AppointmentStatus.SCHEDULED,
    AppointmentStatus.SCHEDULED: AppointmentStatus.CONFIRMED,
    AppointmentStatus.CONFIRMED: AppointmentStatus.IN_PROGRESS,
    AppointmentStatus.IN_PROGRESS: AppointmentStatus.COMPLETED,
}


def allowed_transitions(current: AppointmentStatus) -> frozenset:
    current = AppointmentStatus(current)
    if current in TERMINAL_STATUSES:
        return frozenset()
    return frozenset({_NEXT_STEP[current], AppointmentStatus.CANCELED, AppointmentStatus.NO_SHOW})


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return AppointmentStatus(target) in allowed_transitions(current)


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> AppointmentStatus:
    """Return the target status or raise ConflictError if the move is not allowed"""
    target = AppointmentStatus(target)
    if not can_transition(current, target):
        raise ConflictError(
            f"Cannot change appointment status from {AppointmentStatus(current).value} to {target.value}",
            code="InvalidStatusTransition",
            details={
                "current": AppointmentStatus(current).value,
                "target": target.value,
                "allowed": sorted(s.value for s in allowed_transitions(current)),
            },
        )
    return target


def is_blocking(status) -> bool:
    return AppointmentStatus(status) in BLOCKING_STATUSES


def is_terminal(status) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATUSES
