"""
Domain exceptions for the scheduling and ledger core.

Services raise these; a single handler in main.py turns them into JSON
responses with the status code declared on each class.
"""

from typing import Any, Optional

from fastapi import status


class DomainError(Exception):
    """Base exception for all domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}


class ValidationError(DomainError):
    """Malformed input or cross-tenant reference. Never retried."""

    status_code = status.HTTP_400_BAD_REQUEST


class PermissionDenied(DomainError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(DomainError):
    """Slot overlap or a lost concurrent race. Caller re-reads and retries."""

    status_code = status.HTTP_409_CONFLICT


class InsufficientCredits(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, remaining_credits: float, requested: float):
        super().__init__(
            f"Insufficient membership credits: {remaining_credits} remaining, {requested} requested",
            details={"remaining_credits": remaining_credits, "requested": requested},
        )
        self.remaining_credits = remaining_credits


class InsufficientBalance(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, balance: int, required: int):
        super().__init__(
            f"Insufficient points: balance {balance}, {required} required",
            details={"balance": balance, "required": required},
        )
        self.balance = balance


class IdempotencyReplay(DomainError):
    """Webhook event already applied. Acknowledged, not an error to the sender."""

    status_code = status.HTTP_200_OK

    def __init__(self, event_id: str):
        super().__init__(f"Event {event_id} already processed", details={"event_id": event_id})
        self.event_id = event_id


class ProcessorError(DomainError):
    """Payment processor unavailable or rejected the request"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class StorageFault(DomainError):
    """Commit failed after bounded retries"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
