"""Billing repository - Database operations for processed webhook events"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import ProcessedWebhookEvent


class BillingRepository:
    """Repository for webhook idempotency records"""

    @staticmethod
    def get_processed_event(db: Session, event_id: str) -> Optional[ProcessedWebhookEvent]:
        return (
            db.query(ProcessedWebhookEvent)
            .filter(ProcessedWebhookEvent.event_id == event_id)
            .first()
        )

    @staticmethod
    def claim_event(db: Session, event_id: str, event_type: str, payload: dict) -> ProcessedWebhookEvent:
        """
        Insert the idempotency row. The unique index on event_id makes a
        concurrent duplicate fail here with IntegrityError.
        """
        record = ProcessedWebhookEvent(
            event_id=event_id, event_type=event_type, status="processing", payload=payload
        )
        db.add(record)
        db.flush()
        return record
