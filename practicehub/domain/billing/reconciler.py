"""
Billing reconciler - applies payment-processor events to memberships.

Each event id is claimed in processed_webhook_events inside the same
transaction as the membership changes, so a redelivered event is either
rejected as a replay or rolled back together with its effects.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import MEMBERSHIP_ACTIVATION_BONUS_POINTS, MEMBERSHIP_PERIOD_DAYS
from ...exceptions import IdempotencyReplay
from ...models import Membership, ProcessedWebhookEvent
from ...shared.retry import run_in_transaction
from ...shared.timezones import ensure_utc, utcnow
from ..memberships.credit_ledger import CreditLedger
from ..memberships.repository import MembershipRepository
from ..memberships.schemas import MembershipStatus
from ..rewards.ledger import RewardsLedger
from .repository import BillingRepository
from .schemas import ProcessorEvent, ProcessorEventKind

logger = logging.getLogger(__name__)


class BillingReconciler:
    def __init__(self, db: Session):
        self.db = db
        self.repo = BillingRepository()
        self.memberships = MembershipRepository()

    def reconcile(self, event: ProcessorEvent) -> ProcessedWebhookEvent:
        """
        Apply `event` exactly once.

        Raises:
            IdempotencyReplay: the event id was already processed
        """
        try:
            return run_in_transaction(self.db, lambda: self._apply(event), f"webhook {event.event_id}")
        except IntegrityError as e:
            # A concurrent delivery of the same event claimed the id first
            if self.repo.get_processed_event(self.db, event.event_id) is not None:
                logger.info(f"ℹ️ Webhook {event.event_id} processed concurrently, treating as replay")
                raise IdempotencyReplay(event.event_id) from e
            raise

    def _apply(self, event: ProcessorEvent) -> ProcessedWebhookEvent:
        if self.repo.get_processed_event(self.db, event.event_id) is not None:
            logger.info(f"ℹ️ Webhook {event.event_id} already processed, skipping")
            raise IdempotencyReplay(event.event_id)

        record = self.repo.claim_event(self.db, event.event_id, event.event_type, event.raw)

        membership = self._resolve_membership(event)
        if event.kind == ProcessorEventKind.IGNORED or membership is None:
            reason = "unhandled event type" if event.kind == ProcessorEventKind.IGNORED else "no matching membership"
            logger.info(f"ℹ️ Webhook {event.event_id} ({event.event_type}) ignored: {reason}")
            return self._finish(record, "ignored", membership)

        if self._is_stale(membership, event):
            logger.warning(
                f"⚠️ Webhook {event.event_id} ({event.event_type}) is older than the last applied "
                f"event for membership {membership.id}; ignoring"
            )
            return self._finish(record, "ignored", membership)

        if event.kind == ProcessorEventKind.RENEWAL_SUCCEEDED:
            self._apply_renewal(membership, event)
        elif event.kind == ProcessorEventKind.PAYMENT_FAILED:
            self._apply_payment_failed(membership)
        elif event.kind == ProcessorEventKind.SUBSCRIPTION_CANCELED:
            self._apply_canceled(membership)

        if event.occurred_at is not None:
            membership.last_processor_event_at = event.occurred_at
        return self._finish(record, "processed", membership)

    def _finish(
        self, record: ProcessedWebhookEvent, status: str, membership: Optional[Membership]
    ) -> ProcessedWebhookEvent:
        record.status = status
        record.membership_id = membership.id if membership else None
        record.processed_at = utcnow()
        self.db.flush()
        return record

    def _resolve_membership(self, event: ProcessorEvent) -> Optional[Membership]:
        """Locate (and row-lock) the membership by subscription id, else by checkout metadata"""
        membership = None
        if event.subscription_id:
            membership = self.memberships.get_by_subscription(
                self.db, event.subscription_id, lock=True
            )
        if membership is None and event.membership_id is not None:
            membership = self.memberships.get_for_update(self.db, event.membership_id)
            if membership is not None and event.subscription_id:
                if membership.processor_subscription_id not in (None, event.subscription_id):
                    logger.warning(
                        f"⚠️ Membership {membership.id} is bound to subscription "
                        f"{membership.processor_subscription_id}, event references {event.subscription_id}"
                    )
                    return None
                membership.processor_subscription_id = event.subscription_id
        if membership is not None and event.customer_id and not membership.processor_customer_id:
            membership.processor_customer_id = event.customer_id
        return membership

    @staticmethod
    def _is_stale(membership: Membership, event: ProcessorEvent) -> bool:
        last = ensure_utc(membership.last_processor_event_at)
        return last is not None and event.occurred_at is not None and event.occurred_at < last

    # ------------------------------------------------------------------
    # Event effects
    # ------------------------------------------------------------------

    def _apply_renewal(self, membership: Membership, event: ProcessorEvent) -> None:
        now = utcnow()
        first_activation = membership.current_period_start is None
        period_end = event.next_billing_date or now + timedelta(days=MEMBERSHIP_PERIOD_DAYS)
        current_end = ensure_utc(membership.end_date)

        membership.status = MembershipStatus.ACTIVE.value
        if not first_activation and current_end is not None and period_end <= current_end:
            # Period already started by an earlier event; keep this cycle's usage
            self.db.flush()
            logger.info(
                f"ℹ️ Membership {membership.id} re-activated within period ending "
                f"{current_end.isoformat()}; credits unchanged"
            )
            return

        membership.end_date = max(period_end, current_end) if current_end else period_end
        CreditLedger(self.db).reset_cycle(membership.id, period_start=now)

        amount = event.amount if event.amount is not None else membership.tier.monthly_price
        self.memberships.add_transaction(
            self.db,
            organization_id=membership.organization_id,
            client_id=membership.client_id,
            membership_id=membership.id,
            type="membership_renewal",
            amount=amount,
            currency=(event.currency or "USD")[:3],
            status="completed",
            processor_reference=event.event_id,
            description=f"{membership.tier.name} membership renewal",
        )

        if first_activation and MEMBERSHIP_ACTIVATION_BONUS_POINTS > 0:
            RewardsLedger(self.db).append_once(
                membership.client_id,
                membership.organization_id,
                MEMBERSHIP_ACTIVATION_BONUS_POINTS,
                reason=f"Membership activated: {membership.tier.name}",
                reference_type="membership",
                reference_id=membership.id,
            )
        logger.info(
            f"✅ Membership {membership.id} renewed until {membership.end_date.isoformat()}"
        )

    def _apply_payment_failed(self, membership: Membership) -> None:
        if membership.status == MembershipStatus.CANCELED.value:
            logger.info(f"ℹ️ Payment failure for canceled membership {membership.id}; no change")
            return
        membership.status = MembershipStatus.SUSPENDED.value
        self.db.flush()
        logger.warning(f"⚠️ Membership {membership.id} suspended after failed payment")

    def _apply_canceled(self, membership: Membership) -> None:
        membership.status = MembershipStatus.CANCELED.value
        membership.auto_renew = False
        self.db.flush()
        end_date = ensure_utc(membership.end_date)
        logger.info(
            f"🛑 Membership {membership.id} canceled; credits usable until "
            f"{end_date.isoformat() if end_date else 'now'}"
        )
