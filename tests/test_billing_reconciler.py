from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import utc
from practicehub.domain.billing.reconciler import BillingReconciler
from practicehub.domain.billing.schemas import ProcessorEventKind, parse_processor_event
from practicehub.domain.rewards.ledger import RewardsLedger
from practicehub.exceptions import IdempotencyReplay
from practicehub.models import ProcessedWebhookEvent, Transaction
from practicehub.shared.timezones import ensure_utc, utcnow


def processor_payload(event_type, subscription_id="sub_123", timestamp=None, **data):
    body = {"subscription_id": subscription_id, "customer": {"customer_id": "cus_42"}}
    body.update(data)
    payload = {"type": event_type, "data": body}
    if timestamp is not None:
        payload["timestamp"] = timestamp
    return payload


@pytest.fixture
def reconciler(db) -> BillingReconciler:
    return BillingReconciler(db)


class TestRenewal:
    def test_renewal_resets_credits_and_extends(self, reconciler, membership, db):
        membership.used_credits = 80.0
        membership.status = "suspended"
        db.commit()
        next_billing = (utcnow() + timedelta(days=31)).replace(microsecond=0)

        record = reconciler.reconcile(
            parse_processor_event(
                "evt_renew_1",
                processor_payload(
                    "subscription.renewed",
                    next_billing_date=next_billing.isoformat(),
                    recurring_pre_tax_amount=9900,
                    currency="USD",
                ),
            )
        )

        assert record.status == "processed"
        assert record.membership_id == membership.id
        db.refresh(membership)
        assert membership.status == "active"
        assert membership.used_credits == 0
        assert membership.monthly_credits == 100
        assert ensure_utc(membership.end_date) == next_billing
        assert membership.processor_customer_id == "cus_42"

        renewal = db.query(Transaction).filter(Transaction.type == "membership_renewal").one()
        assert renewal.amount == 99.0
        assert renewal.processor_reference == "evt_renew_1"

    def test_replay_is_rejected_without_side_effects(self, reconciler, membership, db):
        event = parse_processor_event("evt_renew_2", processor_payload("subscription.renewed"))
        reconciler.reconcile(event)

        membership.used_credits = 25.0
        db.commit()

        with pytest.raises(IdempotencyReplay):
            reconciler.reconcile(event)

        db.refresh(membership)
        assert membership.used_credits == 25
        assert db.query(Transaction).filter(Transaction.type == "membership_renewal").count() == 1
        assert db.query(ProcessedWebhookEvent).count() == 1

    def test_end_date_never_moves_backwards(self, reconciler, membership, db):
        far_future = utcnow().replace(microsecond=0) + timedelta(days=200)
        membership.end_date = far_future
        db.commit()
        reconciler.reconcile(
            parse_processor_event(
                "evt_renew_3",
                processor_payload(
                    "subscription.renewed",
                    next_billing_date=(utcnow() + timedelta(days=30)).isoformat(),
                ),
            )
        )
        db.refresh(membership)
        assert ensure_utc(membership.end_date) == far_future

    def test_first_activation_binds_subscription_and_awards_bonus(
        self, reconciler, membership, db, client_record
    ):
        membership.status = "suspended"
        membership.processor_subscription_id = None
        membership.current_period_start = None
        db.commit()

        payload = processor_payload(
            "subscription.active",
            subscription_id="sub_new",
            metadata={"membership_id": str(membership.id)},
        )
        reconciler.reconcile(parse_processor_event("evt_activate", payload))

        db.refresh(membership)
        assert membership.status == "active"
        assert membership.processor_subscription_id == "sub_new"
        assert membership.current_period_start is not None
        assert RewardsLedger(db).balance(client_record.id) == 100

        # A later renewal is not a first activation
        reconciler.reconcile(
            parse_processor_event("evt_renew_4", processor_payload("subscription.renewed", "sub_new"))
        )
        assert RewardsLedger(db).balance(client_record.id) == 100

    def test_second_event_for_same_period_keeps_usage(self, reconciler, membership, db):
        next_billing = (utcnow() + timedelta(days=31)).replace(microsecond=0)
        reconciler.reconcile(
            parse_processor_event(
                "evt_period_renewed",
                processor_payload("subscription.renewed", next_billing_date=next_billing.isoformat()),
            )
        )
        membership.used_credits = 80.0
        db.commit()

        reconciler.reconcile(
            parse_processor_event(
                "evt_period_active",
                processor_payload("subscription.active", next_billing_date=next_billing.isoformat()),
            )
        )

        db.refresh(membership)
        assert membership.status == "active"
        assert membership.used_credits == 80
        assert ensure_utc(membership.end_date) == next_billing
        assert db.query(Transaction).filter(Transaction.type == "membership_renewal").count() == 1

    def test_recovery_from_hold_reactivates_without_reset(self, reconciler, membership, db):
        next_billing = (utcnow() + timedelta(days=31)).replace(microsecond=0)
        reconciler.reconcile(
            parse_processor_event(
                "evt_hold_renewed",
                processor_payload("subscription.renewed", next_billing_date=next_billing.isoformat()),
            )
        )
        membership.used_credits = 30.0
        db.commit()
        reconciler.reconcile(parse_processor_event("evt_hold", processor_payload("subscription.on_hold")))
        db.refresh(membership)
        assert membership.status == "suspended"

        reconciler.reconcile(
            parse_processor_event(
                "evt_hold_recovered",
                processor_payload("subscription.active", next_billing_date=next_billing.isoformat()),
            )
        )
        db.refresh(membership)
        assert membership.status == "active"
        assert membership.used_credits == 30

    def test_next_period_resets_again(self, reconciler, membership, db):
        first_end = (utcnow() + timedelta(days=31)).replace(microsecond=0)
        reconciler.reconcile(
            parse_processor_event(
                "evt_cycle_1",
                processor_payload("subscription.renewed", next_billing_date=first_end.isoformat()),
            )
        )
        membership.used_credits = 60.0
        db.commit()

        second_end = first_end + timedelta(days=30)
        reconciler.reconcile(
            parse_processor_event(
                "evt_cycle_2",
                processor_payload("subscription.renewed", next_billing_date=second_end.isoformat()),
            )
        )
        db.refresh(membership)
        assert membership.used_credits == 0
        assert ensure_utc(membership.end_date) == second_end
        assert db.query(Transaction).filter(Transaction.type == "membership_renewal").count() == 2


class TestStatusEvents:
    def test_payment_failure_suspends(self, reconciler, membership, db):
        reconciler.reconcile(parse_processor_event("evt_fail", processor_payload("payment.failed")))
        db.refresh(membership)
        assert membership.status == "suspended"

    def test_cancellation_keeps_end_date(self, reconciler, membership, db):
        end_date = ensure_utc(membership.end_date)
        reconciler.reconcile(
            parse_processor_event("evt_cancel", processor_payload("subscription.cancelled"))
        )
        db.refresh(membership)
        assert membership.status == "canceled"
        assert membership.auto_renew is False
        assert ensure_utc(membership.end_date) == end_date

    def test_payment_failure_after_cancel_keeps_canceled(self, reconciler, membership, db):
        reconciler.reconcile(
            parse_processor_event("evt_cancel_2", processor_payload("subscription.cancelled"))
        )
        reconciler.reconcile(parse_processor_event("evt_fail_2", processor_payload("payment.failed")))
        db.refresh(membership)
        assert membership.status == "canceled"

    def test_out_of_order_event_ignored(self, reconciler, membership, db):
        reconciler.reconcile(
            parse_processor_event(
                "evt_cancel_3",
                processor_payload("subscription.cancelled", timestamp="2030-03-05T12:00:00Z"),
            )
        )
        record = reconciler.reconcile(
            parse_processor_event(
                "evt_fail_3",
                processor_payload("payment.failed", timestamp="2030-03-05T11:00:00Z"),
            )
        )
        db.refresh(membership)
        assert record.status == "ignored"
        assert membership.status == "canceled"
        assert ensure_utc(membership.last_processor_event_at) == utc(2030, 3, 5, 12)


class TestIgnored:
    def test_unknown_event_type(self, reconciler, membership, db):
        record = reconciler.reconcile(
            parse_processor_event("evt_refund", processor_payload("refund.succeeded"))
        )
        assert record.status == "ignored"
        db.refresh(membership)
        assert membership.status == "active"

    def test_unknown_subscription(self, reconciler, membership):
        record = reconciler.reconcile(
            parse_processor_event("evt_orphan", processor_payload("subscription.renewed", "sub_unknown"))
        )
        assert record.status == "ignored"
        assert record.membership_id is None

    def test_ignored_events_are_still_deduplicated(self, reconciler, membership):
        event = parse_processor_event("evt_noise", processor_payload("customer.updated"))
        reconciler.reconcile(event)
        with pytest.raises(IdempotencyReplay):
            reconciler.reconcile(event)


class TestParsing:
    def test_parse_full_payload(self):
        event = parse_processor_event(
            "msg_1",
            {
                "type": "subscription.renewed",
                "timestamp": "2030-03-04T15:00:00Z",
                "data": {
                    "subscription_id": "sub_9",
                    "customer": {"customer_id": "cus_9"},
                    "metadata": {"membership_id": "17"},
                    "next_billing_date": "2030-04-04T15:00:00Z",
                    "recurring_pre_tax_amount": 4950,
                    "currency": "USD",
                },
            },
        )
        assert event.kind == ProcessorEventKind.RENEWAL_SUCCEEDED
        assert event.subscription_id == "sub_9"
        assert event.customer_id == "cus_9"
        assert event.membership_id == 17
        assert event.occurred_at == utc(2030, 3, 4, 15)
        assert event.next_billing_date == utc(2030, 4, 4, 15)
        assert event.amount == 49.5

    def test_parse_sparse_payload(self):
        event = parse_processor_event("msg_2", {"type": "something.new"})
        assert event.kind == ProcessorEventKind.IGNORED
        assert event.subscription_id is None
        assert event.membership_id is None
        assert event.amount is None
