"""Visit handlers for membership credits"""

import logging

from sqlalchemy.orm import Session

from .credit_ledger import CreditLedger, is_spendable
from .repository import MembershipRepository

logger = logging.getLogger(__name__)


def handle_visit_credits(payload: dict, db: Session) -> None:
    """
    Pay for a completed visit: membership credits first, otherwise an
    appointment charge at the tier's member discount.
    """
    price = round(float(payload["service_price"]), 2)
    if price <= 0:
        return

    repo = MembershipRepository()
    membership = repo.get_by_client(db, payload["client_id"], payload["organization_id"])

    if membership is not None:
        result = CreditLedger(db).debit(
            membership.id,
            price,
            reason=f"Appointment #{payload['appointment_id']}",
            appointment_id=payload["appointment_id"],
        )
        if result.applied:
            return

    discount = 0.0
    if membership is not None and membership.tier is not None and is_spendable(membership):
        discount = membership.tier.discount_percentage or 0.0
    amount = round(price * (1 - discount / 100), 2)

    repo.add_transaction(
        db,
        organization_id=payload["organization_id"],
        client_id=payload["client_id"],
        appointment_id=payload["appointment_id"],
        membership_id=membership.id if membership else None,
        type="appointment_charge",
        amount=amount,
        status="pending",
        description=f"Appointment #{payload['appointment_id']}",
        transaction_metadata={"list_price": price, "discount_percentage": discount},
    )
    logger.info(
        f"🧾 Appointment {payload['appointment_id']} charged {amount} (discount {discount}%)"
    )
