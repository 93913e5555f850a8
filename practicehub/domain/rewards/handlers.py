"""Visit handlers for reward points"""

import logging

from sqlalchemy.orm import Session

from ..memberships.credit_ledger import is_spendable
from ..memberships.repository import MembershipRepository
from .ledger import RewardsLedger, points_for_visit

logger = logging.getLogger(__name__)


def handle_visit_points(payload: dict, db: Session) -> None:
    """Award visit points using the tier bonus in effect at completion time"""
    membership = MembershipRepository.get_by_client(
        db, payload["client_id"], payload["organization_id"]
    )
    multiplier = 0.0
    if membership is not None and membership.tier is not None and is_spendable(membership):
        multiplier = membership.tier.points_multiplier or 0.0

    points = points_for_visit(payload["service_price"], multiplier)
    if points <= 0:
        return

    RewardsLedger(db).append_once(
        payload["client_id"],
        payload["organization_id"],
        points,
        reason=f"Visit: appointment #{payload['appointment_id']}",
        reference_type="appointment",
        reference_id=payload["appointment_id"],
    )
