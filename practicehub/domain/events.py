"""
Domain events and their in-process handlers.

Handlers run synchronously on the publisher's session, inside the
publisher's transaction.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List

from sqlalchemy.orm import Session

from .memberships.handlers import handle_visit_credits
from .rewards.handlers import handle_visit_points

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppointmentCompleted:
    """Fired when an appointment reaches completed. The only source of visit ledger activity."""

    client_id: int
    appointment_id: int
    service_price: float
    organization_id: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Registry of event type -> handler functions, run in order
EVENT_HANDLERS: Dict[str, List[Callable[[dict, Session], None]]] = {
    "AppointmentCompleted": [handle_visit_credits, handle_visit_points],
}


def publish(event, db: Session) -> None:
    event_name = type(event).__name__
    handlers = EVENT_HANDLERS.get(event_name, [])
    if not handlers:
        logger.warning(f"⚠️ No handlers registered for {event_name}")
        return
    payload = event.to_dict()
    for handler in handlers:
        handler(payload, db)
    logger.info(f"📣 {event_name} handled by {len(handlers)} handler(s)")
