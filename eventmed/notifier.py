"""
Staff notifications.

Notifications are written to the ``notification`` collection; delivery to
devices happens elsewhere.
"""

import logging
import uuid
from datetime import datetime

from eventmed.database import InMemoryKeyValueDatabase
from eventmed.models import Notification, Shift

logger = logging.getLogger(__name__)


async def send_notification(
    db: InMemoryKeyValueDatabase,
    user_id: str,
    message: str,
    *,
    link: str | None = None,
    created_at: datetime,
) -> Notification:
    notification = Notification(
        id=uuid.uuid4().hex,
        user_id=user_id,
        message=message,
        link=link,
        created_at=created_at,
    )
    db.put(f"notification:{notification.id}", notification)
    logger.info("notification %s queued for %s", notification.id, user_id)
    return notification


def assignment_message(shift: Shift) -> str:
    name = shift.event_name or "an event"
    return (
        f"You have been assigned to the shift: {name} on "
        f"{shift.start.date().isoformat()}"
    )
