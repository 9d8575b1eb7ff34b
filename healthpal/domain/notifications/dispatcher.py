"""
Notification dispatcher

Domain services collect NotificationEvent objects during a state transition
and hand them over only after their own commit succeeded. Delivery failures
are logged and reported in the result; they never propagate back into the
booking or payment flow.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...models import Notification, NotificationType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    """A user-facing event produced by a successful state transition"""

    user_id: str
    type: NotificationType
    title: str
    message: str
    data: dict = field(default_factory=dict)


class NotificationDispatcher:
    """Persists events as in-app notifications"""

    def __init__(self, db: Session):
        self.db = db

    def dispatch(self, events: Iterable[NotificationEvent]) -> dict:
        """
        Store each event as a Notification row

        Returns:
            Dict with delivered count and the error message, if any
        """
        events = list(events)
        result = {"delivered": 0, "error": None}
        if not events:
            return result

        try:
            for event in events:
                self.db.add(
                    Notification(
                        user_id=event.user_id,
                        type=event.type.value,
                        title=event.title,
                        message=event.message,
                        data=event.data,
                    )
                )
            self.db.commit()
            result["delivered"] = len(events)
            logger.info(
                f"🔔 Dispatched {len(events)} notification(s): "
                f"{', '.join(e.type.value for e in events)}"
            )
        except Exception as e:
            self.db.rollback()
            result["error"] = str(e)
            logger.error(f"❌ Failed to dispatch notifications: {e}")

        return result


def get_notification_dispatcher(db: Session = Depends(get_db)) -> NotificationDispatcher:
    """Dependency injection for NotificationDispatcher"""
    return NotificationDispatcher(db)


def appointment_event(
    user_id: Optional[str],
    type: NotificationType,
    title: str,
    message: str,
    appointment_id: str,
    **extra,
) -> list[NotificationEvent]:
    """Build a single-event list, or nothing when the recipient is unknown"""
    if not user_id:
        return []
    return [
        NotificationEvent(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data={"appointmentId": appointment_id, **extra},
        )
    ]
