import logging
import uuid
from typing import List, Optional

from sqlalchemy import update
from sqlmodel import Session, func, select

from findit.db.db import conditional_update
from findit.models.notification import NOTIFICATION_TYPES, Notification
from findit.services.errors import NotFound

logger = logging.getLogger(__name__)


class Notifier:
    """
    Records in-app notifications. A sent row joins the caller's transaction,
    so a notification exists exactly when the state change it describes was
    committed.
    """

    def __init__(self, session: Session):
        self.session = session

    def send(
        self,
        recipient_id: uuid.UUID,
        type: str,
        title: str,
        message: str,
        item_id: Optional[uuid.UUID] = None,
        sender_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {type}")

        notification = Notification(
            user_id=recipient_id,
            sender_id=sender_id,
            type=type,
            title=title,
            message=message,
            item_id=item_id,
        )
        self.session.add(notification)

        logger.info("Queued %s notification for user %s", type, recipient_id)
        return notification

    def inbox(self, user_id: uuid.UUID, limit: int = 20, unread_only: bool = False) -> List[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)

        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712

        return self.session.exec(query.order_by(Notification.created_at.desc()).limit(limit)).all()

    def unread_count(self, user_id: uuid.UUID) -> int:
        return self.session.exec(
            select(func.count(Notification.id))
            .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
        ).one()

    def mark_read(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> None:
        # scoped to the recipient; anyone else gets a 404
        changed = conditional_update(
            self.session,
            update(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .values(is_read=True),
        )

        if changed == 0:
            self.session.rollback()
            raise NotFound("Notification not found")

        self.session.commit()

    def mark_all_read(self, user_id: uuid.UUID) -> int:
        changed = conditional_update(
            self.session,
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
            .values(is_read=True),
        )
        self.session.commit()

        return changed
