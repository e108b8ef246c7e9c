from typing import Optional
import uuid
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone

NOTIFICATION_TYPES = ("item_found", "item_claimed", "payment_completed", "bounty_paid", "general")


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)

    # Recipient
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    sender_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")

    # Notification fields
    type: str = Field(index=True)  # one of NOTIFICATION_TYPES

    title: str
    message: str

    item_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="items.id",
        index=True
    )

    is_read: bool = Field(default=False)
