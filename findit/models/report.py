from typing import Optional
import uuid
from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class Report(SQLModel, table=True):
    __tablename__ = "reports"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    item_id: uuid.UUID = Field(foreign_key="items.id", index=True)

    # Finder info
    reporter_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    # Report fields
    action: str  # "found" or "claimed"
    message: Optional[str] = None

    __table_args__ = (
        CheckConstraint("action IN ('found', 'claimed')", name="ck_reports_action"),
    )
