import uuid
from decimal import Decimal
from typing import Optional
from sqlalchemy import CheckConstraint, Index, text
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class PayoutStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (PENDING, COMPLETED, FAILED)


class Payout(SQLModel, table=True):
    __tablename__ = "payouts"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    item_id: uuid.UUID = Field(foreign_key="items.id", index=True)
    finder_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    amount: Decimal = Field(max_digits=10, decimal_places=2)
    transfer_ref: Optional[str] = Field(default=None, unique=True)

    status: str = Field(default=PayoutStatus.PENDING, index=True)
    failure_reason: Optional[str] = None

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_payouts_status"),
        # A pending or completed row is the per-item payout claim.
        # Failed rows do not count so a failed transfer can be retried.
        Index(
            "uq_payouts_item_active",
            "item_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'completed')"),
            sqlite_where=text("status IN ('pending', 'completed')"),
        ),
    )
