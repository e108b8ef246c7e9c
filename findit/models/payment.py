import uuid
from decimal import Decimal
from typing import Optional
from sqlalchemy import CheckConstraint, Index, text
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class PaymentStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (PENDING, COMPLETED, FAILED)


class Payment(SQLModel, table=True):
    __tablename__ = "payments"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Payer (the item owner)
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    item_id: uuid.UUID = Field(foreign_key="items.id", index=True)

    amount: Decimal = Field(max_digits=10, decimal_places=2)
    platform_fee: Decimal = Field(max_digits=10, decimal_places=2)

    # PaymentIntent id, unset until the processor accepted the charge
    charge_ref: Optional[str] = Field(default=None, unique=True)

    status: str = Field(default=PaymentStatus.PENDING, index=True)
    failure_reason: Optional[str] = None

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_payments_status"),
        # at most one completed payment per item
        Index(
            "uq_payments_item_completed",
            "item_id",
            unique=True,
            postgresql_where=text("status = 'completed'"),
            sqlite_where=text("status = 'completed'"),
        ),
    )
