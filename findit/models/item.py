import uuid
from decimal import Decimal
from typing import Optional
from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class ItemType:
    LOST = "lost"
    FOUND = "found"
    BOUNTY = "bounty"

    ALL = (LOST, FOUND, BOUNTY)


class ItemStatus:
    ACTIVE = "active"
    FOUND = "found"
    CLAIMED = "claimed"
    DELETED = "deleted"

    ALL = (ACTIVE, FOUND, CLAIMED, DELETED)
    TERMINAL = (FOUND, CLAIMED, DELETED)


class SettlementStatus:
    # shared by items.payment_status and items.payout_status
    PENDING = "pending"
    PAID = "paid"

    ALL = (PENDING, PAID)


CATEGORIES = (
    "Accessories",
    "Electronics",
    "Bags",
    "Clothing",
    "Documents",
    "Jewelry",
    "Keys",
    "Toys",
    "Sports",
    "Books",
    "Cards",
    "Tools",
    "Pets",
    "Other",
)


def _in(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


class Item(SQLModel, table=True):
    __tablename__ = "items"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Owner info
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    # Item fields
    title: str
    description: str
    category: str = Field(index=True)
    type: str = Field(index=True)  # "lost", "found" or "bounty"
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_priority: bool = Field(default=False)

    # Bounty only
    reward_amount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)

    # Lifecycle
    status: str = Field(default=ItemStatus.ACTIVE, index=True)
    payment_status: str = Field(default=SettlementStatus.PENDING)
    payout_status: str = Field(default=SettlementStatus.PENDING)
    payout_amount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)

    __table_args__ = (
        CheckConstraint(_in("type", ItemType.ALL), name="ck_items_type"),
        CheckConstraint(_in("status", ItemStatus.ALL), name="ck_items_status"),
        CheckConstraint(_in("payment_status", SettlementStatus.ALL), name="ck_items_payment_status"),
        CheckConstraint(_in("payout_status", SettlementStatus.ALL), name="ck_items_payout_status"),
        # reward present and >= 1 exactly for bounty items
        CheckConstraint(
            "(type = 'bounty' AND reward_amount >= 1) OR (type <> 'bounty' AND reward_amount IS NULL)",
            name="ck_items_reward_amount",
        ),
    )

    @property
    def is_bounty(self) -> bool:
        return self.type == ItemType.BOUNTY
