import uuid
from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    name: str
    email: str = Field(index=True, unique=True)
    image: Optional[str] = Field(default=None)

    role: str = Field(default="user")  # Possible roles: user, admin

    # Connected payout account, required before a bounty can be paid to this user
    stripe_account_id: Optional[str] = Field(default=None)
