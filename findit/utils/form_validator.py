from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from findit.services.errors import ValidationError

Category = Literal[
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
]


class ValidatedCreateItem(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    item_type: Literal["lost", "found", "bounty"]
    title: str = Field(min_length=3, max_length=100)
    description: str = Field(min_length=10, max_length=1000)
    category: Category
    location: Optional[str] = Field(default=None, max_length=255)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    reward_amount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)

    @model_validator(mode="after")
    def check_reward(self):
        if self.item_type == "bounty":
            if self.reward_amount is None or self.reward_amount < 1:
                raise ValueError("Bounty items must have a reward amount of at least 1")
        elif self.reward_amount is not None:
            raise ValueError("Only bounty items can carry a reward amount")
        return self


class ValidatedItemUpdate(BaseModel):
    # reward, type and statuses are deliberately absent
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=1000)
    category: Optional[Category] = None
    location: Optional[str] = Field(default=None, max_length=255)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def check_required_not_cleared(self):
        for field in ("title", "description", "category"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"Field '{field}' cannot be cleared")
        return self


def _error_details(e: PydanticValidationError) -> list:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in e.errors()
    ]


def validate_create_item_form(data: dict) -> ValidatedCreateItem:
    try:
        return ValidatedCreateItem.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError("Validation failed", details=_error_details(e))


def validate_item_updates(updates: dict) -> dict:
    if not updates:
        raise ValidationError("No fields to update")

    try:
        validated = ValidatedItemUpdate.model_validate(updates)
    except PydanticValidationError as e:
        raise ValidationError("Validation failed", details=_error_details(e))

    return validated.model_dump(exclude_unset=True)
