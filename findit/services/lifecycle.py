import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, func, or_, select

from findit.db.db import conditional_update
from findit.models.item import Item, ItemStatus, SettlementStatus
from findit.services.errors import InvalidStateTransition, NotFound
from findit.utils.form_validator import validate_create_item_form, validate_item_updates

logger = logging.getLogger(__name__)


class ItemLifecycle:
    """
    Item status machine: active -> found | claimed | deleted.

    Every non-active status is terminal. Transitions are a single conditional
    UPDATE so two concurrent requests cannot both move the same item.
    """

    def __init__(self, session: Session):
        self.session = session

    def create_item(self, owner_id: uuid.UUID, data: dict) -> Item:
        form = validate_create_item_form(data)

        item = Item(
            user_id=owner_id,
            title=form.title,
            description=form.description,
            category=form.category,
            type=form.item_type,
            location=form.location,
            latitude=form.latitude,
            longitude=form.longitude,
            reward_amount=form.reward_amount,
        )

        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)

        logger.info("Item %s created (%s) by %s", item.id, item.type, owner_id)
        return item

    def get_item(self, item_id: uuid.UUID) -> Item:
        item = self.session.get(Item, item_id)

        if not item or item.status == ItemStatus.DELETED:
            raise NotFound("Item not found")

        return item

    def get_owned_item(self, owner_id: uuid.UUID, item_id: uuid.UUID) -> Item:
        item = self.get_item(item_id)

        # don't reveal other users' items
        if item.user_id != owner_id:
            raise NotFound("Item not found")

        return item

    def list_items(
        self,
        item_type: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        query = select(Item).where(Item.status == ItemStatus.ACTIVE)

        if item_type:
            query = query.where(Item.type == item_type)

        if category and category != "All":
            query = query.where(Item.category == category)

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Item.title.ilike(pattern),
                    Item.description.ilike(pattern),
                    Item.category.ilike(pattern),
                )
            )

        total = self.session.exec(select(func.count()).select_from(query.subquery())).one()

        items = self.session.exec(
            query
            .order_by(Item.is_priority.desc(), Item.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        return {
            "items": items,
            "pagination": {
                "current_page": page,
                "total_pages": (total + limit - 1) // limit,
                "total_items": total,
                "items_per_page": limit,
            },
        }

    def update_item(self, owner_id: uuid.UUID, item_id: uuid.UUID, updates: dict) -> Item:
        item = self.get_owned_item(owner_id, item_id)

        if item.status != ItemStatus.ACTIVE:
            raise InvalidStateTransition(f"Item is {item.status} and can no longer be edited")

        for field, value in validate_item_updates(updates).items():
            setattr(item, field, value)

        item.updated_at = datetime.now(timezone.utc)

        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)

        return item

    def transition(self, item_id: uuid.UUID, to_status: str, *guards) -> None:
        """
        Move an active item to a terminal status within the current
        transaction. Extra ``guards`` are added to the UPDATE's WHERE clause.
        The caller commits.
        """
        if to_status not in ItemStatus.TERMINAL:
            raise InvalidStateTransition(f"Cannot move an item to '{to_status}'")

        changed = conditional_update(
            self.session,
            update(Item)
            .where(Item.id == item_id, Item.status == ItemStatus.ACTIVE, *guards)
            .values(status=to_status, updated_at=datetime.now(timezone.utc)),
        )

        if changed == 0:
            current = self.session.exec(select(Item.status).where(Item.id == item_id)).first()

            if current is None:
                raise NotFound("Item not found")

            if current == ItemStatus.ACTIVE:
                raise InvalidStateTransition("Item changed while the request was processed")

            raise InvalidStateTransition(f"Item is already {current}")

    def delete_item(self, owner_id: uuid.UUID, item_id: uuid.UUID) -> None:
        item = self.get_owned_item(owner_id, item_id)

        # escrowed funds must be paid out before the posting can go away
        if item.is_bounty and item.payment_status == SettlementStatus.PAID:
            raise InvalidStateTransition("A funded bounty cannot be deleted before it is paid out")

        # the same rule inside the UPDATE, against funding that lands after the read above
        self.transition(item.id, ItemStatus.DELETED, Item.payment_status == SettlementStatus.PENDING)
        self.session.commit()

        logger.info("Item %s deleted by %s", item_id, owner_id)
