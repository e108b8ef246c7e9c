from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field
from sqlmodel import Session, select

from findit.db.db import get_session
from findit.models.item import Item, ItemStatus, ItemType
from findit.services.gateway import StripeGateway, get_gateway
from findit.utils.auth_helper import get_current_user_required, get_db_user


router = APIRouter()


class PayoutAccountRequest(BaseModel):
    country: str = Field(min_length=2, max_length=2)
    email: EmailStr


@router.get("/me")
async def get_my_profile(
    session: Session = Depends(get_session),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    data = user.model_dump(exclude={"stripe_account_id"})
    data["payout_account_connected"] = user.stripe_account_id is not None

    return data


@router.get("/items")
async def get_my_items(
    session: Session = Depends(get_session),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    items = session.exec(
        select(Item)
        .where(Item.user_id == user.id)
        .where(Item.status != ItemStatus.DELETED)
        .order_by(Item.created_at.desc())
    ).all()

    # Separate by type
    return {
        "lost_items": [item for item in items if item.type == ItemType.LOST],
        "found_items": [item for item in items if item.type == ItemType.FOUND],
        "bounty_items": [item for item in items if item.type == ItemType.BOUNTY],
    }


@router.post("/payout-account")
def create_payout_account(
    payload: PayoutAccountRequest,
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_gateway),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    account_id, onboarding_url = gateway.create_payout_account(payload.email, payload.country.upper())

    user.stripe_account_id = account_id

    session.add(user)
    session.commit()

    return {
        "account_id": account_id,
        "account_link": onboarding_url,
    }


@router.get("/payout-account")
def get_payout_account(
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_gateway),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    if not user.stripe_account_id:
        return {"connected": False, "account": None}

    return {
        "connected": True,
        "account": gateway.payout_account_status(user.stripe_account_id),
    }
