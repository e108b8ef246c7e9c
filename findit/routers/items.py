import uuid
from typing import Literal, Optional
from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from findit.db.db import get_session
from findit.models.user import User
from findit.services.escrow import EscrowCoordinator
from findit.services.lifecycle import ItemLifecycle
from findit.utils.auth_helper import get_current_user_required, get_db_user
from findit.utils.deps import get_escrow, get_lifecycle


router = APIRouter()


class ReportCreateRequest(BaseModel):
    action: Literal["found", "claimed"]
    message: Optional[str] = Field(default=None, max_length=1000)


@router.post("", status_code=201)
async def add_item(
    payload: dict = Body(...),
    session: Session = Depends(get_session),
    lifecycle: ItemLifecycle = Depends(get_lifecycle),
    current_user=Depends(get_current_user_required),
):
    # user lookup
    user = get_db_user(session, current_user)

    item = lifecycle.create_item(user.id, payload)

    return {"item": item}


@router.get("")
async def get_all_items(
    type: Optional[Literal["lost", "found", "bounty"]] = None,
    category: Optional[str] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    lifecycle: ItemLifecycle = Depends(get_lifecycle),
):
    return lifecycle.list_items(
        item_type=type,
        category=category,
        search=search,
        page=page,
        limit=limit,
    )


@router.get("/{item_id}")
async def get_item(
    item_id: uuid.UUID,
    session: Session = Depends(get_session),
    escrow: EscrowCoordinator = Depends(get_escrow),
):
    item = escrow.lifecycle.get_item(item_id)
    owner = session.get(User, item.user_id)

    item_dict = item.model_dump()
    item_dict["escrow_state"] = escrow.escrow_state(item)

    return {
        "item": item_dict,
        "contact_info": {
            "name": owner.name,
            "email": owner.email,
        },
    }


@router.patch("/{item_id}")
async def update_item(
    item_id: uuid.UUID,
    updates: dict = Body(...),
    session: Session = Depends(get_session),
    lifecycle: ItemLifecycle = Depends(get_lifecycle),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    item = lifecycle.update_item(user.id, item_id, updates)

    return {"item": item}


@router.delete("/{item_id}")
async def delete_item(
    item_id: uuid.UUID,
    session: Session = Depends(get_session),
    lifecycle: ItemLifecycle = Depends(get_lifecycle),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    lifecycle.delete_item(user.id, item_id)

    return {"ok": True}


@router.post("/{item_id}/report")
def report_item(
    item_id: uuid.UUID,
    payload: ReportCreateRequest,
    session: Session = Depends(get_session),
    escrow: EscrowCoordinator = Depends(get_escrow),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    report = escrow.record_report(user.id, item_id, payload.action, payload.message)

    return {
        "ok": True,
        "report_id": str(report.id),
    }
