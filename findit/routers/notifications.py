import uuid
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from findit.db.db import get_session
from findit.services.notifier import Notifier
from findit.utils.auth_helper import get_current_user_required, get_db_user
from findit.utils.deps import get_notifier


router = APIRouter()


@router.get("")
async def get_my_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = False,
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    return {"notifications": notifier.inbox(user.id, limit=limit, unread_only=unread_only)}


@router.get("/count")
async def get_unread_notifications_count(
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    return {"count": notifier.unread_count(user.id)}


@router.post("/{notification_id}/mark-read")
async def mark_notification_read(
    notification_id: uuid.UUID,
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    notifier.mark_read(user.id, notification_id)

    return {"ok": True}


@router.post("/mark-all-read")
async def mark_all_notifications_read(
    session: Session = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    updated = notifier.mark_all_read(user.id)

    return {"ok": True, "updated": updated}
