import logging
import uuid
from decimal import Decimal
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlmodel import Session

from findit.db.db import get_session
from findit.services.errors import FindItError, SignatureInvalid
from findit.services.escrow import EscrowCoordinator
from findit.utils.auth_helper import get_current_user_required, get_db_user
from findit.utils.deps import get_escrow

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateIntentRequest(BaseModel):
    item_id: uuid.UUID
    amount: Decimal = Field(ge=1, max_digits=10, decimal_places=2)


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str = Field(min_length=1)
    item_id: uuid.UUID


class PayoutRequest(BaseModel):
    item_id: uuid.UUID
    finder_id: uuid.UUID


@router.post("/create-intent")
def create_payment_intent(
    payload: CreateIntentRequest,
    session: Session = Depends(get_session),
    escrow: EscrowCoordinator = Depends(get_escrow),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    return escrow.initiate_payment(user.id, payload.item_id, payload.amount)


@router.post("/confirm")
def confirm_payment(
    payload: ConfirmPaymentRequest,
    session: Session = Depends(get_session),
    escrow: EscrowCoordinator = Depends(get_escrow),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    payment = escrow.confirm_client_payment(user.id, payload.item_id, payload.payment_intent_id)

    return {
        "ok": True,
        "payment_id": str(payment.id),
        "status": payment.status,
    }


@router.post("/payout")
def process_payout(
    payload: PayoutRequest,
    session: Session = Depends(get_session),
    escrow: EscrowCoordinator = Depends(get_escrow),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    payout = escrow.initiate_payout(user.id, payload.item_id, payload.finder_id)

    return {
        "ok": True,
        "payout_id": str(payout.id),
        "amount": payout.amount,
        "transfer_id": payout.transfer_ref,
    }


@router.get("/history")
def get_payment_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    session: Session = Depends(get_session),
    escrow: EscrowCoordinator = Depends(get_escrow),
    current_user=Depends(get_current_user_required),
):
    user = get_db_user(session, current_user)

    return escrow.payment_history(user.id, page=page, limit=limit)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    escrow: EscrowCoordinator = Depends(get_escrow),
):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = escrow.gateway.construct_event(payload, signature)
    except SignatureInvalid as e:
        logger.warning("SECURITY: rejected webhook from %s: %s", request.client.host if request.client else "unknown", e.detail)
        raise

    # Always acknowledge a verified event; the processor would otherwise keep
    # redelivering it. Failures stay in the ledger for reconciliation.
    try:
        escrow.handle_event(event)
    except FindItError as e:
        logger.warning("Webhook %s (%s) not applied: %s", event.id, event.type, e.detail)
    except Exception:
        logger.exception("Webhook %s (%s) processing failed", event.id, event.type)

    return {"received": True}
