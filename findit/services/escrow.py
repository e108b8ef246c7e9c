"""
Bounty escrow.

The coordinator is the only code allowed to move money or change payment and
payout rows. Its per-item lifecycle:

    Unfunded -> Funded -> ReadyForPayout -> PaidOut

with Failed as a retryable side state when a charge or transfer is refused.

Nothing is held in memory between requests. Every state change is a
conditional UPDATE (expected state in the WHERE clause, affected rows
checked) or an INSERT guarded by a partial unique index, so concurrent
requests and repeated webhook deliveries converge on one outcome.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from findit.config import Settings
from findit.db.db import conditional_update
from findit.models.item import Item, ItemStatus, SettlementStatus
from findit.models.payment import Payment, PaymentStatus
from findit.models.payout import Payout, PayoutStatus
from findit.models.report import Report
from findit.models.user import User
from findit.services.errors import (
    AmountMismatch,
    GatewayError,
    GatewayTransientError,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from findit.services.fees import FeeSchedule, to_minor_units
from findit.services.gateway import ChargeOutcome, GatewayEvent, StripeGateway
from findit.services.lifecycle import ItemLifecycle
from findit.services.notifier import Notifier

logger = logging.getLogger(__name__)


class EscrowState:
    UNFUNDED = "unfunded"
    FUNDED = "funded"
    READY_FOR_PAYOUT = "ready_for_payout"
    PAID_OUT = "paid_out"
    FAILED = "failed"


PAYMENT_SUCCEEDED_EVENTS = ("payment_intent.succeeded",)
PAYMENT_FAILED_EVENTS = ("payment_intent.payment_failed", "payment_intent.canceled")
TRANSFER_FAILED_EVENTS = ("transfer.failed", "transfer.reversed")


def _now():
    return datetime.now(timezone.utc)


class EscrowCoordinator:
    def __init__(
        self,
        session: Session,
        gateway: StripeGateway,
        settings: Settings,
        notifier: Optional[Notifier] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.fees = FeeSchedule(settings.platform_fee_rate)
        self.notifier = notifier or Notifier(session)
        self.lifecycle = ItemLifecycle(session)

    # State

    def escrow_state(self, item: Item) -> Optional[str]:
        if not item.is_bounty:
            return None

        if item.payout_status == SettlementStatus.PAID:
            return EscrowState.PAID_OUT

        if item.payment_status == SettlementStatus.PAID:
            if item.status not in (ItemStatus.FOUND, ItemStatus.CLAIMED):
                return EscrowState.FUNDED

            last_payout = self.session.exec(
                select(Payout).where(Payout.item_id == item.id).order_by(Payout.created_at.desc())
            ).first()

            if last_payout and last_payout.status == PayoutStatus.FAILED:
                return EscrowState.FAILED

            return EscrowState.READY_FOR_PAYOUT

        last_payment = self.session.exec(
            select(Payment).where(Payment.item_id == item.id).order_by(Payment.created_at.desc())
        ).first()

        if last_payment and last_payment.status == PaymentStatus.FAILED:
            return EscrowState.FAILED

        return EscrowState.UNFUNDED

    # Funding

    def initiate_payment(self, owner_id: uuid.UUID, item_id: uuid.UUID, amount: Decimal) -> dict:
        item = self.lifecycle.get_owned_item(owner_id, item_id)

        if not item.is_bounty:
            raise InvalidStateTransition("Only bounty items can be funded")

        if item.status != ItemStatus.ACTIVE:
            raise InvalidStateTransition(f"Item is {item.status} and can no longer be funded")

        if item.payment_status == SettlementStatus.PAID:
            raise InvalidStateTransition("Bounty is already funded")

        amount = Decimal(str(amount))
        if amount != item.reward_amount:
            raise AmountMismatch(
                f"Payment amount {amount} does not match bounty amount {item.reward_amount}"
            )

        fee = self.fees.platform_fee(item.reward_amount)

        payment = Payment(
            user_id=owner_id,
            item_id=item.id,
            amount=item.reward_amount,
            platform_fee=fee,
        )
        self.session.add(payment)
        self.session.commit()
        self.session.refresh(payment)

        try:
            handle = self.gateway.create_charge(
                amount=to_minor_units(payment.amount),
                fee_amount=to_minor_units(fee),
                metadata={"item_id": item.id, "user_id": owner_id, "payment_id": payment.id},
                idempotency_key=f"payment-{payment.id}",
            )
        except GatewayError as e:
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = e.detail
            payment.updated_at = _now()
            self.session.add(payment)
            self.session.commit()

            logger.warning("Charge for payment %s (item %s) failed: %s", payment.id, item.id, e.detail)
            raise

        payment.charge_ref = handle.charge_ref
        payment.updated_at = _now()
        self.session.add(payment)
        self.session.commit()
        self.session.refresh(payment)

        logger.info("Payment intent %s created for item %s", handle.charge_ref, item.id)

        return {
            "client_secret": handle.client_secret,
            "payment_intent_id": handle.charge_ref,
            "payment_id": payment.id,
            "amount": payment.amount,
            "platform_fee": payment.platform_fee,
            "currency": self.gateway.currency,
        }

    def confirm_payment(
        self,
        charge_ref: str,
        outcome: str,
        failure_reason: Optional[str] = None,
    ) -> Payment:
        """
        Apply a charge outcome. Both the client confirmation and the webhook
        land here; repeated calls with the same outcome change nothing and a
        completed payment is never downgraded.
        """
        payment = self.session.exec(select(Payment).where(Payment.charge_ref == charge_ref)).first()
        if not payment:
            raise NotFound("Payment not found")

        if outcome == ChargeOutcome.SUCCEEDED:
            return self._complete_payment(payment)

        if outcome == ChargeOutcome.FAILED:
            return self._fail_payment(payment, failure_reason or "Payment failed")

        return payment

    def _complete_payment(self, payment: Payment) -> Payment:
        if payment.status == PaymentStatus.COMPLETED:
            logger.info("Payment %s already completed", payment.charge_ref)
            return payment

        try:
            changed = conditional_update(
                self.session,
                update(Payment)
                .where(
                    Payment.id == payment.id,
                    Payment.status.in_([PaymentStatus.PENDING, PaymentStatus.FAILED]),
                )
                .values(status=PaymentStatus.COMPLETED, failure_reason=None, updated_at=_now()),
            )
        except IntegrityError:
            # another charge for this item completed first
            self.session.rollback()
            return self._reject_charge(payment, "Duplicate payment for an already funded bounty")

        if changed == 0:
            # lost a race with another confirmation of the same charge
            self.session.commit()
            self.session.refresh(payment)
            return payment

        # funding and deletion each guard on the other's column, so whichever
        # UPDATE lands second affects no rows
        funded = conditional_update(
            self.session,
            update(Item)
            .where(
                Item.id == payment.item_id,
                Item.payment_status == SettlementStatus.PENDING,
                Item.status != ItemStatus.DELETED,
            )
            .values(payment_status=SettlementStatus.PAID, updated_at=_now()),
        )

        if funded == 0:
            self.session.rollback()
            return self._reject_charge(payment, "Item was deleted before the payment completed")

        item = self.session.get(Item, payment.item_id)
        self.notifier.send(
            recipient_id=item.user_id,
            type="payment_completed",
            title="Bounty funded",
            message=f"Your bounty of {payment.amount} for '{item.title}' is now active.",
            item_id=item.id,
        )

        self.session.commit()
        self.session.refresh(payment)

        logger.info("Payment %s completed, item %s funded", payment.charge_ref, payment.item_id)
        return payment

    def _reject_charge(self, payment: Payment, reason: str) -> Payment:
        """Record a charge that must not fund the item and send the money back."""
        conditional_update(
            self.session,
            update(Payment)
            .where(
                Payment.id == payment.id,
                Payment.status.in_([PaymentStatus.PENDING, PaymentStatus.FAILED]),
            )
            .values(status=PaymentStatus.FAILED, failure_reason=reason, updated_at=_now()),
        )
        self.session.commit()

        # same idempotency key on every attempt, so a retry cannot refund twice
        refund_ref = self.gateway.refund(payment.charge_ref)
        logger.warning("Refunded charge %s (%s): %s", payment.charge_ref, refund_ref, reason)

        self.session.refresh(payment)
        return payment

    def _fail_payment(self, payment: Payment, reason: str) -> Payment:
        changed = conditional_update(
            self.session,
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
            .values(status=PaymentStatus.FAILED, failure_reason=reason, updated_at=_now()),
        )
        self.session.commit()
        self.session.refresh(payment)

        if changed:
            logger.info("Payment %s failed: %s", payment.charge_ref, reason)
        elif payment.status == PaymentStatus.COMPLETED:
            logger.warning("Ignoring failure for completed payment %s", payment.charge_ref)

        return payment

    def confirm_client_payment(self, owner_id: uuid.UUID, item_id: uuid.UUID, charge_ref: str) -> Payment:
        payment = self.session.exec(select(Payment).where(Payment.charge_ref == charge_ref)).first()

        if not payment or payment.user_id != owner_id or payment.item_id != item_id:
            raise NotFound("Payment not found")

        if payment.status == PaymentStatus.COMPLETED:
            return payment

        outcome = self.gateway.retrieve_charge(charge_ref)
        if outcome == ChargeOutcome.PENDING:
            raise InvalidStateTransition("Payment not completed")

        payment = self.confirm_payment(charge_ref, outcome)

        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidStateTransition(f"Payment failed: {payment.failure_reason}")

        return payment

    # Finding

    def record_report(
        self,
        reporter_id: uuid.UUID,
        item_id: uuid.UUID,
        action: str,
        message: Optional[str] = None,
    ) -> Report:
        if action not in (ItemStatus.FOUND, ItemStatus.CLAIMED):
            raise ValidationError(f"Unknown report action '{action}'")

        item = self.lifecycle.get_item(item_id)

        if item.user_id == reporter_id:
            raise ValidationError("You cannot report your own item")

        if item.is_bounty and item.payment_status != SettlementStatus.PAID:
            raise InvalidStateTransition("Bounty has not been funded yet")

        self.lifecycle.transition(item.id, action)

        report = Report(item_id=item.id, reporter_id=reporter_id, action=action, message=message)
        self.session.add(report)

        self.notifier.send(
            recipient_id=item.user_id,
            sender_id=reporter_id,
            type=f"item_{action}",
            title=f"Your item was {action}",
            message=message or f"Someone reported '{item.title}' as {action}.",
            item_id=item.id,
        )

        self.session.commit()
        self.session.refresh(report)

        logger.info("Item %s reported %s by %s", item.id, action, reporter_id)
        return report

    # Payout

    def initiate_payout(self, owner_id: uuid.UUID, item_id: uuid.UUID, finder_id: uuid.UUID) -> Payout:
        item = self.lifecycle.get_owned_item(owner_id, item_id)

        if not item.is_bounty:
            raise InvalidStateTransition("Only bounty items can be paid out")

        if item.payout_status == SettlementStatus.PAID:
            raise InvalidStateTransition("Bounty has already been paid out")

        if item.payment_status != SettlementStatus.PAID:
            raise InvalidStateTransition("Bounty has not been funded yet")

        if item.status not in (ItemStatus.FOUND, ItemStatus.CLAIMED):
            raise InvalidStateTransition("Item has not been reported found")

        report = self.session.exec(
            select(Report).where(Report.item_id == item.id).order_by(Report.created_at.desc())
        ).first()

        if not report or report.reporter_id != finder_id:
            raise ValidationError("Finder must be the user who reported the item")

        finder = self.session.get(User, finder_id)
        if not finder:
            raise NotFound("Finder not found")

        if not finder.stripe_account_id:
            raise ValidationError("Finder has not set up a payout account")

        payout = self._claim_payout(item, finder)

        try:
            transfer_ref = self.gateway.transfer(
                amount=to_minor_units(payout.amount),
                destination=finder.stripe_account_id,
                metadata={
                    "item_id": item_id,
                    "finder_id": finder_id,
                    "payout_id": payout.id,
                    "bounty_amount": item.reward_amount,
                },
                idempotency_key=f"payout-{payout.id}",
            )
        except GatewayTransientError as e:
            # The transfer may have gone through. Keep the claim pending and
            # record the error; a retry reuses this row and its idempotency key.
            conditional_update(
                self.session,
                update(Payout)
                .where(Payout.id == payout.id, Payout.status == PayoutStatus.PENDING)
                .values(failure_reason=e.detail, updated_at=_now()),
            )
            self.session.commit()

            logger.warning("Payout %s for item %s interrupted, kept pending: %s", payout.id, item_id, e.detail)
            raise
        except GatewayError as e:
            conditional_update(
                self.session,
                update(Payout)
                .where(Payout.id == payout.id, Payout.status == PayoutStatus.PENDING)
                .values(status=PayoutStatus.FAILED, failure_reason=e.detail, updated_at=_now()),
            )
            self.session.commit()

            logger.warning("Payout %s for item %s failed: %s", payout.id, item_id, e.detail)
            raise

        conditional_update(
            self.session,
            update(Payout)
            .where(Payout.id == payout.id, Payout.status == PayoutStatus.PENDING)
            .values(
                status=PayoutStatus.COMPLETED,
                transfer_ref=transfer_ref,
                failure_reason=None,
                updated_at=_now(),
            ),
        )

        conditional_update(
            self.session,
            update(Item)
            .where(Item.id == item_id, Item.payout_status == SettlementStatus.PENDING)
            .values(payout_status=SettlementStatus.PAID, payout_amount=payout.amount, updated_at=_now()),
        )

        self.notifier.send(
            recipient_id=finder_id,
            sender_id=owner_id,
            type="bounty_paid",
            title="Bounty paid",
            message=f"You received {payout.amount} for finding '{item.title}'.",
            item_id=item_id,
        )

        self.session.commit()
        self.session.refresh(payout)

        logger.info("Payout %s completed with transfer %s", payout.id, transfer_ref)
        return payout

    def _claim_payout(self, item: Item, finder: User) -> Payout:
        """
        Take the item's single payout claim. A pending payout left behind by an
        interrupted transfer is re-claimed instead of inserting a new row, so
        the retry reaches the processor with the original idempotency key.
        """
        interrupted = self.session.exec(
            select(Payout).where(
                Payout.item_id == item.id,
                Payout.status == PayoutStatus.PENDING,
                Payout.failure_reason.is_not(None),
            )
        ).first()

        if interrupted:
            # clearing the recorded error is the compare-and-set that picks one retrier
            resumed = conditional_update(
                self.session,
                update(Payout)
                .where(
                    Payout.id == interrupted.id,
                    Payout.status == PayoutStatus.PENDING,
                    Payout.failure_reason.is_not(None),
                )
                .values(failure_reason=None, updated_at=_now()),
            )
            self.session.commit()

            if not resumed:
                raise InvalidStateTransition("A payout for this item is already in progress or completed")

            self.session.refresh(interrupted)
            logger.info("Payout %s resumed for item %s", interrupted.id, item.id)
            return interrupted

        payout = Payout(item_id=item.id, finder_id=finder.id, amount=self.fees.finder_share(item.reward_amount))
        self.session.add(payout)

        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise InvalidStateTransition("A payout for this item is already in progress or completed")

        self.session.refresh(payout)
        logger.info("Payout %s claimed for item %s", payout.id, item.id)
        return payout

    def fail_payout(self, transfer_ref: str, reason: Optional[str] = None) -> Optional[Payout]:
        payout = self.session.exec(select(Payout).where(Payout.transfer_ref == transfer_ref)).first()
        if not payout:
            logger.warning("Transfer %s does not match any payout", transfer_ref)
            return None

        changed = conditional_update(
            self.session,
            update(Payout)
            .where(Payout.id == payout.id, Payout.status == PayoutStatus.PENDING)
            .values(status=PayoutStatus.FAILED, failure_reason=reason or "Transfer failed", updated_at=_now()),
        )
        self.session.commit()
        self.session.refresh(payout)

        if not changed and payout.status == PayoutStatus.COMPLETED:
            # money already left; needs manual reconciliation
            logger.error("Transfer %s failed after payout %s completed", transfer_ref, payout.id)

        return payout

    # Webhooks

    def handle_event(self, event: GatewayEvent):
        if event.type in PAYMENT_SUCCEEDED_EVENTS:
            return self.confirm_payment(event.object_id, ChargeOutcome.SUCCEEDED)

        if event.type in PAYMENT_FAILED_EVENTS:
            return self.confirm_payment(event.object_id, ChargeOutcome.FAILED, event.failure_reason)

        if event.type in TRANSFER_FAILED_EVENTS:
            return self.fail_payout(event.object_id, event.failure_reason)

        logger.info("Unhandled event type %s (%s)", event.type, event.id)
        return None

    # History

    def payment_history(self, user_id: uuid.UUID, page: int = 1, limit: int = 20) -> dict:
        rows = self.session.exec(
            select(Payment, Item)
            .join(Item, Item.id == Payment.item_id)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        total = self.session.exec(
            select(func.count(Payment.id)).where(Payment.user_id == user_id)
        ).one()

        payments = []
        for payment, item in rows:
            data = payment.model_dump()
            data["item_title"] = item.title
            data["item_type"] = item.type
            payments.append(data)

        return {
            "payments": payments,
            "pagination": {
                "current_page": page,
                "total_pages": (total + limit - 1) // limit,
                "total_payments": total,
                "payments_per_page": limit,
            },
        }
