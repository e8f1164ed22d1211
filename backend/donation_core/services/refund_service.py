"""
Refund Service — partial and full refunds against completed payments.

Preconditions, first failure wins: admin actor, payment exists, payment is
completed, 0 < amount <= gross - already refunded. The write is a
conditional UPDATE keyed on the refunded amount that was read, so two
concurrent partial refunds cannot push the total past the gross amount.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from donation_core.config import get_settings
from donation_core.errors import NotFound, InvalidState, InvalidAmount, ConcurrentModification, GatewayError
from donation_core.models.payment import PaymentRecord, PaymentStatus
from donation_core.services.access import Actor, require_admin
from donation_core.services.audit_service import AuditService
from donation_core.services.gateway import PaymentGateway
from donation_core.services.payment_service import ensure_transition
from donation_core.utils.dates import utcnow
from donation_core.utils.logger import log_event

settings = get_settings()


class RefundService:

    @staticmethod
    def _load(db: Session, payment_id: int) -> PaymentRecord:
        payment = (
            db.query(PaymentRecord)
            .filter(PaymentRecord.id == payment_id)
            .populate_existing()
            .first()
        )
        if not payment:
            raise NotFound("Payment not found")
        return payment

    @staticmethod
    def validate(payment: PaymentRecord, amount: int) -> None:
        """Raise InvalidState / InvalidAmount if `amount` cannot be refunded now."""
        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidState("Only completed payments can be refunded")
        already = payment.refunded_amount or 0
        if amount <= 0:
            raise InvalidAmount("Refund amount must be greater than zero")
        if amount + already > payment.amount:
            raise InvalidAmount(
                "Refund amount exceeds the refundable balance",
                detail=f"requested={amount} refunded={already} gross={payment.amount}",
            )
        if not payment.gateway_payment_id:
            raise InvalidState("Payment has no captured gateway transaction to refund")

    @staticmethod
    def refund(
        db: Session,
        gateway: PaymentGateway,
        payment_id: int,
        amount: int,
        reason: str,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> PaymentRecord:
        """Refund `amount` paise of a completed payment.

        A refund that brings the cumulative total to the gross amount moves
        the payment to `refunded`; a partial refund leaves it `completed`.
        Subscription totals are a ledger of gross charges and are not touched.

        Raises:
            Forbidden, NotFound, InvalidState, InvalidAmount: preconditions.
            GatewayError: provider refused or timed out; nothing is written.
            ConcurrentModification: lost the race REFUND_MAX_RETRIES times.
        """
        require_admin(actor, "issue refunds")

        for attempt in range(1, settings.REFUND_MAX_RETRIES + 1):
            payment = RefundService._load(db, payment_id)
            RefundService.validate(payment, amount)

            before = payment.snapshot()
            previous = payment.refunded_amount or 0
            cumulative = previous + amount
            target = PaymentStatus.REFUNDED if cumulative == payment.amount else PaymentStatus.COMPLETED
            if target != payment.status:
                ensure_transition(payment.status, target)

            updated = (
                db.query(PaymentRecord)
                .filter(
                    PaymentRecord.id == payment_id,
                    PaymentRecord.status == PaymentStatus.COMPLETED,
                    PaymentRecord.refunded_amount == previous,
                )
                .update(
                    {
                        PaymentRecord.refunded_amount: cumulative,
                        PaymentRecord.status: target,
                        PaymentRecord.refund_reason: reason[:255],
                        PaymentRecord.refunded_at: now or utcnow(),
                        PaymentRecord.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.rollback()
                log_event("refunds", f"payment {payment_id}: refund lost a race (attempt {attempt}), re-reading")
                continue

            # The row stays locked by the uncommitted update while the provider is called.
            try:
                result = gateway.refund_payment(
                    payment.gateway_payment_id, amount,
                    notes={"reason": reason, "refunded_by": actor.id},
                )
            except GatewayError:
                db.rollback()
                log_event("refunds", f"payment {payment_id}: gateway refused refund of {amount}, nothing written")
                raise

            db.query(PaymentRecord).filter(PaymentRecord.id == payment_id).update(
                {PaymentRecord.gateway_refund_id: result.refund_id}, synchronize_session=False,
            )
            db.flush()
            payment = RefundService._load(db, payment_id)

            AuditService.log(
                db, "payment", payment.id, "PAYMENT_REFUNDED",
                before=before, after=payment.snapshot(), actor_id=actor.id,
                metadata={"amount": amount, "reason": reason, "refund_id": result.refund_id},
            )
            db.commit()
            db.refresh(payment)
            log_event(
                "refunds",
                f"payment {payment.id}: refunded {amount} (total {payment.refunded_amount}/{payment.amount}), "
                f"status {before['status']} -> {payment.status.value}",
            )
            return payment

        raise ConcurrentModification("The payment was modified concurrently; please retry the refund")
