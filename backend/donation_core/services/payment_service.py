"""
Payment Service — lifecycle of a single donation payment.

pending -> completed | failed, completed -> refunded (see refund_service).
Every transition is checked against PAYMENT_TRANSITIONS before anything is
written, and every mutation is audit-logged with before/after snapshots.
"""
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from donation_core.config import get_settings
from donation_core.errors import (
    NotFound, InvalidTransition, InvalidAmount, InvalidDonor, Forbidden, GatewayError,
    ReconciliationRequired,
)
from donation_core.models.payment import PaymentRecord, PaymentStatus, PAYMENT_TRANSITIONS
from donation_core.services.audit_service import AuditService
from donation_core.services.gateway import PaymentGateway
from donation_core.utils.dates import utcnow
from donation_core.utils.logger import log_event
from donation_core.utils.validators import normalize_pan, sanitize_name, validate_email

settings = get_settings()


@dataclass
class Donor:
    """Donor identity as supplied by the checkout form / identity service."""

    name: str
    email: str
    id: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    pan: Optional[str] = None
    is_anonymous: bool = False

    def check(self) -> None:
        """Raise InvalidDonor unless the details can go on a receipt."""
        if not sanitize_name(self.name):
            raise InvalidDonor("Donor name is required")
        if not validate_email(self.email):
            raise InvalidDonor("A valid donor email address is required")


def ensure_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    """Raise InvalidTransition unless current -> target is allowed."""
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidTransition(f"Payment cannot move from {current.value} to {target.value}")


def receipt_number_for(payment: PaymentRecord, completed_at: datetime) -> str:
    """Organization prefix + completion year + zero-padded record id."""
    return f"{settings.RECEIPT_PREFIX}-{completed_at.year}-{payment.id:08d}"


class PaymentService:
    """Creates payment records and drives their status transitions."""

    # ─── Lookups ────────────────────────────────────────────────────

    @staticmethod
    def get(db: Session, payment_id: int) -> PaymentRecord:
        payment = db.get(PaymentRecord, payment_id)
        if not payment:
            raise NotFound("Payment not found")
        return payment

    @staticmethod
    def get_by_order(db: Session, order_id: str) -> PaymentRecord:
        payment = db.query(PaymentRecord).filter(PaymentRecord.order_id == order_id).first()
        if not payment:
            raise NotFound("Payment not found")
        return payment

    # ─── Creation ───────────────────────────────────────────────────

    @staticmethod
    def create_pending(
        db: Session,
        order_id: str,
        amount: int,
        donor: Donor,
        campaign_id: Optional[str] = None,
        subscription_id: Optional[int] = None,
        billing_date: Optional[date] = None,
        message: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> PaymentRecord:
        """Record a new payment in `pending` with no receipt number (flushed, not committed)."""
        if amount <= 0:
            raise InvalidAmount("Donation amount must be greater than zero")

        payment = PaymentRecord(
            order_id=order_id,
            amount=amount,
            fee=0,
            net_amount=0,
            currency="INR",
            status=PaymentStatus.PENDING,
            donor_id=donor.id,
            donor_name=sanitize_name(donor.name),
            donor_email=donor.email.strip().lower(),
            donor_phone=donor.phone,
            donor_address=donor.address,
            donor_pan=normalize_pan(donor.pan),
            is_anonymous=donor.is_anonymous,
            message=message,
            campaign_id=campaign_id,
            subscription_id=subscription_id,
            billing_date=billing_date,
            refunded_amount=0,
        )
        db.add(payment)
        db.flush()  # Get the ID

        AuditService.log(
            db, "payment", payment.id, "PAYMENT_CREATED",
            before={}, after=payment.snapshot(), actor_id=actor_id or donor.id,
            metadata={"order_id": order_id, "subscription_id": subscription_id},
        )
        return payment

    @staticmethod
    def create_order(
        db: Session,
        gateway: PaymentGateway,
        amount: int,
        donor: Donor,
        campaign_id: Optional[str] = None,
        message: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> PaymentRecord:
        """Open a gateway order for a one-time donation and persist it as pending."""
        donor.check()
        if amount <= 0:
            raise InvalidAmount("Donation amount must be greater than zero")

        order = gateway.create_order(
            amount,
            receipt=f"rcpt_{uuid.uuid4().hex[:12]}",
            notes={"donor_email": donor.email, "campaign_id": campaign_id or ""},
        )
        payment = PaymentService.create_pending(
            db, order.order_id, amount, donor,
            campaign_id=campaign_id, message=message, actor_id=actor_id,
        )
        db.commit()
        db.refresh(payment)
        log_event("payments", f"order {order.order_id} opened for {amount} paise (payment {payment.id})")
        return payment

    # ─── Transitions ────────────────────────────────────────────────

    @staticmethod
    def _complete(
        db: Session,
        payment: PaymentRecord,
        gateway_payment_id: Optional[str],
        fee: int,
        actor_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> PaymentRecord:
        ensure_transition(payment.status, PaymentStatus.COMPLETED)
        if fee < 0 or fee > payment.amount:
            raise InvalidAmount("Gateway fee must be between zero and the gross amount")

        before = payment.snapshot()
        completed_at = now or utcnow()

        payment.status = PaymentStatus.COMPLETED
        payment.gateway_payment_id = gateway_payment_id or payment.gateway_payment_id
        payment.fee = fee
        payment.net_amount = payment.amount - fee
        payment.completed_at = completed_at
        payment.failure_reason = None
        payment.organization_snapshot = settings.organization_details()
        if not payment.receipt_number:
            payment.receipt_number = receipt_number_for(payment, completed_at)
        db.flush()

        AuditService.log(
            db, "payment", payment.id, "PAYMENT_COMPLETED",
            before=before, after=payment.snapshot(), actor_id=actor_id,
            metadata={"gateway_payment_id": payment.gateway_payment_id},
        )

        if payment.subscription_id:
            from donation_core.services.subscription_service import SubscriptionService
            SubscriptionService.handle_charge_success(db, payment)

        return payment

    @staticmethod
    def _fail(db: Session, payment: PaymentRecord, reason: str, actor_id: Optional[str]) -> PaymentRecord:
        ensure_transition(payment.status, PaymentStatus.FAILED)

        before = payment.snapshot()
        payment.status = PaymentStatus.FAILED
        payment.failure_reason = (reason or "")[:255]
        db.flush()

        AuditService.log(
            db, "payment", payment.id, "PAYMENT_FAILED",
            before=before, after=payment.snapshot(), actor_id=actor_id,
            metadata={"reason": payment.failure_reason},
        )

        if payment.subscription_id and payment.billing_date:
            from donation_core.services.subscription_service import SubscriptionService
            SubscriptionService.handle_charge_failure(db, payment)

        return payment

    @staticmethod
    def mark_completed(
        db: Session,
        payment: PaymentRecord,
        gateway_payment_id: Optional[str],
        fee: int,
        actor_id: Optional[str] = "system",
        now: Optional[datetime] = None,
    ) -> PaymentRecord:
        """pending -> completed. Computes net amount and assigns the receipt number.

        Raises:
            InvalidTransition: payment is not pending.
            InvalidAmount: fee outside [0, gross].
        """
        try:
            PaymentService._complete(db, payment, gateway_payment_id, fee, actor_id, now)
        except Exception:
            db.rollback()
            raise
        db.commit()
        db.refresh(payment)
        log_event("payments", f"payment {payment.id} completed, receipt {payment.receipt_number}")
        return payment

    @staticmethod
    def mark_failed(
        db: Session,
        payment: PaymentRecord,
        reason: str,
        actor_id: Optional[str] = "system",
    ) -> PaymentRecord:
        """pending -> failed. Raises InvalidTransition from any other status."""
        try:
            PaymentService._fail(db, payment, reason, actor_id)
        except Exception:
            db.rollback()
            raise
        db.commit()
        db.refresh(payment)
        log_event("payments", f"payment {payment.id} failed: {reason}")
        return payment

    # ─── Gateway capture ────────────────────────────────────────────

    @staticmethod
    def capture(
        db: Session,
        gateway: PaymentGateway,
        payment: PaymentRecord,
        gateway_payment_id: str,
        signature: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> PaymentRecord:
        """Verify and capture a checkout payment.

        Outcomes:
            captured            -> completed
            hard decline        -> failed, GatewayDeclined re-raised
            timeout / 5xx / I/O -> stays pending, GatewayError re-raised
        """
        ensure_transition(payment.status, PaymentStatus.COMPLETED)

        if signature is not None:
            if not gateway.verify_payment_signature(payment.order_id, gateway_payment_id, signature):
                log_event("payments", f"signature mismatch for order {payment.order_id}")
                raise Forbidden("Payment signature could not be verified")
            payment.gateway_signature = signature

        try:
            captured = gateway.capture_payment(gateway_payment_id, payment.amount)
        except GatewayError as exc:
            if exc.retryable:
                # Capture outcome unknown: leave the record pending so it can be retried.
                db.rollback()
                log_event("payments", f"capture of payment {payment.id} deferred, record left pending")
                raise
            payment.gateway_payment_id = gateway_payment_id
            PaymentService.mark_failed(db, payment, exc.message, actor_id=actor_id)
            raise

        return PaymentService.mark_completed(db, payment, captured.payment_id, captured.fee, actor_id=actor_id)

    # ─── Webhooks ───────────────────────────────────────────────────

    @staticmethod
    def apply_webhook(db: Session, event: str, entity: dict) -> Optional[PaymentRecord]:
        """Reconcile a gateway payment event against the order's record.

        A failed attempt does not settle the order: the donor can retry
        checkout on it, so the record stays pending. A capture the record
        cannot absorb is audited once and raises ReconciliationRequired.
        Replays of settled events are no-ops.
        """
        order_id = entity.get("order_id")
        if not order_id:
            return None
        payment = db.query(PaymentRecord).filter(PaymentRecord.order_id == order_id).first()
        if not payment:
            log_event("webhooks", f"{event} for unknown order {order_id}")
            return None

        gateway_payment_id = entity.get("id")
        if event == "payment.failed":
            if payment.status == PaymentStatus.PENDING:
                PaymentService._record_failed_attempt(
                    db, payment, gateway_payment_id,
                    entity.get("error_description") or "Declined by gateway",
                )
            return payment

        if event != "payment.captured":
            return payment
        if payment.status == PaymentStatus.PENDING:
            return PaymentService.mark_completed(
                db, payment, gateway_payment_id, int(entity.get("fee") or 0), actor_id="webhook",
            )
        if payment.status != PaymentStatus.FAILED and payment.gateway_payment_id == gateway_payment_id:
            return payment
        PaymentService._flag_unmatched_capture(db, payment, entity)

    @staticmethod
    def _record_failed_attempt(db: Session, payment: PaymentRecord, gateway_payment_id: Optional[str],
                               reason: str) -> PaymentRecord:
        payment.failure_reason = reason[:255]
        AuditService.log(
            db, "payment", payment.id, "PAYMENT_ATTEMPT_FAILED",
            before=payment.snapshot(), after=payment.snapshot(), actor_id="webhook",
            metadata={"gateway_payment_id": gateway_payment_id, "reason": payment.failure_reason},
        )
        db.commit()
        db.refresh(payment)
        log_event("payments", f"payment {payment.id}: attempt {gateway_payment_id} failed, order still open")
        return payment

    @staticmethod
    def _flag_unmatched_capture(db: Session, payment: PaymentRecord, entity: dict) -> None:
        """Audit a capture on a settled or failed record (once per gateway payment) and raise."""
        gateway_payment_id = entity.get("id")
        flagged = any(
            entry.action == "PAYMENT_CAPTURE_UNMATCHED"
            and (entry.log_metadata or {}).get("gateway_payment_id") == gateway_payment_id
            for entry in AuditService.get_trail(db, "payment", payment.id)
        )
        if not flagged:
            AuditService.log(
                db, "payment", payment.id, "PAYMENT_CAPTURE_UNMATCHED",
                before=payment.snapshot(), after=payment.snapshot(), actor_id="webhook",
                metadata={
                    "gateway_payment_id": gateway_payment_id,
                    "amount": entity.get("amount"),
                    "recorded_gateway_payment_id": payment.gateway_payment_id,
                },
            )
            db.commit()
        log_event(
            "payments",
            f"payment {payment.id} is {payment.status.value} but gateway captured {gateway_payment_id}",
        )
        raise ReconciliationRequired(
            "The gateway captured money for a payment that is not open",
            detail=f"payment {payment.id} ({payment.status.value}) order {payment.order_id} "
                   f"captured as {gateway_payment_id}",
        )
