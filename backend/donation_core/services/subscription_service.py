"""
Subscription Service — recurring donation state machine and billing scheduler.

    active -> paused -> active
    active | paused -> cancelled   (terminal)
    active -> expired              (terminal, a scheduled charge was declined)

The schedule only moves forward on a successful charge while active, by one
period from the previous next_payment_date, and at most once per payment.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from donation_core.config import get_settings
from donation_core.errors import (
    NotFound, InvalidTransition, InvalidAmount, ConcurrentModification, GatewayError, PaymentError,
)
from donation_core.models.payment import PaymentRecord, PaymentStatus
from donation_core.models.subscription import (
    Subscription, SubscriptionStatus, Frequency, SUBSCRIPTION_TRANSITIONS,
)
from donation_core.services.access import Actor, SYSTEM_ACTOR, require_owner_or_admin
from donation_core.services.audit_service import AuditService
from donation_core.services.gateway import PaymentGateway
from donation_core.services.payment_service import PaymentService, Donor
from donation_core.utils.dates import add_period, utcnow
from donation_core.utils.logger import log_event
from donation_core.utils.validators import normalize_pan, sanitize_name

settings = get_settings()

_STATUS_ACTIONS = {
    SubscriptionStatus.PAUSED: "SUBSCRIPTION_PAUSED",
    SubscriptionStatus.ACTIVE: "SUBSCRIPTION_RESUMED",
    SubscriptionStatus.CANCELLED: "SUBSCRIPTION_CANCELLED",
    SubscriptionStatus.EXPIRED: "SUBSCRIPTION_EXPIRED",
}


@dataclass
class ChargeRunReport:
    """Outcome of one scheduler pass, by subscription id."""

    as_of: date
    charged: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    deferred: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "as_of": self.as_of.isoformat(),
            "charged": self.charged,
            "failed": self.failed,
            "deferred": self.deferred,
            "skipped": self.skipped,
        }


class SubscriptionService:
    """Creates subscriptions, moves them between states, and bills due cycles."""

    @staticmethod
    def get(db: Session, subscription_id: int) -> Subscription:
        subscription = db.get(Subscription, subscription_id)
        if not subscription:
            raise NotFound("Subscription not found")
        return subscription

    @staticmethod
    def create(
        db: Session,
        donor: Donor,
        amount: int,
        frequency: Frequency,
        campaign_id: Optional[str] = None,
        start_date: Optional[date] = None,
        gateway_customer_id: Optional[str] = None,
        gateway_token_id: Optional[str] = None,
    ) -> Subscription:
        """Register a recurring donation; the first charge falls one period after start."""
        donor.check()
        if amount < settings.MIN_SUBSCRIPTION_AMOUNT * 100:
            raise InvalidAmount(
                f"Minimum amount for recurring donations is ₹{settings.MIN_SUBSCRIPTION_AMOUNT}"
            )
        frequency = Frequency(frequency)
        start = start_date or utcnow().date()

        subscription = Subscription(
            reference=f"sub_{uuid.uuid4().hex[:16]}",
            donor_id=donor.id,
            donor_name=sanitize_name(donor.name),
            donor_email=donor.email.strip().lower(),
            donor_phone=donor.phone,
            donor_pan=normalize_pan(donor.pan),
            is_anonymous=donor.is_anonymous,
            campaign_id=campaign_id,
            amount=amount,
            frequency=frequency,
            status=SubscriptionStatus.ACTIVE,
            start_date=start,
            next_payment_date=add_period(start, frequency),
            total_payments=0,
            total_amount=0,
            failed_payments=0,
            gateway_customer_id=gateway_customer_id,
            gateway_token_id=gateway_token_id,
        )
        db.add(subscription)
        db.flush()

        AuditService.log(
            db, "subscription", subscription.id, "SUBSCRIPTION_CREATED",
            before={}, after=subscription.snapshot(), actor_id=donor.id,
        )
        db.commit()
        db.refresh(subscription)
        log_event("subscriptions", f"{subscription.reference} created ({frequency.value}, {amount} paise)")
        return subscription

    # ─── Transitions ────────────────────────────────────────────────

    @staticmethod
    def _transition(
        db: Session,
        subscription: Subscription,
        target: SubscriptionStatus,
        actor_id: Optional[str],
        reason: Optional[str] = None,
    ) -> Subscription:
        """Apply a status change in the current transaction (flush, no commit)."""
        current = subscription.status
        if target not in SUBSCRIPTION_TRANSITIONS[current]:
            raise InvalidTransition(f"Subscription cannot move from {current.value} to {target.value}")

        before = subscription.snapshot()
        now = utcnow()
        subscription.status = target
        if target == SubscriptionStatus.PAUSED:
            subscription.paused_at = now
        elif target == SubscriptionStatus.ACTIVE:
            # next_payment_date is kept as-is, even when it is already in the past.
            subscription.paused_at = None
        elif target == SubscriptionStatus.CANCELLED:
            subscription.cancelled_at = now
            subscription.cancel_reason = reason
        elif target == SubscriptionStatus.EXPIRED:
            subscription.expired_at = now
            subscription.cancel_reason = reason
        db.flush()

        AuditService.log(
            db, "subscription", subscription.id, _STATUS_ACTIONS[target],
            before=before, after=subscription.snapshot(), actor_id=actor_id,
            metadata={"reason": reason} if reason else None,
        )
        return subscription

    @staticmethod
    def _commit_transition(db, subscription, target, actor_id, reason=None) -> Subscription:
        try:
            SubscriptionService._transition(db, subscription, target, actor_id, reason)
        except Exception:
            db.rollback()
            raise
        db.commit()
        db.refresh(subscription)
        log_event("subscriptions", f"{subscription.reference} -> {target.value} by {actor_id}")
        return subscription

    @staticmethod
    def pause(db: Session, subscription: Subscription, actor: Actor) -> Subscription:
        require_owner_or_admin(actor, subscription.donor_id, subscription.donor_email, "pause this subscription")
        return SubscriptionService._commit_transition(db, subscription, SubscriptionStatus.PAUSED, actor.id)

    @staticmethod
    def resume(db: Session, subscription: Subscription, actor: Actor) -> Subscription:
        require_owner_or_admin(actor, subscription.donor_id, subscription.donor_email, "resume this subscription")
        return SubscriptionService._commit_transition(db, subscription, SubscriptionStatus.ACTIVE, actor.id)

    @staticmethod
    def cancel(db: Session, subscription: Subscription, actor: Actor, reason: Optional[str] = None) -> Subscription:
        require_owner_or_admin(actor, subscription.donor_id, subscription.donor_email, "cancel this subscription")
        reason = reason or ("Cancelled by admin" if actor.is_admin else "Cancelled by donor")
        return SubscriptionService._commit_transition(
            db, subscription, SubscriptionStatus.CANCELLED, actor.id, reason,
        )

    @staticmethod
    def set_status(
        db: Session,
        subscription: Subscription,
        target: SubscriptionStatus,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Subscription:
        """Dispatch a user-requested status change (active, paused or cancelled)."""
        target = SubscriptionStatus(target)
        if target == SubscriptionStatus.PAUSED:
            return SubscriptionService.pause(db, subscription, actor)
        if target == SubscriptionStatus.ACTIVE:
            return SubscriptionService.resume(db, subscription, actor)
        if target == SubscriptionStatus.CANCELLED:
            return SubscriptionService.cancel(db, subscription, actor, reason)
        raise InvalidTransition(f"Status '{target.value}' cannot be requested directly")

    @staticmethod
    def expire(db: Session, subscription: Subscription, reason: str) -> Subscription:
        """System-driven, in the caller's transaction: a scheduled charge was declined."""
        return SubscriptionService._transition(
            db, subscription, SubscriptionStatus.EXPIRED, SYSTEM_ACTOR.id, reason,
        )

    # ─── Charge handlers (run inside the payment's transaction) ─────

    @staticmethod
    def handle_charge_success(db: Session, payment: PaymentRecord) -> Subscription:
        """Count a completed charge and advance the schedule by one period.

        No-op when this payment already advanced the schedule, or when the
        subscription is not active (a charge while paused is a one-off gift).
        """
        subscription = SubscriptionService.get(db, payment.subscription_id)

        if payment.schedule_applied:
            return subscription
        if subscription.status != SubscriptionStatus.ACTIVE:
            log_event(
                "subscriptions",
                f"payment {payment.id} settled while {subscription.reference} is "
                f"{subscription.status.value}; schedule unchanged",
            )
            return subscription

        before = subscription.snapshot()
        previous_count = subscription.total_payments
        next_date = add_period(subscription.next_payment_date, subscription.frequency)

        updated = (
            db.query(Subscription)
            .filter(
                Subscription.id == subscription.id,
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.total_payments == previous_count,
            )
            .update(
                {
                    Subscription.total_payments: previous_count + 1,
                    Subscription.total_amount: subscription.total_amount + payment.amount,
                    Subscription.next_payment_date: next_date,
                    Subscription.last_payment_date: payment.completed_at,
                    Subscription.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ConcurrentModification("Subscription changed while recording the charge; retry")

        payment.schedule_applied = True
        db.flush()
        db.refresh(subscription)

        AuditService.log(
            db, "subscription", subscription.id, "SUBSCRIPTION_CHARGED",
            before=before, after=subscription.snapshot(), actor_id=SYSTEM_ACTOR.id,
            metadata={"payment_id": payment.id, "billing_date": str(payment.billing_date)},
        )
        return subscription

    @staticmethod
    def handle_charge_failure(db: Session, payment: PaymentRecord) -> Subscription:
        """A scheduled charge was declined: count it and expire an active subscription."""
        subscription = SubscriptionService.get(db, payment.subscription_id)
        subscription.failed_payments = (subscription.failed_payments or 0) + 1
        db.flush()
        if subscription.status == SubscriptionStatus.ACTIVE:
            SubscriptionService.expire(db, subscription, f"Scheduled charge declined (payment {payment.id})")
        return subscription

    # ─── Scheduler ──────────────────────────────────────────────────

    @staticmethod
    def due_for_charge(db: Session, as_of: date) -> list[Subscription]:
        """Active subscriptions whose next_payment_date is on or before `as_of`."""
        return (
            db.query(Subscription)
            .filter(
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.next_payment_date <= as_of,
            )
            .order_by(Subscription.next_payment_date.asc(), Subscription.id.asc())
            .all()
        )

    @staticmethod
    def _cycle_payment(db: Session, gateway: PaymentGateway, subscription: Subscription) -> PaymentRecord:
        """The payment for the current billing date, created on first sight."""
        billing_date = subscription.next_payment_date
        payment = (
            db.query(PaymentRecord)
            .filter(
                PaymentRecord.subscription_id == subscription.id,
                PaymentRecord.billing_date == billing_date,
            )
            .first()
        )
        if payment:
            return payment

        order = gateway.create_order(
            subscription.amount,
            receipt=f"{subscription.reference}-{billing_date:%Y%m%d}",
            notes={"subscription": subscription.reference, "billing_date": billing_date.isoformat()},
        )
        donor = Donor(
            id=subscription.donor_id,
            name=subscription.donor_name,
            email=subscription.donor_email,
            phone=subscription.donor_phone,
            pan=subscription.donor_pan,
            is_anonymous=subscription.is_anonymous,
        )
        payment = PaymentService.create_pending(
            db, order.order_id, subscription.amount, donor,
            campaign_id=subscription.campaign_id,
            subscription_id=subscription.id,
            billing_date=billing_date,
            actor_id="scheduler",
        )
        db.commit()
        return payment

    @staticmethod
    def charge_cycle(db: Session, gateway: PaymentGateway, subscription: Subscription) -> str:
        """Bill one due cycle. Returns 'charged', 'failed', 'deferred' or 'skipped'."""
        try:
            payment = SubscriptionService._cycle_payment(db, gateway, subscription)
        except IntegrityError:
            # Another scanner created this cycle's payment first.
            db.rollback()
            return "skipped"
        except GatewayError as exc:
            db.rollback()
            log_event("scheduler", f"{subscription.reference}: order creation deferred ({exc.message})")
            return "deferred"

        if payment.status == PaymentStatus.COMPLETED:
            if not payment.schedule_applied:
                # Settled while the subscription was paused; count it now that it is active.
                SubscriptionService.handle_charge_success(db, payment)
                db.commit()
            return "skipped"
        if payment.status != PaymentStatus.PENDING:
            return "skipped"
        if payment.gateway_payment_id:
            # Charged on an earlier run but never settled.
            return SubscriptionService._settle(db, subscription, payment)

        try:
            captured = gateway.charge_recurring(
                payment.order_id, payment.amount,
                subscription.gateway_customer_id, subscription.gateway_token_id,
                subscription.donor_email,
            )
        except GatewayError as exc:
            if exc.retryable:
                db.rollback()
                log_event("scheduler", f"{subscription.reference}: charge deferred ({exc.message})")
                return "deferred"
            PaymentService.mark_failed(db, payment, exc.message, actor_id="scheduler")
            return "failed"

        # The charge is committed before settlement so a rerun never charges this cycle again.
        payment.gateway_payment_id = captured.payment_id
        payment.fee = captured.fee
        db.commit()
        return SubscriptionService._settle(db, subscription, payment)

    @staticmethod
    def _settle(db: Session, subscription: Subscription, payment: PaymentRecord) -> str:
        """Complete an already-charged cycle payment; 'deferred' leaves it for the next run."""
        try:
            PaymentService.mark_completed(db, payment, payment.gateway_payment_id, payment.fee, actor_id="scheduler")
        except PaymentError as exc:
            log_event(
                "scheduler",
                f"{subscription.reference}: payment {payment.id} charged, settlement deferred ({exc.message})",
            )
            return "deferred"
        return "charged"

    @staticmethod
    def run_due_charges(db: Session, gateway: PaymentGateway, as_of: Optional[date] = None) -> ChargeRunReport:
        """Bill every due subscription once. Safe to run repeatedly for the same date.

        A subscription that errors is reported as deferred; the rest of the
        run carries on.
        """
        as_of = as_of or utcnow().date()
        report = ChargeRunReport(as_of=as_of)

        for subscription in SubscriptionService.due_for_charge(db, as_of):
            subscription_id = subscription.id
            try:
                outcome = SubscriptionService.charge_cycle(db, gateway, subscription)
            except PaymentError as exc:
                db.rollback()
                log_event("scheduler", f"subscription {subscription_id}: deferred ({exc.message})")
                outcome = "deferred"
            getattr(report, outcome).append(subscription_id)

        log_event(
            "scheduler",
            f"run {as_of}: charged={len(report.charged)} failed={len(report.failed)} "
            f"deferred={len(report.deferred)} skipped={len(report.skipped)}",
        )
        return report
