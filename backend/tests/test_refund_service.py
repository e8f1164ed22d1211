from datetime import date

import pytest

from donation_core.errors import InvalidAmount, InvalidState, Forbidden, NotFound, GatewayError
from donation_core.models.payment import PaymentRecord, PaymentStatus
from donation_core.services.audit_service import AuditService
from donation_core.services.payment_service import PaymentService
from donation_core.services.refund_service import RefundService
from donation_core.services.subscription_service import SubscriptionService


def reload(db, payment_id):
    db.expire_all()
    return db.get(PaymentRecord, payment_id)


class TestRefund:

    def test_full_refund(self, db, gateway, make_payment, admin):
        payment = make_payment(amount=100000)

        refunded = RefundService.refund(db, gateway, payment.id, 100000, "Donor request", admin)

        assert refunded.status == PaymentStatus.REFUNDED
        assert refunded.refunded_amount == 100000
        assert refunded.refund_reason == "Donor request"
        assert refunded.refunded_at is not None
        assert refunded.gateway_refund_id.startswith("rfnd_")
        assert gateway.refunds == [(payment.gateway_payment_id, 100000)]

    def test_partial_refund_keeps_completed(self, db, gateway, make_payment, admin):
        payment = make_payment(amount=100000)

        refunded = RefundService.refund(db, gateway, payment.id, 30000, "Partial", admin)

        assert refunded.status == PaymentStatus.COMPLETED
        assert refunded.refunded_amount == 30000
        assert refunded.refundable_amount == 70000

    def test_partials_adding_up_to_gross_mark_refunded(self, db, gateway, make_payment, admin):
        payment = make_payment(amount=100000)
        RefundService.refund(db, gateway, payment.id, 40000, "First", admin)
        refunded = RefundService.refund(db, gateway, payment.id, 60000, "Second", admin)

        assert refunded.status == PaymentStatus.REFUNDED
        assert refunded.refunded_amount == 100000

    def test_over_refund_rejected_without_changes(self, db, gateway, make_payment, admin):
        payment = make_payment(amount=100000)
        RefundService.refund(db, gateway, payment.id, 90000, "First", admin)
        trail_before = len(AuditService.get_trail(db, "payment", payment.id))

        with pytest.raises(InvalidAmount):
            RefundService.refund(db, gateway, payment.id, 20000, "Second", admin)

        payment = reload(db, payment.id)
        assert payment.refunded_amount == 90000
        assert payment.status == PaymentStatus.COMPLETED
        assert len(gateway.refunds) == 1
        assert len(AuditService.get_trail(db, "payment", payment.id)) == trail_before

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount(self, db, gateway, make_payment, admin, amount):
        payment = make_payment()
        with pytest.raises(InvalidAmount):
            RefundService.refund(db, gateway, payment.id, amount, "Oops", admin)

    def test_only_admins_refund(self, db, gateway, make_payment, donor_actor):
        payment = make_payment()
        with pytest.raises(Forbidden):
            RefundService.refund(db, gateway, payment.id, 100, "Mine", donor_actor)
        assert gateway.refunds == []

    def test_unknown_payment(self, db, gateway, admin):
        with pytest.raises(NotFound):
            RefundService.refund(db, gateway, 404, 100, "Missing", admin)

    def test_pending_and_failed_cannot_be_refunded(self, db, gateway, make_payment, admin):
        pending = make_payment(complete=False)
        failed = PaymentService.mark_failed(db, make_payment(complete=False), "Declined")

        for payment in (pending, failed):
            with pytest.raises(InvalidState):
                RefundService.refund(db, gateway, payment.id, 100, "No", admin)

    def test_fully_refunded_cannot_be_refunded_again(self, db, gateway, make_payment, admin):
        payment = make_payment(amount=10000)
        RefundService.refund(db, gateway, payment.id, 10000, "All", admin)

        with pytest.raises(InvalidState):
            RefundService.refund(db, gateway, payment.id, 1, "More", admin)

    def test_gateway_failure_writes_nothing(self, db, gateway, make_payment, admin):
        payment = make_payment(amount=100000)
        gateway.refund_error = GatewayError("The payment provider reported an error")

        with pytest.raises(GatewayError):
            RefundService.refund(db, gateway, payment.id, 50000, "Donor request", admin)

        payment = reload(db, payment.id)
        assert payment.refunded_amount == 0
        assert payment.status == PaymentStatus.COMPLETED
        assert [e.action for e in AuditService.get_trail(db, "payment", payment.id)] == [
            "PAYMENT_CREATED", "PAYMENT_COMPLETED",
        ]

    def test_refund_is_audited(self, db, gateway, make_payment, admin):
        payment = make_payment(amount=100000)
        RefundService.refund(db, gateway, payment.id, 25000, "Duplicate charge", admin)

        entry = AuditService.get_trail(db, "payment", payment.id)[-1]
        assert entry.action == "PAYMENT_REFUNDED"
        assert entry.actor_id == "admin-1"
        assert entry.before["refunded_amount"] == 0
        assert entry.after["refunded_amount"] == 25000
        assert entry.log_metadata["reason"] == "Duplicate charge"


class TestConcurrentRefunds:
    """Another writer commits a refund between our read and our conditional update."""

    @pytest.fixture
    def competing_refund(self, monkeypatch, session_factory):
        def install(competitor_amount):
            original = RefundService.validate
            raced = []

            def racing_validate(payment, amount):
                original(payment, amount)
                if not raced:
                    raced.append(payment.id)
                    other = session_factory()
                    other.query(PaymentRecord).filter(PaymentRecord.id == payment.id).update(
                        {PaymentRecord.refunded_amount: competitor_amount}, synchronize_session=False,
                    )
                    other.commit()
                    other.close()

            monkeypatch.setattr(RefundService, "validate", staticmethod(racing_validate))
            return raced
        return install

    def test_stale_read_is_retried(self, db, gateway, make_payment, admin, competing_refund):
        payment = make_payment(amount=100000)
        raced = competing_refund(30000)

        refunded = RefundService.refund(db, gateway, payment.id, 20000, "Ours", admin)

        assert raced == [payment.id]
        assert refunded.refunded_amount == 50000
        assert len(gateway.refunds) == 1

    def test_race_cannot_push_total_past_gross(self, db, gateway, make_payment, admin, competing_refund):
        payment = make_payment(amount=100000)
        competing_refund(90000)

        with pytest.raises(InvalidAmount):
            RefundService.refund(db, gateway, payment.id, 20000, "Ours", admin)

        payment = reload(db, payment.id)
        assert payment.refunded_amount == 90000
        assert gateway.refunds == []


def test_subscription_ledger_is_not_reduced_by_refunds(db, gateway, make_subscription, admin):
    subscription = make_subscription(amount=50000, start_date=date(2023, 12, 15))
    SubscriptionService.run_due_charges(db, gateway, as_of=date(2024, 1, 15))
    payment = db.query(PaymentRecord).filter(PaymentRecord.subscription_id == subscription.id).one()

    RefundService.refund(db, gateway, payment.id, 50000, "Charged in error", admin)

    db.refresh(subscription)
    assert subscription.total_payments == 1
    assert subscription.total_amount == 50000
    assert subscription.next_payment_date == date(2024, 2, 15)
