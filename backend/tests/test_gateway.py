"""
RazorpayGateway against a stubbed SDK client: capture settles whatever the
provider already recorded instead of trusting the capture call alone.
"""
from types import SimpleNamespace

import pytest
from razorpay.errors import BadRequestError

from donation_core.errors import GatewayDeclined, GatewayError
from donation_core.models.payment import PaymentStatus
from donation_core.services.gateway import RazorpayGateway
from donation_core.services.payment_service import PaymentService


class StubPayments:
    """Stands in for `client.payment`. Each fetch returns the next scripted status."""

    def __init__(self, *statuses, fee=1180, capture_error=None):
        self.statuses = list(statuses)
        self.fee = fee
        self.capture_error = capture_error
        self.fetched = []
        self.captured = []

    def _record(self, payment_id, status):
        return {"id": payment_id, "status": status, "fee": self.fee, "amount": 50000}

    def fetch(self, payment_id, **kwargs):
        self.fetched.append(payment_id)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return self._record(payment_id, status)

    def capture(self, payment_id, amount, data=None, **kwargs):
        self.captured.append((payment_id, amount))
        if self.capture_error:
            raise self.capture_error
        return self._record(payment_id, "captured")


def razorpay_with(payments):
    gateway = RazorpayGateway("rzp_test_key", "rzp_test_secret", "whsec")
    gateway.client = SimpleNamespace(payment=payments)
    return gateway


class TestCapturePayment:

    def test_authorized_payment_is_captured(self):
        payments = StubPayments("authorized")
        result = razorpay_with(payments).capture_payment("pay_1", 50000)

        assert payments.captured == [("pay_1", 50000)]
        assert result.payment_id == "pay_1"
        assert result.fee == 1180

    def test_auto_captured_payment_is_not_captured_again(self):
        payments = StubPayments("captured")
        result = razorpay_with(payments).capture_payment("pay_1", 50000)

        assert payments.captured == []
        assert result.status == "captured"
        assert result.fee == 1180

    def test_already_captured_rejection_settles(self):
        payments = StubPayments(
            "authorized", "captured",
            capture_error=BadRequestError("This payment has already been captured"),
        )
        result = razorpay_with(payments).capture_payment("pay_1", 50000)

        assert result.status == "captured"
        assert payments.fetched == ["pay_1", "pay_1"]

    def test_other_rejection_is_retryable(self):
        payments = StubPayments("authorized", capture_error=BadRequestError("Capture amount mismatch"))

        with pytest.raises(GatewayError) as err:
            razorpay_with(payments).capture_payment("pay_1", 50000)
        assert err.value.retryable

    def test_failed_payment_is_a_decline(self):
        payments = StubPayments("failed")

        with pytest.raises(GatewayDeclined):
            razorpay_with(payments).capture_payment("pay_1", 50000)
        assert payments.captured == []

    def test_unsettled_payment_is_retryable(self):
        payments = StubPayments("created")

        with pytest.raises(GatewayError) as err:
            razorpay_with(payments).capture_payment("pay_1", 50000)
        assert err.value.retryable
        assert payments.captured == []


class TestCheckoutCapture:

    def test_auto_captured_donation_completes(self, db, make_payment):
        payment = make_payment(amount=50000, complete=False)
        gateway = razorpay_with(StubPayments("captured"))

        result = PaymentService.capture(db, gateway, payment, "pay_auto")

        assert result.status == PaymentStatus.COMPLETED
        assert result.gateway_payment_id == "pay_auto"
        assert result.net_amount == 48820

    def test_already_captured_rejection_completes(self, db, make_payment):
        payment = make_payment(amount=50000, complete=False)
        gateway = razorpay_with(StubPayments(
            "authorized", "captured",
            capture_error=BadRequestError("This payment has already been captured"),
        ))

        result = PaymentService.capture(db, gateway, payment, "pay_race")

        assert result.status == PaymentStatus.COMPLETED
        assert result.failure_reason is None

    def test_rejected_capture_leaves_payment_pending(self, db, make_payment):
        payment = make_payment(amount=50000, complete=False)
        gateway = razorpay_with(StubPayments("authorized", capture_error=BadRequestError("Bad request")))

        with pytest.raises(GatewayError):
            PaymentService.capture(db, gateway, payment, "pay_1")

        db.refresh(payment)
        assert payment.status == PaymentStatus.PENDING
