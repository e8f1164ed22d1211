"""
Payment Record Model — one donation attempt and its money trail.
All amounts are integer paise.
"""
import enum

from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Boolean, ForeignKey, CheckConstraint,
    UniqueConstraint, Enum, JSON,
)

from donation_core.database import Base
from donation_core.utils.dates import utcnow


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# Allowed status moves. Anything missing here is an InvalidTransition.
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class PaymentRecord(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        CheckConstraint("fee >= 0 AND fee <= amount", name="ck_payment_fee_bounds"),
        CheckConstraint(
            "refunded_amount >= 0 AND refunded_amount <= amount",
            name="ck_payment_refund_bounds",
        ),
        UniqueConstraint("subscription_id", "billing_date", name="uq_payment_subscription_cycle"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)

    # Gateway identity
    order_id = Column(String(64), unique=True, nullable=False, index=True)
    gateway_payment_id = Column(String(64), unique=True, nullable=True)
    gateway_signature = Column(String(128))

    # Money (paise)
    amount = Column(Integer, nullable=False)
    fee = Column(Integer, nullable=False, default=0)
    net_amount = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")

    status = Column(
        Enum(PaymentStatus, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    receipt_number = Column(String(40), unique=True, nullable=True, index=True)

    # Donor (identity owned by the external user service)
    donor_id = Column(String(64), index=True)
    donor_name = Column(String(128), nullable=False)
    donor_email = Column(String(255), nullable=False, index=True)
    donor_phone = Column(String(20))
    donor_address = Column(String(512))
    donor_pan = Column(String(10))
    is_anonymous = Column(Boolean, nullable=False, default=False)
    message = Column(String(500))

    campaign_id = Column(String(64), index=True)

    # Recurring linkage
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True, index=True)
    billing_date = Column(Date, nullable=True)      # schedule slot this charge settles
    schedule_applied = Column(Boolean, nullable=False, default=False)

    # Refunds
    refunded_amount = Column(Integer, nullable=False, default=0)
    refund_reason = Column(String(255))
    refunded_at = Column(DateTime, nullable=True)
    gateway_refund_id = Column(String(64))

    failure_reason = Column(String(255))

    # Organization details as of completion; receipts print these, not live config
    organization_snapshot = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)

    @property
    def refundable_amount(self) -> int:
        if self.status != PaymentStatus.COMPLETED:
            return 0
        return self.amount - (self.refunded_amount or 0)

    def snapshot(self) -> dict:
        """Status and amounts, as recorded in audit before/after entries."""
        return {
            "status": self.status.value if self.status else None,
            "amount": self.amount,
            "fee": self.fee,
            "net_amount": self.net_amount,
            "refunded_amount": self.refunded_amount or 0,
            "receipt_number": self.receipt_number,
        }

    def __repr__(self):
        return f"<PaymentRecord {self.id} {self.amount} {self.currency} {self.status}>"
