"""
Subscription Model — recurring donation schedule and its running ledger.
"""
import enum

from sqlalchemy import Column, String, Integer, DateTime, Date, Boolean, CheckConstraint, Enum
from sqlalchemy.orm import relationship

from donation_core.database import Base
from donation_core.utils.dates import utcnow


class Frequency(str, enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


SUBSCRIPTION_TRANSITIONS: dict[SubscriptionStatus, frozenset] = {
    SubscriptionStatus.ACTIVE: frozenset({
        SubscriptionStatus.PAUSED, SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.PAUSED: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED}),
    SubscriptionStatus.CANCELLED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED})


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_subscription_amount_positive"),
        CheckConstraint("total_payments >= 0 AND total_amount >= 0", name="ck_subscription_totals"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    reference = Column(String(40), unique=True, nullable=False, index=True)

    donor_id = Column(String(64), index=True)
    donor_name = Column(String(128), nullable=False)
    donor_email = Column(String(255), nullable=False, index=True)
    donor_phone = Column(String(20))
    donor_pan = Column(String(10))
    is_anonymous = Column(Boolean, nullable=False, default=False)
    campaign_id = Column(String(64), index=True)

    amount = Column(Integer, nullable=False)             # paise per charge
    currency = Column(String(3), nullable=False, default="INR")
    frequency = Column(
        Enum(Frequency, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
        default=Frequency.MONTHLY,
    )
    status = Column(
        Enum(SubscriptionStatus, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )

    start_date = Column(Date, nullable=False)
    next_payment_date = Column(Date, nullable=False, index=True)
    last_payment_date = Column(DateTime, nullable=True)

    # Historical ledger of gross charges; refunds never decrement these.
    total_payments = Column(Integer, nullable=False, default=0)
    total_amount = Column(Integer, nullable=False, default=0)
    failed_payments = Column(Integer, nullable=False, default=0)

    paused_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancel_reason = Column(String(255))
    expired_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Mandate registered with the gateway at signup, used for scheduled charges
    gateway_customer_id = Column(String(64))
    gateway_token_id = Column(String(64))

    payments = relationship("PaymentRecord", lazy="dynamic", order_by="PaymentRecord.id")

    @property
    def scheduled_payment_date(self):
        """next_payment_date is only meaningful while the subscription is active."""
        if self.status == SubscriptionStatus.ACTIVE:
            return self.next_payment_date
        return None

    def snapshot(self) -> dict:
        return {
            "status": self.status.value if self.status else None,
            "amount": self.amount,
            "next_payment_date": self.next_payment_date.isoformat() if self.next_payment_date else None,
            "total_payments": self.total_payments,
            "total_amount": self.total_amount,
            "failed_payments": self.failed_payments,
        }

    def __repr__(self):
        return f"<Subscription {self.reference} {self.frequency} {self.status}>"
