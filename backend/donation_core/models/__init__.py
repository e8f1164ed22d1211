from donation_core.models.audit import AuditLog
from donation_core.models.payment import PaymentRecord, PaymentStatus, PAYMENT_TRANSITIONS
from donation_core.models.subscription import (
    Subscription, SubscriptionStatus, Frequency, SUBSCRIPTION_TRANSITIONS,
)
from donation_core.models.tax_certificate import TaxCertificate, CertificateStatus

__all__ = [
    "AuditLog",
    "PaymentRecord", "PaymentStatus", "PAYMENT_TRANSITIONS",
    "Subscription", "SubscriptionStatus", "Frequency", "SUBSCRIPTION_TRANSITIONS",
    "TaxCertificate", "CertificateStatus",
]
