from donation_core.services.audit_service import AuditService
from donation_core.services.payment_service import PaymentService
from donation_core.services.subscription_service import SubscriptionService
from donation_core.services.refund_service import RefundService
from donation_core.services.document_service import DocumentService
from donation_core.services.query_service import QueryService

__all__ = [
    "AuditService", "PaymentService", "SubscriptionService",
    "RefundService", "DocumentService", "QueryService",
]
