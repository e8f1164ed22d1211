"""
Pydantic Schemas — Request & Response models for API validation.

Request amounts are INR rupees (up to two decimals); everything the API
returns is integer paise alongside a formatted display string.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict, List
from pydantic import BaseModel, Field

from donation_core.models.payment import PaymentStatus
from donation_core.models.subscription import Frequency, SubscriptionStatus
from donation_core.models.tax_certificate import CertificateStatus


# ──────────────── Donations ────────────────

class DonorDetails(BaseModel):
    donor_name: str = Field(..., min_length=1, max_length=128)
    donor_email: str = Field(..., min_length=3, max_length=255)
    donor_phone: Optional[str] = Field(None, max_length=20)
    donor_pan: Optional[str] = Field(None, description="Required later for an 80G certificate")
    is_anonymous: bool = False
    campaign_id: Optional[str] = None


class DonationOrderRequest(DonorDetails):
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Amount in INR")
    donor_address: Optional[str] = Field(None, max_length=512)
    message: Optional[str] = Field(None, max_length=500)


class DonationOrderResponse(BaseModel):
    payment_id: int
    order_id: str
    amount: int                       # paise, as sent to the checkout widget
    currency: str = "INR"
    key_id: str
    status: PaymentStatus = PaymentStatus.PENDING


class PaymentVerifyRequest(BaseModel):
    order_id: str
    gateway_payment_id: str
    signature: str


class PaymentFailRequest(BaseModel):
    reason: str = Field("Checkout abandoned", max_length=255)


class PaymentResponse(BaseModel):
    id: int
    order_id: str
    receipt_number: Optional[str] = None
    status: str
    amount: int
    fee: int
    net_amount: int
    refunded_amount: int
    refundable_amount: int
    amount_display: str
    net_amount_display: str
    donor_name: str
    donor_email: str
    is_anonymous: bool
    campaign_id: Optional[str] = None
    subscription_id: Optional[int] = None
    billing_date: Optional[date] = None
    refund_reason: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentPageResponse(BaseModel):
    items: List[PaymentResponse]
    page: int
    limit: int
    total: int
    pages: int


class PaymentStatsResponse(BaseModel):
    count: int
    total_amount: int
    total_fees: int
    total_net_amount: int
    total_refunded: int
    count_by_status: Dict[str, int]
    success_rate: float


class RefundRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Amount in INR to refund")
    reason: str = Field(..., min_length=1, max_length=255)


# ──────────────── Subscriptions ────────────────

class SubscriptionCreateRequest(DonorDetails):
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Amount in INR per charge")
    frequency: Frequency = Frequency.MONTHLY
    start_date: Optional[date] = None
    gateway_customer_id: Optional[str] = None
    gateway_token_id: Optional[str] = None


class SubscriptionStatusRequest(BaseModel):
    status: SubscriptionStatus = Field(..., description="active | paused | cancelled")
    reason: Optional[str] = Field(None, max_length=255)


class SubscriptionResponse(BaseModel):
    id: int
    reference: str
    status: str
    frequency: str
    amount: int
    amount_display: str
    donor_name: str
    donor_email: str
    campaign_id: Optional[str] = None
    start_date: date
    next_payment_date: Optional[date] = None
    last_payment_date: Optional[datetime] = None
    total_payments: int
    total_amount: int
    total_amount_display: str
    failed_payments: int
    cancel_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SubscriptionPageResponse(BaseModel):
    items: List[SubscriptionResponse]
    page: int
    limit: int
    total: int
    pages: int


class SubscriptionStatsResponse(BaseModel):
    count: int
    count_by_status: Dict[str, int]
    active_monthly_amount: int
    total_collected: int


class ChargeRunRequest(BaseModel):
    as_of: Optional[date] = Field(None, description="Billing date to run for (defaults to today, UTC)")


class ChargeRunResponse(BaseModel):
    as_of: date
    charged: List[int]
    failed: List[int]
    deferred: List[int]
    skipped: List[int]


# ──────────────── Tax Certificates ────────────────

class TaxCertificateRequest(BaseModel):
    payment_id: int
    donor_pan: Optional[str] = None
    donor_address: Optional[str] = Field(None, max_length=512)


class TaxCertificateCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class TaxCertificateResponse(BaseModel):
    id: int
    payment_id: int
    certificate_number: str
    certificate_type: str
    financial_year: str
    donor_name: str
    donor_email: str
    donor_pan: str
    donor_address: Optional[str] = None
    donation_amount: int
    donation_date: datetime
    receipt_number: Optional[str] = None
    deduction_percentage: int
    deductible_amount: int
    organization_snapshot: Dict
    verification_code: str
    status: CertificateStatus
    issued_by: Optional[str] = None
    issued_at: datetime
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    class Config:
        from_attributes = True


class TaxCertificatePageResponse(BaseModel):
    items: List[TaxCertificateResponse]
    page: int
    limit: int
    total: int
    pages: int


class CertificateVerifyResponse(BaseModel):
    valid: bool
    message: str
    certificate: Dict


class DocumentResponse(BaseModel):
    filename: str
    media_type: str
    content_base64: str


# ──────────────── Admin / Audit ────────────────

class AuditLogEntry(BaseModel):
    id: int
    entity_type: str
    entity_id: int
    action: str
    actor_id: Optional[str] = None
    before: Optional[Dict] = None
    after: Optional[Dict] = None
    payload_hash: Optional[str] = None
    previous_hash: Optional[str] = None
    timestamp: datetime
    log_metadata: Optional[Dict] = None

    class Config:
        from_attributes = True


class AuditVerifyResponse(BaseModel):
    valid: bool
    total_entries: int
    broken_at: Optional[int] = None
    message: Optional[str] = None


# ──────────────── Generic ────────────────

class ErrorResponse(BaseModel):
    detail: str
    error_code: Optional[str] = None
    admin_detail: Optional[str] = None
