"""
Admin Routes — payment ledger, refunds, subscriptions, 80G certificates and audit trail.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from donation_core.database import get_db
from donation_core.dependencies import get_admin
from donation_core.errors import NotFound
from donation_core.models.payment import PaymentStatus
from donation_core.models.subscription import SubscriptionStatus, Frequency
from donation_core.models.tax_certificate import CertificateStatus
from donation_core.schemas.schemas import (
    PaymentResponse, PaymentPageResponse, PaymentStatsResponse, RefundRequest,
    SubscriptionResponse, SubscriptionPageResponse, SubscriptionStatsResponse, SubscriptionStatusRequest,
    ChargeRunRequest, ChargeRunResponse,
    TaxCertificateRequest, TaxCertificateCancelRequest, TaxCertificateResponse, TaxCertificatePageResponse,
    DocumentResponse, AuditLogEntry, AuditVerifyResponse,
)
from donation_core.services.access import Actor
from donation_core.services.audit_service import AuditService
from donation_core.services.document_service import DocumentService
from donation_core.services.gateway import PaymentGateway, get_gateway
from donation_core.services.payment_service import PaymentService
from donation_core.services.query_service import QueryService, PaymentFilter, PaymentView, SubscriptionView
from donation_core.services.refund_service import RefundService
from donation_core.services.subscription_service import SubscriptionService
from donation_core.utils.money import to_paise

router = APIRouter(prefix="/api/admin", tags=["Admin"])

AUDITED_ENTITIES = ("payment", "subscription", "certificate")


def payment_filters(
    status: Optional[PaymentStatus] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    campaign_id: Optional[str] = None,
    subscription_id: Optional[int] = None,
    search: Optional[str] = None,
) -> PaymentFilter:
    return PaymentFilter(
        status=status, date_from=date_from, date_to=date_to,
        campaign_id=campaign_id, subscription_id=subscription_id, search=search,
    )


def subscription_filters(
    status: Optional[SubscriptionStatus] = None,
    frequency: Optional[Frequency] = None,
    campaign_id: Optional[str] = None,
    search: Optional[str] = None,
) -> dict:
    return {"status": status, "frequency": frequency, "campaign_id": campaign_id, "search": search}


# ─── Payments ────────────────────────────────────────────────────────

@router.get("/payments", response_model=PaymentPageResponse)
def list_payments(
    page: int = 1,
    limit: int = 20,
    filters: PaymentFilter = Depends(payment_filters),
    _admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    """List payments, most recent first, with optional filters."""
    return QueryService.list_payments(db, filters, page=page, limit=limit).as_dict()


@router.get("/payments/stats", response_model=PaymentStatsResponse)
def payment_stats(
    filters: PaymentFilter = Depends(payment_filters),
    _admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    """Totals and success rate over the filtered payments."""
    return QueryService.payment_stats(db, filters)


@router.post("/payments/{payment_id}/refund", response_model=PaymentResponse)
def refund_payment(
    payment_id: int,
    payload: RefundRequest,
    admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Refund part or all of a completed payment."""
    payment = RefundService.refund(db, gateway, payment_id, to_paise(payload.amount), payload.reason, admin)
    return PaymentView.from_record(payment)


# ─── Subscriptions ───────────────────────────────────────────────────

@router.get("/subscriptions", response_model=SubscriptionPageResponse)
def list_subscriptions(
    page: int = 1,
    limit: int = 20,
    filters: dict = Depends(subscription_filters),
    _admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    return QueryService.list_subscriptions(db, page=page, limit=limit, **filters).as_dict()


@router.get("/subscriptions/stats", response_model=SubscriptionStatsResponse)
def subscription_stats(
    filters: dict = Depends(subscription_filters),
    _admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    return QueryService.subscription_stats(db, **filters)


@router.patch("/subscriptions/{subscription_id}/status", response_model=SubscriptionResponse)
def set_subscription_status(
    subscription_id: int,
    payload: SubscriptionStatusRequest,
    admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    subscription = SubscriptionService.get(db, subscription_id)
    subscription = SubscriptionService.set_status(db, subscription, payload.status, admin, payload.reason)
    return SubscriptionView.from_record(subscription)


@router.post("/subscriptions/run-due", response_model=ChargeRunResponse)
def run_due_charges(
    payload: Optional[ChargeRunRequest] = None,
    _admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Bill every active subscription due on or before `as_of`. Safe to re-run."""
    as_of = payload.as_of if payload else None
    return SubscriptionService.run_due_charges(db, gateway, as_of).as_dict()


# ─── Tax certificates ────────────────────────────────────────────────

@router.post("/tax-certificates", response_model=TaxCertificateResponse, status_code=201)
def issue_tax_certificate(
    payload: TaxCertificateRequest,
    admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    payment = PaymentService.get(db, payload.payment_id)
    return DocumentService.issue_tax_certificate(
        db, payment, admin, donor_pan=payload.donor_pan, donor_address=payload.donor_address,
    )


@router.get("/tax-certificates", response_model=TaxCertificatePageResponse)
def list_tax_certificates(
    financial_year: Optional[str] = None,
    status: Optional[CertificateStatus] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    _admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    return QueryService.list_certificates(
        db, financial_year=financial_year, status=status, search=search, page=page, limit=limit,
    ).as_dict()


@router.get("/tax-certificates/{certificate_id}", response_model=TaxCertificateResponse)
def get_tax_certificate(
    certificate_id: int,
    _admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    return DocumentService.get_certificate(db, certificate_id)


@router.get("/tax-certificates/{certificate_id}/document", response_model=DocumentResponse)
def tax_certificate_document(
    certificate_id: int,
    _admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    """Printable certificate, base64-encoded HTML with an embedded verification QR code."""
    certificate = DocumentService.get_certificate(db, certificate_id)
    return DocumentService.certificate_document(certificate)


@router.post("/tax-certificates/{certificate_id}/cancel", response_model=TaxCertificateResponse)
def cancel_tax_certificate(
    certificate_id: int,
    payload: Optional[TaxCertificateCancelRequest] = None,
    admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    certificate = DocumentService.get_certificate(db, certificate_id)
    return DocumentService.cancel_tax_certificate(db, certificate, admin, payload.reason if payload else None)


# ─── Audit ───────────────────────────────────────────────────────────

@router.get("/audit/{entity_type}/{entity_id}", response_model=list[AuditLogEntry])
def get_audit_trail(
    entity_type: str,
    entity_id: int,
    _admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    """Get the full audit trail for a payment, subscription or certificate."""
    if entity_type not in AUDITED_ENTITIES:
        raise NotFound(f"Unknown entity type '{entity_type}'")
    logs = AuditService.get_trail(db, entity_type, entity_id)
    if not logs:
        raise NotFound("No audit logs found for this record")
    return logs


@router.get("/audit/{entity_type}/{entity_id}/verify", response_model=AuditVerifyResponse)
def verify_audit_chain(
    entity_type: str,
    entity_id: int,
    _admin: Actor = Depends(get_admin),
    db: Session = Depends(get_db),
):
    """Verify the integrity of the audit hash chain for a record."""
    if entity_type not in AUDITED_ENTITIES:
        raise NotFound(f"Unknown entity type '{entity_type}'")
    return AuditService.verify_chain(db, entity_type, entity_id)
