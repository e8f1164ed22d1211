"""
Donation Routes — one-time donation checkout, donor history and receipts.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from donation_core.config import get_settings
from donation_core.database import get_db
from donation_core.dependencies import get_actor, get_donor_email
from donation_core.models.payment import PaymentStatus
from donation_core.schemas.schemas import (
    DonationOrderRequest, DonationOrderResponse, PaymentVerifyRequest, PaymentFailRequest,
    PaymentResponse, PaymentPageResponse, DocumentResponse,
)
from donation_core.services.access import Actor, require_owner_or_admin
from donation_core.services.document_service import DocumentService
from donation_core.services.gateway import PaymentGateway, get_gateway
from donation_core.services.payment_service import PaymentService, Donor
from donation_core.services.query_service import QueryService, PaymentFilter, PaymentView
from donation_core.utils.money import to_paise

settings = get_settings()

router = APIRouter(prefix="/api/donations", tags=["Donations"])


@router.post("/order", response_model=DonationOrderResponse)
def create_donation_order(
    payload: DonationOrderRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Open a gateway order for a one-time donation."""
    donor = Donor(
        id=actor.id,
        name=payload.donor_name,
        email=payload.donor_email,
        phone=payload.donor_phone,
        address=payload.donor_address,
        pan=payload.donor_pan,
        is_anonymous=payload.is_anonymous,
    )
    payment = PaymentService.create_order(
        db, gateway, to_paise(payload.amount), donor,
        campaign_id=payload.campaign_id, message=payload.message, actor_id=actor.id,
    )
    return DonationOrderResponse(
        payment_id=payment.id,
        order_id=payment.order_id,
        amount=payment.amount,
        currency=payment.currency,
        key_id=settings.RAZORPAY_KEY_ID,
    )


@router.post("/verify", response_model=PaymentResponse)
def verify_donation(
    payload: PaymentVerifyRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Checkout callback: verify the signature and capture the payment."""
    payment = PaymentService.get_by_order(db, payload.order_id)
    require_owner_or_admin(actor, payment.donor_id, payment.donor_email, "confirm this donation")
    payment = PaymentService.capture(
        db, gateway, payment, payload.gateway_payment_id,
        signature=payload.signature, actor_id=actor.id,
    )
    return PaymentView.from_record(payment)


@router.post("/{payment_id}/fail", response_model=PaymentResponse)
def fail_donation(
    payment_id: int,
    payload: PaymentFailRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Record a checkout that the donor abandoned or the widget reported as failed."""
    payment = PaymentService.get(db, payment_id)
    require_owner_or_admin(actor, payment.donor_id, payment.donor_email, "update this donation")
    payment = PaymentService.mark_failed(db, payment, payload.reason, actor_id=actor.id)
    return PaymentView.from_record(payment)


@router.get("/mine", response_model=PaymentPageResponse)
def my_donations(
    status: Optional[PaymentStatus] = None,
    page: int = 1,
    limit: int = 20,
    donor_email: str = Depends(get_donor_email),
    db: Session = Depends(get_db),
):
    """The caller's own donation history, most recent first."""
    filters = PaymentFilter(status=status, donor_email=donor_email)
    return QueryService.list_payments(db, filters, page=page, limit=limit).as_dict()


@router.get("/{payment_id}/receipt", response_model=DocumentResponse)
def donation_receipt(
    payment_id: int,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Printable receipt, base64-encoded HTML."""
    payment = PaymentService.get(db, payment_id)
    require_owner_or_admin(actor, payment.donor_id, payment.donor_email, "view this receipt")
    return DocumentService.receipt_document(payment)
