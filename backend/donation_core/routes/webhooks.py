"""
Webhook Routes — asynchronous payment events pushed by Razorpay.
"""
import json

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from donation_core.database import get_db
from donation_core.errors import PaymentError, Forbidden, ReconciliationRequired
from donation_core.services.gateway import PaymentGateway, get_gateway
from donation_core.services.payment_service import PaymentService
from donation_core.utils.logger import log_event

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])

HANDLED_EVENTS = ("payment.captured", "payment.failed")


@router.post("/razorpay")
async def razorpay_webhook(
    request: Request,
    signature: str = Header("", alias="x-razorpay-signature"),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Reconcile a payment whose checkout callback never arrived."""
    body = (await request.body()).decode("utf-8")
    if not gateway.verify_webhook_signature(body, signature):
        log_event("webhooks", "rejected webhook with an invalid signature")
        raise Forbidden("Invalid webhook signature")

    try:
        event = json.loads(body)
    except ValueError as exc:
        raise PaymentError("Webhook body is not valid JSON") from exc

    name = event.get("event", "")
    if name not in HANDLED_EVENTS:
        return {"status": "ignored", "event": name}

    entity = event.get("payload", {}).get("payment", {}).get("entity", {})
    try:
        payment = PaymentService.apply_webhook(db, name, entity)
    except ReconciliationRequired as exc:
        # Acknowledged so the provider stops redelivering; the audit trail holds the case.
        log_event("webhooks", f"{name} for order {entity.get('order_id')} needs reconciliation: {exc.detail}")
        payment = PaymentService.get_by_order(db, entity.get("order_id"))
        return {
            "status": "reconciliation_required",
            "event": name,
            "payment_id": payment.id,
            "payment_status": payment.status.value,
            "detail": exc.message,
        }
    log_event("webhooks", f"{name} for order {entity.get('order_id')} -> payment {payment.id if payment else None}")
    return {
        "status": "processed",
        "event": name,
        "payment_id": payment.id if payment else None,
        "payment_status": payment.status.value if payment else None,
    }
