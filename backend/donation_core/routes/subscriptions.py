"""
Subscription Routes — donor self-service for recurring donations.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from donation_core.database import get_db
from donation_core.dependencies import get_actor, get_donor_email
from donation_core.models.subscription import SubscriptionStatus
from donation_core.schemas.schemas import (
    SubscriptionCreateRequest, SubscriptionStatusRequest, SubscriptionResponse, SubscriptionPageResponse,
)
from donation_core.services.access import Actor
from donation_core.services.payment_service import Donor
from donation_core.services.query_service import QueryService, SubscriptionView
from donation_core.services.subscription_service import SubscriptionService
from donation_core.utils.money import to_paise

router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


@router.post("", response_model=SubscriptionResponse, status_code=201)
def create_subscription(
    payload: SubscriptionCreateRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Register a recurring donation against a mandate set up at checkout."""
    donor = Donor(
        id=actor.id,
        name=payload.donor_name,
        email=payload.donor_email,
        phone=payload.donor_phone,
        pan=payload.donor_pan,
        is_anonymous=payload.is_anonymous,
    )
    subscription = SubscriptionService.create(
        db, donor, to_paise(payload.amount), payload.frequency,
        campaign_id=payload.campaign_id,
        start_date=payload.start_date,
        gateway_customer_id=payload.gateway_customer_id,
        gateway_token_id=payload.gateway_token_id,
    )
    return SubscriptionView.from_record(subscription)


@router.get("/mine", response_model=SubscriptionPageResponse)
def my_subscriptions(
    status: Optional[SubscriptionStatus] = None,
    page: int = 1,
    limit: int = 20,
    donor_email: str = Depends(get_donor_email),
    db: Session = Depends(get_db),
):
    return QueryService.list_subscriptions(
        db, page=page, limit=limit, status=status, donor_email=donor_email,
    ).as_dict()


@router.patch("/{subscription_id}/status", response_model=SubscriptionResponse)
def update_subscription_status(
    subscription_id: int,
    payload: SubscriptionStatusRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Pause, resume or cancel one of the caller's subscriptions."""
    subscription = SubscriptionService.get(db, subscription_id)
    subscription = SubscriptionService.set_status(db, subscription, payload.status, actor, payload.reason)
    return SubscriptionView.from_record(subscription)
