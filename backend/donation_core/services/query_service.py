"""
Query Service — filtered, paginated listings and dashboard statistics.

Statistics are SQL aggregates over exactly the rows a listing with the same
filters would return; `summarize_payments` is the same reduction done in
Python and the two must always agree.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Iterable

from sqlalchemy import func, case, or_
from sqlalchemy.orm import Session, Query

from donation_core.models.payment import PaymentRecord, PaymentStatus
from donation_core.models.subscription import Subscription, SubscriptionStatus, Frequency
from donation_core.models.tax_certificate import TaxCertificate, CertificateStatus
from donation_core.utils.money import format_inr

ANONYMOUS = "Anonymous"
MAX_PAGE_SIZE = 100

# Months covered by one charge, for the monthly-equivalent revenue figure.
_MONTHS_PER_PERIOD = {Frequency.MONTHLY: 1, Frequency.QUARTERLY: 3, Frequency.YEARLY: 12}


@dataclass
class Page:
    items: list
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def as_dict(self) -> dict:
        return {
            "items": self.items,
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "pages": self.pages,
        }


def _clamp_page(page: int, limit: int) -> tuple[int, int]:
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _like(term: str) -> str:
    return f"%{term.strip().lower()}%"


# ─── Read models ────────────────────────────────────────────────────


@dataclass
class PaymentView:
    """What both the admin table and the donor history show for a payment."""

    id: int
    order_id: str
    receipt_number: Optional[str]
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
    campaign_id: Optional[str]
    subscription_id: Optional[int]
    billing_date: Optional[date]
    refund_reason: Optional[str]
    failure_reason: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]
    refunded_at: Optional[datetime]

    @classmethod
    def from_record(cls, payment: PaymentRecord) -> "PaymentView":
        return cls(
            id=payment.id,
            order_id=payment.order_id,
            receipt_number=payment.receipt_number,
            status=payment.status.value,
            amount=payment.amount,
            fee=payment.fee or 0,
            net_amount=payment.net_amount or 0,
            refunded_amount=payment.refunded_amount or 0,
            refundable_amount=payment.refundable_amount,
            amount_display=format_inr(payment.amount),
            net_amount_display=format_inr(payment.net_amount or 0),
            donor_name=ANONYMOUS if payment.is_anonymous else payment.donor_name,
            donor_email=payment.donor_email,
            is_anonymous=payment.is_anonymous,
            campaign_id=payment.campaign_id,
            subscription_id=payment.subscription_id,
            billing_date=payment.billing_date,
            refund_reason=payment.refund_reason,
            failure_reason=payment.failure_reason,
            created_at=payment.created_at,
            completed_at=payment.completed_at,
            refunded_at=payment.refunded_at,
        )


@dataclass
class SubscriptionView:
    id: int
    reference: str
    status: str
    frequency: str
    amount: int
    amount_display: str
    donor_name: str
    donor_email: str
    campaign_id: Optional[str]
    start_date: date
    next_payment_date: Optional[date]
    last_payment_date: Optional[datetime]
    total_payments: int
    total_amount: int
    total_amount_display: str
    failed_payments: int
    cancel_reason: Optional[str]
    created_at: datetime

    @classmethod
    def from_record(cls, subscription: Subscription) -> "SubscriptionView":
        return cls(
            id=subscription.id,
            reference=subscription.reference,
            status=subscription.status.value,
            frequency=subscription.frequency.value,
            amount=subscription.amount,
            amount_display=format_inr(subscription.amount),
            donor_name=ANONYMOUS if subscription.is_anonymous else subscription.donor_name,
            donor_email=subscription.donor_email,
            campaign_id=subscription.campaign_id,
            start_date=subscription.start_date,
            next_payment_date=subscription.scheduled_payment_date,
            last_payment_date=subscription.last_payment_date,
            total_payments=subscription.total_payments,
            total_amount=subscription.total_amount,
            total_amount_display=format_inr(subscription.total_amount),
            failed_payments=subscription.failed_payments or 0,
            cancel_reason=subscription.cancel_reason,
            created_at=subscription.created_at,
        )


# ─── Payments ───────────────────────────────────────────────────────


@dataclass
class PaymentFilter:
    status: Optional[PaymentStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    campaign_id: Optional[str] = None
    subscription_id: Optional[int] = None
    donor_email: Optional[str] = None
    search: Optional[str] = None

    def apply(self, query: Query) -> Query:
        if self.status:
            query = query.filter(PaymentRecord.status == PaymentStatus(self.status))
        if self.date_from:
            query = query.filter(PaymentRecord.created_at >= _day_start(self.date_from))
        if self.date_to:
            # date_to is inclusive of the whole day
            query = query.filter(PaymentRecord.created_at < _day_start(self.date_to + timedelta(days=1)))
        if self.campaign_id:
            query = query.filter(PaymentRecord.campaign_id == self.campaign_id)
        if self.subscription_id:
            query = query.filter(PaymentRecord.subscription_id == self.subscription_id)
        if self.donor_email:
            query = query.filter(func.lower(PaymentRecord.donor_email) == self.donor_email.strip().lower())
        if self.search and self.search.strip():
            term = _like(self.search)
            query = query.filter(or_(
                func.lower(PaymentRecord.donor_name).like(term),
                func.lower(PaymentRecord.donor_email).like(term),
                func.lower(PaymentRecord.receipt_number).like(term),
            ))
        return query


def success_rate(completed: int, failed: int) -> float:
    """completed / (completed + failed) as a percentage, 1 decimal; 0.0 if nothing settled."""
    settled = completed + failed
    if settled == 0:
        return 0.0
    return round(completed * 100 / settled, 1)


def _stats_dict(count, total_amount, total_fees, total_net, total_refunded, by_status) -> dict:
    counts = {status.value: int(by_status.get(status.value, 0)) for status in PaymentStatus}
    return {
        "count": int(count or 0),
        "total_amount": int(total_amount or 0),
        "total_fees": int(total_fees or 0),
        "total_net_amount": int(total_net or 0),
        "total_refunded": int(total_refunded or 0),
        "count_by_status": counts,
        "success_rate": success_rate(counts["completed"], counts["failed"]),
    }


class QueryService:
    """Read-only listing and aggregation over payments, subscriptions and certificates."""

    @staticmethod
    def filtered_payments(db: Session, filters: Optional[PaymentFilter] = None) -> Query:
        return (filters or PaymentFilter()).apply(db.query(PaymentRecord))

    @staticmethod
    def list_payments(db: Session, filters: Optional[PaymentFilter] = None, page: int = 1, limit: int = 20) -> Page:
        """Most recent first; ties on created_at are broken by id so pages never overlap."""
        page, limit = _clamp_page(page, limit)
        query = QueryService.filtered_payments(db, filters)
        total = query.count()
        rows = (
            query.order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return Page(items=[PaymentView.from_record(row) for row in rows], page=page, limit=limit, total=total)

    @staticmethod
    def payment_stats(db: Session, filters: Optional[PaymentFilter] = None) -> dict:
        query = (filters or PaymentFilter()).apply(
            db.query(
                func.count(PaymentRecord.id),
                func.coalesce(func.sum(PaymentRecord.amount), 0),
                func.coalesce(func.sum(PaymentRecord.fee), 0),
                func.coalesce(func.sum(PaymentRecord.net_amount), 0),
                func.coalesce(func.sum(PaymentRecord.refunded_amount), 0),
                *[
                    func.coalesce(func.sum(case((PaymentRecord.status == status, 1), else_=0)), 0)
                    for status in PaymentStatus
                ],
            )
        )
        count, total_amount, total_fees, total_net, total_refunded, *per_status = query.one()
        by_status = {status.value: n for status, n in zip(PaymentStatus, per_status)}
        return _stats_dict(count, total_amount, total_fees, total_net, total_refunded, by_status)

    # ─── Subscriptions ──────────────────────────────────────────────

    @staticmethod
    def filtered_subscriptions(
        db: Session,
        status: Optional[SubscriptionStatus] = None,
        frequency: Optional[Frequency] = None,
        donor_email: Optional[str] = None,
        campaign_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Query:
        query = db.query(Subscription)
        if status:
            query = query.filter(Subscription.status == SubscriptionStatus(status))
        if frequency:
            query = query.filter(Subscription.frequency == Frequency(frequency))
        if donor_email:
            query = query.filter(func.lower(Subscription.donor_email) == donor_email.strip().lower())
        if campaign_id:
            query = query.filter(Subscription.campaign_id == campaign_id)
        if search and search.strip():
            term = _like(search)
            query = query.filter(or_(
                func.lower(Subscription.donor_name).like(term),
                func.lower(Subscription.donor_email).like(term),
                func.lower(Subscription.reference).like(term),
            ))
        return query

    @staticmethod
    def list_subscriptions(db: Session, page: int = 1, limit: int = 20, **filters) -> Page:
        page, limit = _clamp_page(page, limit)
        query = QueryService.filtered_subscriptions(db, **filters)
        total = query.count()
        rows = (
            query.order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return Page(items=[SubscriptionView.from_record(row) for row in rows], page=page, limit=limit, total=total)

    @staticmethod
    def subscription_stats(db: Session, **filters) -> dict:
        rows = QueryService.filtered_subscriptions(db, **filters).all()
        counts = {status.value: 0 for status in SubscriptionStatus}
        monthly = Decimal(0)
        collected = 0
        for row in rows:
            counts[row.status.value] += 1
            collected += row.total_amount or 0
            if row.status == SubscriptionStatus.ACTIVE:
                monthly += Decimal(row.amount) / _MONTHS_PER_PERIOD[row.frequency]
        return {
            "count": len(rows),
            "count_by_status": counts,
            "active_monthly_amount": int(monthly.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
            "total_collected": collected,
        }

    # ─── Certificates ───────────────────────────────────────────────

    @staticmethod
    def list_certificates(
        db: Session,
        financial_year: Optional[str] = None,
        status: Optional[CertificateStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        page, limit = _clamp_page(page, limit)
        query = db.query(TaxCertificate)
        if financial_year:
            query = query.filter(TaxCertificate.financial_year == financial_year)
        if status:
            query = query.filter(TaxCertificate.status == CertificateStatus(status))
        if search and search.strip():
            term = _like(search)
            query = query.filter(or_(
                func.lower(TaxCertificate.donor_name).like(term),
                func.lower(TaxCertificate.donor_email).like(term),
                func.lower(TaxCertificate.certificate_number).like(term),
            ))
        total = query.count()
        rows = (
            query.order_by(TaxCertificate.issued_at.desc(), TaxCertificate.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return Page(items=rows, page=page, limit=limit, total=total)


def summarize_payments(rows: Iterable[PaymentRecord]) -> dict:
    """Plain-Python reduction with the same output shape as QueryService.payment_stats."""
    count = total_amount = total_fees = total_net = total_refunded = 0
    by_status: dict = {}
    for row in rows:
        count += 1
        total_amount += row.amount
        total_fees += row.fee or 0
        total_net += row.net_amount or 0
        total_refunded += row.refunded_amount or 0
        by_status[row.status.value] = by_status.get(row.status.value, 0) + 1
    return _stats_dict(count, total_amount, total_fees, total_net, total_refunded, by_status)
