"""
Document Service — donation receipts and Section 80G tax certificates.

Both documents are single self-contained HTML files (inline CSS, QR code as
a data URI). Rendering is a pure function of the stored record: the only
part that changes between two renders is the "Generated at" line.
"""
import base64
import io
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

import qrcode
import qrcode.image.svg
from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from donation_core.config import get_settings
from donation_core.errors import NotFound, InvalidState, InvalidTransition, InvalidAmount, MissingTaxInfo, ConcurrentModification
from donation_core.models.payment import PaymentRecord, PaymentStatus
from donation_core.models.tax_certificate import TaxCertificate, CertificateStatus
from donation_core.services.access import Actor, require_admin
from donation_core.services.audit_service import AuditService
from donation_core.utils.dates import financial_year, financial_year_short, utcnow
from donation_core.utils.hashing import verification_code
from donation_core.utils.logger import log_event
from donation_core.utils.money import format_inr, amount_in_words, round_half_up_rupees
from donation_core.utils.validators import normalize_pan, validate_pan

settings = get_settings()

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
    keep_trailing_newline=True,
)
_env.filters["inr"] = format_inr
_env.filters["words"] = amount_in_words

RECEIPTABLE = frozenset({PaymentStatus.COMPLETED, PaymentStatus.REFUNDED})
CERTIFICATE_ISSUE_ATTEMPTS = 3


@dataclass
class EncodedDocument:
    """A printable document ready to hand to the HTTP layer."""

    filename: str
    media_type: str
    content_base64: str

    def decoded(self) -> str:
        return base64.b64decode(self.content_base64).decode("utf-8")


def _encode(filename: str, html: str) -> EncodedDocument:
    return EncodedDocument(
        filename=filename,
        media_type="text/html",
        content_base64=base64.b64encode(html.encode("utf-8")).decode("ascii"),
    )


def _display_date(moment: Optional[datetime]) -> str:
    return moment.strftime("%d %B %Y") if moment else ""


def _generated_stamp(generated_at: Optional[datetime]) -> str:
    return (generated_at or utcnow()).strftime("%Y-%m-%d %H:%M:%S UTC")


def qr_data_uri(data: str) -> str:
    """Encode `data` as an SVG QR code embedded in a data URI."""
    image = qrcode.make(data, image_factory=qrcode.image.svg.SvgImage)
    buffer = io.BytesIO()
    image.save(buffer)
    return "data:image/svg+xml;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def verification_url(certificate: TaxCertificate) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/api/certificates/verify/{certificate.verification_code}"


class DocumentService:
    """Renders receipts and issues, cancels, renders and verifies tax certificates."""

    # ─── Receipts ───────────────────────────────────────────────────

    @staticmethod
    def render_receipt(payment: PaymentRecord, generated_at: Optional[datetime] = None) -> str:
        """Receipt HTML for a completed or refunded payment.

        Raises:
            InvalidState: payment is pending or failed (no captured funds).
        """
        if payment.status not in RECEIPTABLE:
            raise InvalidState("Receipts are only available for completed donations")

        refunded = payment.refunded_amount or 0
        if payment.status == PaymentStatus.REFUNDED:
            status_label = "Refunded"
        elif refunded:
            status_label = "Partially refunded"
        else:
            status_label = "Received"

        template = _env.get_template("receipt.html")
        return template.render(
            org=payment.organization_snapshot or settings.organization_details(),
            receipt_number=payment.receipt_number,
            donation_date=_display_date(payment.completed_at),
            donor_name=payment.donor_name,
            donor_email=payment.donor_email,
            donor_pan=payment.donor_pan,
            donor_address=payment.donor_address,
            purpose=f"Campaign {payment.campaign_id}" if payment.campaign_id else "General Donation",
            amount=payment.amount,
            gateway_payment_id=payment.gateway_payment_id or "-",
            order_id=payment.order_id,
            refunded_amount=refunded,
            refunded_on=_display_date(payment.refunded_at),
            retained_amount=payment.amount - refunded,
            status_label=status_label,
            generated_at=_generated_stamp(generated_at),
        )

    @staticmethod
    def receipt_document(payment: PaymentRecord, generated_at: Optional[datetime] = None) -> EncodedDocument:
        html = DocumentService.render_receipt(payment, generated_at)
        return _encode(f"receipt-{payment.receipt_number}.html", html)

    # ─── Tax certificates ───────────────────────────────────────────

    @staticmethod
    def get_certificate(db: Session, certificate_id: int) -> TaxCertificate:
        certificate = db.get(TaxCertificate, certificate_id)
        if not certificate:
            raise NotFound("Tax certificate not found")
        return certificate

    @staticmethod
    def deductible_amount(gross: int) -> int:
        """TAX_DEDUCTION_PERCENT of gross, rounded half-up to whole rupees (paise)."""
        return round_half_up_rupees(Decimal(gross) * settings.TAX_DEDUCTION_PERCENT / 100)

    @staticmethod
    def issue_tax_certificate(
        db: Session,
        payment: PaymentRecord,
        actor: Actor,
        donor_pan: Optional[str] = None,
        donor_address: Optional[str] = None,
    ) -> TaxCertificate:
        """Issue a frozen 80G certificate for a completed donation.

        Raises:
            Forbidden: actor is not an admin.
            InvalidState: payment not completed, or an issued certificate exists.
            InvalidAmount: donation below MIN_TAX_CERTIFICATE_AMOUNT.
            MissingTaxInfo: no valid PAN on the request or the payment.
        """
        require_admin(actor, "issue tax certificates")

        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidState("Tax certificates are only issued for completed donations")
        if payment.amount < settings.MIN_TAX_CERTIFICATE_AMOUNT * 100:
            raise InvalidAmount(
                f"Donation amount must be at least ₹{settings.MIN_TAX_CERTIFICATE_AMOUNT} for a tax certificate"
            )
        pan = normalize_pan(donor_pan) or payment.donor_pan
        if not pan:
            raise MissingTaxInfo("Donor PAN is required for a tax certificate")
        if not validate_pan(pan):
            raise MissingTaxInfo("Donor PAN is not in a valid format (e.g. ABCPK1234F)")

        existing = (
            db.query(TaxCertificate)
            .filter(TaxCertificate.payment_id == payment.id, TaxCertificate.status == CertificateStatus.ISSUED)
            .first()
        )
        if existing:
            raise InvalidState(f"Tax certificate {existing.certificate_number} already exists for this donation")

        payment_id = payment.id
        donation_date = payment.completed_at
        fy = financial_year(donation_date)

        for attempt in range(1, CERTIFICATE_ISSUE_ATTEMPTS + 1):
            payment = db.get(PaymentRecord, payment_id)
            sequence = (
                db.query(func.max(TaxCertificate.sequence))
                .filter(TaxCertificate.financial_year == fy)
                .scalar() or 0
            ) + 1
            number = f"{settings.RECEIPT_PREFIX}-80G-{financial_year_short(donation_date)}-{sequence:06d}"

            certificate = TaxCertificate(
                payment_id=payment.id,
                certificate_number=number,
                certificate_type="80G",
                financial_year=fy,
                sequence=sequence,
                donor_name=payment.donor_name,
                donor_email=payment.donor_email,
                donor_pan=pan,
                donor_address=donor_address or payment.donor_address,
                donation_amount=payment.amount,
                donation_date=donation_date,
                receipt_number=payment.receipt_number,
                deduction_percentage=settings.TAX_DEDUCTION_PERCENT,
                deductible_amount=DocumentService.deductible_amount(payment.amount),
                organization_snapshot=settings.organization_details(),
                verification_code=verification_code(number, payment.id),
                status=CertificateStatus.ISSUED,
                issued_by=actor.id,
                issued_at=utcnow(),
            )
            db.add(certificate)
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                log_event("certificates", f"sequence {sequence} in FY {fy} taken (attempt {attempt}), retrying")
                continue

            AuditService.log(
                db, "certificate", certificate.id, "CERTIFICATE_ISSUED",
                before={}, after={
                    "status": certificate.status.value,
                    "certificate_number": number,
                    "payment_id": payment.id,
                    "donation_amount": certificate.donation_amount,
                    "deductible_amount": certificate.deductible_amount,
                },
                actor_id=actor.id,
            )
            db.commit()
            db.refresh(certificate)
            log_event("certificates", f"{number} issued for payment {payment.id} by {actor.id}")
            return certificate

        raise ConcurrentModification("Could not allocate a certificate number; please retry")

    @staticmethod
    def cancel_tax_certificate(
        db: Session,
        certificate: TaxCertificate,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> TaxCertificate:
        """Mark an issued certificate cancelled. A replacement gets a new number."""
        require_admin(actor, "cancel tax certificates")
        if certificate.status != CertificateStatus.ISSUED:
            raise InvalidTransition("Only issued certificates can be cancelled")

        certificate.status = CertificateStatus.CANCELLED
        certificate.cancelled_at = utcnow()
        certificate.cancellation_reason = reason or "Cancelled by admin"
        db.flush()

        AuditService.log(
            db, "certificate", certificate.id, "CERTIFICATE_CANCELLED",
            before={"status": CertificateStatus.ISSUED.value},
            after={"status": certificate.status.value},
            actor_id=actor.id,
            metadata={"reason": certificate.cancellation_reason},
        )
        db.commit()
        db.refresh(certificate)
        log_event("certificates", f"{certificate.certificate_number} cancelled by {actor.id}")
        return certificate

    @staticmethod
    def render_tax_certificate(certificate: TaxCertificate, generated_at: Optional[datetime] = None) -> str:
        """Certificate HTML built only from the frozen certificate row."""
        url = verification_url(certificate)
        template = _env.get_template("tax_certificate.html")
        return template.render(
            cert=certificate,
            org=certificate.organization_snapshot,
            issued_on=_display_date(certificate.issued_at),
            donation_date=_display_date(certificate.donation_date),
            cancelled=certificate.status == CertificateStatus.CANCELLED,
            verification_url=url,
            qr_data_uri=qr_data_uri(url),
            generated_at=_generated_stamp(generated_at),
        )

    @staticmethod
    def certificate_document(certificate: TaxCertificate, generated_at: Optional[datetime] = None) -> EncodedDocument:
        html = DocumentService.render_tax_certificate(certificate, generated_at)
        return _encode(f"80g-{certificate.certificate_number}.html", html)

    @staticmethod
    def verify_certificate(db: Session, code: str) -> dict:
        """Public lookup of a certificate by its verification code."""
        certificate = (
            db.query(TaxCertificate)
            .filter(TaxCertificate.verification_code == code.strip().upper())
            .first()
        )
        if not certificate:
            raise NotFound("Certificate not found")

        summary = {
            "certificate_number": certificate.certificate_number,
            "certificate_type": certificate.certificate_type,
            "payment_id": certificate.payment_id,
            "donor_name": certificate.donor_name,
            "donation_amount": certificate.donation_amount,
            "deductible_amount": certificate.deductible_amount,
            "deduction_percentage": certificate.deduction_percentage,
            "donation_date": certificate.donation_date,
            "financial_year": certificate.financial_year,
            "issued_at": certificate.issued_at,
            "status": certificate.status.value,
            "organization": certificate.organization_snapshot,
        }
        if certificate.status == CertificateStatus.CANCELLED:
            summary["cancelled_at"] = certificate.cancelled_at
            summary["cancellation_reason"] = certificate.cancellation_reason
            return {"valid": False, "message": "This certificate has been cancelled", "certificate": summary}
        return {"valid": True, "message": "Certificate is valid", "certificate": summary}
