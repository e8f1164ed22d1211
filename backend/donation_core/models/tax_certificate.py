"""
Tax Certificate Model — frozen Section 80G certificate for one donation.
Rows are never edited after issue except to mark them cancelled.
"""
import enum

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON, UniqueConstraint, Enum

from donation_core.database import Base
from donation_core.utils.dates import utcnow


class CertificateStatus(str, enum.Enum):
    ISSUED = "issued"
    CANCELLED = "cancelled"


class TaxCertificate(Base):
    __tablename__ = "tax_certificates"
    __table_args__ = (
        UniqueConstraint("financial_year", "sequence", name="uq_certificate_fy_sequence"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)

    certificate_number = Column(String(40), unique=True, nullable=False, index=True)
    certificate_type = Column(String(8), nullable=False, default="80G")
    financial_year = Column(String(9), nullable=False, index=True)   # 2024-2025
    sequence = Column(Integer, nullable=False)

    # Donation snapshot
    donor_name = Column(String(128), nullable=False)
    donor_email = Column(String(255), nullable=False, index=True)
    donor_pan = Column(String(10), nullable=False)
    donor_address = Column(String(512))
    donation_amount = Column(Integer, nullable=False)        # paise
    donation_date = Column(DateTime, nullable=False)
    receipt_number = Column(String(40), nullable=False)
    deduction_percentage = Column(Integer, nullable=False)
    deductible_amount = Column(Integer, nullable=False)      # paise, whole rupees

    organization_snapshot = Column(JSON, nullable=False)
    verification_code = Column(String(20), unique=True, nullable=False, index=True)

    status = Column(
        Enum(CertificateStatus, native_enum=False, length=16,
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=CertificateStatus.ISSUED,
        index=True,
    )
    issued_by = Column(String(64))
    issued_at = Column(DateTime, default=utcnow, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String(255))

    def __repr__(self):
        return f"<TaxCertificate {self.certificate_number} {self.status}>"
