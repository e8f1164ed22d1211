"""
Audit Log Model — Immutable, tamper-evident trail of financial mutations.
Every entry records before/after state and is SHA-256 hash-chained per entity.
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON

from donation_core.database import Base
from donation_core.utils.dates import utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    entity_type = Column(String(24), nullable=False, index=True)   # payment | subscription | certificate
    entity_id = Column(Integer, nullable=False, index=True)

    action = Column(String(50), nullable=False)
    # Actions: PAYMENT_CREATED, PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_REFUNDED,
    #          PAYMENT_ATTEMPT_FAILED, PAYMENT_CAPTURE_UNMATCHED,
    #          SUBSCRIPTION_CREATED, SUBSCRIPTION_PAUSED, SUBSCRIPTION_RESUMED,
    #          SUBSCRIPTION_CANCELLED, SUBSCRIPTION_EXPIRED, SUBSCRIPTION_CHARGED,
    #          CERTIFICATE_ISSUED, CERTIFICATE_CANCELLED

    actor_id = Column(String(64))
    before = Column(JSON, default=dict)
    after = Column(JSON, default=dict)

    payload_hash = Column(String(64))       # chained SHA-256 of this entry
    previous_hash = Column(String(64))      # hash of the previous entry for the same entity

    log_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=utcnow)
