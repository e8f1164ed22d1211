"""
Certificate Routes — public verification of issued 80G certificates.
Linked from the QR code printed on every certificate; no identity required.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from donation_core.database import get_db
from donation_core.schemas.schemas import CertificateVerifyResponse
from donation_core.services.document_service import DocumentService

router = APIRouter(prefix="/api/certificates", tags=["Certificates"])


@router.get("/verify/{code}", response_model=CertificateVerifyResponse)
def verify_certificate(code: str, db: Session = Depends(get_db)):
    """Resolve a verification code back to its certificate and donation."""
    return DocumentService.verify_certificate(db, code)
