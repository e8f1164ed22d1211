"""
Validators — Regex and rule-based validation for donor identifiers.
"""
import re


def normalize_pan(pan: str | None) -> str | None:
    """Strip and upper-case a PAN; empty input becomes None."""
    if not pan or not pan.strip():
        return None
    return pan.strip().upper()


def validate_pan(pan: str | None) -> bool:
    """Validate Indian PAN format: 5 letters + 4 digits + 1 letter (e.g. ABCPK1234F)."""
    if not pan:
        return False
    return bool(re.match(r"^[A-Z]{5}[0-9]{4}[A-Z]$", pan.strip().upper()))


def validate_email(email: str | None) -> bool:
    """Loose address check: something@domain.tld."""
    if not email:
        return False
    return bool(re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email.strip()))


def sanitize_name(name: str | None) -> str:
    """Basic sanitization for names: strip, collapse whitespace."""
    if not name:
        return ""
    return re.sub(r"\s+", " ", re.sub(r"[^\w\s.'-]", "", name.strip()))
