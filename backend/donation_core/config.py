"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Hope Foundation Donations API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'donations.db'}"

    # --- Payment Gateway (Razorpay) ---
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # --- Payment Rules ---
    RECEIPT_PREFIX: str = "HF"
    REFUND_MAX_RETRIES: int = 3
    MIN_SUBSCRIPTION_AMOUNT: int = 100        # rupees
    MIN_TAX_CERTIFICATE_AMOUNT: int = 500     # rupees, 80G eligibility floor
    TAX_DEDUCTION_PERCENT: int = 50           # Section 80G, 50% deduction

    # --- Organization Registration (snapshotted into each certificate) ---
    ORG_NAME: str = "Hope Foundation"
    ORG_REGISTRATION_NUMBER: str = "HF12345"
    ORG_PAN: str = "AABTH1234F"
    ORG_ADDRESS: str = "123 Charity Lane, Bangalore, Karnataka - 560001"
    ORG_80G_NUMBER: str = "80G/HF/2020-21/1234"
    ORG_12A_NUMBER: str = "12A/HF/2020-21/5678"
    ORG_SIGNATORY: str = "Authorised Signatory"

    # --- Security ---
    CORS_ORIGINS: list[str] = ["*"]

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    def organization_details(self) -> dict:
        """Registration metadata as printed on receipts and certificates."""
        return {
            "name": self.ORG_NAME,
            "registration_number": self.ORG_REGISTRATION_NUMBER,
            "pan_number": self.ORG_PAN,
            "address": self.ORG_ADDRESS,
            "eighty_g_number": self.ORG_80G_NUMBER,
            "twelve_a_number": self.ORG_12A_NUMBER,
            "signatory": self.ORG_SIGNATORY,
        }


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
