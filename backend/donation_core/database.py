"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from donation_core.config import get_settings

settings = get_settings()

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# Ensure data directory exists for file-backed SQLite
if _is_sqlite:
    _db_path = settings.DATABASE_URL.replace("sqlite:///", "", 1)
    if settings.DATABASE_URL.startswith("sqlite:///") and os.path.dirname(_db_path):
        os.makedirs(os.path.dirname(_db_path), exist_ok=True)

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},  # Required for SQLite
    echo=settings.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create all tables. Called once at application startup."""
    from donation_core.models import audit as _audit_model                 # noqa: F401
    from donation_core.models import payment as _payment_model             # noqa: F401
    from donation_core.models import subscription as _subscription_model   # noqa: F401
    from donation_core.models import tax_certificate as _certificate_model # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
