"""
Hope Foundation Donations — FastAPI Application Entry Point

Aggregates all routers, configures middleware, maps domain errors to HTTP
responses, and initializes the database on startup.
"""
import os
import time
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from donation_core.config import get_settings
from donation_core.database import init_db, SessionLocal
from donation_core.errors import PaymentError
from donation_core.routes import (
    donations_router, subscriptions_router, admin_router, certificates_router, webhooks_router,
)
from donation_core.schemas.schemas import ErrorResponse
from donation_core.services.access import ADMIN
from donation_core.utils.logger import log_event

settings = get_settings()

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Donation payment and recurring-subscription lifecycle for the foundation. "
        "Covers one-time checkout via Razorpay, scheduled subscription billing, "
        "partial and full refunds, donation receipts and Section 80G tax certificates."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup ─────────────────────────────────────────────────────────
BOOT_TIME = time.time()


@app.on_event("startup")
def on_startup():
    """Initialize database tables and log boot info."""
    init_db()

    # Ensure log directory
    os.makedirs(settings.LOG_DIR, exist_ok=True)

    boot_msg = (
        f"\n{'='*60}\n"
        f"  {settings.APP_NAME} v{settings.APP_VERSION}\n"
        f"  TIME: {datetime.now().isoformat()}\n"
        f"  RAZORPAY KEY: {'[OK] Loaded' if settings.RAZORPAY_KEY_ID else '[!] Missing'}\n"
        f"  WEBHOOK SECRET: {'[OK] Loaded' if settings.RAZORPAY_WEBHOOK_SECRET else '[!] Missing'}\n"
        f"  DATABASE: {settings.DATABASE_URL}\n"
        f"  DEBUG: {settings.DEBUG}\n"
        f"{'='*60}\n"
    )
    log_event("server", boot_msg)


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        print(f"  -> {request.method} {request.url.path} -> {response.status_code} ({duration}ms)")

    return response


# ─── Error Handling ──────────────────────────────────────────────────
@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    """Human-readable message for everyone; raw gateway/storage detail for admins only."""
    is_admin = request.headers.get("x-actor-role", "").strip().lower() == ADMIN
    body = ErrorResponse(
        detail=exc.message,
        error_code=exc.error_code,
        admin_detail=exc.detail if is_admin else None,
    )
    if exc.status_code >= 500:
        log_event("errors", f"{request.method} {request.url.path}: {exc.error_code} {exc.message} ({exc.detail})")
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(donations_router)
app.include_router(subscriptions_router)
app.include_router(admin_router)
app.include_router(certificates_router)
app.include_router(webhooks_router)


@app.get("/health", tags=["Health"])
def deep_health():
    """Detailed health check including dependency statuses."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as exc:
        log_event("server", f"health check: database unavailable ({exc})")
    finally:
        db.close()

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "gateway": "configured" if settings.RAZORPAY_KEY_ID else "unconfigured",
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }
