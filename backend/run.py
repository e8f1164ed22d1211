"""
Donations Backend — Launcher

Starts the API server, or runs one subscription billing pass and exits
(for cron / a systemd timer).

Usage:
    python run.py
    python run.py --port 8000 --reload
    python run.py --run-due
    python run.py --run-due --as-of 2024-01-15
"""
import argparse
import sys
from datetime import date

import uvicorn


def serve(args):
    print(f"""
    ========================================================
      Hope Foundation Donations -- Backend Server
      API:      http://{args.host}:{args.port}
      Docs:     http://localhost:{args.port}/docs
      Webhooks: http://localhost:{args.port}/api/webhooks/razorpay
    ========================================================
    """)

    uvicorn.run(
        "donation_core.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers,
        log_level="info",
    )


def run_due(as_of):
    """One scheduler pass against the configured database and gateway."""
    from donation_core.database import SessionLocal, init_db
    from donation_core.services.gateway import get_gateway
    from donation_core.services.subscription_service import SubscriptionService

    init_db()
    db = SessionLocal()
    try:
        report = SubscriptionService.run_due_charges(db, get_gateway(), as_of)
    finally:
        db.close()

    summary = report.as_dict()
    print(f"  Billing run for {summary['as_of']}")
    for outcome in ("charged", "failed", "deferred", "skipped"):
        print(f"    {outcome:<9} {len(summary[outcome]):>4}  {summary[outcome]}")
    return 1 if report.deferred else 0


def main():
    parser = argparse.ArgumentParser(description="Hope Foundation Donations Backend")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable hot reload for development")
    parser.add_argument("--workers", type=int, default=1, help="Number of workers (default: 1)")
    parser.add_argument("--run-due", action="store_true", help="Bill due subscriptions once and exit")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None,
                        help="Billing date for --run-due (YYYY-MM-DD, default: today UTC)")

    args = parser.parse_args()

    if args.run_due:
        sys.exit(run_due(args.as_of))
    serve(args)


if __name__ == "__main__":
    main()
