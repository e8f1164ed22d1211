from donation_core.routes.donations import router as donations_router
from donation_core.routes.subscriptions import router as subscriptions_router
from donation_core.routes.admin import router as admin_router
from donation_core.routes.certificates import router as certificates_router
from donation_core.routes.webhooks import router as webhooks_router

__all__ = ["donations_router", "subscriptions_router", "admin_router", "certificates_router", "webhooks_router"]
