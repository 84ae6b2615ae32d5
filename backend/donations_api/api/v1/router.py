"""Aggregate all v1 sub-routers."""

from fastapi import APIRouter

from donations_api.api.v1.admin import router as admin_router
from donations_api.api.v1.auth import router as auth_router
from donations_api.api.v1.cases import router as cases_router
from donations_api.api.v1.contact import router as contact_router
from donations_api.api.v1.currency import router as currency_router
from donations_api.api.v1.donations import router as donations_router
from donations_api.api.v1.fees import router as fees_router
from donations_api.api.v1.health import router as health_router
from donations_api.api.v1.stats import router as stats_router
from donations_api.api.v1.webhooks import router as webhooks_router

api_v1_router = APIRouter()

api_v1_router.include_router(health_router, tags=["health"])
api_v1_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_v1_router.include_router(donations_router, prefix="/donations", tags=["donations"])
api_v1_router.include_router(fees_router, prefix="/fees", tags=["fees"])
api_v1_router.include_router(currency_router, prefix="/currency", tags=["currency"])
api_v1_router.include_router(cases_router, prefix="/cases", tags=["cases"])
api_v1_router.include_router(stats_router, prefix="/stats", tags=["stats"])
api_v1_router.include_router(contact_router, prefix="/contact", tags=["contact"])
api_v1_router.include_router(admin_router, prefix="/admin", tags=["admin"])
api_v1_router.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
