"""Top-level API router."""

from fastapi import APIRouter

from buildtrack.api.routes.exports import router as exports_router
from buildtrack.api.routes.health import router as health_router
from buildtrack.api.routes.me import router as me_router
from buildtrack.api.routes.payments import router as payments_router
from buildtrack.api.routes.projects import router as projects_router
from buildtrack.api.routes.reports import router as reports_router
from buildtrack.api.routes.settings import router as settings_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(me_router)
api_router.include_router(projects_router)
api_router.include_router(payments_router)
api_router.include_router(reports_router)
api_router.include_router(exports_router)
api_router.include_router(settings_router)
