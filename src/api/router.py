"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from src.api.meta_webhook import router as meta_webhook_router
from src.api.sync import router as sync_router
from src.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(meta_webhook_router)
api_router.include_router(sync_router)
api_router.include_router(health_router)
