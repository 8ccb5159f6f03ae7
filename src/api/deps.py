"""
Shared FastAPI dependencies - long-lived services built in the lifespan, plus cron auth.
Tests swap any of these via app.dependency_overrides.
"""
import logging
from typing import Optional
from urllib.parse import urlparse

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings, get_settings
from src.database import get_session_factory
from src.services.backup_sync import BackupSyncJob
from src.services.ingestion import LeadIngestionService
from src.services.meta_client import MetaLeadClient
from src.utils.webhook_signatures import tokens_match

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


def get_app_settings() -> Settings:
    return get_settings()


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


def _app_service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        logger.error("%s requested before application startup", name)
        raise HTTPException(status_code=503, detail="Service not ready")
    return service


def get_meta_client(request: Request) -> MetaLeadClient:
    return _app_service(request, "meta_client")


def get_ingestion_service(request: Request) -> LeadIngestionService:
    return _app_service(request, "ingestion_service")


def get_backup_sync_job(request: Request) -> BackupSyncJob:
    return _app_service(request, "backup_sync_job")


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _is_internal_origin(request: Request) -> bool:
    """Calls whose referer points at this service or at localhost."""
    referer = request.headers.get("Referer")
    if not referer:
        return False
    referer_host = urlparse(referer).hostname
    if not referer_host:
        return False
    return referer_host == request.url.hostname or referer_host in _LOCAL_HOSTS


async def require_cron_auth(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> None:
    """
    Authorize operational endpoints.
    Accepts `Authorization: Bearer <CRON_SECRET>` or a trusted internal origin.
    Without a configured secret, outside callers are refused only in production.
    """
    if tokens_match(settings.cron_secret, _bearer_token(request)):
        return
    if _is_internal_origin(request):
        return
    if not settings.cron_secret:
        if settings.app_env == "production":
            logger.error("CRON_SECRET not set in production - rejecting sync call")
            raise HTTPException(status_code=401, detail="Unauthorized")
        logger.warning("CRON_SECRET not set - accepting unauthenticated sync call")
        return

    logger.warning(
        "Unauthorized sync call from %s",
        request.client.host if request.client else "unknown",
    )
    raise HTTPException(status_code=401, detail="Unauthorized")
