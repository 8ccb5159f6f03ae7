"""
Operational endpoints for the Meta integration.

GET /api/v1/cron/sync-meta-leads?days=N - run the backup sync now (cron or manual backfill)
GET /api/v1/meta/status                 - token health, config and backlog diagnostics
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.api.deps import (
    get_app_settings,
    get_backup_sync_job,
    get_db_session_factory,
    get_meta_client,
    require_cron_auth,
)
from src.config import Settings
from src.models.lead import META_SOURCE
from src.schemas.ingestion import MetaStatusResponse, SyncReport
from src.services.backup_sync import BackupSyncJob
from src.services.lead_store import LeadStore
from src.services.meta_client import MetaLeadClient
from src.utils.redis import get_heartbeat
from src.workers.backup_sync import WORKER_NAME

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["meta-sync"], dependencies=[Depends(require_cron_auth)])


@router.get("/cron/sync-meta-leads", response_model=SyncReport)
async def sync_meta_leads(
    days: Optional[int] = Query(None, ge=1, description="Backfill window in days (capped)"),
    job: BackupSyncJob = Depends(get_backup_sync_job),
):
    logger.info("Backup sync triggered via HTTP (days=%s)", days)
    return await job.run(days=days)


@router.get("/meta/status", response_model=MetaStatusResponse)
async def meta_status(
    settings: Settings = Depends(get_app_settings),
    client: MetaLeadClient = Depends(get_meta_client),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
):
    credential = await client.validate_credential()

    async with session_factory() as session:
        pending = await LeadStore(session).count_placeholder_leads(META_SOURCE)

    return MetaStatusResponse(
        credential=credential,
        webhook_secret_configured=bool(settings.meta_app_secret),
        verify_token_configured=bool(settings.meta_verify_token),
        page_configured=bool(settings.meta_page_id),
        pending_placeholders=pending,
        last_sync_at=await get_heartbeat(WORKER_NAME),
    )
