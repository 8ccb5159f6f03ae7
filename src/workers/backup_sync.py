"""
Backup sync worker - runs the Meta backup sync on an interval.
Repairs placeholder leads and re-scans the last hour for leads the webhook missed.
"""
import asyncio
import logging

from src.services.backup_sync import BackupSyncJob
from src.utils.logging import generate_correlation_id, set_correlation_id
from src.utils.redis import record_heartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "backup_sync"
SYNC_INTERVAL_SECONDS = 900  # 15 minutes


async def run_backup_sync(job: BackupSyncJob, interval_seconds: int = SYNC_INTERVAL_SECONDS):
    """Main sync loop. Runs until cancelled."""
    logger.info("Backup sync worker started (interval=%ds)", interval_seconds)

    while True:
        set_correlation_id(generate_correlation_id())
        try:
            report = await job.run()
            if report.created or report.updated:
                logger.info(
                    "Backup sync recovered %d new and %d repaired leads",
                    report.created, report.updated,
                )
        except Exception as e:
            logger.error("Backup sync worker error: %s", str(e), exc_info=True)

        await record_heartbeat(WORKER_NAME, ttl_seconds=interval_seconds * 2)
        await asyncio.sleep(interval_seconds)
