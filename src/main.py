"""
LeadSync - Meta Lead Ads ingestion and deduplication for the sales CRM.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from src.config import get_settings
from src.api.router import api_router
from src.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("leadsync")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build long-lived services, start the backup sync worker, tear down on exit."""
    from src.database import dispose_engine, get_session_factory
    from src.services.backup_sync import BackupSyncJob
    from src.services.ingestion import LeadIngestionService
    from src.services.meta_client import build_meta_client
    from src.utils.redis import close_redis
    from src.workers.backup_sync import run_backup_sync

    settings = get_settings()
    logger.info("LeadSync starting up (env=%s)", settings.app_env)

    # Configuration warnings
    if not settings.meta_app_secret:
        logger.warning(
            "META_APP_SECRET not set - webhook signatures cannot be verified."
        )
    if not settings.meta_access_token:
        logger.warning(
            "META_ACCESS_TOKEN not set - lead details cannot be fetched from the Graph API."
        )
    if not settings.cron_secret and settings.app_env == "production":
        logger.warning("CRON_SECRET not set - the sync endpoint only accepts internal calls.")

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    meta_client = build_meta_client(settings)
    ingestion_service = LeadIngestionService(
        session_factory=get_session_factory(),
        meta_client=meta_client,
        preferred_agent_email=settings.meta_preferred_agent_email,
        eligible_roles=settings.eligible_roles,
        country_code=settings.phone_default_country_code,
    )
    backup_sync_job = BackupSyncJob(
        ingestion_service,
        batch_size=settings.placeholder_batch_size,
        default_window_hours=settings.sync_default_window_hours,
        max_window_days=settings.sync_max_window_days,
    )
    app.state.meta_client = meta_client
    app.state.ingestion_service = ingestion_service
    app.state.backup_sync_job = backup_sync_job

    worker_tasks: list[asyncio.Task] = []
    if settings.sync_enabled:
        worker_tasks.append(asyncio.create_task(
            run_backup_sync(backup_sync_job, settings.sync_interval_seconds)
        ))
        logger.info("Backup sync worker started")
    else:
        logger.info("Backup sync worker disabled (SYNC_ENABLED=false)")

    yield

    logger.info("LeadSync shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        # Wait up to 10 seconds for workers to finish
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    await meta_client.aclose()
    await close_redis()
    await dispose_engine()
    logger.info("LeadSync shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="LeadSync",
        description="Meta Lead Ads ingestion and deduplication",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            settings.app_base_url,
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "X-Correlation-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
