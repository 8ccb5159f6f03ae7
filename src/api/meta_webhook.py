"""
Meta Lead Ads webhook.

GET  /api/v1/webhooks/meta-leads - subscription handshake (hub.challenge echo)
POST /api/v1/webhooks/meta-leads - lead notifications, one ingest per leadgen change

Deliveries are always acknowledged with 200 unless the signature is wrong:
the platform retries non-2xx responses, and the backup sync covers anything
that failed here.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.api.deps import get_app_settings, get_db_session_factory, get_ingestion_service
from src.config import Settings
from src.models.webhook_event import WebhookEvent
from src.schemas.ingestion import WebhookDeliverySummary, parse_webhook_body
from src.services.ingestion import LeadIngestionService
from src.utils.logging import get_correlation_id
from src.utils.webhook_signatures import (
    META_SIGNATURE_HEADER,
    SignatureCheck,
    check_meta_signature,
    compute_payload_hash,
    tokens_match,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

WEBHOOK_SOURCE = "meta"
MAX_RAW_BODY_CHARS = 10000


async def _record_webhook_event(
    session_factory: async_sessionmaker[AsyncSession],
    event_type: str,
    raw_payload: dict,
    payload_hash: str,
) -> Optional[WebhookEvent]:
    """Record the delivery before processing. Audit only - failure here never blocks leads."""
    try:
        async with session_factory() as session:
            event = WebhookEvent(
                source=WEBHOOK_SOURCE,
                event_type=event_type,
                payload_hash=payload_hash,
                raw_payload=raw_payload,
                processing_status="received",
                correlation_id=get_correlation_id(),
            )
            session.add(event)
            await session.commit()
            return event
    except SQLAlchemyError as e:
        logger.error("Failed to record webhook event: %s", str(e))
        return None


async def _complete_webhook_event(
    session_factory: async_sessionmaker[AsyncSession],
    event: Optional[WebhookEvent],
    status: str,
    summary: WebhookDeliverySummary,
    error_message: Optional[str] = None,
) -> None:
    """Update webhook event status after processing."""
    if event is None:
        return
    try:
        async with session_factory() as session:
            stored = await session.get(WebhookEvent, event.id)
            if stored is None:
                return
            stored.processing_status = status
            stored.processed_count = summary.processed
            stored.failed_count = summary.failed
            stored.error_message = error_message
            stored.processed_at = datetime.now(timezone.utc)
            await session.commit()
    except SQLAlchemyError as e:
        logger.error("Failed to complete webhook event %s: %s", str(event.id)[:8], str(e))


@router.get("/meta-leads", response_class=PlainTextResponse)
async def verify_subscription(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    settings: Settings = Depends(get_app_settings),
):
    """Echo hub.challenge when the platform proves it knows the verify token."""
    if not settings.meta_verify_token:
        logger.error("META_VERIFY_TOKEN not set - cannot verify webhook subscription")
        raise HTTPException(status_code=500, detail="Webhook verification not configured")

    if hub_mode != "subscribe" or not tokens_match(settings.meta_verify_token, hub_verify_token):
        logger.warning("Webhook verification failed (mode=%s)", hub_mode)
        raise HTTPException(status_code=403, detail="Verification failed")

    if not hub_challenge:
        raise HTTPException(status_code=400, detail="Missing hub.challenge")

    logger.info("Meta webhook subscription verified")
    return PlainTextResponse(hub_challenge)


@router.post("/meta-leads", response_model=WebhookDeliverySummary)
async def receive_meta_leads(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    ingestion: LeadIngestionService = Depends(get_ingestion_service),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
):
    """Ingest every leadgen change in the delivery. Failures are counted, not raised."""
    body = await request.body()

    check = check_meta_signature(
        settings.meta_app_secret, request.headers.get(META_SIGNATURE_HEADER), body,
    )
    if check == SignatureCheck.INVALID:
        logger.warning("Invalid Meta webhook signature - delivery refused")
        raise HTTPException(status_code=401, detail="Invalid signature")
    if check == SignatureCheck.ABSENT:
        logger.warning("Meta webhook delivery without %s - processing unverified", META_SIGNATURE_HEADER)
    elif check == SignatureCheck.UNVERIFIED:
        logger.warning("META_APP_SECRET not set - cannot verify Meta webhook signature")

    payload_hash = compute_payload_hash(body)
    summary = WebhookDeliverySummary()

    try:
        data = json.loads(body)
    except ValueError:
        data = None

    if not isinstance(data, dict):
        logger.warning("Malformed Meta webhook body acknowledged (hash=%s)", payload_hash[:12])
        event = await _record_webhook_event(
            session_factory, "malformed",
            {"raw": body.decode("utf-8", errors="replace")[:MAX_RAW_BODY_CHARS]},
            payload_hash,
        )
        await _complete_webhook_event(session_factory, event, "malformed", summary, "Body is not a JSON object")
        return summary

    event = await _record_webhook_event(session_factory, "leadgen", data, payload_hash)

    payloads, unusable = parse_webhook_body(data)
    if not payloads and not unusable:
        logger.info("Meta webhook delivery with no leadgen changes (object=%s)", data.get("object"))

    for payload in payloads:
        try:
            result = await ingestion.ingest(payload)
        except Exception as e:
            summary.failed += 1
            logger.error(
                "Unexpected error ingesting lead %s: %s",
                payload.external_lead_id, str(e),
                exc_info=True,
                extra={"external_lead_id": payload.external_lead_id},
            )
            continue

        if result.succeeded:
            summary.processed += 1
        else:
            summary.failed += 1

    summary.failed += unusable

    status = "completed" if summary.failed == 0 else "partial"
    await _complete_webhook_event(
        session_factory, event, status, summary,
        f"{summary.failed} lead(s) not ingested" if summary.failed else None,
    )
    logger.info(
        "Meta webhook processed: %d ok, %d failed",
        summary.processed, summary.failed,
    )
    return summary
