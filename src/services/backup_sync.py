"""
Backup sync - the pull path that catches what the webhook missed.

Two passes per run:
1. Placeholder repair: leads stored before their contact details were known
   are re-fetched and completed in place, or explicitly marked failed once
   repair is hopeless. This pass never creates leads.
2. Gap discovery: every form's leads from a trailing window go through the
   normal ingestion pipeline, so deduplication decides what is new.

A run never raises. Failures are counted in the returned SyncReport.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import ValidationError

from src.models.lead import META_SOURCE, Lead
from src.schemas.ingestion import IngestionOrigin, IngestionPayload, LeadDetail, SyncReport
from src.services.ingestion import (
    LeadIngestionService,
    build_lead_metadata,
    campaign_label,
    default_lead_name,
)
from src.services.lead_store import LeadStore
from src.services.meta_client import MetaApiError, MetaTransientError
from src.utils.phone import PLACEHOLDER_PHONE, is_plausible_phone, mask_phone

logger = logging.getLogger(__name__)

MAX_REPAIR_ATTEMPTS = 5


class BackupSyncJob:
    def __init__(
        self,
        ingestion: LeadIngestionService,
        batch_size: int = 50,
        default_window_hours: int = 1,
        max_window_days: int = 90,
    ):
        self.ingestion = ingestion
        self.session_factory = ingestion.session_factory
        self.meta_client = ingestion.meta_client
        self.batch_size = batch_size
        self.default_window_hours = default_window_hours
        self.max_window_days = max_window_days
        self.source = ingestion.source or META_SOURCE

    def window_start(self, days: Optional[int] = None, now: Optional[datetime] = None) -> datetime:
        """Start of the discovery window. `days` widens it for manual backfills."""
        now = now or datetime.now(timezone.utc)
        if days:
            days = max(1, min(days, self.max_window_days))
            return now - timedelta(days=days)
        return now - timedelta(hours=self.default_window_hours)

    async def run(self, days: Optional[int] = None) -> SyncReport:
        since = self.window_start(days)
        report = SyncReport(since=since)

        await self.repair_placeholders(report)
        await self.discover_gaps(since, report)

        report.success = report.errors == 0
        logger.info(
            "Backup sync done: updated=%d created=%d skipped=%d rejected=%d errors=%d since=%s",
            report.updated, report.created, report.skipped, report.rejected,
            report.errors, since.isoformat(),
        )
        return report

    # Placeholder repair

    async def repair_placeholders(self, report: SyncReport) -> None:
        async with self.session_factory() as session:
            placeholders = await LeadStore(session).find_placeholder_leads(
                self.source, self.batch_size,
            )
            pending = [(lead.id, lead.external_lead_id) for lead in placeholders]

        if pending:
            logger.info("Repairing %d placeholder leads", len(pending))

        for lead_id, external_lead_id in pending:
            try:
                if await self._repair_one(lead_id, external_lead_id):
                    report.updated += 1
                else:
                    report.errors += 1
            except Exception as e:
                report.errors += 1
                logger.error(
                    "Placeholder repair crashed for lead %s: %s",
                    str(lead_id)[:8], str(e),
                    exc_info=True,
                    extra={"lead_id": str(lead_id), "external_lead_id": external_lead_id},
                )

    async def _repair_one(self, lead_id: uuid.UUID, external_lead_id: str) -> bool:
        """Complete one placeholder. Returns True when the lead now has contact details."""
        try:
            detail = await self.meta_client.fetch_lead_detail(external_lead_id)
        except MetaTransientError as e:
            return await self._record_repair_failure(lead_id, f"transient: {e}", terminal=False)

        if detail is None:
            return await self._record_repair_failure(lead_id, "lead not found", terminal=True)

        return await self._complete_placeholder(lead_id, detail)

    async def _complete_placeholder(self, lead_id: uuid.UUID, detail: LeadDetail) -> bool:
        async with self.session_factory() as session:
            lead = await session.get(Lead, lead_id)
            if lead is None or lead.enrichment_status != "pending":
                # Repaired or failed by a concurrent run
                return lead is not None and lead.enrichment_status == "complete"
            page_id = (lead.extra_data or {}).get("pageId")

        payload = IngestionPayload.from_detail(
            detail, origin=IngestionOrigin.BACKUP_SYNC, page_id=page_id,
        )
        fields, phone = self.ingestion.parse_contact(payload)
        if not is_plausible_phone(phone):
            return await self._record_repair_failure(
                lead_id, "no usable phone in lead detail", terminal=False,
            )

        names = await self.meta_client.fetch_entity_names(
            payload.campaign_id, payload.adset_id, payload.ad_id,
        )

        async with self.session_factory() as session:
            store = LeadStore(session)
            lead = await session.get(Lead, lead_id)
            if lead is None or lead.enrichment_status != "pending":
                return lead is not None and lead.enrichment_status == "complete"

            metadata = build_lead_metadata(payload, names, fields)
            metadata["needsDataFetch"] = False
            campaign = campaign_label(names, payload.campaign_id)
            await store.update_lead(
                lead,
                name=fields.name or default_lead_name(payload.external_lead_id),
                phone=phone,
                email=fields.email,
                customer_requirement=fields.requirement or lead.customer_requirement,
                campaign=campaign or lead.campaign,
                enrichment_status="complete",
                extra_data={**(lead.extra_data or {}), **metadata},
            )
            await store.create_audit_event(
                lead_id=lead.id,
                action="updated",
                description=(
                    f"Placeholder lead completed by backup sync. "
                    f"Lead ID: {payload.external_lead_id}. Campaign: {campaign or 'Unknown'}."
                ),
            )
            await session.commit()

        logger.info(
            "Placeholder lead %s completed (phone=%s)",
            str(lead_id)[:8], mask_phone(phone),
            extra={"lead_id": str(lead_id), "external_lead_id": payload.external_lead_id},
        )
        return True

    async def _record_repair_failure(self, lead_id: uuid.UUID, reason: str, terminal: bool) -> bool:
        """Count a failed attempt; mark the lead failed once repair is hopeless."""
        async with self.session_factory() as session:
            store = LeadStore(session)
            lead = await session.get(Lead, lead_id)
            if lead is None or lead.enrichment_status != "pending":
                return False

            metadata = dict(lead.extra_data or {})
            attempts = int(metadata.get("repairAttempts") or 0) + 1
            metadata["repairAttempts"] = attempts
            metadata["lastRepairError"] = reason
            metadata["lastRepairAt"] = datetime.now(timezone.utc).isoformat()

            if terminal or attempts >= MAX_REPAIR_ATTEMPTS:
                await store.update_lead(lead, enrichment_status="failed", extra_data=metadata)
                await store.create_audit_event(
                    lead_id=lead.id,
                    action="enrichment_failed",
                    description=(
                        f"Contact details could not be retrieved after {attempts} "
                        f"attempt(s): {reason}. Lead ID: {lead.external_lead_id}."
                    ),
                )
                logger.warning(
                    "Placeholder lead %s marked failed: %s",
                    str(lead_id)[:8], reason,
                    extra={"lead_id": str(lead_id), "external_lead_id": lead.external_lead_id},
                )
            else:
                await store.update_lead(lead, extra_data=metadata)
                logger.warning(
                    "Placeholder lead %s repair attempt %d/%d failed: %s",
                    str(lead_id)[:8], attempts, MAX_REPAIR_ATTEMPTS, reason,
                )
            await session.commit()
        return False

    # Gap discovery

    async def discover_gaps(self, since: datetime, report: SyncReport) -> None:
        try:
            forms = await self.meta_client.list_lead_forms()
        except MetaApiError as e:
            report.errors += 1
            logger.error("Could not list lead forms: %s", str(e))
            return

        for form in forms:
            form_id = form.get("id")
            if not form_id:
                continue
            try:
                leads = await self.meta_client.list_form_leads(str(form_id), since)
            except MetaApiError as e:
                report.errors += 1
                logger.error("Could not list leads for form %s: %s", form_id, str(e))
                continue

            for detail in leads:
                await self._ingest_discovered(detail, report)

    async def _ingest_discovered(self, detail: LeadDetail, report: SyncReport) -> None:
        try:
            payload = IngestionPayload.from_detail(
                detail, origin=IngestionOrigin.BACKUP_SYNC, page_id=self.meta_client.page_id or None,
            )
        except ValidationError as e:
            report.rejected += 1
            logger.warning("Discovered lead unusable: %s", str(e))
            return

        try:
            result = await self.ingestion.ingest(payload)
        except Exception as e:
            report.errors += 1
            logger.error(
                "Ingestion crashed for discovered lead %s: %s",
                payload.external_lead_id, str(e),
                exc_info=True,
                extra={"external_lead_id": payload.external_lead_id},
            )
            return
        report.record(result)
