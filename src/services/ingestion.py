"""
Lead ingestion - the single coordinator both entry points funnel into.

Pipeline per payload:
1. Fetch the lead detail if the notification carried only ids
   (a lead already stored under the same external id is skipped first)
2. Parse contact fields and normalize the phone (reject unusable phones)
3. Duplicate check (skip if found - the existing lead is left untouched)
4. Resolve campaign / adset / ad names (best effort)
5. Pick the owner
6. One transaction: duplicate re-check, insert lead + "created" audit event, commit

Every call returns an IngestResult; expected outcomes are values, not exceptions.
The (source, external_lead_id) unique constraint turns a lost insert race into a skip.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.lead import META_SOURCE
from src.schemas.ingestion import (
    EntityNames,
    IngestionOrigin,
    IngestionPayload,
    IngestOutcome,
    IngestResult,
    ParsedLeadFields,
    parse_lead_fields,
)
from src.services.assignment import DEFAULT_ELIGIBLE_ROLES, AssignmentResolver
from src.services.deduplication import DeduplicationResolver
from src.services.lead_store import LeadStore
from src.services.meta_client import MetaLeadClient, MetaTransientError
from src.utils.phone import DEFAULT_COUNTRY_CODE, is_plausible_phone, mask_phone, normalize_phone

logger = logging.getLogger(__name__)

_ORIGIN_TIMESTAMP_KEYS = {
    IngestionOrigin.WEBHOOK: "webhookReceived",
    IngestionOrigin.BACKUP_SYNC: "pollingFetched",
}

_ORIGIN_LABELS = {
    IngestionOrigin.WEBHOOK: "received via webhook",
    IngestionOrigin.BACKUP_SYNC: "recovered by backup sync",
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def default_lead_name(external_lead_id: str) -> str:
    return f"Meta Lead {external_lead_id[:8]}"


def build_lead_metadata(
    payload: IngestionPayload,
    names: EntityNames,
    fields: ParsedLeadFields,
    now: Optional[datetime] = None,
) -> dict:
    """Provenance stored in Lead.extra_data: platform ids, names, timestamps, extra fields."""
    now = now or datetime.now(timezone.utc)
    metadata = {
        "metaLeadId": payload.external_lead_id,
        "formId": payload.form_id,
        "pageId": payload.page_id,
        "adId": payload.ad_id,
        "adsetId": payload.adset_id,
        "campaignId": payload.campaign_id,
        "adName": names.ad_name,
        "adsetName": names.adset_name,
        "campaignName": names.campaign_name,
        "submittedAt": _iso(payload.created_time),
        _ORIGIN_TIMESTAMP_KEYS[payload.origin]: now.isoformat(),
        "dataFetchedAt": now.isoformat(),
    }
    if fields.custom_fields:
        metadata["customFields"] = dict(fields.custom_fields)
    return metadata


def campaign_label(names: EntityNames, campaign_id: Optional[str]) -> Optional[str]:
    """Campaign display name, else the raw campaign id, else None."""
    return names.campaign_name or campaign_id or None


class LeadIngestionService:
    """Turns one IngestionPayload into at most one Lead."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        meta_client: MetaLeadClient,
        preferred_agent_email: str = "",
        eligible_roles: Sequence[str] = DEFAULT_ELIGIBLE_ROLES,
        country_code: str = DEFAULT_COUNTRY_CODE,
        source: str = META_SOURCE,
    ):
        self.session_factory = session_factory
        self.meta_client = meta_client
        self.preferred_agent_email = preferred_agent_email
        self.eligible_roles = list(eligible_roles)
        self.country_code = country_code
        self.source = source

    def _result(
        self,
        outcome: IngestOutcome,
        payload: IngestionPayload,
        reason: Optional[str] = None,
        lead_id: Optional[uuid.UUID] = None,
    ) -> IngestResult:
        return IngestResult(
            outcome=outcome,
            external_lead_id=payload.external_lead_id,
            lead_id=str(lead_id) if lead_id else None,
            reason=reason,
        )

    def _log_extra(self, payload: IngestionPayload, outcome: IngestOutcome) -> dict:
        return {
            "external_lead_id": payload.external_lead_id,
            "source": self.source,
            "origin": payload.origin.value,
            "outcome": outcome.value,
        }

    def parse_contact(self, payload: IngestionPayload) -> tuple[ParsedLeadFields, str]:
        """Parsed form fields plus the canonical phone ("" if none)."""
        fields = parse_lead_fields(payload.field_data)
        return fields, normalize_phone(fields.phone, self.country_code)

    async def ingest(self, payload: IngestionPayload) -> IngestResult:
        if not payload.external_lead_id:
            logger.warning("Lead payload without external id rejected")
            return self._result(IngestOutcome.REJECTED, payload, "missing_external_id")

        if not payload.field_data:
            # Redeliveries of a known lead skip before touching the Graph API
            try:
                async with self.session_factory() as session:
                    known = await LeadStore(session).find_lead_by_external_id(
                        self.source, payload.external_lead_id,
                    )
            except SQLAlchemyError as e:
                logger.error(
                    "Lead %s lookup failed: %s",
                    payload.external_lead_id, str(e),
                    exc_info=True,
                    extra=self._log_extra(payload, IngestOutcome.FAILED),
                )
                return self._result(IngestOutcome.FAILED, payload, "persistence_error")
            if known:
                logger.info(
                    "Lead %s already ingested as %s, skipped",
                    payload.external_lead_id, str(known.id)[:8],
                    extra=self._log_extra(payload, IngestOutcome.SKIPPED),
                )
                return self._result(IngestOutcome.SKIPPED, payload, "duplicate", known.id)

            try:
                detail = await self.meta_client.fetch_lead_detail(payload.external_lead_id)
            except MetaTransientError as e:
                logger.error(
                    "Lead %s detail fetch failed transiently: %s",
                    payload.external_lead_id, str(e),
                    extra=self._log_extra(payload, IngestOutcome.FAILED),
                )
                return self._result(IngestOutcome.FAILED, payload, "transient_external_failure")
            if detail is None:
                logger.error(
                    "Lead %s not found on the platform",
                    payload.external_lead_id,
                    extra=self._log_extra(payload, IngestOutcome.FAILED),
                )
                return self._result(IngestOutcome.FAILED, payload, "lead_not_found")
            payload = payload.with_detail(detail)

        # Step 1: contact fields
        fields, phone = self.parse_contact(payload)
        if not is_plausible_phone(phone):
            reason = "invalid_phone" if fields.phone else "missing_phone"
            logger.warning(
                "Lead %s rejected: %s (phone=%s)",
                payload.external_lead_id, reason, mask_phone(phone),
                extra=self._log_extra(payload, IngestOutcome.REJECTED),
            )
            return self._result(IngestOutcome.REJECTED, payload, reason)

        try:
            # Step 2: cheap duplicate check before any outbound calls
            async with self.session_factory() as session:
                existing = await DeduplicationResolver(LeadStore(session)).find_duplicate(
                    phone, fields.email, payload.external_lead_id, self.source,
                )
            if existing:
                logger.info(
                    "Lead %s is a duplicate of %s, skipped",
                    payload.external_lead_id, str(existing.id)[:8],
                    extra=self._log_extra(payload, IngestOutcome.SKIPPED),
                )
                return self._result(IngestOutcome.SKIPPED, payload, "duplicate", existing.id)

            # Step 3: names never block creation
            names = await self.meta_client.fetch_entity_names(
                payload.campaign_id, payload.adset_id, payload.ad_id,
            )

            # Steps 4-5
            return await self._persist(payload, fields, phone, names)
        except SQLAlchemyError as e:
            logger.error(
                "Lead %s persistence failed: %s",
                payload.external_lead_id, str(e),
                exc_info=True,
                extra=self._log_extra(payload, IngestOutcome.FAILED),
            )
            return self._result(IngestOutcome.FAILED, payload, "persistence_error")

    async def _persist(
        self,
        payload: IngestionPayload,
        fields: ParsedLeadFields,
        phone: str,
        names: EntityNames,
    ) -> IngestResult:
        async with self.session_factory() as session:
            store = LeadStore(session)
            try:
                owner_id = await AssignmentResolver(
                    store,
                    preferred_agent_email=self.preferred_agent_email,
                    eligible_roles=self.eligible_roles,
                ).resolve_owner(self.source)

                existing = await DeduplicationResolver(store).find_duplicate(
                    phone, fields.email, payload.external_lead_id, self.source,
                )
                if existing:
                    await session.rollback()
                    logger.info(
                        "Lead %s appeared concurrently as %s, skipped",
                        payload.external_lead_id, str(existing.id)[:8],
                        extra=self._log_extra(payload, IngestOutcome.SKIPPED),
                    )
                    return self._result(IngestOutcome.SKIPPED, payload, "duplicate", existing.id)

                campaign = campaign_label(names, payload.campaign_id)
                lead = await store.create_lead(
                    external_lead_id=payload.external_lead_id,
                    name=fields.name or default_lead_name(payload.external_lead_id),
                    phone=phone,
                    email=fields.email,
                    source=self.source,
                    campaign=campaign,
                    status="new",
                    assigned_to_id=owner_id,
                    customer_requirement=fields.requirement,
                    notes=f"Meta lead {_ORIGIN_LABELS[payload.origin]}",
                    enrichment_status="complete",
                    extra_data=build_lead_metadata(payload, names, fields),
                )
                await store.create_audit_event(
                    lead_id=lead.id,
                    action="created",
                    description=(
                        f"Meta lead {_ORIGIN_LABELS[payload.origin]}. "
                        f"Lead ID: {payload.external_lead_id}. "
                        f"Campaign: {campaign or 'Unknown'}. "
                        f"Ad: {names.ad_name or payload.ad_id or 'Unknown'}."
                    ),
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "Lead %s lost the insert race, skipped",
                    payload.external_lead_id,
                    extra=self._log_extra(payload, IngestOutcome.SKIPPED),
                )
                return self._result(IngestOutcome.SKIPPED, payload, "duplicate_race")
            except SQLAlchemyError:
                await session.rollback()
                raise

        logger.info(
            "Lead %s created as %s (phone=%s, owner=%s)",
            payload.external_lead_id, str(lead.id)[:8], mask_phone(phone),
            str(owner_id)[:8] if owner_id else "unassigned",
            extra={**self._log_extra(payload, IngestOutcome.CREATED), "lead_id": str(lead.id)},
        )
        return self._result(IngestOutcome.CREATED, payload, lead_id=lead.id)
