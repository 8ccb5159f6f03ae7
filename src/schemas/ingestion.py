"""
Lead ingestion schemas - the typed shapes that flow through the pipeline.

IngestionPayload is the universal input: the webhook builds one per leadgen
change, the backup sync builds one per lead it discovers. Parsing is strict and
fails closed - anything without a usable external lead id never becomes a payload.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

LEADGEN_FIELD = "leadgen"
PAGE_OBJECT = "page"

# Custom form fields copied into Lead.customer_requirement
REQUIREMENT_FIELDS = ("message", "comments")

_NAME_KEYS = ("full_name", "name")


def parse_platform_time(value: Any) -> Optional[datetime]:
    """
    Parse a platform timestamp: epoch seconds (webhook) or ISO-8601 (Graph API).
    Returns None for anything unparseable instead of failing the whole lead.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        for fmt in ("%Y-%m-%dT%H:%M:%S%z",):
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                pass
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _optional_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class LeadField(BaseModel):
    """One answered question from a lead form."""
    name: str
    values: list[str] = Field(default_factory=list)

    @field_validator("values", mode="before")
    @classmethod
    def _coerce_values(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            v = [v]
        return [str(item) for item in v if item is not None]

    @property
    def first_value(self) -> Optional[str]:
        for value in self.values:
            if value.strip():
                return value.strip()
        return None


class LeadDetail(BaseModel):
    """Full lead record as returned by the Graph API."""
    id: str
    created_time: Optional[datetime] = None
    form_id: Optional[str] = None
    ad_id: Optional[str] = None
    adset_id: Optional[str] = None
    campaign_id: Optional[str] = None
    field_data: list[LeadField] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("form_id", "ad_id", "adset_id", "campaign_id", mode="before")
    @classmethod
    def _coerce_optional_ids(cls, v):
        return _optional_id(v)

    @field_validator("created_time", mode="before")
    @classmethod
    def _parse_created_time(cls, v):
        return parse_platform_time(v)

    @field_validator("field_data", mode="before")
    @classmethod
    def _coerce_field_data(cls, v):
        return v or []


class IngestionOrigin(str, Enum):
    WEBHOOK = "webhook"
    BACKUP_SYNC = "backup_sync"


class IngestionPayload(BaseModel):
    """One inbound lead notification, consumed synchronously by the ingestion service."""
    external_lead_id: str = Field(..., min_length=1)
    form_id: Optional[str] = None
    page_id: Optional[str] = None
    ad_id: Optional[str] = None
    adset_id: Optional[str] = None
    campaign_id: Optional[str] = None
    field_data: list[LeadField] = Field(default_factory=list)
    created_time: Optional[datetime] = None
    origin: IngestionOrigin = IngestionOrigin.WEBHOOK

    @field_validator("external_lead_id", mode="before")
    @classmethod
    def _coerce_external_id(cls, v):
        return _optional_id(v) or ""

    @field_validator("form_id", "page_id", "ad_id", "adset_id", "campaign_id", mode="before")
    @classmethod
    def _coerce_optional_ids(cls, v):
        return _optional_id(v)

    @field_validator("created_time", mode="before")
    @classmethod
    def _parse_created_time(cls, v):
        return parse_platform_time(v)

    def with_detail(self, detail: LeadDetail) -> "IngestionPayload":
        """Fill field data and missing ids from a fetched lead detail. Webhook ids win."""
        return self.model_copy(update={
            "field_data": detail.field_data,
            "form_id": self.form_id or detail.form_id,
            "ad_id": self.ad_id or detail.ad_id,
            "adset_id": self.adset_id or detail.adset_id,
            "campaign_id": self.campaign_id or detail.campaign_id,
            "created_time": self.created_time or detail.created_time,
        })

    @classmethod
    def from_detail(
        cls,
        detail: LeadDetail,
        origin: IngestionOrigin = IngestionOrigin.BACKUP_SYNC,
        page_id: Optional[str] = None,
    ) -> "IngestionPayload":
        return cls(
            external_lead_id=detail.id,
            form_id=detail.form_id,
            page_id=page_id,
            ad_id=detail.ad_id,
            adset_id=detail.adset_id,
            campaign_id=detail.campaign_id,
            field_data=detail.field_data,
            created_time=detail.created_time,
            origin=origin,
        )


class ParsedLeadFields(BaseModel):
    """Contact details extracted from a lead form's field list."""
    name: Optional[str] = None
    phone: Optional[str] = None  # Raw, not yet normalized
    email: Optional[str] = None
    custom_fields: dict[str, str] = Field(default_factory=dict)

    @property
    def requirement(self) -> Optional[str]:
        for key in REQUIREMENT_FIELDS:
            if self.custom_fields.get(key):
                return self.custom_fields[key]
        return None


def parse_lead_fields(field_data: list[LeadField]) -> ParsedLeadFields:
    """
    Split a form's field list into name / phone / email / custom fields.

    Field names are matched case-insensitively: full_name or name wins for the
    name, first_name + last_name is the fallback; any key containing "phone"
    or "email" is the phone or email. Everything else is a custom field.
    """
    parsed = ParsedLeadFields()
    first_name = None
    last_name = None

    for field in field_data:
        key = field.name.strip().lower()
        value = field.first_value
        if not value:
            continue

        if key in _NAME_KEYS:
            parsed.name = parsed.name or value
        elif key == "first_name":
            first_name = value
        elif key == "last_name":
            last_name = value
        elif "phone" in key:
            parsed.phone = parsed.phone or value
        elif "email" in key:
            parsed.email = parsed.email or value.lower()
        else:
            parsed.custom_fields[field.name] = value

    if not parsed.name and (first_name or last_name):
        parsed.name = " ".join(part for part in (first_name, last_name) if part)

    return parsed


def parse_leadgen_change(change: Any) -> Optional[IngestionPayload]:
    """
    Build a payload from one webhook change entry.
    Returns None for non-lead changes and for lead changes without a leadgen_id.
    """
    if not isinstance(change, dict) or change.get("field") != LEADGEN_FIELD:
        return None
    value = change.get("value")
    if not isinstance(value, dict):
        return None
    if not _optional_id(value.get("leadgen_id")):
        logger.warning("Leadgen change without leadgen_id ignored")
        return None

    return IngestionPayload(
        external_lead_id=value.get("leadgen_id"),
        form_id=value.get("form_id"),
        page_id=value.get("page_id"),
        ad_id=value.get("ad_id"),
        adset_id=value.get("adgroup_id") or value.get("adset_id"),
        campaign_id=value.get("campaign_id"),
        created_time=value.get("created_time"),
        origin=IngestionOrigin.WEBHOOK,
    )


def parse_webhook_body(body: Any) -> tuple[list[IngestionPayload], int]:
    """
    Walk object -> entry[] -> changes[] and return (payloads, unusable_count).
    Non-page objects yield nothing. Leadgen changes that cannot be parsed are
    counted so they show up as failures in the delivery summary.
    """
    if not isinstance(body, dict) or body.get("object") != PAGE_OBJECT:
        return [], 0

    payloads: list[IngestionPayload] = []
    unusable = 0
    entries = body.get("entry") or []
    if not isinstance(entries, list):
        return [], 0

    for entry in entries:
        changes = entry.get("changes") if isinstance(entry, dict) else None
        if not isinstance(changes, list):
            continue
        for change in changes:
            if not isinstance(change, dict) or change.get("field") != LEADGEN_FIELD:
                continue
            payload = parse_leadgen_change(change)
            if payload is None:
                unusable += 1
            else:
                payloads.append(payload)

    return payloads, unusable


class IngestOutcome(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    FAILED = "failed"


class IngestResult(BaseModel):
    outcome: IngestOutcome
    external_lead_id: Optional[str] = None
    lead_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (IngestOutcome.CREATED, IngestOutcome.SKIPPED)


class EntityNames(BaseModel):
    campaign_name: Optional[str] = None
    adset_name: Optional[str] = None
    ad_name: Optional[str] = None


class CredentialStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"


class CredentialCheck(BaseModel):
    status: CredentialStatus
    expires_at: Optional[datetime] = None
    scopes: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class WebhookDeliverySummary(BaseModel):
    """Webhook response body. Always returned with HTTP 200."""
    success: bool = True
    processed: int = 0
    failed: int = 0


class SyncReport(BaseModel):
    """Aggregate counts from one backup sync run."""
    success: bool = True
    updated: int = 0
    created: int = 0
    skipped: int = 0
    rejected: int = 0
    errors: int = 0
    since: Optional[datetime] = None

    def record(self, result: IngestResult) -> None:
        if result.outcome == IngestOutcome.CREATED:
            self.created += 1
        elif result.outcome == IngestOutcome.SKIPPED:
            self.skipped += 1
        elif result.outcome == IngestOutcome.REJECTED:
            self.rejected += 1
        else:
            self.errors += 1


class MetaStatusResponse(BaseModel):
    credential: CredentialCheck
    webhook_secret_configured: bool
    verify_token_configured: bool
    page_configured: bool
    pending_placeholders: int = 0
    last_sync_at: Optional[str] = None
