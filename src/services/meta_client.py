"""
Meta Graph API client - lead detail, entity names, form listing, token health.

Auth: page access token passed as the access_token query parameter.
Docs: https://developers.facebook.com/docs/marketing-api/guides/lead-ads/retrieving
The httpx client is built once at startup and injected; its timeout bounds every call.
No call retries internally - the backup sync is the retry policy.
"""
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from src.schemas.ingestion import (
    CredentialCheck,
    CredentialStatus,
    EntityNames,
    LeadDetail,
)

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.facebook.com"
TIMEOUT = 10.0

LEAD_DETAIL_FIELDS = "id,created_time,ad_id,adset_id,campaign_id,form_id,field_data"
FORM_FIELDS = "id,name,status"
MAX_PAGES = 10
PAGE_SIZE = 100

# Graph error codes that mean "try again later" (unknown, service, rate limits)
TRANSIENT_ERROR_CODES = frozenset({1, 2, 4, 17, 32, 613})

# OAuthException; subcode 463 means the session (token) has expired
OAUTH_ERROR_CODE = 190
EXPIRED_SESSION_SUBCODE = 463


class MetaApiError(Exception):
    """Non-retryable Graph API failure (bad id, permissions, invalid token)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
        subcode: Optional[int] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.subcode = subcode

    @property
    def token_expired(self) -> bool:
        return self.code == OAUTH_ERROR_CODE and self.subcode == EXPIRED_SESSION_SUBCODE


class MetaTransientError(MetaApiError):
    """Network error, timeout, 5xx or rate limit. Safe to retry later."""


def _graph_error(response: httpx.Response) -> tuple[Optional[int], Optional[int], str]:
    """(code, error_subcode, message) from a Graph error body."""
    try:
        error = response.json().get("error") or {}
    except (ValueError, AttributeError):
        return None, None, response.text[:200]
    code = error.get("code")
    subcode = error.get("error_subcode")
    return (
        code if isinstance(code, int) else None,
        subcode if isinstance(subcode, int) else None,
        str(error.get("message", "")),
    )


class MetaLeadClient:
    """Graph API adapter for Lead Ads."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        page_id: str = "",
        api_version: str = "v21.0",
    ):
        self._http = http_client
        self._access_token = access_token
        self.page_id = page_id
        self.base_url = f"{GRAPH_BASE_URL}/{api_version}"

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, url: str, params: Optional[dict] = None) -> dict:
        """GET a Graph URL and classify any failure."""
        if params is not None:
            params = {**params, "access_token": self._access_token}

        try:
            response = await self._http.get(url, params=params)
        except httpx.TimeoutException as e:
            raise MetaTransientError(f"Graph API timeout: {type(e).__name__}") from e
        except httpx.HTTPError as e:
            raise MetaTransientError(f"Graph API network error: {type(e).__name__}") from e

        if response.status_code >= 500:
            raise MetaTransientError(
                f"Graph API server error {response.status_code}",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            code, subcode, message = _graph_error(response)
            error_cls = MetaTransientError if code in TRANSIENT_ERROR_CODES else MetaApiError
            raise error_cls(
                f"Graph API error {response.status_code}: {message}",
                status_code=response.status_code,
                code=code,
                subcode=subcode,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MetaApiError("Graph API returned non-JSON body", status_code=response.status_code) from e
        if not isinstance(data, dict):
            raise MetaApiError("Graph API returned unexpected body", status_code=response.status_code)
        return data

    async def fetch_lead_detail(self, external_lead_id: str) -> Optional[LeadDetail]:
        """
        Fetch the full lead record.
        Returns None when the lead does not exist or is not readable with this token.
        Raises MetaTransientError for failures worth retrying.
        """
        if not self._access_token:
            logger.error("Meta access token not configured, cannot fetch lead %s", external_lead_id)
            return None

        try:
            data = await self._request(
                f"{self.base_url}/{external_lead_id}",
                {"fields": LEAD_DETAIL_FIELDS},
            )
        except MetaTransientError:
            raise
        except MetaApiError as e:
            logger.warning(
                "Lead %s not retrievable: %s (code=%s)",
                external_lead_id, str(e), e.code,
            )
            return None

        try:
            return LeadDetail.model_validate(data)
        except ValidationError as e:
            logger.warning("Lead %s detail malformed: %s", external_lead_id, str(e))
            return None

    async def fetch_entity_name(self, entity_id: Optional[str]) -> Optional[str]:
        """Display name of a campaign, adset or ad. Never raises."""
        if not entity_id or not self._access_token:
            return None
        try:
            data = await self._request(f"{self.base_url}/{entity_id}", {"fields": "name"})
        except MetaApiError as e:
            logger.debug("Name lookup failed for %s: %s", entity_id, str(e))
            return None
        name = data.get("name")
        return name if isinstance(name, str) and name else None

    async def fetch_entity_names(
        self,
        campaign_id: Optional[str] = None,
        adset_id: Optional[str] = None,
        ad_id: Optional[str] = None,
    ) -> EntityNames:
        campaign_name, adset_name, ad_name = await asyncio.gather(
            self.fetch_entity_name(campaign_id),
            self.fetch_entity_name(adset_id),
            self.fetch_entity_name(ad_id),
        )
        return EntityNames(
            campaign_name=campaign_name,
            adset_name=adset_name,
            ad_name=ad_name,
        )

    async def validate_credential(self) -> CredentialCheck:
        """
        Check the access token via debug_token. Diagnostic only.
        The token inspects itself, so an expired token usually fails the call
        outright with OAuthException 190/463 rather than returning is_valid=false.
        """
        if not self._access_token:
            return CredentialCheck(
                status=CredentialStatus.INVALID,
                error="No access token configured",
            )

        try:
            data = await self._request(
                f"{self.base_url}/debug_token",
                {"input_token": self._access_token},
            )
        except MetaApiError as e:
            status = CredentialStatus.EXPIRED if e.token_expired else CredentialStatus.INVALID
            return CredentialCheck(status=status, error=str(e))

        token = data.get("data") or {}
        expires_at = None
        raw_expiry = token.get("expires_at")
        # 0 means the token never expires
        if isinstance(raw_expiry, int) and raw_expiry > 0:
            expires_at = datetime.fromtimestamp(raw_expiry, tz=timezone.utc)
        scopes = [str(s) for s in token.get("scopes") or []]

        if token.get("is_valid"):
            return CredentialCheck(
                status=CredentialStatus.VALID,
                expires_at=expires_at,
                scopes=scopes,
            )

        error = (token.get("error") or {}).get("message") or "Token is not valid"
        expired = expires_at is not None and expires_at <= datetime.now(timezone.utc)
        return CredentialCheck(
            status=CredentialStatus.EXPIRED if expired else CredentialStatus.INVALID,
            expires_at=expires_at,
            scopes=scopes,
            error=error,
        )

    async def _paginate(self, url: str, params: dict) -> list[dict]:
        """Collect `data` items across pages, following paging.next up to MAX_PAGES."""
        items: list[dict] = []
        data = await self._request(url, params)
        for page in range(MAX_PAGES):
            items.extend(item for item in data.get("data") or [] if isinstance(item, dict))
            next_url = (data.get("paging") or {}).get("next")
            if not next_url:
                break
            if page == MAX_PAGES - 1:
                logger.warning("Pagination cap reached for %s", url)
                break
            # next already carries the token and cursor
            data = await self._request(next_url)
        return items

    async def list_lead_forms(self) -> list[dict]:
        """Lead forms of the configured page. Raises MetaApiError on failure."""
        if not self.page_id:
            raise MetaApiError("Meta page id not configured")
        return await self._paginate(
            f"{self.base_url}/{self.page_id}/leadgen_forms",
            {"fields": FORM_FIELDS, "limit": PAGE_SIZE},
        )

    async def list_form_leads(self, form_id: str, since: datetime) -> list[LeadDetail]:
        """Leads of one form created at or after `since`. Raises MetaApiError on failure."""
        since_ts = int(since.timestamp())
        filtering = [{"field": "time_created", "operator": "GREATER_THAN", "value": since_ts - 1}]
        items = await self._paginate(
            f"{self.base_url}/{form_id}/leads",
            {
                "fields": LEAD_DETAIL_FIELDS,
                "filtering": json.dumps(filtering),
                "limit": PAGE_SIZE,
            },
        )

        leads: list[LeadDetail] = []
        for item in items:
            item.setdefault("form_id", form_id)
            try:
                detail = LeadDetail.model_validate(item)
            except ValidationError as e:
                logger.warning("Skipping malformed lead in form %s: %s", form_id, str(e))
                continue
            if detail.created_time is not None and detail.created_time < since:
                continue
            leads.append(detail)
        return leads


def build_meta_client(settings: Any, http_client: Optional[httpx.AsyncClient] = None) -> MetaLeadClient:
    """Construct the client from settings. Called once from the app lifespan."""
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.meta_api_timeout_seconds or TIMEOUT)
    return MetaLeadClient(
        http_client=http_client,
        access_token=settings.meta_access_token,
        page_id=settings.meta_page_id,
        api_version=settings.meta_graph_api_version,
    )
