"""
Duplicate lead detection, shared by the webhook and the backup sync.

Order of checks (first hit wins):
1. Same source + external lead id - the platform's own identity for a submission.
2. Same source + canonical phone, or same email - a person resubmitting a form.

Callers normalize the phone before calling; placeholder phones never match on contact.
The unique constraint on (source, external_lead_id) is the final backstop for races.
"""
import logging
from typing import Optional

from src.models.lead import META_SOURCE, Lead
from src.services.lead_store import LeadStore
from src.utils.phone import is_placeholder_phone, mask_phone

logger = logging.getLogger(__name__)


class DeduplicationResolver:
    def __init__(self, store: LeadStore):
        self.store = store

    async def find_duplicate(
        self,
        phone: Optional[str],
        email: Optional[str],
        external_lead_id: Optional[str],
        source: str = META_SOURCE,
    ) -> Optional[Lead]:
        """Return the existing lead this submission duplicates, or None."""
        if external_lead_id:
            existing = await self.store.find_lead_by_external_id(source, external_lead_id)
            if existing:
                logger.debug("Duplicate by external id %s", external_lead_id)
                return existing

        if is_placeholder_phone(phone):
            return None

        existing = await self.store.find_lead_by_contact(source, phone, email or None)
        if existing:
            logger.debug(
                "Duplicate by contact phone=%s for external id %s",
                mask_phone(phone), external_lead_id,
            )
        return existing
