"""
Tests for src/services/deduplication.py - external id and contact matching.
"""
from datetime import datetime, timedelta, timezone

from src.models.lead import Lead
from src.services.deduplication import DeduplicationResolver
from src.services.lead_store import LeadStore
from src.utils.phone import PLACEHOLDER_PHONE, normalize_phone


async def _add_lead(db, **overrides) -> Lead:
    fields = {
        "external_lead_id": "L1",
        "name": "Asha K",
        "phone": "919876543210",
        "email": "asha@example.com",
        "source": "meta",
    }
    fields.update(overrides)
    lead = Lead(**fields)
    db.add(lead)
    await db.commit()
    return lead


class TestFindDuplicate:
    async def test_matches_external_id_first(self, db):
        lead = await _add_lead(db)
        resolver = DeduplicationResolver(LeadStore(db))

        found = await resolver.find_duplicate("910000000000", None, "L1")
        assert found.id == lead.id

    async def test_matches_on_normalized_phone(self, db):
        lead = await _add_lead(db, external_lead_id="L1", email=None)
        resolver = DeduplicationResolver(LeadStore(db))

        found = await resolver.find_duplicate(normalize_phone("098765-43210"), None, "L2")
        assert found.id == lead.id

    async def test_matches_on_email(self, db):
        lead = await _add_lead(db)
        resolver = DeduplicationResolver(LeadStore(db))

        found = await resolver.find_duplicate("919999999999", "asha@example.com", "L2")
        assert found.id == lead.id

    async def test_other_sources_do_not_match(self, db):
        await _add_lead(db, source="website", external_lead_id=None)
        resolver = DeduplicationResolver(LeadStore(db))

        assert await resolver.find_duplicate("919876543210", "asha@example.com", "L2") is None

    async def test_placeholder_phone_skips_contact_match(self, db):
        await _add_lead(db, phone=PLACEHOLDER_PHONE, external_lead_id="L1", email=None)
        resolver = DeduplicationResolver(LeadStore(db))

        assert await resolver.find_duplicate(PLACEHOLDER_PHONE, None, "L2") is None

    async def test_most_recent_contact_match_wins(self, db):
        now = datetime.now(timezone.utc)
        await _add_lead(db, external_lead_id="OLD", created_at=now - timedelta(days=3))
        newer = await _add_lead(db, external_lead_id="NEW", created_at=now)
        resolver = DeduplicationResolver(LeadStore(db))

        found = await resolver.find_duplicate("919876543210", None, "L3")
        assert found.id == newer.id

    async def test_absence_is_not_an_error(self, db):
        resolver = DeduplicationResolver(LeadStore(db))
        assert await resolver.find_duplicate("919876543210", None, "L1") is None
