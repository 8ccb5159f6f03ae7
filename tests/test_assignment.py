"""
Tests for src/services/assignment.py - preferred agent and round-robin ownership.
"""
from datetime import datetime, timedelta, timezone

from src.models.lead import Lead
from src.models.user import User
from src.services.assignment import AssignmentResolver
from src.services.lead_store import LeadStore

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


async def _add_users(db, *specs) -> list[User]:
    """specs: (email, role, is_active); created_at increases in order."""
    users = []
    for i, (email, role, active) in enumerate(specs):
        user = User(
            name=email.split("@")[0].title(),
            email=email,
            role=role,
            is_active=active,
            created_at=BASE_TIME + timedelta(minutes=i),
        )
        db.add(user)
        users.append(user)
    await db.commit()
    return users


async def _add_assigned_lead(db, owner: User, external_id: str = "X1") -> Lead:
    lead = Lead(
        external_lead_id=external_id,
        name="Someone",
        phone="919800000000",
        source="website",
        assigned_to_id=owner.id,
    )
    db.add(lead)
    await db.commit()
    return lead


class TestPreferredAgent:
    async def test_preferred_agent_wins_when_active(self, db):
        _, priya = await _add_users(
            db, ("ravi@example.com", "Agent", True), ("priya@example.com", "SuperAgent", True),
        )
        resolver = AssignmentResolver(LeadStore(db), preferred_agent_email="Priya@Example.com")

        assert await resolver.resolve_owner("meta") == priya.id

    async def test_inactive_preferred_falls_back_to_first_eligible(self, db):
        ravi, _ = await _add_users(
            db, ("ravi@example.com", "Agent", True), ("priya@example.com", "Agent", False),
        )
        resolver = AssignmentResolver(LeadStore(db), preferred_agent_email="priya@example.com")

        assert await resolver.resolve_owner("meta") == ravi.id

    async def test_admins_are_never_picked(self, db):
        await _add_users(db, ("boss@example.com", "Admin", True))
        resolver = AssignmentResolver(LeadStore(db))

        assert await resolver.resolve_owner("meta") is None


class TestRoundRobin:
    async def test_first_agent_when_nothing_assigned(self, db):
        a, b = await _add_users(db, ("a@example.com", "Agent", True), ("b@example.com", "Agent", True))
        resolver = AssignmentResolver(LeadStore(db))

        assert await resolver.resolve_owner("website") == a.id

    async def test_rotates_after_last_owner(self, db):
        a, b, c = await _add_users(
            db,
            ("a@example.com", "Agent", True),
            ("b@example.com", "SuperAgent", True),
            ("c@example.com", "Agent", True),
        )
        resolver = AssignmentResolver(LeadStore(db))

        await _add_assigned_lead(db, b)
        assert await resolver.resolve_owner("website") == c.id

    async def test_wraps_around(self, db):
        a, b = await _add_users(db, ("a@example.com", "Agent", True), ("b@example.com", "Agent", True))
        resolver = AssignmentResolver(LeadStore(db))

        await _add_assigned_lead(db, b)
        assert await resolver.resolve_owner("referral") == a.id

    async def test_ineligible_previous_owner_restarts_rotation(self, db):
        a, gone = await _add_users(db, ("a@example.com", "Agent", True), ("gone@example.com", "Agent", False))
        resolver = AssignmentResolver(LeadStore(db))

        await _add_assigned_lead(db, gone)
        assert await resolver.resolve_owner("website") == a.id

    async def test_no_agents_means_unassigned(self, db):
        resolver = AssignmentResolver(LeadStore(db))
        assert await resolver.resolve_owner("website") is None
