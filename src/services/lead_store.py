"""
Lead store - the only code that queries leads, users and audit events.
Wraps one AsyncSession; the caller owns the transaction (commit/rollback).
"""
import logging
from typing import Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.audit_event import AuditEvent
from src.models.lead import Lead
from src.models.user import User
from src.utils.phone import PLACEHOLDER_PHONE

logger = logging.getLogger(__name__)


class LeadStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_lead(self, **fields) -> Lead:
        lead = Lead(**fields)
        self.session.add(lead)
        await self.session.flush()
        return lead

    async def update_lead(self, lead: Lead, **patch) -> Lead:
        for key, value in patch.items():
            setattr(lead, key, value)
        await self.session.flush()
        return lead

    async def create_audit_event(self, **fields) -> AuditEvent:
        event = AuditEvent(**fields)
        self.session.add(event)
        await self.session.flush()
        return event

    async def find_lead_by_external_id(self, source: str, external_lead_id: str) -> Optional[Lead]:
        result = await self.session.execute(
            select(Lead).where(
                Lead.source == source,
                Lead.external_lead_id == external_lead_id,
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_lead_by_contact(
        self, source: str, phone: str, email: Optional[str] = None,
    ) -> Optional[Lead]:
        """Most recent lead from `source` sharing the phone or (if given) the email."""
        conditions = [Lead.phone == phone]
        if email:
            conditions.append(Lead.email == email)
        result = await self.session.execute(
            select(Lead)
            .where(Lead.source == source, or_(*conditions))
            .order_by(Lead.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_users_by_role(self, roles: Sequence[str]) -> list[User]:
        """Active users holding any of `roles`, in a stable order for rotation."""
        if not roles:
            return []
        result = await self.session.execute(
            select(User)
            .where(User.role.in_(list(roles)), User.is_active.is_(True))
            .order_by(User.created_at.asc(), User.email.asc())
        )
        return list(result.scalars().all())

    async def find_user_by_identity(self, email: str) -> Optional[User]:
        if not email:
            return None
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower()).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_placeholder_leads(self, source: str, limit: int = 50) -> list[Lead]:
        """Placeholder leads still awaiting contact details, newest first."""
        result = await self.session.execute(
            select(Lead)
            .where(
                Lead.source == source,
                Lead.phone == PLACEHOLDER_PHONE,
                Lead.enrichment_status == "pending",
                Lead.external_lead_id.is_not(None),
            )
            .order_by(Lead.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_placeholder_leads(self, source: str) -> int:
        result = await self.session.execute(
            select(func.count(Lead.id)).where(
                Lead.source == source,
                Lead.phone == PLACEHOLDER_PHONE,
                Lead.enrichment_status == "pending",
            )
        )
        return result.scalar() or 0

    async def find_last_assigned_lead(self) -> Optional[Lead]:
        result = await self.session.execute(
            select(Lead)
            .where(Lead.assigned_to_id.is_not(None))
            .order_by(Lead.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
