"""
Lead owner selection.

Ad platform leads go to the configured preferred agent when that agent is active,
otherwise to the first eligible agent. Leads from every other channel rotate
round-robin, continuing after the owner of the most recently assigned lead.
No eligible agents means the lead stays unassigned - that is not an error.
"""
import logging
import uuid
from typing import Optional, Sequence

from src.services.lead_store import LeadStore

logger = logging.getLogger(__name__)

DEFAULT_ELIGIBLE_ROLES = ("Agent", "SuperAgent")


class AssignmentResolver:
    def __init__(
        self,
        store: LeadStore,
        preferred_agent_email: str = "",
        eligible_roles: Sequence[str] = DEFAULT_ELIGIBLE_ROLES,
        preferred_sources: Sequence[str] = ("meta",),
    ):
        self.store = store
        self.preferred_agent_email = preferred_agent_email
        self.eligible_roles = list(eligible_roles)
        self.preferred_sources = set(preferred_sources)

    async def resolve_owner(self, source: str) -> Optional[uuid.UUID]:
        if source in self.preferred_sources:
            return await self._preferred_owner()
        return await self._round_robin_owner()

    async def _preferred_owner(self) -> Optional[uuid.UUID]:
        if self.preferred_agent_email:
            agent = await self.store.find_user_by_identity(self.preferred_agent_email)
            if agent and agent.is_active:
                return agent.id
            logger.warning(
                "Preferred agent %s missing or inactive, falling back",
                self.preferred_agent_email,
            )

        agents = await self.store.find_users_by_role(self.eligible_roles)
        if not agents:
            logger.warning("No eligible agents for assignment, lead left unassigned")
            return None
        return agents[0].id

    async def _round_robin_owner(self) -> Optional[uuid.UUID]:
        agents = await self.store.find_users_by_role(self.eligible_roles)
        if not agents:
            logger.warning("No eligible agents for assignment, lead left unassigned")
            return None

        last_lead = await self.store.find_last_assigned_lead()
        if last_lead is None:
            return agents[0].id

        agent_ids = [agent.id for agent in agents]
        try:
            position = agent_ids.index(last_lead.assigned_to_id)
        except ValueError:
            # Previous owner no longer eligible
            return agent_ids[0]
        return agent_ids[(position + 1) % len(agent_ids)]
