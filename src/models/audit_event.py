"""
Audit event model - append-only lead history (creation, enrichment, reassignment).
Rows are written once and never updated or deleted.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from src.database import Base

SYSTEM_ACTOR = "system"


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("leads.id"), nullable=False
    )
    actor: Mapped[str] = mapped_column(String(64), nullable=False, default=SYSTEM_ACTOR)
    action: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # created, updated, enrichment_failed, assigned
    description: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    lead: Mapped["Lead"] = relationship(back_populates="events")

    __table_args__ = (
        Index("ix_audit_events_lead_id", "lead_id"),
        Index("ix_audit_events_action", "action"),
        Index("ix_audit_events_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} actor={self.actor}>"
