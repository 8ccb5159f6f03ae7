"""
Lead model - the canonical sales lead, from the ad platform or entered manually.
Workflow: new → followup → won/lost, with unreach and unqualified side exits.
Leads ingested before their contact details were known carry the PENDING
placeholder phone and enrichment_status="pending" until the backup sync repairs them.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from src.database import Base

# Source value for leads from the ad platform
META_SOURCE = "meta"


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    external_lead_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Contact info
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))

    # Classification
    source: Mapped[str] = mapped_column(String(50), nullable=False)  # meta, website, walk_in, referral
    campaign: Mapped[Optional[str]] = mapped_column(String(255))

    # Workflow
    status: Mapped[str] = mapped_column(String(30), default="new", nullable=False)
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    call_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    customer_requirement: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    enrichment_status: Mapped[str] = mapped_column(
        String(20), default="complete", nullable=False
    )  # complete, pending, failed

    # Provenance: platform ids, resolved names, ingestion timestamps, extra form fields
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSONB, default=dict)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    assigned_to: Mapped[Optional["User"]] = relationship(lazy="select")
    events: Mapped[list["AuditEvent"]] = relationship(
        back_populates="lead", lazy="select", order_by="AuditEvent.created_at"
    )

    __table_args__ = (
        UniqueConstraint("source", "external_lead_id", name="uq_leads_source_external_id"),
        Index("ix_leads_phone", "phone"),
        Index("ix_leads_email", "email"),
        Index("ix_leads_status", "status"),
        Index("ix_leads_source", "source"),
        Index("ix_leads_created_at", "created_at"),
        Index("ix_leads_assigned_to", "assigned_to_id"),
    )

    def __repr__(self) -> str:
        masked = self.phone[:6] + "***" if self.phone else "unknown"
        return f"<Lead {masked} source={self.source} status={self.status}>"
