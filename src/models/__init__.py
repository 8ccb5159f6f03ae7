"""
Database models - import all models here so Alembic can discover them.
"""
from src.models.user import User
from src.models.lead import Lead
from src.models.audit_event import AuditEvent
from src.models.webhook_event import WebhookEvent

__all__ = [
    "User",
    "Lead",
    "AuditEvent",
    "WebhookEvent",
]
