"""
Database models.

TENANT_OWNED_MODELS is the explicit allow-list of models whose rows belong to
a single tenant. Every model added here is scoped by the storage
interceptor; models not listed are never filtered.
"""

from saas_backend.models.audit_event import AuditEvent
from saas_backend.models.event_store import EventConsumerRecord, EventStatus, StoredEventRecord
from saas_backend.models.tenant import Tenant, TenantStatus

TENANT_OWNED_MODELS = (
    AuditEvent,
)

__all__ = [
    "AuditEvent",
    "EventConsumerRecord",
    "EventStatus",
    "StoredEventRecord",
    "TENANT_OWNED_MODELS",
    "Tenant",
    "TenantStatus",
]
