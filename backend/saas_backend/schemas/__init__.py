"""Pydantic schemas."""

from saas_backend.schemas.events import (
    CoreEvents,
    DomainEvent,
    StoredEvent,
    StoredEventCreate,
)
from saas_backend.schemas.tenant import (
    ResolutionStrategy,
    TenantContextRequest,
    TenantInactiveError,
    TenantInfo,
    TenantNotFoundError,
    TenantNotResolvedError,
    TenantResolution,
    TenantResolutionError,
)

__all__ = [
    "CoreEvents",
    "DomainEvent",
    "ResolutionStrategy",
    "StoredEvent",
    "StoredEventCreate",
    "TenantContextRequest",
    "TenantInactiveError",
    "TenantInfo",
    "TenantNotFoundError",
    "TenantNotResolvedError",
    "TenantResolution",
    "TenantResolutionError",
]
