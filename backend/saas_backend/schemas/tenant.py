"""
Pydantic schemas for tenant resolution.

TenantInfo is the lightweight view of a tenant returned by a TenantLookup.
TenantContextRequest carries the raw signals of an incoming request and
TenantResolution is what the resolver produces from them.
"""

from enum import Enum
from typing import Any, Mapping, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TenantInfo(BaseModel):
    """
    Tenant information returned by tenant lookups.

    Attributes:
        id: Tenant UUID (primary key)
        slug: Tenant slug (URL-safe identifier)
        status: Lifecycle status (active, suspended, cancelled)
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Tenant UUID")
    slug: str = Field(..., description="Tenant slug (URL-safe identifier)")
    status: str = Field(..., description="Lifecycle status of the tenant")

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class ResolutionStrategy(str, Enum):
    """Which request signal identified the tenant."""

    TOKEN = "token"
    HEADER = "header"
    SUBDOMAIN = "subdomain"
    PATH = "path"


class TenantContextRequest(BaseModel):
    """Signals extracted from an incoming request."""

    token_claims: Optional[dict[str, Any]] = Field(
        None, description="Claims of an already verified bearer token"
    )
    headers: Mapping[str, str] = Field(default_factory=dict)
    subdomain: Optional[str] = None
    path_params: Mapping[str, Any] = Field(default_factory=dict)


class TenantResolution(BaseModel):
    """Resolved tenant for a request."""

    tenant_id: UUID
    strategy: ResolutionStrategy
    user_id: Optional[str] = None


class TenantResolutionError(Exception):
    """Base class for tenant resolution failures. Never retried."""

    pass


class TenantNotResolvedError(TenantResolutionError):
    """
    Raised when a request carries no usable tenant signal.

    Also raised by the storage layer when strict scoping is enabled and a
    tenant-owned model is accessed without a tenant in context.
    """

    pass


class TenantNotFoundError(TenantResolutionError):
    """
    Raised when tenant cannot be found.

    This exception is raised by the tenant resolver when a tenant with the
    specified ID or subdomain slug does not exist, or when the supplied
    identifier is not a valid UUID.
    """

    pass


class TenantInactiveError(TenantResolutionError):
    """
    Raised when tenant is not active.

    This exception is raised by the tenant resolver when a tenant exists but
    is suspended or cancelled.
    """

    pass
