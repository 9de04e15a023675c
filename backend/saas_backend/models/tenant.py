"""
Tenant model for multi-tenant architecture.

This module defines the Tenant model, which represents a customer account in
the multi-tenant system. Tenants themselves are platform-level rows and are
not tenant-scoped.
"""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from saas_backend.core.database import Base, TimestampMixin


class TenantStatus(str, enum.Enum):
    """Lifecycle status of a tenant account."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class Tenant(TimestampMixin, Base):
    """
    Represents a customer account in the multi-tenant system.

    Attributes:
        id: UUID primary key (prevents enumeration attacks)
        slug: URL-safe identifier used for subdomain resolution
        name: Human-readable display name for the tenant
        status: Lifecycle status; only active tenants can be resolved
        settings: JSON field for tenant-specific configuration
    """

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="UUID primary key for security and distributed ID generation",
    )

    slug: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="URL-safe identifier for tenant (e.g., 'acme-corp')",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name for tenant (e.g., 'Acme Corporation')",
    )

    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=TenantStatus.ACTIVE.value,
        comment="active, suspended or cancelled",
    )

    settings: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Tenant-specific configuration as JSON",
    )

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE.value

    def __repr__(self) -> str:
        """Return string representation of the tenant."""
        return f"<Tenant {self.slug}>"
