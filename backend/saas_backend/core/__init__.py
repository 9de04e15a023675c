"""Core application modules."""

from saas_backend.core.context import (
    TenantContext,
    clear_current_tenant,
    get_current_tenant,
    get_current_user,
    set_current_tenant,
    tenant_scope,
)

__all__ = [
    "TenantContext",
    "clear_current_tenant",
    "get_current_tenant",
    "get_current_user",
    "set_current_tenant",
    "tenant_scope",
]
