"""Storage client and tenant scoping."""

from saas_backend.storage.client import (
    StorageAction,
    StorageClient,
    StorageInterceptor,
    StorageOperation,
)
from saas_backend.storage.exceptions import RecordNotFoundError, StorageError, TenantScopeError
from saas_backend.storage.tenant_scope import (
    TenantScopeRegistry,
    TenantScopingInterceptor,
    create_scoped_client,
)

__all__ = [
    "RecordNotFoundError",
    "StorageAction",
    "StorageClient",
    "StorageError",
    "StorageInterceptor",
    "StorageOperation",
    "TenantScopeError",
    "TenantScopeRegistry",
    "TenantScopingInterceptor",
    "create_scoped_client",
]
