"""FastAPI dependencies."""

from saas_backend.api.dependencies.database import get_db
from saas_backend.api.dependencies.tenant import (
    RequestTenant,
    ScopedStorage,
    get_request_tenant,
    get_scoped_storage,
)

__all__ = [
    "RequestTenant",
    "ScopedStorage",
    "get_db",
    "get_request_tenant",
    "get_scoped_storage",
]
