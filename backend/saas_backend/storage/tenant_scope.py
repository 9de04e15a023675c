"""
Tenant scoping for the storage client.

TenantScopingInterceptor rewrites every operation on a tenant-owned model so
it can only see and change rows of the tenant in the current context. The
tenant is read from the context on every call and never stored on the
interceptor, so one client instance is safe to share across requests.

Rules per operation shape (T is the current tenant):
    find_many / find_first / count: tenant_id = T is added to the scope
    find_unique: lookup scoped to T, and a returned row owned by another
        tenant still becomes None; foreign rows never take part in the
        uniqueness check
    create / create_many: tenant_id is forced to T
    update / update_many: scoped, and tenant_id in the payload is forced to T
    delete / delete_many: scoped
    upsert: lookup scoped, tenant_id forced to T in both payloads

With no tenant in context the operation passes through unfiltered. That
bypass is logged and counted; with allow_bypass=False it is rejected.
"""

import logging
from dataclasses import replace
from typing import Any, Iterable, Iterator
from uuid import UUID

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from saas_backend.core.context import get_current_tenant, get_current_user
from saas_backend.observability import tenant_scope_bypass_total
from saas_backend.schemas.tenant import TenantNotResolvedError
from saas_backend.storage.client import (
    CallNext,
    StorageAction,
    StorageClient,
    StorageOperation,
)
from saas_backend.storage.exceptions import TenantScopeError

logger = logging.getLogger(__name__)

TENANT_COLUMN = "tenant_id"


class TenantScopeRegistry:
    """Explicit allow-list of tenant-owned model classes."""

    def __init__(self, models: Iterable[type] = ()):
        self._models: dict[type, None] = {}
        for model in models:
            self.register(model)

    @classmethod
    def from_models(cls, models: Iterable[type]) -> "TenantScopeRegistry":
        return cls(models)

    def register(self, model: type) -> None:
        """
        Add a model to the allow-list.

        Raises:
            TenantScopeError: If the model has no tenant_id column
        """
        if TENANT_COLUMN not in inspect(model).columns:
            raise TenantScopeError(
                f"{model.__name__} cannot be tenant-scoped: no '{TENANT_COLUMN}' column"
            )
        self._models[model] = None

    def is_tenant_owned(self, model: type) -> bool:
        return model in self._models

    def __iter__(self) -> Iterator[type]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)


class TenantScopingInterceptor:
    """Storage interceptor enforcing tenant isolation."""

    def __init__(self, registry: TenantScopeRegistry, allow_bypass: bool = True):
        self.registry = registry
        self.allow_bypass = allow_bypass

    async def intercept(self, operation: StorageOperation, call_next: CallNext) -> Any:
        if not self.registry.is_tenant_owned(operation.model):
            return await call_next(operation)

        tenant_id = get_current_tenant()
        if tenant_id is None:
            return await self._bypass(operation, call_next)

        if operation.action is StorageAction.FIND_UNIQUE:
            row = await call_next(operation.with_scope(**{TENANT_COLUMN: tenant_id}))
            if row is not None and getattr(row, TENANT_COLUMN) != tenant_id:
                logger.debug(
                    "Unique lookup hit a row of another tenant",
                    extra={"model": operation.model_name, "tenant_id": str(tenant_id)},
                )
                return None
            return row

        return await call_next(self.scope_operation(operation, tenant_id))

    @staticmethod
    def scope_operation(operation: StorageOperation, tenant_id: UUID) -> StorageOperation:
        """Return the operation rewritten for the given tenant."""
        action = operation.action

        if action is StorageAction.CREATE:
            return replace(operation, data={**operation.data, TENANT_COLUMN: tenant_id})

        if action is StorageAction.CREATE_MANY:
            return replace(
                operation,
                data=[{**row, TENANT_COLUMN: tenant_id} for row in operation.data],
            )

        scoped = operation.with_scope(**{TENANT_COLUMN: tenant_id})

        if action in (StorageAction.UPDATE, StorageAction.UPDATE_MANY):
            return replace(scoped, data={**operation.data, TENANT_COLUMN: tenant_id})

        if action is StorageAction.UPSERT:
            return replace(
                scoped,
                create={**(operation.create or {}), TENANT_COLUMN: tenant_id},
                update={**(operation.update or {}), TENANT_COLUMN: tenant_id},
            )

        return scoped

    async def _bypass(self, operation: StorageOperation, call_next: CallNext) -> Any:
        actor = get_current_user() or "system"
        if not self.allow_bypass:
            logger.warning(
                "Rejected tenant-owned storage operation without tenant context",
                extra={
                    "actor": actor,
                    "model": operation.model_name,
                    "action": operation.action.value,
                },
            )
            raise TenantNotResolvedError(
                f"{operation.action.value} on {operation.model_name} requires a tenant context"
            )

        logger.warning(
            "Tenant scope bypassed",
            extra={
                "actor": actor,
                "model": operation.model_name,
                "action": operation.action.value,
            },
        )
        tenant_scope_bypass_total.labels(
            model=operation.model_name, action=operation.action.value
        ).inc()
        return await call_next(operation)


def create_scoped_client(
    session: AsyncSession,
    registry: TenantScopeRegistry,
    allow_bypass: bool = True,
) -> StorageClient:
    """Build a storage client whose tenant-owned operations are scoped."""
    return StorageClient(
        session,
        interceptors=[TenantScopingInterceptor(registry, allow_bypass=allow_bypass)],
    )
