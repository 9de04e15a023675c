"""
Tenant context resolution.

Maps the signals of an incoming request to exactly one tenant. Signals are
tried in a fixed order and the first usable one wins:

1. tenant claim of an already verified token (trusted, not looked up)
2. tenant id header
3. subdomain (first label is the tenant slug)
4. tenant id path parameter

Signals 2-4 come from the client and are validated against the tenant
table: the tenant must exist and be active.

Tenant rows are read on every resolution. A suspended tenant is rejected on
its next request instead of after a cache expires.
"""

import logging
from typing import Any, Mapping, Optional, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saas_backend.models.tenant import Tenant
from saas_backend.schemas.tenant import (
    ResolutionStrategy,
    TenantContextRequest,
    TenantInactiveError,
    TenantInfo,
    TenantNotFoundError,
    TenantNotResolvedError,
    TenantResolution,
)

logger = logging.getLogger(__name__)


class TenantLookup(Protocol):
    """Read access to tenant rows."""

    async def get_by_id(self, tenant_id: UUID) -> Optional[TenantInfo]:
        ...

    async def get_by_slug(self, slug: str) -> Optional[TenantInfo]:
        ...


class DatabaseTenantLookup:
    """TenantLookup backed by the tenants table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_by_id(self, tenant_id: UUID) -> Optional[TenantInfo]:
        async with self._session_factory() as session:
            result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
            tenant = result.scalar_one_or_none()
            return TenantInfo.model_validate(tenant) if tenant else None

    async def get_by_slug(self, slug: str) -> Optional[TenantInfo]:
        async with self._session_factory() as session:
            result = await session.execute(select(Tenant).where(Tenant.slug == slug))
            tenant = result.scalar_one_or_none()
            return TenantInfo.model_validate(tenant) if tenant else None


def _parse_uuid(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    if value is None:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


class TenantContextResolver:
    """
    Resolves the tenant of a request.

    Attributes:
        lookup: Tenant lookup used to validate client-supplied signals
        tenant_claim: Token claim carrying the tenant id
        user_claim: Token claim carrying the caller identity
        header_name: Header carrying the tenant id (matched case-insensitively)
        path_param: Route parameter carrying the tenant id

    Example:
        >>> resolver = TenantContextResolver(DatabaseTenantLookup(session_factory))
        >>> resolution = await resolver.resolve(
        ...     TenantContextRequest(headers={"x-tenant-id": str(tenant_id)})
        ... )
        >>> resolution.strategy
        <ResolutionStrategy.HEADER: 'header'>
    """

    def __init__(
        self,
        lookup: TenantLookup,
        tenant_claim: str = "tenant_id",
        user_claim: str = "sub",
        header_name: str = "x-tenant-id",
        path_param: str = "tenant_id",
    ):
        self.lookup = lookup
        self.tenant_claim = tenant_claim
        self.user_claim = user_claim
        self.header_name = header_name.lower()
        self.path_param = path_param

    async def resolve(self, request: TenantContextRequest) -> TenantResolution:
        """
        Resolve the tenant for a request.

        Raises:
            TenantNotResolvedError: If the request carries no tenant signal
            TenantNotFoundError: If a signal names an unknown or malformed tenant
            TenantInactiveError: If the named tenant is not active
        """
        claims = request.token_claims or {}
        user_id = claims.get(self.user_claim)
        user_id = str(user_id) if user_id is not None else None

        claimed = _parse_uuid(claims.get(self.tenant_claim))
        if claimed is not None:
            return self._resolved(claimed, ResolutionStrategy.TOKEN, user_id)
        if claims.get(self.tenant_claim) is not None:
            logger.warning(
                "Ignoring malformed tenant claim",
                extra={"claim": self.tenant_claim},
            )

        header_value = self._header(request.headers)
        if header_value:
            tenant = await self._by_id(header_value)
            return self._resolved(tenant.id, ResolutionStrategy.HEADER, user_id)

        if request.subdomain:
            slug = request.subdomain.split(".")[0].lower()
            tenant = await self.lookup.get_by_slug(slug)
            if tenant is None:
                raise TenantNotFoundError(f"Tenant '{slug}' not found")
            self._require_active(tenant)
            return self._resolved(tenant.id, ResolutionStrategy.SUBDOMAIN, user_id)

        path_value = request.path_params.get(self.path_param)
        if path_value:
            tenant = await self._by_id(path_value)
            return self._resolved(tenant.id, ResolutionStrategy.PATH, user_id)

        raise TenantNotResolvedError("Request carries no tenant identifier")

    def _header(self, headers: Mapping[str, str]) -> Optional[str]:
        for key, value in headers.items():
            if key.lower() == self.header_name:
                return value.strip() or None
        return None

    async def _by_id(self, raw: Any) -> TenantInfo:
        tenant_id = _parse_uuid(raw)
        if tenant_id is None:
            raise TenantNotFoundError(f"Tenant {raw!r} not found")
        tenant = await self.lookup.get_by_id(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(f"Tenant {tenant_id} not found")
        self._require_active(tenant)
        return tenant

    @staticmethod
    def _require_active(tenant: TenantInfo) -> None:
        if not tenant.is_active:
            logger.info(
                "Rejected request for inactive tenant",
                extra={"tenant_id": str(tenant.id), "status": tenant.status},
            )
            raise TenantInactiveError(f"Tenant '{tenant.slug}' is {tenant.status}")

    @staticmethod
    def _resolved(
        tenant_id: UUID, strategy: ResolutionStrategy, user_id: Optional[str]
    ) -> TenantResolution:
        logger.debug(
            "Tenant resolved",
            extra={"tenant_id": str(tenant_id), "strategy": strategy.value},
        )
        return TenantResolution(tenant_id=tenant_id, strategy=strategy, user_id=user_id)
