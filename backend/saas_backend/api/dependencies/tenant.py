"""
Tenant dependencies for FastAPI.

get_request_tenant resolves the tenant of the request from its signals
(verified bearer token, tenant header, Host subdomain, path parameter) and
installs it in the tenant context for the rest of the request.
get_scoped_storage hands routes a storage client whose tenant-owned
operations are confined to that tenant.

Usage:
    @router.get("/audit/events")
    async def list_events(
        storage: Annotated[StorageClient, Depends(get_scoped_storage)],
    ):
        return await AuditLogger(storage).get_events()
"""

import logging
from typing import Annotated, Any, AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from saas_backend.api.dependencies.database import get_db
from saas_backend.core.config import settings
from saas_backend.core.context import clear_current_tenant, set_current_tenant
from saas_backend.core.security import TokenVerificationError, extract_bearer_token
from saas_backend.schemas.tenant import (
    TenantContextRequest,
    TenantInactiveError,
    TenantNotFoundError,
    TenantNotResolvedError,
    TenantResolution,
)
from saas_backend.storage.client import StorageClient
from saas_backend.storage.tenant_scope import create_scoped_client

logger = logging.getLogger(__name__)


def extract_subdomain(host: Optional[str], base_domain: str) -> Optional[str]:
    """
    Return the part of ``host`` in front of ``base_domain``.

    >>> extract_subdomain("acme.app.example.com:8000", "app.example.com")
    'acme'
    """
    if not host or not base_domain:
        return None
    hostname = host.split(":")[0].lower().rstrip(".")
    suffix = "." + base_domain.lower().strip(".")
    if not hostname.endswith(suffix):
        return None
    return hostname[: -len(suffix)] or None


def get_token_claims(request: Request) -> Optional[dict[str, Any]]:
    """
    Verify the bearer token, if any.

    Returns None when the request has no bearer token or no verifier is
    configured. An invalid token is rejected with 401 rather than ignored.
    """
    token = extract_bearer_token(request.headers.get("authorization"))
    if token is None:
        return None
    verifier = getattr(request.app.state, "token_verifier", None)
    if verifier is None:
        logger.debug("Bearer token ignored: no token verifier configured")
        return None
    try:
        return verifier.verify(token)
    except TokenVerificationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_request_tenant(request: Request) -> AsyncGenerator[TenantResolution, None]:
    """
    Resolve the tenant and set the tenant context for the request.

    Raises:
        HTTPException: 400 without a tenant signal, 404 for an unknown
            tenant, 403 for an inactive tenant, 401 for an invalid token
    """
    signals = TenantContextRequest(
        token_claims=get_token_claims(request),
        headers=dict(request.headers),
        subdomain=extract_subdomain(request.headers.get("host"), settings.TENANT_BASE_DOMAIN),
        path_params=dict(request.path_params),
    )

    resolver = request.app.state.tenant_resolver
    try:
        resolution = await resolver.resolve(signals)
    except TenantNotResolvedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except TenantInactiveError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e

    set_current_tenant(resolution.tenant_id, resolution.user_id)
    request.state.tenant_id = resolution.tenant_id
    logger.debug(
        "Tenant context set for request",
        extra={
            "tenant_id": str(resolution.tenant_id),
            "strategy": resolution.strategy.value,
            "endpoint": request.url.path,
        },
    )
    try:
        yield resolution
    finally:
        clear_current_tenant()


async def get_scoped_storage(
    request: Request,
    resolution: Annotated[TenantResolution, Depends(get_request_tenant)],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> StorageClient:
    """Storage client scoped to the request's tenant."""
    return create_scoped_client(
        session,
        request.app.state.tenant_registry,
        allow_bypass=settings.TENANT_SCOPE_ALLOW_BYPASS,
    )


RequestTenant = Annotated[TenantResolution, Depends(get_request_tenant)]
ScopedStorage = Annotated[StorageClient, Depends(get_scoped_storage)]
