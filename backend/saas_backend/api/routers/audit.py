"""
Audit trail endpoints.

Read-only access to the audit trail of the tenant resolved for the request.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict

from saas_backend.api.dependencies.tenant import ScopedStorage
from saas_backend.services.audit_logger import AuditLogger


class AuditEventResponse(BaseModel):
    """Single audit trail entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: Optional[UUID] = None
    user_id: Optional[str] = None
    action: str
    resource: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    status: str
    details: dict[str, Any]
    timestamp: datetime


router = APIRouter(prefix="/audit", tags=["audit"])


@router.get(
    "/events",
    response_model=list[AuditEventResponse],
    summary="List audit events of the current tenant",
)
async def list_audit_events(
    storage: ScopedStorage,
    user_id: Optional[str] = Query(default=None, description="Only entries of this user"),
    limit: int = Query(default=100, ge=1, le=500),
) -> list[AuditEventResponse]:
    events = await AuditLogger(storage).get_events(user_id=user_id, limit=limit)
    return [AuditEventResponse.model_validate(event) for event in events]


@router.get(
    "/events/actions/{action}",
    response_model=list[AuditEventResponse],
    summary="List audit events of the current tenant for one action",
)
async def list_audit_events_by_action(
    action: str,
    storage: ScopedStorage,
    limit: int = Query(default=100, ge=1, le=500),
) -> list[AuditEventResponse]:
    events = await AuditLogger(storage).get_events_by_action(action, limit=limit)
    return [AuditEventResponse.model_validate(event) for event in events]
