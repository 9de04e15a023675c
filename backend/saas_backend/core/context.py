"""
Request-scoped tenant context.

The active tenant and caller identity live in a ContextVar so every asyncio
task (and therefore every concurrently served request) sees its own value.
Nothing in the application may copy the tenant id into a global or a
long-lived attribute; readers call get_current_tenant() at the moment they
need it.
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Iterator, Optional
from uuid import UUID

__all__ = [
    "TenantContext",
    "current_tenant_context",
    "get_tenant_context",
    "get_current_tenant",
    "get_current_user",
    "set_tenant_context",
    "set_current_tenant",
    "reset_tenant_context",
    "clear_current_tenant",
    "tenant_scope",
]


@dataclass(frozen=True)
class TenantContext:
    """Identity resolved for the current operation."""

    tenant_id: Optional[UUID]
    user_id: Optional[str] = None


current_tenant_context: ContextVar[Optional[TenantContext]] = ContextVar(
    "current_tenant_context", default=None
)


def get_tenant_context() -> Optional[TenantContext]:
    """Return the full context for the current task, if any."""
    return current_tenant_context.get()


def get_current_tenant() -> Optional[UUID]:
    """Return the tenant id for the current task, or None when unscoped."""
    context = current_tenant_context.get()
    return context.tenant_id if context is not None else None


def get_current_user() -> Optional[str]:
    """Return the caller identity for the current task, if known."""
    context = current_tenant_context.get()
    return context.user_id if context is not None else None


def set_tenant_context(context: Optional[TenantContext]) -> Token:
    """Set the context for the current task and return the reset token."""
    return current_tenant_context.set(context)


def set_current_tenant(tenant_id: UUID, user_id: Optional[str] = None) -> Token:
    """Set tenant (and optionally user) for the current task."""
    return current_tenant_context.set(TenantContext(tenant_id=tenant_id, user_id=user_id))


def reset_tenant_context(token: Token) -> None:
    """Restore the context that was active before the matching set call."""
    current_tenant_context.reset(token)


def clear_current_tenant() -> None:
    """Clear the tenant context for the current task."""
    current_tenant_context.set(None)


@contextmanager
def tenant_scope(
    tenant_id: Optional[UUID], user_id: Optional[str] = None
) -> Iterator[TenantContext]:
    """
    Run a block with the given tenant context, restoring the previous one after.

    Works in both sync and async code. Tasks created inside the block copy
    the context at creation time and keep it after the block exits.

    Example:
        with tenant_scope(tenant_id, user_id="user-1"):
            await client.find_many(Order)
    """
    context = TenantContext(tenant_id=tenant_id, user_id=user_id)
    token = current_tenant_context.set(context)
    try:
        yield context
    finally:
        current_tenant_context.reset(token)
