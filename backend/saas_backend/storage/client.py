"""
Storage client with an interceptor chain.

StorageClient exposes a small, fixed set of operation shapes over an
AsyncSession. Every call is described by a StorageOperation and routed through
the configured interceptors before it is executed, so cross-cutting rules
(tenant scoping) can rewrite the operation or inspect its result without the
caller's cooperation.

Filters are plain equality mappings of column name to value. The client never
commits; the owner of the session decides the transaction boundary.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, inspect, select
from sqlalchemy import update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession

from saas_backend.storage.exceptions import RecordNotFoundError, StorageError

logger = logging.getLogger(__name__)


class StorageAction(str, Enum):
    FIND_MANY = "find_many"
    FIND_FIRST = "find_first"
    FIND_UNIQUE = "find_unique"
    COUNT = "count"
    CREATE = "create"
    CREATE_MANY = "create_many"
    UPDATE = "update"
    UPDATE_MANY = "update_many"
    DELETE = "delete"
    DELETE_MANY = "delete_many"
    UPSERT = "upsert"


@dataclass(frozen=True)
class StorageOperation:
    """
    A single storage call.

    Attributes:
        model: Mapped model class
        action: Operation shape
        where: Caller-supplied equality filter
        data: Payload for create/update; a list of payloads for create_many
        create: Upsert payload used when no row matches
        update: Upsert payload applied when a row matches
        scope: Enforced equality predicates added by interceptors, ANDed
            with ``where`` at execution time
        order_by: Column name to "asc"/"desc"
        limit: Maximum rows for find_many
        offset: Rows to skip for find_many
    """

    model: type
    action: StorageAction
    where: Mapping[str, Any] = field(default_factory=dict)
    data: Any = None
    create: Optional[Mapping[str, Any]] = None
    update: Optional[Mapping[str, Any]] = None
    scope: Mapping[str, Any] = field(default_factory=dict)
    order_by: Optional[Mapping[str, str]] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    @property
    def model_name(self) -> str:
        return self.model.__name__

    def with_scope(self, **predicates: Any) -> "StorageOperation":
        return replace(self, scope={**self.scope, **predicates})


CallNext = Callable[[StorageOperation], Awaitable[Any]]


class StorageInterceptor(Protocol):
    """Wraps execution of a storage operation."""

    async def intercept(self, operation: StorageOperation, call_next: CallNext) -> Any:
        ...


class StorageClient:
    """
    Operation-shaped access to mapped models.

    Example:
        >>> client = StorageClient(session, interceptors=[scoping])
        >>> events = await client.find_many(AuditEvent, {"action": "login"}, limit=10)
    """

    def __init__(
        self,
        session: AsyncSession,
        interceptors: Sequence[StorageInterceptor] = (),
    ):
        self.session = session
        self.interceptors = tuple(interceptors)

    # ------------------------------------------------------------------
    # Public operation shapes
    # ------------------------------------------------------------------

    async def find_many(
        self,
        model: type,
        where: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[Mapping[str, str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Any]:
        return await self._dispatch(StorageOperation(
            model=model,
            action=StorageAction.FIND_MANY,
            where=dict(where or {}),
            order_by=order_by,
            limit=limit,
            offset=offset,
        ))

    async def find_first(
        self,
        model: type,
        where: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[Mapping[str, str]] = None,
    ) -> Optional[Any]:
        return await self._dispatch(StorageOperation(
            model=model,
            action=StorageAction.FIND_FIRST,
            where=dict(where or {}),
            order_by=order_by,
        ))

    async def find_unique(self, model: type, where: Mapping[str, Any]) -> Optional[Any]:
        return await self._dispatch(StorageOperation(
            model=model, action=StorageAction.FIND_UNIQUE, where=dict(where)
        ))

    async def count(self, model: type, where: Optional[Mapping[str, Any]] = None) -> int:
        return await self._dispatch(StorageOperation(
            model=model, action=StorageAction.COUNT, where=dict(where or {})
        ))

    async def create(self, model: type, data: Mapping[str, Any]) -> Any:
        return await self._dispatch(StorageOperation(
            model=model, action=StorageAction.CREATE, data=dict(data)
        ))

    async def create_many(self, model: type, data: Sequence[Mapping[str, Any]]) -> int:
        return await self._dispatch(StorageOperation(
            model=model, action=StorageAction.CREATE_MANY, data=[dict(row) for row in data]
        ))

    async def update(self, model: type, where: Mapping[str, Any], data: Mapping[str, Any]) -> Any:
        return await self._dispatch(StorageOperation(
            model=model, action=StorageAction.UPDATE, where=dict(where), data=dict(data)
        ))

    async def update_many(
        self, model: type, where: Mapping[str, Any], data: Mapping[str, Any]
    ) -> int:
        return await self._dispatch(StorageOperation(
            model=model, action=StorageAction.UPDATE_MANY, where=dict(where), data=dict(data)
        ))

    async def delete(self, model: type, where: Mapping[str, Any]) -> Any:
        return await self._dispatch(StorageOperation(
            model=model, action=StorageAction.DELETE, where=dict(where)
        ))

    async def delete_many(self, model: type, where: Optional[Mapping[str, Any]] = None) -> int:
        return await self._dispatch(StorageOperation(
            model=model, action=StorageAction.DELETE_MANY, where=dict(where or {})
        ))

    async def upsert(
        self,
        model: type,
        where: Mapping[str, Any],
        create: Mapping[str, Any],
        update: Mapping[str, Any],
    ) -> Any:
        return await self._dispatch(StorageOperation(
            model=model,
            action=StorageAction.UPSERT,
            where=dict(where),
            create=dict(create),
            update=dict(update),
        ))

    # ------------------------------------------------------------------
    # Interceptor chain
    # ------------------------------------------------------------------

    async def _dispatch(self, operation: StorageOperation) -> Any:
        call_next: CallNext = self._execute
        for interceptor in reversed(self.interceptors):
            call_next = _bind(interceptor, call_next)
        return await call_next(operation)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, op: StorageOperation) -> Any:
        model = op.model
        criteria = self._criteria(model, op.where) + self._criteria(model, op.scope)

        if op.action in (StorageAction.FIND_MANY, StorageAction.FIND_FIRST):
            stmt = select(model).where(*criteria)
            stmt = stmt.order_by(*self._ordering(model, op.order_by))
            if op.action is StorageAction.FIND_FIRST:
                stmt = stmt.limit(1)
            else:
                if op.limit is not None:
                    stmt = stmt.limit(op.limit)
                if op.offset is not None:
                    stmt = stmt.offset(op.offset)
            result = await self.session.execute(stmt)
            rows = result.scalars().all()
            if op.action is StorageAction.FIND_FIRST:
                return rows[0] if rows else None
            return list(rows)

        if op.action is StorageAction.FIND_UNIQUE:
            return await self._one_or_none(model, criteria, op.where)

        if op.action is StorageAction.COUNT:
            stmt = select(func.count()).select_from(model).where(*criteria)
            return (await self.session.execute(stmt)).scalar_one()

        if op.action is StorageAction.CREATE:
            return await self._insert(model, op.data)

        if op.action is StorageAction.CREATE_MANY:
            instances = [model(**self._checked(model, row)) for row in op.data]
            self.session.add_all(instances)
            await self.session.flush()
            return len(instances)

        if op.action is StorageAction.UPDATE:
            instance = await self._one_or_none(model, criteria, op.where)
            if instance is None:
                raise RecordNotFoundError(op.model_name, dict(op.where))
            self._assign(instance, op.data)
            await self.session.flush()
            return instance

        if op.action is StorageAction.UPDATE_MANY:
            stmt = (
                sa_update(model)
                .where(*criteria)
                .values(**self._checked(model, op.data))
                .execution_options(synchronize_session="evaluate")
            )
            return (await self.session.execute(stmt)).rowcount

        if op.action is StorageAction.DELETE:
            instance = await self._one_or_none(model, criteria, op.where)
            if instance is None:
                raise RecordNotFoundError(op.model_name, dict(op.where))
            await self.session.delete(instance)
            await self.session.flush()
            return instance

        if op.action is StorageAction.DELETE_MANY:
            stmt = (
                sa_delete(model)
                .where(*criteria)
                .execution_options(synchronize_session="evaluate")
            )
            return (await self.session.execute(stmt)).rowcount

        if op.action is StorageAction.UPSERT:
            instance = await self._one_or_none(model, criteria, op.where)
            if instance is None:
                return await self._insert(model, op.create or {})
            self._assign(instance, op.update or {})
            await self.session.flush()
            return instance

        raise StorageError(f"Unsupported storage action: {op.action}")

    async def _one_or_none(
        self, model: type, criteria: list[Any], where: Mapping[str, Any]
    ) -> Optional[Any]:
        if not criteria:
            raise StorageError(f"{model.__name__}: a unique lookup needs a filter")
        result = await self.session.execute(select(model).where(*criteria).limit(2))
        rows = result.scalars().all()
        if len(rows) > 1:
            raise StorageError(f"{model.__name__}: filter {dict(where)!r} matches several rows")
        return rows[0] if rows else None

    async def _insert(self, model: type, data: Mapping[str, Any]) -> Any:
        instance = model(**self._checked(model, data))
        self.session.add(instance)
        await self.session.flush()
        return instance

    def _assign(self, instance: Any, data: Mapping[str, Any]) -> None:
        for key, value in self._checked(type(instance), data).items():
            setattr(instance, key, value)

    @staticmethod
    def _columns(model: type) -> Mapping[str, Any]:
        return inspect(model).columns

    def _checked(self, model: type, data: Mapping[str, Any]) -> dict[str, Any]:
        columns = self._columns(model)
        unknown = [key for key in data if key not in columns]
        if unknown:
            raise StorageError(f"{model.__name__} has no column(s) {unknown}")
        return dict(data)

    def _criteria(self, model: type, mapping: Mapping[str, Any]) -> list[Any]:
        return [getattr(model, key) == value for key, value in self._checked(model, mapping).items()]

    def _ordering(self, model: type, order_by: Optional[Mapping[str, str]]) -> list[Any]:
        if not order_by:
            return []
        clauses = []
        for key, direction in self._checked(model, order_by).items():
            column = getattr(model, key)
            clauses.append(column.desc() if str(direction).lower() == "desc" else column.asc())
        return clauses


def _bind(interceptor: StorageInterceptor, call_next: CallNext) -> CallNext:
    async def call(operation: StorageOperation) -> Any:
        return await interceptor.intercept(operation, call_next)

    return call
