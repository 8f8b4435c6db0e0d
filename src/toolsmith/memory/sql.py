"""SQLAlchemy memory adapter.

Scope -> table:

    session                   session_memory   (admin session only)
    tool, tool_user, tool_org tool_memory      (org_id / user_id discriminate)
    user                      user_memory
    org                       org_memory

Non-session scopes run on the scoped session first and retry on the
admin session. Database errors are converted to MemoryAdapterError with
``kind="missing_table"`` when the error names a missing memory table.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from toolsmith.core.errors import MemoryAdapterError
from toolsmith.db.models import (
    MEMORY_TABLES,
    Base,
    OrgMemory,
    SessionMemory,
    ToolMemory,
    UserMemory,
)
from toolsmith.db.session import SessionFactory, get_admin_engine, missing_table_name
from toolsmith.memory.scope import MemoryScope

logger = structlog.get_logger()

T = TypeVar("T")


def missing_table_error(exc: BaseException, tables: tuple[str, ...] = MEMORY_TABLES) -> MemoryAdapterError | None:
    table = missing_table_name(exc, tables)
    if table is None:
        return None
    return MemoryAdapterError("missing_table", str(exc) or "Missing memory table", table=table)


def to_adapter_error(exc: BaseException, tables: tuple[str, ...] = MEMORY_TABLES) -> MemoryAdapterError:
    return missing_table_error(exc, tables) or MemoryAdapterError("unknown", str(exc))


async def ensure_memory_tables(engine: AsyncEngine | None = None) -> None:
    """Create any missing memory tables."""
    target = engine or get_admin_engine()
    tables = [Base.metadata.tables[name] for name in MEMORY_TABLES]
    async with target.begin() as conn:
        await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, tables=tables))
    logger.info("memory_tables_ensured", tables=list(MEMORY_TABLES))


def _uuid(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(value) if value else None


def _model_for(scope: MemoryScope) -> Any:
    if scope.type == "session":
        return SessionMemory
    if scope.type in ("tool", "tool_user", "tool_org"):
        return ToolMemory
    if scope.type == "user":
        return UserMemory
    return OrgMemory


def _filters(scope: MemoryScope, namespace: str, key: str) -> list[Any]:
    model = _model_for(scope)
    clauses = [model.namespace == namespace, model.key == key]
    if scope.type == "session":
        clauses.append(SessionMemory.session_id == _uuid(scope.session_id))
    elif scope.type == "user":
        clauses.append(UserMemory.user_id == _uuid(scope.user_id))
    elif scope.type == "org":
        clauses.append(OrgMemory.org_id == _uuid(scope.org_id))
    else:
        clauses.append(ToolMemory.tool_id == _uuid(scope.tool_id))
        if scope.type == "tool_user":
            clauses += [ToolMemory.user_id == _uuid(scope.user_id), ToolMemory.org_id.is_(None)]
        elif scope.type == "tool_org":
            clauses += [ToolMemory.org_id == _uuid(scope.org_id), ToolMemory.user_id.is_(None)]
        else:
            clauses += [ToolMemory.org_id.is_(None), ToolMemory.user_id.is_(None)]
    return clauses


def _new_row(scope: MemoryScope, namespace: str, key: str, value: Any) -> Any:
    common = {"namespace": namespace, "key": key, "value": value}
    if scope.type == "session":
        return SessionMemory(session_id=_uuid(scope.session_id), **common)
    if scope.type == "user":
        return UserMemory(user_id=_uuid(scope.user_id), **common)
    if scope.type == "org":
        return OrgMemory(org_id=_uuid(scope.org_id), **common)
    return ToolMemory(
        tool_id=_uuid(scope.tool_id),
        user_id=_uuid(scope.user_id) if scope.type == "tool_user" else None,
        org_id=_uuid(scope.org_id) if scope.type == "tool_org" else None,
        **common,
    )


class SqlMemoryAdapter:
    def __init__(self, session_factory: SessionFactory, admin_session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory
        self._admin_session_factory = admin_session_factory or session_factory

    async def _run(self, scope: MemoryScope, op: Callable[[AsyncSession], Awaitable[T]]) -> T:
        table = _model_for(scope).__tablename__
        if scope.type != "session":
            try:
                async with self._session_factory() as db:
                    return await op(db)
            except SQLAlchemyError as e:
                logger.debug("memory_scoped_query_failed", table=table, error=str(e))
        try:
            async with self._admin_session_factory() as db:
                return await op(db)
        except SQLAlchemyError as e:
            raise to_adapter_error(e, (table,)) from e

    async def get(self, scope: MemoryScope, namespace: str, key: str) -> Any:
        model = _model_for(scope)

        async def _get(db: AsyncSession) -> Any:
            result = await db.execute(select(model.value).where(*_filters(scope, namespace, key)).limit(1))
            return result.scalar_one_or_none()

        return await self._run(scope, _get)

    async def set(self, scope: MemoryScope, namespace: str, key: str, value: Any) -> None:
        model = _model_for(scope)

        async def _set(db: AsyncSession) -> None:
            result = await db.execute(select(model).where(*_filters(scope, namespace, key)).limit(1))
            row = result.scalar_one_or_none()
            if row is None:
                db.add(_new_row(scope, namespace, key, value))
            else:
                row.value = value
                row.updated_at = datetime.now(timezone.utc)
            await db.commit()

        await self._run(scope, _set)

    async def delete(self, scope: MemoryScope, namespace: str, key: str) -> None:
        model = _model_for(scope)

        async def _delete(db: AsyncSession) -> None:
            await db.execute(delete(model).where(*_filters(scope, namespace, key)))
            await db.commit()

        await self._run(scope, _delete)
