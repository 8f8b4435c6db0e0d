"""Tool state persistence.

State lives in ``tool_states`` keyed by (org_id, tool_id). Every
operation runs on the scoped session first and retries once on the admin
session. Only when the admin session reports ``tool_states`` as missing
does it fall back to ``tools.spec["runtimeState"]``. Failures on every path
raise StateStoreError; they are never swallowed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from toolsmith.core.errors import StateStoreError
from toolsmith.db.models import Tool, ToolStateRow
from toolsmith.db.session import (
    SessionFactory,
    get_admin_session_factory,
    get_session_factory,
    missing_table_name,
)

logger = structlog.get_logger()

T = TypeVar("T")

_STATE_TABLE = ToolStateRow.__tablename__


def _as_uuid(value: str | uuid.UUID) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise StateStoreError(f"Invalid tool or org id: {value!r}") from e


def _state_table_missing(exc: BaseException) -> bool:
    return missing_table_name(exc, (_STATE_TABLE,)) is not None


class StateStore:
    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        admin_session_factory: SessionFactory | None = None,
    ) -> None:
        if session_factory is None:
            session_factory = get_session_factory()
            admin_session_factory = admin_session_factory or get_admin_session_factory()
        self._session_factory = session_factory
        self._admin_session_factory = admin_session_factory or session_factory

    # ═══════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════

    async def load(self, tool_id: str, org_id: str) -> dict[str, Any]:
        """Return the stored state document, or {} if none exists yet."""
        tool_uuid, org_uuid = _as_uuid(tool_id), _as_uuid(org_id)

        async def _load(factory: SessionFactory) -> dict[str, Any]:
            async with factory() as db:
                result = await db.execute(
                    select(ToolStateRow.state).where(
                        ToolStateRow.tool_id == tool_uuid,
                        ToolStateRow.org_id == org_uuid,
                    )
                )
                state = result.scalar_one_or_none()
                return dict(state) if state else {}

        return await self._with_fallback(
            "load",
            _load,
            lambda: self._load_fallback(tool_uuid, org_uuid),
            tool_id=tool_id,
        )

    async def save(self, tool_id: str, org_id: str, state: dict[str, Any]) -> None:
        """Upsert the state document for (org_id, tool_id)."""
        tool_uuid, org_uuid = _as_uuid(tool_id), _as_uuid(org_id)

        async def _save(factory: SessionFactory) -> None:
            async with factory() as db:
                result = await db.execute(
                    select(ToolStateRow).where(
                        ToolStateRow.tool_id == tool_uuid,
                        ToolStateRow.org_id == org_uuid,
                    )
                )
                row = result.scalar_one_or_none()
                now = datetime.now(timezone.utc)
                if row is None:
                    db.add(ToolStateRow(tool_id=tool_uuid, org_id=org_uuid, state=state, updated_at=now))
                else:
                    row.state = state
                    row.updated_at = now
                await db.commit()

        await self._with_fallback(
            "save",
            _save,
            lambda: self._save_fallback(tool_uuid, org_uuid, state),
            tool_id=tool_id,
        )
        logger.debug("tool_state_saved", tool_id=tool_id, keys=sorted(state)[:20])

    # ═══════════════════════════════════════════════════════════════════════
    # PATH SELECTION
    # ═══════════════════════════════════════════════════════════════════════

    async def _with_fallback(
        self,
        op: str,
        primary: Callable[[SessionFactory], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]],
        *,
        tool_id: str,
    ) -> T:
        try:
            return await primary(self._session_factory)
        except SQLAlchemyError as e:
            logger.warning(
                "tool_state_scoped_failed",
                op=op,
                tool_id=tool_id,
                missing_table=_state_table_missing(e),
                error=str(getattr(e, "orig", None) or e),
            )

        try:
            return await primary(self._admin_session_factory)
        except SQLAlchemyError as e:
            if _state_table_missing(e):
                logger.warning("tool_state_table_unavailable", op=op, tool_id=tool_id)
                return await fallback()
            logger.error("tool_state_failed", op=op, tool_id=tool_id, error=str(e))
            raise StateStoreError(f"Failed to {op} tool state: {e}") from e

    # ═══════════════════════════════════════════════════════════════════════
    # SPEC-DOCUMENT FALLBACK
    # ═══════════════════════════════════════════════════════════════════════

    async def _fetch_tool(self, db: Any, tool_id: uuid.UUID, org_id: uuid.UUID) -> Tool:
        result = await db.execute(select(Tool).where(Tool.id == tool_id, Tool.org_id == org_id))
        tool = result.scalar_one_or_none()
        if tool is None or not tool.spec:
            raise StateStoreError(f"Failed to load fallback state: missing spec for tool {tool_id}")
        return tool

    async def _load_fallback(self, tool_id: uuid.UUID, org_id: uuid.UUID) -> dict[str, Any]:
        try:
            async with self._admin_session_factory() as db:
                tool = await self._fetch_tool(db, tool_id, org_id)
                return dict(tool.spec.get("runtimeState") or {})
        except SQLAlchemyError as e:
            raise StateStoreError(f"Failed to load fallback state: {e}") from e

    async def _save_fallback(self, tool_id: uuid.UUID, org_id: uuid.UUID, state: dict[str, Any]) -> None:
        try:
            async with self._admin_session_factory() as db:
                tool = await self._fetch_tool(db, tool_id, org_id)
                tool.spec = {**tool.spec, "runtimeState": state}
                await db.commit()
        except SQLAlchemyError as e:
            raise StateStoreError(f"Failed to save fallback state: {e}") from e
