"""toolsmith database models.

Design principles:
- Every tenant-owned row carries org_id (and tool_id where relevant)
- JSON columns (JSONB on Postgres) for specs, state and memory values
- Natural-key uniqueness for upserts: (org_id, tool_id) for state,
  (integration_id, capability_id) for the action registry
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class JSONDocument(TypeDecorator):
    """JSON column that is JSONB on Postgres and handles UUID/datetime/Enum values."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        return json.loads(json.dumps(value, default=self._json_default))

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        return value

    @staticmethod
    def _json_default(obj: Any) -> Any:
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class with common utilities."""

    type_annotation_map = {
        dict[str, Any]: JSONDocument,
        list[str]: JSONDocument,
        datetime: DateTime(timezone=True),
    }

    def to_dict(self) -> dict[str, Any]:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


# ═══════════════════════════════════════════════════════════════════════════════
# TOOLS
# ═══════════════════════════════════════════════════════════════════════════════

class Tool(Base):
    """One tool instance: its declarative spec plus the last compiled hash.

    ``spec["runtimeState"]`` doubles as degraded single-document state
    storage when the tool_states table is unavailable.
    """

    __tablename__ = "tools"
    __table_args__ = (Index("ix_tools_org", "org_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="Tool")
    spec: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict, nullable=False)
    spec_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), default="INIT", nullable=False,
        comment="Build state machine state",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class ToolStateRow(Base):
    """Reducer-applied state document per (org, tool)."""

    __tablename__ = "tool_states"
    __table_args__ = (UniqueConstraint("org_id", "tool_id", name="uq_tool_states_org_tool"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tool_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    state: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )


class ExecutionRun(Base):
    """One recorded action or workflow run with its step log.

    ``state_snapshot`` is the tool state as it was when the run started;
    ``logs`` is the ordered list of step records (start, done, error).
    """

    __tablename__ = "execution_runs"
    __table_args__ = (Index("ix_execution_runs_tool", "org_id", "tool_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    tool_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    trigger_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    action_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    workflow_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), default="pending", nullable=False,
        comment="pending|running|blocked|completed|failed",
    )
    current_step: Mapped[str | None] = mapped_column(String(255), nullable=True)
    state_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict, nullable=False)
    input: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict, nullable=False)
    retries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    logs: Mapped[list[Any]] = mapped_column(JSONDocument, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


# ═══════════════════════════════════════════════════════════════════════════════
# ACTION REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

class BrokerCapability(Base):
    """Discovered provider action, persisted with a per-row TTL."""

    __tablename__ = "broker_capabilities"
    __table_args__ = (
        UniqueConstraint("integration_id", "capability_id", name="uq_broker_capabilities_key"),
        Index("ix_broker_capabilities_integration", "integration_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    integration_id: Mapped[str] = mapped_column(String(64), nullable=False)
    capability_id: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    action_type: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="READ|WRITE|MUTATE|NOTIFY"
    )
    required_scopes: Mapped[list[str]] = mapped_column(JSONDocument, default=list)
    input_schema: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict)
    output_schema: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict)
    provider_action_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    resource: Mapped[str] = mapped_column(String(128), default="unknown", nullable=False)
    discovered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    ttl_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)


# ═══════════════════════════════════════════════════════════════════════════════
# MEMORY
# ═══════════════════════════════════════════════════════════════════════════════

class SessionMemory(Base):
    __tablename__ = "session_memory"
    __table_args__ = (
        UniqueConstraint("session_id", "namespace", "key", name="uq_session_memory_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    namespace: Mapped[str] = mapped_column(String(128), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[Any] = mapped_column(JSONDocument, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class ToolMemory(Base):
    """Memory for tool, tool_user and tool_org scopes.

    Exactly one of (org_id, user_id) is set for the tool_org/tool_user
    scopes; both are NULL for the plain tool scope.
    """

    __tablename__ = "tool_memory"
    __table_args__ = (
        Index("ix_tool_memory_lookup", "tool_id", "namespace", "key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tool_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    org_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    namespace: Mapped[str] = mapped_column(String(128), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[Any] = mapped_column(JSONDocument, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class UserMemory(Base):
    __tablename__ = "user_memory"
    __table_args__ = (
        UniqueConstraint("user_id", "namespace", "key", name="uq_user_memory_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    namespace: Mapped[str] = mapped_column(String(128), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[Any] = mapped_column(JSONDocument, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class OrgMemory(Base):
    __tablename__ = "org_memory"
    __table_args__ = (
        UniqueConstraint("org_id", "namespace", "key", name="uq_org_memory_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    namespace: Mapped[str] = mapped_column(String(128), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[Any] = mapped_column(JSONDocument, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


MEMORY_TABLES: tuple[str, ...] = (
    SessionMemory.__tablename__,
    ToolMemory.__tablename__,
    UserMemory.__tablename__,
    OrgMemory.__tablename__,
)


# ═══════════════════════════════════════════════════════════════════════════════
# CONNECTIONS
# ═══════════════════════════════════════════════════════════════════════════════

class IntegrationConnection(Base):
    """Connection status per (org, integration), mirrored from the auth provider."""

    __tablename__ = "integration_connections"
    __table_args__ = (
        UniqueConstraint("org_id", "integration_id", name="uq_integration_connections_org"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    integration_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), default="active", nullable=False,
        comment="active|reauth_required|revoked",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )
