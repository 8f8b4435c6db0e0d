"""Initial schema: tools, tool state, action registry, memory, connections.

Revision ID: c4d5e6f7a8b9
Revises:
Create Date: 2026-10-17 12:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers
revision: str = "c4d5e6f7a8b9"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _memory_columns() -> list[sa.Column]:
    return [
        sa.Column("namespace", sa.String(128), nullable=False),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("value", postgresql.JSONB(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Tools
    op.create_table(
        "tools",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default="Tool"),
        sa.Column("spec", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("spec_hash", sa.String(64), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="INIT",
                  comment="Build state machine state"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_tools_org", "tools", ["org_id", "created_at"])

    # Tool state
    op.create_table(
        "tool_states",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tool_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("state", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_unique_constraint("uq_tool_states_org_tool", "tool_states", ["org_id", "tool_id"])

    # Action registry
    op.create_table(
        "broker_capabilities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("integration_id", sa.String(64), nullable=False),
        sa.Column("capability_id", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("action_type", sa.String(16), nullable=False, comment="READ|WRITE|MUTATE|NOTIFY"),
        sa.Column("required_scopes", postgresql.JSONB(), server_default="[]"),
        sa.Column("input_schema", postgresql.JSONB(), server_default="{}"),
        sa.Column("output_schema", postgresql.JSONB(), server_default="{}"),
        sa.Column("provider_action_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("resource", sa.String(128), nullable=False, server_default="unknown"),
        sa.Column("discovered_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("ttl_hours", sa.Integer(), nullable=False, server_default="24"),
    )
    op.create_unique_constraint(
        "uq_broker_capabilities_key", "broker_capabilities", ["integration_id", "capability_id"]
    )
    op.create_index("ix_broker_capabilities_integration", "broker_capabilities", ["integration_id"])

    # Memory
    op.create_table(
        "session_memory",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        *_memory_columns(),
    )
    op.create_unique_constraint(
        "uq_session_memory_key", "session_memory", ["session_id", "namespace", "key"]
    )

    op.create_table(
        "tool_memory",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tool_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_memory_columns(),
    )
    op.create_index("ix_tool_memory_lookup", "tool_memory", ["tool_id", "namespace", "key"])

    op.create_table(
        "user_memory",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        *_memory_columns(),
    )
    op.create_unique_constraint("uq_user_memory_key", "user_memory", ["user_id", "namespace", "key"])

    op.create_table(
        "org_memory",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        *_memory_columns(),
    )
    op.create_unique_constraint("uq_org_memory_key", "org_memory", ["org_id", "namespace", "key"])

    # Connections
    op.create_table(
        "integration_connections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("integration_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="active",
                  comment="active|reauth_required|revoked"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_unique_constraint(
        "uq_integration_connections_org", "integration_connections", ["org_id", "integration_id"]
    )


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table("integration_connections")
    op.drop_table("org_memory")
    op.drop_table("user_memory")
    op.drop_table("tool_memory")
    op.drop_table("session_memory")
    op.drop_table("broker_capabilities")
    op.drop_table("tool_states")
    op.drop_table("tools")
