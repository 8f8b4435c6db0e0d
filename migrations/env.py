"""Alembic environment: runs migrations on the admin engine."""

import asyncio

from alembic import context
from sqlalchemy.engine import Connection

from toolsmith.db.models import Base
from toolsmith.db.session import get_admin_engine

target_metadata = Base.metadata


def _run(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = get_admin_engine()
    async with engine.connect() as connection:
        await connection.run_sync(_run)
    await engine.dispose()


asyncio.run(run_migrations_online())
