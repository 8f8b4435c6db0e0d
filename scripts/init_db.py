#!/usr/bin/env python3
"""Initialize the toolsmith database.

Usage:
    python scripts/init_db.py              # Create tables (dev only)
    python scripts/init_db.py --migrate    # Run Alembic migrations (production)
    python scripts/init_db.py --reset      # Drop and recreate (DANGER)
"""

import argparse
import asyncio
import sys

from sqlalchemy import text
from sqlalchemy.engine import make_url

from toolsmith.config import settings
from toolsmith.db.models import Base
from toolsmith.db.session import close_db, get_admin_engine, init_db


async def drop_tables() -> None:
    """Drop all tables (DANGER)."""
    async with get_admin_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("✓ All tables dropped")


async def create_tables() -> None:
    """Create all tables from models (dev only)."""
    await init_db()
    print("✓ Tables created from models")


async def run_migrations() -> None:
    """Run Alembic migrations (production)."""
    import alembic.command
    import alembic.config

    alembic_cfg = alembic.config.Config("alembic.ini")
    await asyncio.to_thread(alembic.command.upgrade, alembic_cfg, "head")
    print("✓ Alembic migrations applied")


async def verify_connection() -> None:
    async with get_admin_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))
    print(f"✓ Connected ({get_admin_engine().dialect.name})")


async def main() -> int:
    parser = argparse.ArgumentParser(description="Initialize the toolsmith database")
    parser.add_argument("--migrate", action="store_true", help="Run Alembic migrations")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate tables (DANGER)")
    args = parser.parse_args()

    print(f"Database URL: {make_url(settings.database_url).render_as_string(hide_password=True)}")
    print()

    try:
        await verify_connection()
        if args.reset:
            print("⚠️  DANGER: Dropping all tables...")
            await drop_tables()
        if args.migrate:
            await run_migrations()
        else:
            await create_tables()
        print()
        print("✅ Database initialization complete!")
        return 0
    except Exception as e:
        print(f"❌ Error: {e}")
        return 1
    finally:
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
