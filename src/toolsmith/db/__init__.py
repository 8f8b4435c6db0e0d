"""Database layer: async SQLAlchemy models and session management."""

from toolsmith.db.models import Base
from toolsmith.db.session import (
    AdminSessionLocal,
    AsyncSessionLocal,
    db_session,
    get_admin_session_factory,
    get_session_factory,
)

__all__ = [
    "AdminSessionLocal",
    "AsyncSessionLocal",
    "Base",
    "db_session",
    "get_admin_session_factory",
    "get_session_factory",
]
