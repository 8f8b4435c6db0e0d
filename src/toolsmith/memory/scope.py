"""Memory scopes and their normalization.

A scope addresses one durable memory bucket. Identifiers are normalized
before any read or write: session ids become UUID-shaped (hashed when
they are not UUIDs already), every other id must already be a valid
UUID.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass
from typing import Literal

from toolsmith.core.errors import MemoryScopeError

ScopeType = Literal["session", "tool", "tool_user", "tool_org", "user", "org"]

_REQUIRED: dict[str, tuple[str, ...]] = {
    "session": ("session_id",),
    "tool": ("tool_id",),
    "tool_user": ("tool_id", "user_id"),
    "tool_org": ("tool_id", "org_id"),
    "user": ("user_id",),
    "org": ("org_id",),
}


@dataclass(frozen=True)
class MemoryScope:
    type: ScopeType
    session_id: str | None = None
    tool_id: str | None = None
    user_id: str | None = None
    org_id: str | None = None

    @classmethod
    def session(cls, session_id: str) -> MemoryScope:
        return cls("session", session_id=session_id)

    @classmethod
    def tool(cls, tool_id: str) -> MemoryScope:
        return cls("tool", tool_id=tool_id)

    @classmethod
    def tool_user(cls, tool_id: str, user_id: str) -> MemoryScope:
        return cls("tool_user", tool_id=tool_id, user_id=user_id)

    @classmethod
    def tool_org(cls, tool_id: str, org_id: str) -> MemoryScope:
        return cls("tool_org", tool_id=tool_id, org_id=org_id)

    @classmethod
    def user(cls, user_id: str) -> MemoryScope:
        return cls("user", user_id=user_id)

    @classmethod
    def org(cls, org_id: str) -> MemoryScope:
        return cls("org", org_id=org_id)

    @property
    def bucket(self) -> tuple[str | None, ...]:
        return (self.type, self.session_id, self.tool_id, self.user_id, self.org_id)


def normalize_uuid(value: str | None) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError:
        return None


def normalize_session_id(session_id: str) -> str:
    trimmed = session_id.strip()
    normalized = normalize_uuid(trimmed)
    if normalized:
        return normalized
    digest = hashlib.sha256(trimmed.encode()).hexdigest()[:32]
    return f"{digest[:8]}-{digest[8:12]}-{digest[12:16]}-{digest[16:20]}-{digest[20:]}"


def normalize_scope(scope: MemoryScope) -> MemoryScope:
    """Return a copy of ``scope`` with canonical identifiers.

    Raises MemoryScopeError before any storage is touched.
    """
    required = _REQUIRED.get(scope.type)
    if required is None:
        raise MemoryScopeError(f"Unknown scope type: {scope.type}")

    if scope.type == "session":
        session_id = scope.session_id.strip() if isinstance(scope.session_id, str) else ""
        if not session_id:
            raise MemoryScopeError("Invalid sessionId for memory scope")
        return MemoryScope("session", session_id=normalize_session_id(session_id))

    values: dict[str, str] = {}
    for name in required:
        normalized = normalize_uuid(getattr(scope, name))
        if normalized is None:
            raise MemoryScopeError(f"Invalid {scope.type} scope: {name} must be a UUID")
        values[name] = normalized
    return MemoryScope(scope.type, **values)
