"""Access-token collaborators.

Token acquisition and refresh are external concerns; the core depends
only on ``get_valid_access_token(org_id, integration_id)``.
Concurrent refreshes for the same (org, integration) are coalesced into
one in-flight call.
"""

from __future__ import annotations

from typing import Mapping, Protocol

import structlog

from toolsmith.core.coalesce import KeyedCoalescer
from toolsmith.core.errors import IntegrationAuthError

logger = structlog.get_logger()


class TokenProvider(Protocol):
    async def get_valid_access_token(self, org_id: str, integration_id: str) -> str: ...


class StaticTokenProvider:
    """Fixed tokens per integration (development and tests)."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    async def get_valid_access_token(self, org_id: str, integration_id: str) -> str:
        token = self._tokens.get(integration_id)
        if not token:
            raise IntegrationAuthError(integration_id, "token_unavailable")
        return token


class ComposioEntityTokenProvider:
    """Composio holds the OAuth tokens; the "token" handed to the runtime is the entity id."""

    def __init__(self, prefix: str = "toolsmith_org_") -> None:
        self.prefix = prefix

    async def get_valid_access_token(self, org_id: str, integration_id: str) -> str:
        if not org_id:
            raise IntegrationAuthError(integration_id, "missing_org")
        return f"{self.prefix}{org_id}"


class CoalescingTokenProvider:
    def __init__(self, inner: TokenProvider) -> None:
        self._inner = inner
        self._coalescer = KeyedCoalescer("token_refresh")

    async def get_valid_access_token(self, org_id: str, integration_id: str) -> str:
        return await self._coalescer.run(
            (org_id, integration_id),
            lambda: self._inner.get_valid_access_token(org_id, integration_id),
        )

    @property
    def inflight(self) -> int:
        return self._coalescer.inflight
