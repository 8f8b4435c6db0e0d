"""Composio SDK client.

Thin async wrapper over the synchronous Composio SDK:

    execute_action             run one provider action for an entity
    fetch_action_descriptors   list raw action schemas for an app (discovery)
    get_connected_apps         active connected accounts for an entity

SDK calls run in a worker thread. Transient failures are retried with
exponential backoff. Action execution is health-gated per integration by
the Composio runtime; discovery is gated by the "composio" service health.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from toolsmith.config import settings
from toolsmith.core.errors import IntegrationCallError, IntegrationUnavailableError
from toolsmith.integrations.health import integration_health

logger = structlog.get_logger()

_RETRYABLE_KEYWORDS = frozenset({
    "500", "502", "503", "504",
    "timeout", "temporarily", "rate limit", "connection reset",
})

_RETRYABLE_EXCEPTION_TYPES: tuple[str, ...] = (
    "ConnectionError",
    "TimeoutError",
    "ServerError",
    "ServiceUnavailable",
    "GatewayTimeout",
    "TooManyRequests",
)


def _is_retryable(exc: Exception) -> bool:
    if type(exc).__name__ in _RETRYABLE_EXCEPTION_TYPES:
        return True
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return True
    msg = str(exc).lower()
    return any(kw in msg for kw in _RETRYABLE_KEYWORDS)


class _RetryableComposioError(Exception):
    pass


def _to_plain(value: Any) -> Any:
    if isinstance(value, dict):
        return value
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if hasattr(value, "__dict__"):
        return vars(value)
    return value


class ComposioClient:
    _INIT_RETRY_INTERVAL = 60  # seconds between re-init attempts

    def __init__(self, api_key: str | None = None, sdk: Any = None) -> None:
        self.api_key = api_key or settings.composio_api_key
        self._composio: Any = sdk
        self._init_error: str | None = None
        self._last_init_attempt: float = 0
        if self._composio is None:
            self._init_sdk()

    def _init_sdk(self) -> None:
        self._last_init_attempt = time.monotonic()
        try:
            from composio import Composio

            self._composio = Composio(api_key=self.api_key)
            self._init_error = None
            logger.info("composio_client_initialized")
        except Exception as e:
            logger.error("composio_init_failed", error=str(e))
            self._composio = None
            self._init_error = str(e)

    def _ensure_sdk(self) -> None:
        """Lazily retry SDK init if it previously failed and backoff has elapsed."""
        if self._composio is not None:
            return
        if time.monotonic() - self._last_init_attempt >= self._INIT_RETRY_INTERVAL:
            logger.info("composio_sdk_retry_init", last_error=self._init_error)
            self._init_sdk()
        if self._composio is None:
            raise IntegrationCallError(
                "composio", "sdk", f"Composio SDK not initialized: {self._init_error or 'unknown'}"
            )

    # ═══════════════════════════════════════════════════════════════════════
    # EXECUTION
    # ═══════════════════════════════════════════════════════════════════════

    async def execute_action(
        self,
        entity_id: str,
        action_name: str,
        arguments: dict[str, Any],
    ) -> Any:
        """Execute a provider action and return its ``data`` payload.

        Raises IntegrationCallError when the provider reports failure.
        """
        self._ensure_sdk()

        @retry(
            retry=retry_if_exception_type(_RetryableComposioError),
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )
        async def _execute_with_retry() -> dict[str, Any]:
            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(
                        self._composio.tools.execute,
                        slug=action_name,
                        arguments=arguments,
                        user_id=entity_id,
                    ),
                    timeout=settings.composio_timeout_s,
                )
            except Exception as e:
                if _is_retryable(e):
                    raise _RetryableComposioError(str(e)) from e
                raise

            result = _to_plain(result)
            if not isinstance(result, dict):
                return {"successful": True, "data": result}
            if result.get("error") and _is_retryable(Exception(str(result["error"]))):
                raise _RetryableComposioError(str(result["error"]))
            return result

        try:
            result = await _execute_with_retry()
        except Exception as e:
            logger.error("composio_execute_failed", action=action_name, error=str(e))
            raise IntegrationCallError("composio", action_name, str(e)) from e

        if result.get("successful") is False or (result.get("error") and "data" not in result):
            raise IntegrationCallError("composio", action_name, str(result.get("error") or "unsuccessful"))
        logger.info("composio_action_executed", action=action_name)
        return result.get("data", result)

    # ═══════════════════════════════════════════════════════════════════════
    # DISCOVERY & CONNECTIONS
    # ═══════════════════════════════════════════════════════════════════════

    async def fetch_action_descriptors(self, entity_id: str, app_name: str) -> list[dict[str, Any]]:
        self._ensure_sdk()

        def _fetch() -> list[Any]:
            return list(self._composio.tools.get_raw_composio_tools(toolkits=[app_name]))

        try:
            async with integration_health("composio").track():
                raw = await asyncio.to_thread(_fetch)
        except IntegrationUnavailableError:
            raise
        except Exception as e:
            logger.error("composio_discovery_failed", app=app_name, entity_id=entity_id, error=str(e))
            raise IntegrationCallError("composio", app_name, str(e)) from e

        descriptors = [_to_plain(tool) for tool in raw]
        logger.info("composio_actions_fetched", app=app_name, count=len(descriptors))
        return descriptors

    async def get_connected_apps(self, entity_id: str) -> list[str]:
        """Toolkit slugs with an ACTIVE connected account for the entity."""
        self._ensure_sdk()

        def _fetch() -> list[str]:
            response = self._composio.connected_accounts.list(user_ids=[entity_id], statuses=["ACTIVE"])
            items = getattr(response, "items", response) or []
            slugs: list[str] = []
            for account in items:
                toolkit = getattr(account, "toolkit", None)
                slug = getattr(toolkit, "slug", None) if toolkit is not None else None
                if not slug:
                    continue
                slug = str(slug).lower()
                if slug not in slugs:
                    slugs.append(slug)
            return slugs

        try:
            return await asyncio.to_thread(_fetch)
        except Exception as e:
            logger.warning("composio_get_apps_failed", entity_id=entity_id, error=str(e))
            raise IntegrationCallError("composio", "connected_accounts", str(e)) from e


_client: ComposioClient | None = None


def get_composio_client() -> ComposioClient:
    """Get or create the singleton Composio client."""
    global _client
    if _client is None:
        _client = ComposioClient()
    return _client
