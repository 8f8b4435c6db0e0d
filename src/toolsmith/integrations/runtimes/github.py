"""GitHub runtime over the REST API (httpx)."""

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog

from toolsmith.config import settings
from toolsmith.core.errors import IntegrationAuthError, IntegrationCallError
from toolsmith.core.trace import ExecutionTracer
from toolsmith.integrations.health import integration_health
from toolsmith.integrations.runtime import AuthContext, BaseRuntime, Capability

logger = structlog.get_logger()

_ACCEPT = "application/vnd.github.v3+json"


class GitHubRuntime(BaseRuntime):
    id = "github"
    enforce_permissions = True

    def __init__(self, http: httpx.AsyncClient | None = None, base_url: str | None = None) -> None:
        super().__init__()
        self.base_url = (base_url or settings.github_api_url).rstrip("/")
        self._http = http
        self._health = integration_health("github")
        self.register(Capability("github_repos_list", "github", self._repos_list))
        self.register(Capability("github_issues_list", "github", self._issues_list, ("owner",)))
        self.register(Capability("github_commits_list", "github", self._commits_list, ("owner",)))
        self.register(Capability("github_issue_create", "github", self._issue_create, ("owner",)))

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=settings.http_timeout_s)
        return self._http

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async with self._health.track():
            response = await self.http.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}", "Accept": _ACCEPT},
            )
            if response.status_code >= 500:
                response.raise_for_status()
        return response

    async def _call(
        self,
        capability_id: str,
        method: str,
        path: str,
        context: AuthContext,
        tracer: ExecutionTracer,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        trace_params: dict[str, Any] | None = None,
    ) -> Any:
        started = time.monotonic()
        status = "success"
        try:
            response = await self._request(method, path, context["token"], params=params, json=json)
            if response.is_error:
                raise IntegrationCallError(
                    "github", capability_id, f"GitHub API error: {response.status_code} {response.reason_phrase}"
                )
            return response.json()
        except httpx.HTTPError as e:
            status = "error"
            raise IntegrationCallError("github", capability_id, str(e)) from e
        except Exception:
            status = "error"
            raise
        finally:
            tracer.log_integration_access(
                "github",
                capability_id,
                params=trace_params if trace_params is not None else (params or {}),
                status=status,  # type: ignore[arg-type]
                latency_ms=(time.monotonic() - started) * 1000,
                metadata={"url": f"{self.base_url}{path}"},
                health=self._health.snapshot(),
            )

    async def resolve_context(self, token: str) -> AuthContext:
        try:
            response = await self._request("GET", "/user", token)
        except httpx.HTTPError as e:
            raise IntegrationAuthError("github", f"user_lookup_failed: {e}") from e
        if response.is_error:
            raise IntegrationAuthError("github", "user_lookup_failed")
        user = response.json()
        return {"owner": user.get("login"), "user_id": user.get("id"), "token": token}

    # ── capabilities ────────────────────────────────────────────────

    async def _repos_list(self, params: dict[str, Any], context: AuthContext, tracer: ExecutionTracer) -> Any:
        query = {"per_page": min(int(params.get("limit") or 100), 100)}
        for key in ("type", "sort", "direction"):
            if params.get(key):
                query[key] = params[key]
        return await self._call("github_repos_list", "GET", "/user/repos", context, tracer, params=query)

    async def _issues_list(self, params: dict[str, Any], context: AuthContext, tracer: ExecutionTracer) -> Any:
        owner = params.get("owner") or context.get("owner")
        repo = params.get("repo")
        query = {"state": params.get("state") or "all"}
        if repo and owner:
            path = f"/repos/{owner}/{repo}/issues"
        else:
            path = "/user/issues"
            query["filter"] = "all"
        return await self._call(
            "github_issues_list", "GET", path, context, tracer,
            params=query, trace_params={"owner": owner, "repo": repo, **query},
        )

    async def _commits_list(self, params: dict[str, Any], context: AuthContext, tracer: ExecutionTracer) -> Any:
        owner = params.get("owner") or context.get("owner")
        repo = params.get("repo")
        if not owner:
            raise IntegrationCallError("github", "github_commits_list", "Missing owner and unable to infer from context")
        if not repo:
            raise IntegrationCallError("github", "github_commits_list", "Missing required filter: repo")
        query: dict[str, Any] = {}
        for key in ("author", "since", "until"):
            if params.get(key):
                query[key] = params[key]
        if params.get("limit"):
            query["per_page"] = min(int(params["limit"]), 100)
        return await self._call(
            "github_commits_list", "GET", f"/repos/{owner}/{repo}/commits", context, tracer,
            params=query, trace_params={"owner": owner, "repo": repo, **query},
        )

    async def _issue_create(self, params: dict[str, Any], context: AuthContext, tracer: ExecutionTracer) -> Any:
        owner = params.get("owner") or context.get("owner")
        repo = params.get("repo")
        if not (owner and repo and params.get("title")):
            raise IntegrationCallError("github", "github_issue_create", "owner, repo and title are required")
        body = {"title": params["title"]}
        for key in ("body", "labels", "assignees"):
            if params.get(key):
                body[key] = params[key]
        return await self._call(
            "github_issue_create", "POST", f"/repos/{owner}/{repo}/issues", context, tracer,
            json=body, trace_params={"owner": owner, "repo": repo, "title": params["title"]},
        )

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
