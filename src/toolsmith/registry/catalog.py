"""Curated capability catalog.

Static capabilities are the compile-time safe set: they are always
available without a discovery round-trip. ``STATIC_TO_COMPOSIO`` maps a
curated capability id to the provider-native Composio action that
implements it, for when a curated capability is executed through the
generic Composio runtime.
"""

from __future__ import annotations

from dataclasses import dataclass

from toolsmith.spec.models import ActionType


@dataclass(frozen=True)
class CatalogCapability:
    id: str
    integration_id: str
    resource: str
    allowed_operations: tuple[str, ...] = ("read",)
    supported_fields: tuple[str, ...] = ()
    required_filters: tuple[str, ...] = ()
    max_limit: int | None = None
    action_type: ActionType = "READ"


CAPABILITY_CATALOG: tuple[CatalogCapability, ...] = (
    # GitHub
    CatalogCapability(
        "github_issues_list", "github", "issues", ("read", "filter"),
        ("state", "labels", "assignee", "sort", "direction"),
    ),
    CatalogCapability(
        "github_repos_list", "github", "repos", ("read", "filter"),
        ("type", "sort", "direction"),
    ),
    CatalogCapability(
        "github_commits_list", "github", "commits", ("read", "filter"),
        ("repo", "author", "since", "until"),
        required_filters=("repo",),
    ),
    CatalogCapability(
        "github_issue_create", "github", "issues", ("create",),
        ("repo", "title", "body", "labels", "assignees"),
        required_filters=("repo",),
        action_type="WRITE",
    ),
    # Linear
    CatalogCapability("linear_issues_list", "linear", "issues", ("read", "filter"), ("first", "includeArchived")),
    CatalogCapability("linear_teams_list", "linear", "teams"),
    # Slack
    CatalogCapability("slack_channels_list", "slack", "channels", ("read",), ("types", "exclude_archived")),
    CatalogCapability(
        "slack_messages_list", "slack", "messages", ("read",), ("channel", "limit"),
        required_filters=("channel",),
    ),
    CatalogCapability(
        "slack_post_message", "slack", "messages", ("send",), ("channel", "text"),
        required_filters=("channel",),
        action_type="NOTIFY",
    ),
    # Notion
    CatalogCapability("notion_pages_search", "notion", "pages", ("read", "filter"), ("query", "sort")),
    CatalogCapability("notion_databases_list", "notion", "databases"),
    # Google
    CatalogCapability("google_drive_list", "google", "drive", ("read", "filter"), ("q", "orderBy", "pageSize")),
    CatalogCapability(
        "google_gmail_list", "google", "gmail", ("read", "filter"),
        ("q", "maxResults", "includeSpamTrash"),
    ),
)

_BY_ID: dict[str, CatalogCapability] = {c.id: c for c in CAPABILITY_CATALOG}


STATIC_TO_COMPOSIO: dict[str, str] = {
    # GitHub
    "github_repos_list": "GITHUB_LIST_REPOSITORIES_FOR_THE_AUTHENTICATED_USER",
    "github_repo_get": "GITHUB_GET_A_REPOSITORY",
    "github_issues_list": "GITHUB_LIST_REPOSITORY_ISSUES",
    "github_issues_search": "GITHUB_SEARCH_ISSUES_AND_PULL_REQUESTS",
    "github_commits_list": "GITHUB_LIST_COMMITS",
    "github_pull_request_get": "GITHUB_GET_A_PULL_REQUEST",
    "github_issue_comment": "GITHUB_CREATE_AN_ISSUE_COMMENT",
    "github_issue_create": "GITHUB_CREATE_AN_ISSUE",
    "github_issue_update": "GITHUB_UPDATE_AN_ISSUE",
    # Slack (the "slackbot" app carries the OAuth v2 scopes)
    "slack_channels_list": "SLACKBOT_LIST_ALL_CHANNELS",
    "slack_messages_list": "SLACKBOT_FETCH_CONVERSATION_HISTORY",
    "slack_users_list": "SLACKBOT_LIST_ALL_USERS",
    "slack_post_message": "SLACKBOT_SEND_MESSAGE",
    # Notion
    "notion_pages_search": "NOTION_SEARCH_NOTION_PAGE",
    "notion_databases_list": "NOTION_SEARCH_NOTION_PAGE",
    "notion_databases_query": "NOTION_QUERY_DATABASE",
    # Google
    "google_gmail_list": "GMAIL_FETCH_EMAILS",
    "google_drive_list": "GOOGLEDRIVE_FIND_FILE",
    # Linear
    "linear_issues_list": "LINEAR_LIST_LINEAR_ISSUES",
    "linear_teams_list": "LINEAR_LIST_LINEAR_TEAMS",
}

# Commonly guessed action names that do not exist, mapped to the real ones.
ACTION_EXACT_REMAP: dict[str, str] = {
    "NOTION_SEARCH_PAGES": "NOTION_SEARCH_NOTION_PAGE",
    "NOTION_LIST_PAGES": "NOTION_SEARCH_NOTION_PAGE",
    "NOTION_SEARCH": "NOTION_SEARCH_NOTION_PAGE",
    "GITLAB_LIST_PROJECTS": "GITLAB_GET_PROJECTS",
    "ZOOM_LIST_ALL_MEETINGS": "ZOOM_LIST_MEETINGS",
    "ASANA_LIST_WORKSPACES": "ASANA_GET_MULTIPLE_WORKSPACES",
}

ACTION_PREFIX_REMAP: dict[str, str] = {
    "SLACK_": "SLACKBOT_",
}


def get_capability(capability_id: str) -> CatalogCapability | None:
    """Curated capability by id.

    Ids that only exist in the Composio mapping are accepted as read
    capabilities of the integration named by their prefix.
    """
    found = _BY_ID.get(capability_id)
    if found is not None:
        return found
    if capability_id in STATIC_TO_COMPOSIO:
        return CatalogCapability(
            id=capability_id,
            integration_id=capability_id.split("_", 1)[0],
            resource="unknown",
        )
    return None


def capabilities_for_integration(integration_id: str) -> list[CatalogCapability]:
    return [c for c in CAPABILITY_CATALOG if c.integration_id == integration_id]


def normalize_action_name(action_name: str) -> str:
    """Map a possibly misspelled provider action name to a known one."""
    if action_name in ACTION_EXACT_REMAP:
        return ACTION_EXACT_REMAP[action_name]
    if action_name in STATIC_TO_COMPOSIO.values():
        return action_name
    for old_prefix, new_prefix in ACTION_PREFIX_REMAP.items():
        if action_name.startswith(old_prefix):
            remapped = new_prefix + action_name[len(old_prefix):]
            return ACTION_EXACT_REMAP.get(remapped, remapped)
    return action_name
