"""Action-type classification for discovered capabilities.

Two layers (highest priority first):
1. The capability's declared operation type (``create``, ``update`` ...)
2. A substring heuristic on the capability name

The heuristic is a best-effort default for names the synthesizer could
not type. Unknown names fall back to READ.
"""

from __future__ import annotations

from toolsmith.spec.models import ActionType

# ── Layer 1: declared operation type ───────────────────────────────
DECLARED_TYPE_MAP: dict[str, ActionType] = {
    "create": "WRITE",
    "update": "MUTATE",
    "delete": "MUTATE",
    "list": "READ",
    "get": "READ",
    "search": "READ",
}

# ── Layer 2: name heuristics ───────────────────────────────────────
# Order matters: first matching row wins.
NAME_HEURISTICS: tuple[tuple[tuple[str, ...], ActionType], ...] = (
    (("send", "post", "notify"), "NOTIFY"),
    (("create", "add"), "WRITE"),
    (("update", "edit", "modify"), "MUTATE"),
    (("delete", "remove"), "MUTATE"),
)


def classify_action_type(declared_type: str | None, name: str | None) -> ActionType:
    """Classify a capability as READ, WRITE, MUTATE or NOTIFY."""
    if declared_type and declared_type in DECLARED_TYPE_MAP:
        return DECLARED_TYPE_MAP[declared_type]

    lower = (name or "").lower()
    for verbs, action_type in NAME_HEURISTICS:
        if any(verb in lower for verb in verbs):
            return action_type
    return "READ"
