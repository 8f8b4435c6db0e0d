"""Goal satisfaction and the render decision.

Fetched data wins: when a read produced rows, the goal is satisfied
whether or not a goal plan or success criteria could be resolved. Only
without data do the plan, intent contract, integration statuses and
prompt shape decide between clarifying, explaining and partial output.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal

from pydantic import Field

from toolsmith.spec.models import SpecModel

GoalLevel = Literal["satisfied", "partial", "unsatisfied"]
AbsenceReason = Literal[
    "ambiguous_query",
    "integration_permission_missing",
    "no_data",
    "no_failed_builds",
    "failed_builds_exist_no_notifications",
    "emails_exist_not_related",
]
DecisionKind = Literal["render", "ask", "explain"]

_HEXISH = re.compile(r"^[a-f0-9-]{8,}$", re.IGNORECASE)


class GoalPlan(SpecModel):
    kind: str = "DATA_RETRIEVAL"
    primary_goal: str = ""
    sub_goals: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    derived_entities: list[Any] = Field(default_factory=list)


class IntentContract(SpecModel):
    action: str = ""
    entity: str = ""
    success_criteria: list[str] = Field(default_factory=list)
    forbidden_outputs: list[str] = Field(default_factory=list)


@dataclass
class GoalEvidence:
    failed_commits: int = 0
    failure_incidents: int = 0
    related_emails: int = 0
    total_emails: int = 0

    @classmethod
    def from_incidents(cls, incidents: Iterable[dict[str, Any]]) -> GoalEvidence:
        incidents = list(incidents)
        related = sum(int(i.get("emailCount") or i.get("email_count") or 0) for i in incidents)
        return cls(len(incidents), len(incidents), related, related)


@dataclass
class GoalSatisfactionResult:
    level: GoalLevel
    satisfied: bool
    confidence: float
    failure_reason: str | None = None
    missing_requirements: list[str] = field(default_factory=list)
    absence_reason: AbsenceReason | None = None


@dataclass
class RelevanceGateResult:
    ok: bool
    issues: list[str] = field(default_factory=list)


@dataclass
class Decision:
    kind: DecisionKind
    partial: bool | None = None
    explanation: str | None = None
    question: str | None = None

    @property
    def needs_clarification(self) -> bool:
        return self.kind == "ask"


def _unsatisfied(
    confidence: float,
    failure_reason: str,
    missing: list[str],
    absence: AbsenceReason,
    level: GoalLevel = "unsatisfied",
) -> GoalSatisfactionResult:
    return GoalSatisfactionResult(level, False, confidence, failure_reason, missing, absence)


# ═══════════════════════════════════════════════════════════════════════════════
# GOAL SATISFACTION
# ═══════════════════════════════════════════════════════════════════════════════

def is_ambiguous_prompt(prompt: str) -> bool:
    normalized = prompt.lower()
    if " or " in normalized or "maybe" in normalized:
        return True
    return len(normalized.split()) < 4


def requires_failure_correlation(prompt: str, plan: GoalPlan) -> bool:
    normalized = prompt.lower()
    if "build" in normalized and "fail" in normalized:
        return True
    return "fail" in " ".join(plan.constraints).lower()


def evaluate_goal_satisfaction(
    prompt: str,
    has_data: bool = False,
    goal_plan: GoalPlan | None = None,
    intent_contract: IntentContract | None = None,
    evidence: GoalEvidence | None = None,
    relevance: RelevanceGateResult | None = None,
    integration_statuses: dict[str, dict[str, Any]] | None = None,
) -> GoalSatisfactionResult:
    if has_data:
        return GoalSatisfactionResult("satisfied", True, 1.0)

    evidence = evidence or GoalEvidence()
    if intent_contract is not None and not intent_contract.success_criteria:
        return _unsatisfied(0.5, "intent_missing_success_criteria", ["success_criteria"], "ambiguous_query")
    if goal_plan is None:
        return _unsatisfied(0.2, "goal_plan_missing", ["goal_plan"], "ambiguous_query")

    slack = (integration_statuses or {}).get("slack") or {}
    if slack.get("required") and slack.get("status") == "reauth_required":
        return _unsatisfied(0.9, "slack_reauth_required", ["slack_reauth"], "integration_permission_missing")
    if relevance is not None and not relevance.ok:
        return _unsatisfied(0.6, "irrelevant_data", list(relevance.issues), "ambiguous_query")
    if is_ambiguous_prompt(prompt):
        return _unsatisfied(0.4, "ambiguous_query", ["clarification"], "ambiguous_query")

    if not requires_failure_correlation(prompt, goal_plan):
        return _unsatisfied(0.7, "no_data", ["data"], "no_data")
    if evidence.failed_commits == 0:
        return _unsatisfied(0.7, "no_failed_builds", ["failed_commits"], "no_failed_builds")
    if evidence.related_emails == 0:
        absence: AbsenceReason = (
            "emails_exist_not_related" if evidence.total_emails > 0 else "failed_builds_exist_no_notifications"
        )
        return _unsatisfied(0.75, "missing_related_emails", ["related_emails"], absence, level="partial")
    return GoalSatisfactionResult("satisfied", True, 0.9)


# ═══════════════════════════════════════════════════════════════════════════════
# RENDER DECISION
# ═══════════════════════════════════════════════════════════════════════════════

_EXPLANATIONS: dict[str, str] = {
    "no_failed_builds": "No failed builds were found in GitHub, so no related emails exist.",
    "failed_builds_exist_no_notifications": "Failed builds were found, but no related email notifications exist.",
    "emails_exist_not_related": "Emails were found, but none were related to the failed commits.",
    "integration_permission_missing": "Slack needs to be reconnected to continue. Click reconnect to re-authorize.",
    "ambiguous_query": "The request is ambiguous. Provide a repo or time window to continue.",
    "no_data": "No data was returned for this request.",
}


def build_absence_explanation(result: GoalSatisfactionResult) -> str:
    return _EXPLANATIONS.get(result.absence_reason or "", "No results were found for the requested goal.")


def build_clarification_question(prompt: str) -> str:
    if "build" in prompt.lower():
        return "Which repository and time window should I check for build failures?"
    return "Can you clarify the exact goal and scope for this request?"


def decide_rendering(prompt: str, result: GoalSatisfactionResult) -> Decision:
    """Render when satisfied; ask when the query is ambiguous and nothing was fetched."""
    if result.satisfied:
        return Decision("render")
    if result.absence_reason == "ambiguous_query":
        return Decision("ask", question=build_clarification_question(prompt))
    if result.confidence < 0.8 and result.level != "partial":
        return Decision("explain", explanation=build_absence_explanation(result))
    if result.level == "partial":
        return Decision("render", partial=True, explanation=build_absence_explanation(result))
    return Decision("explain", explanation=build_absence_explanation(result))


# ═══════════════════════════════════════════════════════════════════════════════
# RELEVANCE GATE
# ═══════════════════════════════════════════════════════════════════════════════

def _rows(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [row for row in data if isinstance(row, dict)]
    if isinstance(data, dict):
        return [row for row in data.values() if isinstance(row, dict)]
    return []


def is_readable_value(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    text = value.strip()
    if len(text) < 3 or _HEXISH.match(text) or text.isdigit():
        return False
    return any(ch.isalpha() for ch in text)


def evaluate_relevance_gate(outputs: Iterable[Any], intent_contract: IntentContract | None = None) -> RelevanceGateResult:
    """Check fetched outputs are non-empty, human readable and free of forbidden phrases."""
    issues: list[str] = []
    rows = [row for output in outputs for row in _rows(getattr(output, "output", output))]
    if not rows:
        issues.append("non_empty")
    if not any(is_readable_value(v) for row in rows for v in row.values()):
        issues.append("human_readable")
    if intent_contract is not None and intent_contract.forbidden_outputs:
        phrases = [p.lower() for p in intent_contract.forbidden_outputs]
        if any(p in str(v if v is not None else "").lower() for p in phrases for row in rows for v in row.values()):
            issues.append("forbidden_output")
    return RelevanceGateResult(ok=not issues, issues=issues)
