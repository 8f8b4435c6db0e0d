"""Data quality gate for fetched records.

Given the outputs of the read actions and an answer contract, shape the
list outputs the contract declares (order, limit) and report how many
rows fail the contract's required constraint. Rows are never dropped
for failing a constraint: callers get every fetched row plus the
violations to act on.

Only the ``email`` entity type carries constraint checks today; other
entity types are shaped and passed through.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()

_LAST_N = re.compile(r"last\s+(\d+)\s+(hour|day|week|month|year)s?")
_NEWER_THAN = re.compile(r"newer_than:\s*(\d+)\s*([hdwmy])")

_UNIT_DELTAS = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}
_SHORT_UNITS = {"h": "hour", "d": "day", "w": "week", "m": "month", "y": "year"}

_REQUIRED_EMAIL_FIELDS = ("from", "subject", "snippet", "date")


# ═══════════════════════════════════════════════════════════════════════════════
# CONTRACT
# ═══════════════════════════════════════════════════════════════════════════════

class RequiredConstraint(BaseModel):
    value: str = ""
    field: str | None = None


class ResultShape(BaseModel):
    kind: Literal["list", "single", "count", "summary"] = "list"
    order_by: str | None = None
    order_direction: Literal["asc", "desc"] = "desc"
    limit: int | None = Field(default=None, ge=1)


class AnswerContract(BaseModel):
    entity_type: str
    required_constraints: list[RequiredConstraint] = Field(default_factory=list)
    result_shape: ResultShape | None = None
    list_shape: Literal["array", "object"] = "array"

    @property
    def constraint(self) -> str | None:
        if not self.required_constraints:
            return None
        value = self.required_constraints[0].value.strip().lower()
        return value or None


@dataclass
class FetchedOutput:
    action_id: str
    output: Any


@dataclass(frozen=True)
class GateViolation:
    action_id: str
    dropped: int


@dataclass
class GateResult:
    outputs: list[FetchedOutput]
    violations: list[GateViolation] = field(default_factory=list)
    missing_fields: list[GateViolation] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.violations and not self.missing_fields


# ═══════════════════════════════════════════════════════════════════════════════
# ROW NORMALIZATION
# ═══════════════════════════════════════════════════════════════════════════════

def normalize_email_row(row: Any) -> dict[str, Any] | None:
    """Flatten a raw provider message (payload.headers) into a row; pre-flattened rows pass through."""
    if not isinstance(row, dict):
        return None
    if "subject" in row or "snippet" in row:
        return row
    payload = row.get("payload")
    headers = payload.get("headers") if isinstance(payload, dict) else None
    if not isinstance(headers, list) or not headers:
        return None

    def header(name: str) -> str:
        for h in headers:
            if isinstance(h, dict) and str(h.get("name", "")).lower() == name:
                return h.get("value") or ""
        return ""

    return {
        "id": row.get("id"),
        "threadId": row.get("threadId"),
        "from": header("from"),
        "subject": header("subject"),
        "snippet": row.get("snippet") or "",
        "body": row.get("snippet") or "",
        "date": header("date"),
        "internalDate": row.get("internalDate"),
    }


def _normalize_row(row: Any, entity_type: str) -> Any:
    if entity_type == "email":
        return normalize_email_row(row) or row
    return row


def normalize_rows(output: Any, entity_type: str = "") -> list[Any]:
    if isinstance(output, list):
        return [_normalize_row(row, entity_type) for row in output]
    if isinstance(output, dict):
        messages = output.get("messages")
        if isinstance(messages, list):
            return [_normalize_row(row, entity_type) for row in messages]
        rows: list[Any] = []
        for value in output.values():
            if isinstance(value, list):
                rows.extend(_normalize_row(inner, entity_type) for inner in value if inner)
            elif isinstance(value, dict) and value:
                rows.append(_normalize_row(value, entity_type))
        return rows
    return []


# ═══════════════════════════════════════════════════════════════════════════════
# LIST SHAPING
# ═══════════════════════════════════════════════════════════════════════════════

def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def apply_list_ordering(rows: list[Any], shape: ResultShape | None) -> list[Any]:
    if shape is None or not shape.order_by:
        return rows
    order_by = shape.order_by
    reverse = shape.order_direction == "desc"
    values = [row.get(order_by) if isinstance(row, dict) else None for row in rows]
    numbers = [_as_number(v) for v in values]
    if all(n is not None for n in numbers):
        keyed = list(zip(numbers, range(len(rows))))
    else:
        keyed = list(zip(("" if v is None else str(v) for v in values), range(len(rows))))
    ordered = sorted(keyed, key=lambda pair: pair[0], reverse=reverse)
    return [rows[i] for _, i in ordered]


def apply_list_limit(rows: list[Any], shape: ResultShape | None) -> list[Any]:
    if shape is None or not shape.limit:
        return rows
    return rows[: shape.limit]


def shape_output(output: Any, contract: AnswerContract | None) -> Any:
    if contract is None:
        return output
    entity_type = contract.entity_type.lower()
    shape = contract.result_shape
    is_list = contract.list_shape == "array" or (shape is not None and shape.kind == "list") or entity_type == "email"
    if not is_list:
        return output
    rows = normalize_rows(output, entity_type)
    return apply_list_limit(apply_list_ordering(rows, shape), shape)


# ═══════════════════════════════════════════════════════════════════════════════
# CONSTRAINTS
# ═══════════════════════════════════════════════════════════════════════════════

def is_time_constraint(value: str) -> bool:
    return bool(_LAST_N.search(value)) or "newer_than" in value or "since" in value


def parse_row_time(row: dict[str, Any]) -> datetime | None:
    raw = row.get("date") or row.get("internalDate")
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)) or (isinstance(raw, str) and raw.strip().isdigit()):
        return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)
    text = str(raw).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def time_window(value: str) -> timedelta | None:
    match = _LAST_N.search(value)
    if match:
        return int(match.group(1)) * _UNIT_DELTAS[match.group(2)]
    match = _NEWER_THAN.search(value)
    if match:
        return int(match.group(1)) * _UNIT_DELTAS[_SHORT_UNITS[match.group(2)]]
    return None


def check_time_constraint(row: dict[str, Any], value: str, now: datetime) -> bool:
    row_time = parse_row_time(row)
    if row_time is None:
        return False
    window = time_window(value)
    if window is None:
        # Recognized as time-based but not parseable ("since ..."): lenient.
        return True
    return row_time >= now - window


def includes_constraint(row: dict[str, Any], value: str) -> bool:
    return any(value in str(row.get(f) or "").lower() for f in ("subject", "snippet", "body"))


def count_missing_email_fields(rows: list[Any]) -> int:
    missing = 0
    for row in rows:
        if not isinstance(row, dict):
            missing += 1
            continue
        values = {f: str(row.get(f) or "").strip() for f in _REQUIRED_EMAIL_FIELDS}
        if not values["date"]:
            values["date"] = str(row.get("internalDate") or "").strip()
        if not all(values.values()):
            missing += 1
    return missing


# ═══════════════════════════════════════════════════════════════════════════════
# GATE
# ═══════════════════════════════════════════════════════════════════════════════

def validate_fetched_data(
    outputs: list[FetchedOutput],
    contract: AnswerContract | None,
    now: datetime | None = None,
) -> GateResult:
    """Shape outputs per the contract and report constraint violations per action."""
    shaped = [FetchedOutput(entry.action_id, shape_output(entry.output, contract)) for entry in outputs]
    if contract is None:
        return GateResult(outputs=shaped)

    entity_type = contract.entity_type.lower()
    if entity_type != "email":
        return GateResult(outputs=shaped)

    now = now or datetime.now(timezone.utc)
    value = contract.constraint
    time_based = bool(value) and is_time_constraint(value)
    result = GateResult(outputs=shaped)

    for entry in shaped:
        rows = normalize_rows(entry.output, entity_type)
        missing = count_missing_email_fields(rows)
        if missing:
            result.missing_fields.append(GateViolation(entry.action_id, missing))
        if not value:
            continue
        dict_rows = [row for row in rows if isinstance(row, dict)]
        if time_based:
            kept = sum(1 for row in dict_rows if check_time_constraint(row, value, now))
        else:
            kept = sum(1 for row in dict_rows if includes_constraint(row, value))
        failing = len(rows) - kept
        if failing:
            result.violations.append(GateViolation(entry.action_id, failing))

    if not result.clean:
        logger.info(
            "data_quality_violations",
            constraint=value,
            violations=[(v.action_id, v.dropped) for v in result.violations],
            missing_fields=[(v.action_id, v.dropped) for v in result.missing_fields],
        )
    return result
