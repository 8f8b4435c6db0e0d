"""Build lifecycle state machine.

    INIT -> INTENT_PARSED -> VALIDATING_INTEGRATIONS -> FETCHING_DATA
         -> DATA_READY -> BUILDING_VIEWS -> READY

with a clarification detour (INTENT_PARSED -> NEEDS_CLARIFICATION ->
AWAITING_CLARIFICATION -> VALIDATING_INTEGRATIONS) and DEGRADED
reachable from every non-terminal state. The machine only moves
forward; every transition appends an immutable log entry.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Literal

import structlog

from toolsmith.core.errors import IllegalTransitionError

logger = structlog.get_logger()

LogLevel = Literal["info", "warning", "error"]


class BuildState(str, Enum):
    INIT = "INIT"
    INTENT_PARSED = "INTENT_PARSED"
    NEEDS_CLARIFICATION = "NEEDS_CLARIFICATION"
    AWAITING_CLARIFICATION = "AWAITING_CLARIFICATION"
    VALIDATING_INTEGRATIONS = "VALIDATING_INTEGRATIONS"
    FETCHING_DATA = "FETCHING_DATA"
    DATA_READY = "DATA_READY"
    BUILDING_VIEWS = "BUILDING_VIEWS"
    READY = "READY"
    DEGRADED = "DEGRADED"


TERMINAL_STATES = frozenset({BuildState.READY, BuildState.DEGRADED})

ALLOWED_TRANSITIONS: dict[BuildState, tuple[BuildState, ...]] = {
    BuildState.INIT: (BuildState.INTENT_PARSED,),
    BuildState.INTENT_PARSED: (BuildState.NEEDS_CLARIFICATION, BuildState.VALIDATING_INTEGRATIONS),
    BuildState.NEEDS_CLARIFICATION: (BuildState.AWAITING_CLARIFICATION,),
    BuildState.AWAITING_CLARIFICATION: (BuildState.VALIDATING_INTEGRATIONS,),
    BuildState.VALIDATING_INTEGRATIONS: (BuildState.FETCHING_DATA,),
    BuildState.FETCHING_DATA: (BuildState.DATA_READY,),
    BuildState.DATA_READY: (BuildState.BUILDING_VIEWS,),
    BuildState.BUILDING_VIEWS: (BuildState.READY,),
    BuildState.READY: (),
    BuildState.DEGRADED: (),
}


def allowed_from(state: BuildState) -> tuple[BuildState, ...]:
    allowed = ALLOWED_TRANSITIONS[state]
    if state in TERMINAL_STATES:
        return allowed
    return allowed + (BuildState.DEGRADED,)


@dataclass(frozen=True)
class BuildLogEntry:
    timestamp: datetime
    level: LogLevel
    state: BuildState
    message: str

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["timestamp"] = self.timestamp.isoformat()
        record["state"] = self.state.value
        return record


class BuildStateMachine:
    def __init__(
        self,
        tool_id: str = "",
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.tool_id = tool_id
        self.state = BuildState.INIT
        self._clock = clock
        self._log: list[BuildLogEntry] = []

    @property
    def log(self) -> tuple[BuildLogEntry, ...]:
        return tuple(self._log)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition(self, target: BuildState) -> bool:
        return target in allowed_from(self.state)

    def transition(self, target: BuildState, message: str, level: LogLevel = "info") -> BuildLogEntry:
        if not self.can_transition(target):
            raise IllegalTransitionError(
                self.state.value, target.value, [s.value for s in allowed_from(self.state)]
            )
        entry = BuildLogEntry(self._clock(), level, target, message)
        self._log.append(entry)
        logger.info(
            "build_transition",
            tool_id=self.tool_id,
            from_state=self.state.value,
            to_state=target.value,
            level=level,
            detail=message,
        )
        self.state = target
        return entry

    def degrade(self, message: str) -> BuildLogEntry:
        return self.transition(BuildState.DEGRADED, message, level="error")

    def to_records(self) -> list[dict[str, Any]]:
        return [entry.to_record() for entry in self._log]
