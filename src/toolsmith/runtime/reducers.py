"""State reducers: fold an action's output into the tool's state document.

``set``     replaces ``state[target]``
``merge``   shallow-merges a mapping output into ``state[target]``
``append``  concatenates the output (a scalar counts as one item)
``remove``  drops entries whose id, or the entry itself, matches an
            id named by the output

Reducers never mutate their input state.
"""

from __future__ import annotations

from typing import Any, Mapping

from toolsmith.core.errors import ReducerNotFoundError
from toolsmith.spec.models import StateReducer

State = dict[str, Any]


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, (list, tuple)) else [value]


def _identity(item: Any) -> str:
    if isinstance(item, Mapping) and item.get("id") is not None:
        return str(item["id"])
    return str(item)


def reduce_set(state: State, target: str, output: Any) -> State:
    return {**state, target: output}


def reduce_merge(state: State, target: str, output: Any) -> State:
    current = state.get(target)
    base = dict(current) if isinstance(current, Mapping) else {}
    patch = dict(output) if isinstance(output, Mapping) else {}
    return {**state, target: {**base, **patch}}


def reduce_append(state: State, target: str, output: Any) -> State:
    current = state.get(target)
    base = list(current) if isinstance(current, list) else []
    items = list(output) if isinstance(output, (list, tuple)) else [output]
    return {**state, target: base + items}


def reduce_remove(state: State, target: str, output: Any) -> State:
    current = state.get(target)
    base = list(current) if isinstance(current, list) else []
    remove_ids = {_identity(item) for item in _as_list(output)}
    return {**state, target: [item for item in base if _identity(item) not in remove_ids]}


REDUCERS = {
    "set": reduce_set,
    "merge": reduce_merge,
    "append": reduce_append,
    "remove": reduce_remove,
}


def apply_reducer(
    reducers: Mapping[str, StateReducer],
    reducer_id: str | None,
    state: State,
    output: Any,
) -> State:
    """Apply the named reducer; no reducer id is a passthrough."""
    if not reducer_id:
        return state
    reducer = reducers.get(reducer_id)
    if reducer is None:
        raise ReducerNotFoundError(reducer_id)
    return REDUCERS[reducer.type](state, reducer.target, output)
