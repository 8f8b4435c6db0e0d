"""Maps provider-native action descriptors to capabilities.

A descriptor is whatever the provider's discovery endpoint returns for
one action; only ``slug`` (or ``name``), ``description`` and
``parameters`` are read. Capability ids are ``<integration>:<NAME>`` so
the provider-native name can be recovered from the id alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

logger = structlog.get_logger()

OperationType = Literal["list", "get", "create", "update", "delete", "other"]

# First matching row wins; "get_all" must be checked before "get".
_OPERATION_KEYWORDS: tuple[tuple[tuple[str, ...], OperationType], ...] = (
    (("list", "get_all", "search"), "list"),
    (("get", "retrieve", "read"), "get"),
    (("create", "add", "post"), "create"),
    (("update", "edit", "modify", "patch"), "update"),
    (("delete", "remove"), "delete"),
)


@dataclass
class SynthesizedCapability:
    id: str
    name: str
    description: str
    type: OperationType
    resource: str
    original_action_id: str
    parameters: dict[str, Any] = field(default_factory=dict)


def infer_operation_type(name: str) -> OperationType:
    lower = name.lower()
    for keywords, op_type in _OPERATION_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return op_type
    return "other"


def infer_resource(name: str) -> str:
    """Second name segment for three-plus segment names, else the first."""
    parts = name.lower().split("_")
    if len(parts) > 2:
        return parts[1]
    return parts[0]


def _descriptor_field(descriptor: Any, *names: str) -> Any:
    for name in names:
        if isinstance(descriptor, dict):
            value = descriptor.get(name)
        else:
            value = getattr(descriptor, name, None)
        if value:
            return value
    return None


class Synthesizer:
    def synthesize(self, descriptors: list[Any], integration_id: str) -> list[SynthesizedCapability]:
        capabilities: list[SynthesizedCapability] = []
        seen: set[str] = set()
        for descriptor in descriptors:
            name = _descriptor_field(descriptor, "slug", "name", "enum")
            if not name:
                logger.debug("synthesizer_descriptor_skipped", integration=integration_id)
                continue
            name = str(name)
            capability_id = f"{integration_id}:{name}"
            if capability_id in seen:
                continue
            seen.add(capability_id)

            parameters = _descriptor_field(descriptor, "parameters", "input_parameters") or {}
            if hasattr(parameters, "model_dump"):
                parameters = parameters.model_dump()
            capabilities.append(
                SynthesizedCapability(
                    id=capability_id,
                    name=name,
                    description=str(_descriptor_field(descriptor, "description") or ""),
                    type=infer_operation_type(name),
                    resource=infer_resource(name),
                    original_action_id=name,
                    parameters=dict(parameters) if isinstance(parameters, dict) else {},
                )
            )
        return capabilities
