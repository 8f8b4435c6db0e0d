"""Integration runtimes, token collaborators and the Composio client."""

from toolsmith.integrations.runtime import (
    BaseRuntime,
    Capability,
    IntegrationRuntime,
    RuntimeRegistry,
)

__all__ = ["BaseRuntime", "Capability", "IntegrationRuntime", "RuntimeRegistry"]
