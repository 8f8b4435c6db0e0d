"""toolsmith core: error taxonomy, caches, tracing."""


class ToolsmithError(Exception):
    """Root exception for all toolsmith domain errors."""
