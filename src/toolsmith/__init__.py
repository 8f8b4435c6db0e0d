"""toolsmith: compile declarative tool specifications and run them against integrations."""

__version__ = "0.1.0"
