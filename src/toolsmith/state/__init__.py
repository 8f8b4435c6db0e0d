"""Persistent per-(org, tool) state documents."""

from toolsmith.state.store import StateStore

__all__ = ["StateStore"]
