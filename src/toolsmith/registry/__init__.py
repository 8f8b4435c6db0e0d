"""Capability catalog and the cache-backed action registry."""
