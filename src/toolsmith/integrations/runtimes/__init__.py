"""Per-provider runtime implementations."""
