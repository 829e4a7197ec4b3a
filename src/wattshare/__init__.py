"""Per-application CPU energy attribution."""
