"""Core helpers shared across Cadence."""
