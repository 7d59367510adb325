"""Reporting layer - Human-readable report lines."""
