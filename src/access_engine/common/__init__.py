"""Shared helpers used across the access engine."""
