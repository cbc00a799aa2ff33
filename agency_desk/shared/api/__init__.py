"""Shared HTTP layer: middleware and exception handlers."""
