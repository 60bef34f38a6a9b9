"""Exceptions, result values and resilience helpers."""
