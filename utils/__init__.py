"""Shared helpers: natural keys and rate limiting."""
