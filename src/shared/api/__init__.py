"""Shared API helpers (middleware, error handlers)."""
