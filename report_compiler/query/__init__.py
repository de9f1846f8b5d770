"""Canonical query configuration, its builder and the SQL engine that executes it."""
