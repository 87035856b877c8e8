"""Synthetic series load generator and read-back verifier for multi-tenant TSDBs."""
