"""Alembic scripts for the central registry database."""
