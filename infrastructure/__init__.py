"""Persistence and audit logging for the care plan engine."""
