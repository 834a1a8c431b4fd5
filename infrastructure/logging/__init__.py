"""Structured audit trail."""
