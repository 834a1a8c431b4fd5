"""Clients for external data sources and delivery channels."""
