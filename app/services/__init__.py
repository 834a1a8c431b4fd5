"""
Service Organization
====================
Services are organized by their lifecycle and instantiation pattern:

**application/**
  Singleton services managed by ServiceContainer. One instance per process.
  Examples: CarePlanService, CompletionTokenService, ReminderService

**ai/**
  Plan synthesis and task analysis on top of a text generator, each with a
  deterministic fallback.

**utilities/**
  Thin clients for external data sources (weather forecast).
"""
