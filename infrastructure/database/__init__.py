"""SQLite handler and repositories."""
