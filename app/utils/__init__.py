"""Small shared helpers: time, ids, timeouts and JSON extraction."""
