"""
GreenGrow care plan engine.

Weather-aware 7-day care plans for plant boxes, with a bounded disease
severity model, per-task guidance and single-use completion links.
Services are wired together by :class:`app.services.container.ServiceContainer`.
"""

__version__ = "1.0.0"
