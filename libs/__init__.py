"""Shared libraries for the review vectorizer.

Subpackages:
- ``libs.common``: configuration, logging, metrics, and events.
- ``libs.vector_store``: review/vector models and the pgvector repository.

Notes:
- Avoid service-specific logic; keep modules cohesive and broadly useful.
"""
