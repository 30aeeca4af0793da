"""Operational scripts for the review vectorizer.

Scripts include:
- ``init_db.py``: create the pgvector extension and the embeddings table.
- ``trigger_vectorize.py``: publish a vectorize request for the worker.
"""
