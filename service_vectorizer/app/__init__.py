"""Review vectorizer service package.

Layout:
- ``embedders``: text preprocessing plus the OpenAI and fallback embedders.
- ``pipelines``: retry/backoff helpers shared by provider calls.
- ``workers``: request decoding, batching and the ``VectorizeWorker`` run loop.
- ``runtime``: service-local metrics helpers.
- ``main``: Redis-driven service entry point.
"""
