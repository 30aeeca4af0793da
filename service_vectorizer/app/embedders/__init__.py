"""Embedding providers.

- ``base``: the ``Embedder`` interface, ``preprocess_text`` and embedding errors.
- ``openai_embedder``: HTTP client and embedder for OpenAI-style endpoints.
- ``fallback``: ``StubEmbedder`` used when no provider is configured.
- ``factory``: ``create_embedder`` picks one of the above at startup.
"""
