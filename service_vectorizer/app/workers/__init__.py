"""Vectorization run logic.

- ``requests``: ``VectorizeRequest``/``RunResult`` and the trigger payload decoder.
- ``batching``: sub-batch splitting and ``ReviewVector`` assembly.
- ``vectorize_worker``: the paged run loop.
"""
