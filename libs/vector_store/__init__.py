"""Review vector storage.

Primary components:
- ``models``: source review, stored vector and fetch filter types.
- ``base``: abstract ``ReviewVectorRepository`` interface and common exceptions.
- ``pgvector``: PostgreSQL/pgvector implementation of the interface.
- ``factory``: helpers to construct a repository from typed config or env.

Guidance:
- Prefer constructing via ``factory.create_review_repository`` so runtime
  code stays decoupled from the concrete backend.
"""
