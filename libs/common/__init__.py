"""Common utilities shared by the vectorizer service and scripts.

Includes:
- ``config``: pydantic-settings configuration read from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``events``: Redis pub/sub event models, publisher, and subscriber.

Import pattern:
- from libs.common.config import VectorizerConfig
- from libs.common.logging import configure_logging
"""
