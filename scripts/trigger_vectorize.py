#!/usr/bin/env python3
"""Publish a vectorize request for the running vectorizer service."""

import argparse
import sys
from typing import Any, Dict, List, Optional

import redis
import structlog

from libs.common.config import BaseConfig
from libs.common.events import EventPublisher
from libs.common.logging import configure_logging

logger = structlog.get_logger("trigger_vectorize")


def build_payload(
    force_recompute: bool = False,
    limit: int = 0,
    app_id: Optional[str] = None,
    countries: Optional[List[str]] = None,
    languages: Optional[List[str]] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None
) -> Dict[str, Any]:
    """Build a request payload, leaving out filters that were not given."""
    payload: Dict[str, Any] = {"force_recompute": force_recompute}
    if limit > 0:
        payload["limit"] = limit
    if app_id:
        payload["app_id"] = app_id
    if countries:
        payload["countries"] = countries
    if languages:
        payload["languages"] = languages
    if date_from:
        payload["date_from"] = date_from
    if date_to:
        payload["date_to"] = date_to
    return payload


def trigger_vectorize(payload: Dict[str, Any], config: Optional[BaseConfig] = None) -> Optional[str]:
    """Publish the request; returns the saga id or ``None`` on failure."""
    config = config or BaseConfig()
    publisher = EventPublisher(config.redis_url, channel_prefix=config.events_channel_prefix)
    try:
        saga_id = publisher.publish_vectorize_request(payload)
        logger.info("Vectorize request published", saga_id=saga_id, **payload)
        return saga_id
    except redis.RedisError as e:
        logger.error("Failed to publish vectorize request", error=str(e))
        return None
    finally:
        publisher.close()


def main():
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Trigger a review vectorization run")
    parser.add_argument("--force", action="store_true", help="Recompute reviews that already have vectors")
    parser.add_argument("--limit", type=int, default=0, help="Vectorize at most this many reviews")
    parser.add_argument("--app-id", help="Only reviews of this app")
    parser.add_argument("--country", action="append", dest="countries", help="Country filter (repeatable)")
    parser.add_argument("--language", action="append", dest="languages", help="Language filter (repeatable)")
    parser.add_argument("--date-from", help="Earliest review date (ISO 8601)")
    parser.add_argument("--date-to", help="Latest review date (ISO 8601)")

    args = parser.parse_args()

    config = BaseConfig()
    configure_logging("trigger_vectorize", config.log_level, config.log_format)

    payload = build_payload(
        force_recompute=args.force,
        limit=args.limit,
        app_id=args.app_id,
        countries=args.countries,
        languages=args.languages,
        date_from=args.date_from,
        date_to=args.date_to,
    )

    saga_id = trigger_vectorize(payload, config)
    if saga_id:
        print(f"Vectorize request published (saga_id={saga_id})")
        sys.exit(0)
    print("Failed to publish vectorize request")
    sys.exit(1)


if __name__ == "__main__":
    main()
