"""Run request and result types for the vectorize worker.

``parse_vectorize_request`` is the only place that looks at raw trigger
payloads. It accepts whatever the transport delivers and always returns a
fully typed ``VectorizeRequest``; unrecognized shapes and fields fall back to
defaults.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

import structlog

from libs.vector_store.models import CleanReviewFilters

logger = structlog.get_logger("vectorize_request")

FORCE_KEYWORDS = frozenset({"force", "recompute"})

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class VectorizeRequest:
    """Parameters of a single vectorization run.

    ``limit`` of 0 means "page through everything using the configured page
    size"; a positive limit bounds the run to one page of that size.
    """
    force_recompute: bool = False
    limit: int = 0
    app_id: Optional[str] = None
    countries: Tuple[str, ...] = ()
    languages: Tuple[str, ...] = ()
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def to_filters(self, vectorized_before: Optional[datetime] = None) -> CleanReviewFilters:
        """Translate into store filters pinned to a run start time."""
        return CleanReviewFilters(
            force_recompute=self.force_recompute,
            app_id=self.app_id,
            countries=list(self.countries),
            languages=list(self.languages),
            date_from=self.date_from,
            date_to=self.date_to,
            vectorized_before=vectorized_before,
        )

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "force_recompute": self.force_recompute,
            "limit": self.limit,
            "app_id": self.app_id,
            "countries": list(self.countries),
            "languages": list(self.languages),
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
        }


@dataclass(frozen=True)
class RunResult:
    """Outcome counters of a run.

    Results combine with ``+``; ``review_ids`` keeps the order in which
    reviews were stored.
    """
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    review_ids: Tuple[str, ...] = field(default_factory=tuple)

    def __add__(self, other: "RunResult") -> "RunResult":
        if not isinstance(other, RunResult):
            return NotImplemented
        return RunResult(
            processed=self.processed + other.processed,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
            review_ids=self.review_ids + other.review_ids,
        )

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "review_ids": list(self.review_ids),
        }


class VectorizeRunError(Exception):
    """A run stopped early; ``result`` holds what was accumulated so far."""

    def __init__(self, message: str, result: RunResult):
        super().__init__(message)
        self.result = result


class ReviewFetchError(VectorizeRunError):
    """A page of reviews could not be read from the store."""
    pass


class RunCancelledError(VectorizeRunError):
    """The run was cancelled between pages."""
    pass


def _parse_datetime(value: Any, field_name: str, end_of_day: bool = False) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        if _DATE_ONLY_RE.match(text):
            day = date.fromisoformat(text)
            parsed = datetime.combine(day, time.max if end_of_day else time.min)
        else:
            if text.endswith(("Z", "z")):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Ignoring unparsable date filter", field=field_name, value=value)
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_limit(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return max(int(value), 0)


def _parse_string_list(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(item for item in value if isinstance(item, str) and item)


def parse_vectorize_request(payload: Any) -> VectorizeRequest:
    """Decode a trigger payload into a ``VectorizeRequest``.

    Accepted shapes
    - mapping with any of ``force_recompute``, ``limit``, ``batch_size``
      (overrides ``limit``), ``app_id``, ``countries``, ``languages``,
      ``date_from``, ``date_to``; an event envelope carrying the mapping
      under ``payload`` is unwrapped first
    - the strings ``"force"`` or ``"recompute"``
    - anything else decodes to the default request
    """
    if isinstance(payload, Mapping) and isinstance(payload.get("payload"), (Mapping, str)):
        payload = payload["payload"]

    if isinstance(payload, str):
        if payload.strip().lower() in FORCE_KEYWORDS:
            return VectorizeRequest(force_recompute=True)
        logger.info("Unrecognized string payload, using defaults", payload=payload)
        return VectorizeRequest()

    if not isinstance(payload, Mapping):
        if payload is not None:
            logger.info("Unrecognized payload type, using defaults", payload_type=type(payload).__name__)
        return VectorizeRequest()

    force_recompute = payload.get("force_recompute")
    limit = 0
    for key in ("limit", "batch_size"):
        parsed = _parse_limit(payload.get(key))
        if parsed is not None:
            limit = parsed

    app_id = payload.get("app_id")

    return VectorizeRequest(
        force_recompute=force_recompute if isinstance(force_recompute, bool) else False,
        limit=limit,
        app_id=app_id if isinstance(app_id, str) and app_id else None,
        countries=_parse_string_list(payload.get("countries")),
        languages=_parse_string_list(payload.get("languages")),
        date_from=_parse_datetime(payload.get("date_from"), "date_from"),
        date_to=_parse_datetime(payload.get("date_to"), "date_to", end_of_day=True),
    )
