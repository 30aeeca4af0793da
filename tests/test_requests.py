"""Tests for vectorize request decoding and run results."""

import json
from datetime import datetime, timezone

import pytest

from service_vectorizer.app.workers.requests import (
    RunCancelledError,
    RunResult,
    VectorizeRequest,
    VectorizeRunError,
    parse_vectorize_request,
)


def test_defaults_for_unknown_shapes():
    """Payloads that are not mappings or keywords decode to defaults."""
    for payload in (None, 42, ["force"], b"force", "please run"):
        assert parse_vectorize_request(payload) == VectorizeRequest()


@pytest.mark.parametrize("raw", [
    '{"limit": Infinity}',
    '{"limit": -Infinity}',
    '{"batch_size": NaN}',
    '{"payload": {"limit": Infinity}}',
])
def test_non_finite_limits_fall_back_to_default(raw):
    """JSON decoders accept non-finite numbers; they are ignored like other bad values."""
    assert parse_vectorize_request(json.loads(raw)) == VectorizeRequest()


@pytest.mark.parametrize("keyword", ["force", "recompute", " Force "])
def test_force_keywords(keyword):
    """Keyword strings request a forced recompute."""
    assert parse_vectorize_request(keyword) == VectorizeRequest(force_recompute=True)


def test_full_mapping_payload():
    """All recognized fields are decoded."""
    request = parse_vectorize_request({
        "force_recompute": True,
        "limit": 50,
        "app_id": "com.example.app",
        "countries": ["us", "gb"],
        "languages": ["en"],
        "date_from": "2024-01-01",
        "date_to": "2024-01-31",
    })

    assert request.force_recompute is True
    assert request.limit == 50
    assert request.app_id == "com.example.app"
    assert request.countries == ("us", "gb")
    assert request.languages == ("en",)
    assert request.date_from == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert request.date_to.date().isoformat() == "2024-01-31"
    assert request.date_to.hour == 23


def test_batch_size_overrides_limit():
    """``batch_size`` wins when both size fields are given."""
    assert parse_vectorize_request({"limit": 10, "batch_size": 25.0}).limit == 25
    assert parse_vectorize_request({"batch_size": 5}).limit == 5


def test_invalid_field_types_are_ignored():
    """Fields of the wrong type fall back to their defaults."""
    request = parse_vectorize_request({
        "force_recompute": "yes",
        "limit": True,
        "app_id": 12,
        "countries": "us",
        "languages": ["en", 3, ""],
        "date_from": "last tuesday",
    })

    assert request.force_recompute is False
    assert request.limit == 0
    assert request.app_id is None
    assert request.countries == ()
    assert request.languages == ("en",)
    assert request.date_from is None


def test_negative_limit_means_no_limit():
    assert parse_vectorize_request({"limit": -3}).limit == 0


def test_datetime_strings_keep_time_and_zone():
    """Full timestamps are kept; ``Z`` and naive values are UTC."""
    request = parse_vectorize_request({
        "date_from": "2024-03-01T08:30:00Z",
        "date_to": "2024-03-02T10:00:00",
    })
    assert request.date_from == datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)
    assert request.date_to == datetime(2024, 3, 2, 10, 0, tzinfo=timezone.utc)


def test_event_envelope_is_unwrapped():
    """The request inside a published event envelope is decoded."""
    envelope = {
        "timestamp": 1,
        "event_type": "reviews.vectorize.request.v1",
        "saga_id": "abc",
        "payload": {"force_recompute": True, "limit": 3},
    }
    assert parse_vectorize_request(envelope) == VectorizeRequest(force_recompute=True, limit=3)
    envelope["payload"] = "recompute"
    assert parse_vectorize_request(envelope).force_recompute is True


def test_request_is_immutable():
    request = VectorizeRequest()
    with pytest.raises(AttributeError):
        request.limit = 5


def test_request_to_filters():
    """Store filters carry the request filters and the snapshot time."""
    started = datetime(2024, 5, 1, tzinfo=timezone.utc)
    filters = VectorizeRequest(app_id="a", countries=("us",)).to_filters(vectorized_before=started)
    assert filters.app_id == "a"
    assert filters.countries == ["us"]
    assert filters.force_recompute is False
    assert filters.vectorized_before == started


def test_run_results_add_up():
    """Results combine field by field and keep id order."""
    total = RunResult(processed=2, review_ids=("a", "b")) + RunResult(skipped=1, failed=3, review_ids=("c",))
    assert total == RunResult(processed=2, skipped=1, failed=3, review_ids=("a", "b", "c"))
    assert total.total == 6
    assert total.to_dict()["review_ids"] == ["a", "b", "c"]


def test_run_errors_carry_partial_result():
    partial = RunResult(processed=4)
    error = RunCancelledError("cancelled", partial)
    assert isinstance(error, VectorizeRunError)
    assert error.result is partial
