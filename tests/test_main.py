"""Tests for the service request loop."""

import asyncio

import pytest

from service_vectorizer.app import main as service_main
from service_vectorizer.app.main import VectorizerService
from service_vectorizer.app.workers.vectorize_worker import VectorizeWorker
from tests.fakes import InMemoryReviewRepository, RecordingPublisher, make_reviews


@pytest.fixture(autouse=True)
def fast_queue_poll(monkeypatch):
    monkeypatch.setattr(service_main, "QUEUE_POLL_SECONDS", 0.01)


class SlowWorker:
    """Tracks how many requests are handled at once."""

    def __init__(self, fail_saga_ids=()):
        self.fail_saga_ids = set(fail_saga_ids)
        self.active = 0
        self.max_active = 0
        self.handled = []

    async def handle_event(self, event, saga_id=None, cancel_event=None):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
            if saga_id in self.fail_saga_ids:
                raise RuntimeError("unexpected repository failure")
            self.handled.append(saga_id)
        finally:
            self.active -= 1


class IdleSubscriber:
    """Listener that does nothing until the service stops."""

    async def start_listening(self, stop_event=None):
        await stop_event.wait()


def make_service(config, worker):
    service = VectorizerService(config)
    service.worker = worker
    service.event_subscriber = IdleSubscriber()
    service.requests = asyncio.Queue()
    return service


async def wait_until(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout)


@pytest.mark.asyncio
async def test_requests_run_one_at_a_time(config):
    worker = SlowWorker()
    service = make_service(config, worker)
    for saga_id in ("s1", "s2", "s3"):
        service._enqueue_request({"saga_id": saga_id, "payload": {}})

    stop_event = asyncio.Event()
    consumer = asyncio.create_task(service._consume_requests(stop_event))
    await wait_until(lambda: len(worker.handled) == 3)
    stop_event.set()
    await asyncio.wait_for(consumer, timeout=2.0)

    assert worker.handled == ["s1", "s2", "s3"]
    assert worker.max_active == 1


@pytest.mark.asyncio
async def test_failing_request_does_not_stop_later_ones(config):
    worker = SlowWorker(fail_saga_ids={"broken"})
    service = make_service(config, worker)
    service._enqueue_request({"saga_id": "broken", "payload": {}})
    service._enqueue_request({"saga_id": "next", "payload": {}})

    stop_event = asyncio.Event()
    consumer = asyncio.create_task(service._consume_requests(stop_event))
    await wait_until(lambda: worker.handled == ["next"])

    assert not consumer.done()
    stop_event.set()
    await asyncio.wait_for(consumer, timeout=2.0)


@pytest.mark.asyncio
async def test_unexpected_store_error_keeps_service_running(config, metrics, clock, embedder):
    """A non-store exception during one run still lets the next run store vectors."""
    repository = InMemoryReviewRepository(make_reviews(3), vector_dimension=8)

    def fail_first_fetch(call_number):
        if call_number == 1:
            raise RuntimeError("driver bug")

    repository.after_fetch = fail_first_fetch
    worker = VectorizeWorker(config, repository, embedder, metrics_collector=metrics, clock=clock)
    service = make_service(config, worker)
    service._enqueue_request({"saga_id": "bad", "payload": {"limit": 5}})
    service._enqueue_request({"payload": {"limit": 2}})

    stop_event = asyncio.Event()
    runner = asyncio.create_task(service.run(stop_event))
    await wait_until(lambda: len(repository.vectors) == 2)

    assert not runner.done()
    stop_event.set()
    await asyncio.wait_for(runner, timeout=2.0)
    assert sorted(repository.vectors) == ["review-0000", "review-0001"]


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_run_at_page_boundary(config, metrics, clock, embedder):
    repository = InMemoryReviewRepository(make_reviews(12), vector_dimension=8)
    stop_event = asyncio.Event()

    def stop_after_first_fetch(call_number):
        if call_number == 1:
            stop_event.set()

    repository.after_fetch = stop_after_first_fetch
    publisher = RecordingPublisher()
    worker = VectorizeWorker(
        config,
        repository,
        embedder,
        event_publisher=publisher,
        metrics_collector=metrics,
        clock=clock,
    )
    service = make_service(config, worker)
    service._enqueue_request({"saga_id": "s1", "payload": {}})

    await asyncio.wait_for(service.run(stop_event), timeout=2.0)

    assert repository.fetch_calls == [(4, 0)]
    assert len(repository.vectors) == 4
    assert publisher.completed == []
    assert service.requests.empty()
