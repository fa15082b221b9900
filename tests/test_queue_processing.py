import random
import threading

import pytest

from badge_printer.core.config import QueueSettings
from badge_printer.core.errors import RenderError
from badge_printer.core.logging import current_job_id
from badge_printer.core.models import JobStatus
from badge_printer.printing.worker import backoff_delay


def test_run_once_returns_none_when_empty(queue):
    assert queue.run_once() is None


def test_happy_path_completes(queue, printer, publisher):
    sub = publisher.subscribe()
    job_id = queue.submit("mini", "u1", "Ada")

    job = queue.run_once()

    assert job.id == job_id
    assert job.status == JobStatus.COMPLETED
    assert job.processed_at is not None
    assert job.attempts == 1
    assert printer.printed == ["fast"]
    assert [e.status for e in sub.drain()] == ["queued", "processing", "completed"]
    stats = queue.status()["stats"]
    assert stats == {"queued": 0, "processing": 0, "completed": 1, "failed": 0, "total": 1}


def test_fifo_order(queue, clock, printer):
    ids = []
    for i in range(3):
        ids.append(queue.submit("mini", f"u{i}", f"Name {i}"))
        clock.advance(1)

    assert [j["id"] for j in queue.status()["queued_jobs"]] == ids
    done = [queue.run_once().id for _ in range(3)]
    assert done == ids


def test_fifo_order_with_identical_timestamps(queue):
    ids = [queue.submit("mini", f"u{i}", "Name") for i in range(4)]
    assert [queue.run_once().id for _ in range(4)] == ids


def test_retry_then_success(queue, printer, clock):
    printer.failures = 2
    job_id = queue.submit("mini", "u1", "Ada")

    first = queue.run_once()
    assert first.status == JobStatus.QUEUED
    assert first.retry_count == 1
    assert first.error_message == "paper jam"

    # Not eligible until the backoff elapses
    assert queue.run_once() is None
    clock.advance(1.0)
    second = queue.run_once()
    assert second.retry_count == 2

    clock.advance(2.0)
    third = queue.run_once()
    assert third.id == job_id
    assert third.status == JobStatus.COMPLETED
    assert third.retry_count == 2
    assert third.error_message is None
    assert printer.calls == 3


def test_retry_limit_leads_to_failed(queue, printer, clock, settings):
    printer.failures = 10
    job_id = queue.submit("mini", "u1", "Ada")

    for _ in range(settings.max_retries + 1):
        clock.advance(settings.retry_max_seconds)
        job = queue.run_once()

    assert job.id == job_id
    assert job.status == JobStatus.FAILED
    assert job.retry_count == settings.max_retries
    assert job.processed_at is not None
    assert job.error_message == "paper jam"
    assert printer.calls == settings.max_retries + 1
    assert queue.run_once() is None


def test_backed_off_job_does_not_block_others(queue, printer, clock):
    printer.failures = 1
    a = queue.submit("mini", "a", "A")
    clock.advance(0.1)
    b = queue.submit("mini", "b", "B")

    assert queue.run_once().id == a  # fails, backs off for 1s
    assert queue.run_once().id == b
    assert queue.run_once() is None
    clock.advance(1.0)
    assert queue.run_once().id == a


def test_render_is_cached_across_retries(queue, printer, renderer, clock):
    printer.failures = 1
    queue.submit("mini", "u1", "Ada")
    queue.run_once()
    clock.advance(5)
    queue.run_once()
    assert renderer.renders == 1
    assert printer.calls == 2


def test_render_error_counts_as_failure(queue, renderer, clock, monkeypatch, settings):
    def _boom(template_id, uid, badge_name):
        raise RenderError("font missing")

    monkeypatch.setattr(renderer, "render", _boom)
    queue.submit("mini", "u1", "Ada")
    for _ in range(settings.max_retries + 1):
        clock.advance(settings.retry_max_seconds)
        job = queue.run_once()
    assert job.status == JobStatus.FAILED
    assert job.error_message == "font missing"


def test_unexpected_printer_exception_is_contained(queue, printer, monkeypatch):
    def _explode(document, preset_name="default"):
        raise OSError("usb gone")

    monkeypatch.setattr(printer, "print_document", _explode)
    queue.submit("mini", "u1", "Ada")
    job = queue.run_once()
    assert job.status == JobStatus.QUEUED
    assert "usb gone" in job.error_message


def test_publisher_failure_does_not_break_queue(make_queue):
    class BrokenPublisher:
        def publish(self, *args, **kwargs):
            raise RuntimeError("subscriber exploded")

    q = make_queue(publisher=BrokenPublisher())
    q.submit("mini", "u1", "Ada")
    assert q.run_once().status == JobStatus.COMPLETED


def test_events_follow_transition_order(queue, printer, publisher, clock):
    sub = publisher.subscribe()
    printer.failures = 1
    job_id = queue.submit("mini", "u1", "Ada")
    queue.run_once()
    clock.advance(2)
    queue.run_once()

    events = sub.drain()
    assert [e.status for e in events] == ["queued", "processing", "queued", "processing", "completed"]
    assert all(e.job_id == job_id for e in events)
    assert [e.seq for e in events] == sorted(e.seq for e in events)


def test_backoff_delay_grows_and_caps():
    settings = QueueSettings(retry_base_seconds=1.0, retry_max_seconds=5.0, retry_jitter=0.0)
    rng = random.Random(1)
    assert [backoff_delay(n, settings, rng) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_backoff_delay_jitter_stays_in_range():
    settings = QueueSettings(retry_base_seconds=4.0, retry_max_seconds=60.0, retry_jitter=0.5)
    rng = random.Random(3)
    for _ in range(50):
        d = backoff_delay(0, settings, rng)
        assert 2.0 <= d <= 4.0


def test_restart_recovers_active_jobs(make_queue, store, clock):
    q1 = make_queue()
    a = q1.submit("mini", "a", "A")
    b = q1.submit("mini", "b", "B")
    # Simulate a crash mid-print: mark `a` processing directly in the store
    job = store.get(a)
    job.status = JobStatus.PROCESSING
    job.retry_count = 1
    store.put(job)

    q2 = make_queue()
    recovered = q2.get_job(a)
    assert recovered.status == JobStatus.QUEUED
    assert recovered.error_message == "Interrupted by restart"
    assert recovered.retry_count == 1
    assert q2.status()["stats"]["queued"] == 2
    # New submissions keep sorting after recovered ones
    c = q2.submit("mini", "c", "C")
    assert [q2.run_once().id for _ in range(3)] == [a, b, c]


def test_counters_seeded_from_store(make_queue):
    q1 = make_queue()
    q1.submit("mini", "a", "A")
    q1.run_once()

    q2 = make_queue()
    assert q2.status()["stats"]["completed"] == 1


@pytest.mark.parametrize("failures,expected", [(0, JobStatus.COMPLETED), (1, JobStatus.QUEUED)])
def test_run_once_outcomes(queue, printer, failures, expected):
    printer.failures = failures
    queue.submit("mini", "u1", "Ada")
    assert queue.run_once().status == expected


def test_concurrent_run_once_prints_one_job_at_a_time(queue, printer):
    printer.block = True
    first = queue.submit("mini", "a", "A")
    second = queue.submit("mini", "b", "B")

    threads = [threading.Thread(target=queue.run_once, daemon=True) for _ in range(2)]
    for t in threads:
        t.start()
    assert printer.in_print.wait(2)
    try:
        # One caller is printing, the other waits for the cycle instead of starting a print
        threads[1].join(0.2)
        assert all(t.is_alive() for t in threads)
        assert printer.calls == 1
        stats = queue.status()["stats"]
        assert stats["processing"] == 1
        assert stats["queued"] == 1
        assert queue.status()["current_job"]["id"] == first
    finally:
        printer.release.set()
        for t in threads:
            t.join(2)

    assert printer.calls == 2
    assert queue.get_job(first).status == JobStatus.COMPLETED
    assert queue.get_job(second).status == JobStatus.COMPLETED


def test_render_and_print_run_inside_job_log_context(queue, renderer, monkeypatch):
    seen = []
    original = renderer.render

    def render(template_id, uid, badge_name):
        seen.append(current_job_id())
        return original(template_id, uid, badge_name)

    monkeypatch.setattr(renderer, "render", render)
    job_id = queue.submit("mini", "a", "A")
    queue.run_once()
    assert seen == [job_id]
    assert current_job_id() is None
