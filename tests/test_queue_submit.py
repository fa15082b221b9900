import pytest

from badge_printer.core.errors import CapacityExceeded, DuplicateUidError, ValidationError
from badge_printer.core.models import JobStatus


def test_submit_creates_queued_job(queue, store, printer):
    job_id = queue.submit("default", "ATT-001", "Ada Lovelace")

    job = queue.get_job(job_id)
    assert job is not None
    assert job.status == JobStatus.QUEUED
    assert job.retry_count == 0
    assert job.error_message is None
    assert job.processed_at is None
    assert job.preset == "default"
    # Persisted, and the printer was not touched
    assert store.get(job_id).uid == "ATT-001"
    assert printer.calls == 0


def test_submit_trims_and_resolves_template_preset(queue):
    job_id = queue.submit("  mini ", "  uid_1 ", "  Grace Hopper  ")
    job = queue.get_job(job_id)
    assert job.template_id == "mini"
    assert job.uid == "uid_1"
    assert job.badge_name == "Grace Hopper"
    assert job.preset == "fast"

    explicit = queue.get_job(queue.submit("mini", "uid_2", "Someone", preset="high-quality"))
    assert explicit.preset == "high-quality"


@pytest.mark.parametrize(
    "template_id,uid,badge_name,field",
    [
        ("", "u1", "Name", "template_id"),
        ("nope", "u1", "Name", "template_id"),
        ("default", "", "Name", "uid"),
        ("default", "has space", "Name", "uid"),
        ("default", "x" * 51, "Name", "uid"),
        ("default", "u1", "   ", "badge_name"),
        ("default", "u1", "n" * 101, "badge_name"),
        ("default", "u1", "bad\x00name", "badge_name"),
        ("default", None, "Name", "uid"),
    ],
)
def test_submit_rejects_invalid_fields(queue, template_id, uid, badge_name, field):
    with pytest.raises(ValidationError) as ei:
        queue.submit(template_id, uid, badge_name)
    assert ei.value.field == field
    assert queue.status()["stats"]["total"] == 0


def test_submit_rejects_unknown_preset(queue):
    with pytest.raises(ValidationError) as ei:
        queue.submit("default", "u1", "Name", preset="glossy")
    assert ei.value.field == "preset"


def test_submit_boundary_lengths_accepted(queue):
    queue.submit("default", "u" * 50, "n" * 100)
    assert queue.status()["stats"]["queued"] == 1


def test_duplicate_uid_rejected_while_active(queue):
    queue.submit("default", "dup", "First")
    with pytest.raises(DuplicateUidError) as ei:
        queue.submit("default", "dup", "Second")
    assert ei.value.http_status == 409
    assert queue.status()["stats"]["queued"] == 1


def test_uid_reusable_after_completion(queue):
    queue.submit("default", "again", "First")
    queue.run_once()
    second = queue.submit("default", "again", "Second")
    assert queue.get_job(second).status == JobStatus.QUEUED


def test_capacity_exceeded(queue, settings):
    for i in range(settings.max_queue_size):
        queue.submit("default", f"u{i}", "Name")
    with pytest.raises(CapacityExceeded):
        queue.submit("default", "overflow", "Name")
    assert queue.capacity() == {
        "current": settings.max_queue_size,
        "maximum": settings.max_queue_size,
        "available": 0,
        "percent_full": 100,
    }


def test_capacity_checked_before_uid_conflict(queue, settings):
    for i in range(settings.max_queue_size):
        queue.submit("default", f"u{i}", "Name")
    with pytest.raises(CapacityExceeded):
        queue.submit("default", "u0", "Name")


def test_capacity_frees_up_after_print(queue, settings):
    for i in range(settings.max_queue_size):
        queue.submit("default", f"u{i}", "Name")
    queue.run_once()
    queue.submit("default", "late", "Name")
    assert queue.capacity()["current"] == settings.max_queue_size


def test_submit_publishes_event(queue, publisher):
    sub = publisher.subscribe()
    job_id = queue.submit("default", "u1", "Name")
    events = sub.drain()
    assert [(e.job_id, e.status) for e in events] == [(job_id, "queued")]
    assert events[0].snapshot["stats"]["queued"] == 1
    assert events[0].job["uid"] == "u1"


def test_cancel_frees_capacity(queue, settings):
    ids = [queue.submit("default", f"u{i}", "Name") for i in range(settings.max_queue_size)]
    with pytest.raises(CapacityExceeded):
        queue.submit("default", "extra", "Name")
    queue.cancel(ids[0])
    queue.submit("default", "extra", "Name")
    assert ids[0] not in [j["id"] for j in queue.status()["queued_jobs"]]
    assert queue.history()["pagination"]["total"] == 0
