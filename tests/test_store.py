from datetime import datetime, timedelta, timezone

import pytest

from badge_printer.core.db import SCHEMA_VERSION, JobStore
from badge_printer.core.models import Job, JobStatus


def _job(i: int, status: JobStatus = JobStatus.QUEUED, processed_offset: int = None) -> Job:
    base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    job = Job(
        id=f"job{i}",
        template_id="default",
        uid=f"u{i}",
        badge_name=f"Name {i}",
        seq=i,
        status=status,
        created_at=base + timedelta(seconds=i),
        updated_at=base + timedelta(seconds=i),
    )
    if processed_offset is not None:
        job.processed_at = base + timedelta(minutes=processed_offset)
    return job


def test_put_get_roundtrip_preserves_fields(tmp_path):
    store = JobStore(str(tmp_path / "data" / "jobs.db"))
    job = _job(1)
    job.error_message = "paper jam"
    job.retry_count = 2
    job.eligible_at = 123.5
    store.put(job)

    loaded = store.get("job1")
    assert loaded == job
    assert loaded.created_at.tzinfo is not None
    store.close()


def test_store_survives_reopen(tmp_path):
    path = str(tmp_path / "jobs.db")
    s1 = JobStore(path)
    s1.put(_job(1))
    s1.close()

    s2 = JobStore(path)
    assert s2.get("job1").uid == "u1"
    assert s2.max_seq() == 1
    s2.close()


def test_schema_version_recorded(store):
    row = store._conn.execute("SELECT version FROM schema_version").fetchone()
    assert row["version"] == SCHEMA_VERSION


def test_delete(store):
    store.put(_job(1))
    assert store.delete("job1") is True
    assert store.delete("job1") is False
    assert store.get("job1") is None


def test_list_active_and_counts(store):
    store.put(_job(2, JobStatus.PROCESSING))
    store.put(_job(1, JobStatus.QUEUED))
    store.put(_job(3, JobStatus.COMPLETED, processed_offset=1))
    store.put(_job(4, JobStatus.FAILED, processed_offset=2))

    assert [j.id for j in store.list_active()] == ["job1", "job2"]
    assert [j.id for j in store.list_by_status("completed")] == ["job3"]
    assert store.count_by_status() == {"queued": 1, "processing": 1, "completed": 1, "failed": 1}


def test_list_history_order_and_paging(store):
    for i in range(1, 6):
        store.put(_job(i, JobStatus.COMPLETED, processed_offset=i))
    store.put(_job(6, JobStatus.QUEUED))

    jobs, total = store.list_history(limit=2, offset=1)
    assert total == 5
    assert [j.id for j in jobs] == ["job4", "job3"]


def test_list_history_rejects_active_status(store):
    with pytest.raises(ValueError):
        store.list_history(status="queued")


def test_max_seq_empty(store):
    assert store.max_seq() == 0
