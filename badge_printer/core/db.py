"""
SQLite persistence for Badge Printer jobs.

Features:
- DB path resolution with env/XDG defaults (see core.config.get_db_path)
- PRAGMAs for reliability: WAL, synchronous=NORMAL
- Schema bootstrap with a schema_version table
- A JobStore holding every job ever submitted, keyed by job id

The store does no state-machine checks of its own; all writes come from the
print queue's critical section. Reads may arrive from web threads at any time,
so the single connection is guarded by a lock.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from badge_printer.core.config import get_db_path
from badge_printer.core.models import Job, JobStatus

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_COLUMNS = (
    "id",
    "template_id",
    "uid",
    "badge_name",
    "preset",
    "seq",
    "status",
    "retry_count",
    "attempts",
    "error_message",
    "eligible_at",
    "created_at",
    "updated_at",
    "started_at",
    "processed_at",
    "last_intervention_at",
    "intervention_reason",
)

_ACTIVE = (JobStatus.QUEUED.value, JobStatus.PROCESSING.value)
_TERMINAL = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


# ----- Connection management -------------------------------------------------


def _apply_pragmas(db: sqlite3.Connection) -> None:
    try:
        db.execute("PRAGMA journal_mode = WAL")
    except sqlite3.DatabaseError:
        # In-memory databases refuse WAL; the default journal is fine there.
        pass
    db.execute("PRAGMA synchronous = NORMAL")


def _connect(path: str) -> sqlite3.Connection:
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    _apply_pragmas(conn)
    return conn


def _ensure_schema(db: sqlite3.Connection) -> None:
    """
    Create tables if not present and ensure schema_version is initialized.
    """
    with db:
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
              version INTEGER NOT NULL
            )
            """,
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS badge_jobs (
              id                    TEXT PRIMARY KEY,
              template_id           TEXT NOT NULL,
              uid                   TEXT NOT NULL,
              badge_name            TEXT NOT NULL,
              preset                TEXT NOT NULL DEFAULT 'default',
              seq                   INTEGER NOT NULL,
              status                TEXT NOT NULL DEFAULT 'queued',
              retry_count           INTEGER NOT NULL DEFAULT 0,
              attempts              INTEGER NOT NULL DEFAULT 0,
              error_message         TEXT,
              eligible_at           REAL NOT NULL DEFAULT 0,
              created_at            TEXT NOT NULL,
              updated_at            TEXT NOT NULL,
              started_at            TEXT,
              processed_at          TEXT,
              last_intervention_at  TEXT,
              intervention_reason   TEXT
            )
            """,
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_badge_jobs_status ON badge_jobs(status)")
        db.execute("CREATE INDEX IF NOT EXISTS idx_badge_jobs_uid ON badge_jobs(uid)")
        db.execute("CREATE INDEX IF NOT EXISTS idx_badge_jobs_processed ON badge_jobs(processed_at)")

        row = db.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1").fetchone()
        if row is None:
            db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        elif int(row["version"]) > SCHEMA_VERSION:
            raise RuntimeError(
                f"Job database schema v{row['version']} is newer than supported v{SCHEMA_VERSION}",
            )


# ----- Row mapping -----------------------------------------------------------


def _job_to_row(job: Job) -> Tuple[Any, ...]:
    data = job.to_dict()
    return tuple(data[c] for c in _COLUMNS)


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job.from_dict({c: row[c] for c in _COLUMNS})


# ----- Store -----------------------------------------------------------------


class JobStore:
    """
    Durable record of every job, keyed by job id.

    Terminal jobs live here permanently; the print queue keeps only active
    jobs in memory and writes every transition through put().
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path or get_db_path()
        self._lock = threading.RLock()
        self._conn = _connect(self.path)
        _ensure_schema(self._conn)
        logger.info("Job store opened at %s", self.path)

    def put(self, job: Job) -> None:
        """Insert or replace a job record."""
        placeholders = ",".join("?" for _ in _COLUMNS)
        sql = f"INSERT OR REPLACE INTO badge_jobs ({','.join(_COLUMNS)}) VALUES ({placeholders})"
        with self._lock, self._conn:
            self._conn.execute(sql, _job_to_row(job))

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM badge_jobs WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    def delete(self, job_id: str) -> bool:
        """Hard-remove a job. Returns True if a row was deleted."""
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM badge_jobs WHERE id = ?", (job_id,))
            return cur.rowcount > 0

    def list_by_status(self, status: JobStatus | str) -> List[Job]:
        """Jobs in one status, in submission order."""
        value = JobStatus(status).value
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM badge_jobs WHERE status = ? ORDER BY seq ASC",
                (value,),
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def list_active(self) -> List[Job]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM badge_jobs WHERE status IN (?, ?) ORDER BY seq ASC",
                _ACTIVE,
            ).fetchall()
        return [_row_to_job(r) for r in rows]

    def count_by_status(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in JobStatus}
        with self._lock:
            rows = self._conn.execute("SELECT status, COUNT(*) AS n FROM badge_jobs GROUP BY status").fetchall()
        for r in rows:
            counts[r["status"]] = int(r["n"])
        return counts

    def list_history(
        self,
        status: Optional[JobStatus | str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Job], int]:
        """
        Return a page of terminal jobs ordered by processed_at descending,
        along with the total number of matching jobs.
        """
        if status is not None:
            value = JobStatus(status).value
            if value not in _TERMINAL:
                raise ValueError(f"History only holds terminal jobs, not {value!r}")
            where, params = "status = ?", [value]
        else:
            where, params = "status IN (?, ?)", list(_TERMINAL)

        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM badge_jobs WHERE {where} "
                "ORDER BY processed_at DESC, created_at DESC LIMIT ? OFFSET ?",
                (*params, int(limit), int(offset)),
            ).fetchall()
            total = self._conn.execute(f"SELECT COUNT(*) AS n FROM badge_jobs WHERE {where}", params).fetchone()["n"]
        return [_row_to_job(r) for r in rows], int(total)

    def max_seq(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT MAX(seq) AS m FROM badge_jobs").fetchone()
        return int(row["m"] or 0)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


__all__ = ["SCHEMA_VERSION", "JobStore"]
