"""
Background worker, job state, and print orchestration for Badge Printer.

This module owns:
- PrintQueue, the single owner of active job state: FIFO/backoff ordering,
  per-state counters, the one Processing slot, and uid uniqueness
- The per-job state machine (queued -> processing -> completed/failed),
  the automatic retry/backoff policy and manual interventions
- A thread-backed run loop that drains the queue serially against one printer

Every mutation happens under one lock. The render and print calls run outside
it; entering and leaving Processing are atomic with respect to everything
else. Each transition is written to the JobStore first and then published,
so subscribers see transitions in the order they happened.

It is deliberately Flask-agnostic so it can be used from both web routes and
CLI contexts.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from PIL import Image

from badge_printer.core.config import QueueSettings
from badge_printer.core.db import JobStore
from badge_printer.core.errors import (
    CapacityExceeded,
    DuplicateUidError,
    InvalidState,
    NotFound,
    PrintError,
    QueueError,
    RenderError,
    RetryLimitExceeded,
    UnknownPreset,
    ValidationError,
)
from badge_printer.core.logging import job_context
from badge_printer.core.models import (
    MAX_BADGE_NAME_LEN,
    MAX_TEMPLATE_ID_LEN,
    MAX_UID_LEN,
    UID_RE,
    InterventionAction,
    Job,
    JobStatus,
    has_control_chars,
    new_job_id,
    utc_from_timestamp,
)
from badge_printer.printing.events import StatusPublisher
from badge_printer.printing.printer import PrinterResource
from badge_printer.printing.render import BadgeRenderer

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 500

# (current status, action) -> resulting status
_INTERVENTIONS: Dict[Tuple[JobStatus, InterventionAction], JobStatus] = {
    (JobStatus.QUEUED, InterventionAction.RESET): JobStatus.QUEUED,
    (JobStatus.PROCESSING, InterventionAction.RESET): JobStatus.QUEUED,
    (JobStatus.FAILED, InterventionAction.RESET): JobStatus.QUEUED,
    (JobStatus.QUEUED, InterventionAction.COMPLETE): JobStatus.COMPLETED,
    (JobStatus.PROCESSING, InterventionAction.COMPLETE): JobStatus.COMPLETED,
    (JobStatus.QUEUED, InterventionAction.FAIL): JobStatus.FAILED,
    (JobStatus.PROCESSING, InterventionAction.FAIL): JobStatus.FAILED,
}

# Heap entry: (eligible_at, created_ts, seq, job_id, token)
_ReadyEntry = Tuple[float, float, int, str, int]


def backoff_delay(retry_count: int, settings: QueueSettings, rng: random.Random) -> float:
    """
    Seconds to wait before a job that has already been retried `retry_count`
    times becomes eligible again: base * 2^retry_count, capped, then jittered
    downwards by up to `retry_jitter` of itself.
    """
    delay = min(settings.retry_max_seconds, settings.retry_base_seconds * (2 ** retry_count))
    jitter = max(0.0, min(1.0, settings.retry_jitter))
    if jitter and delay > 0:
        delay = rng.uniform(delay * (1.0 - jitter), delay)
    return delay


class PrintQueue:
    """
    The job queue and printer coordinator.

    Active (queued/processing) jobs live in memory and in the store; terminal
    jobs live only in the store. Counters are maintained on every transition
    so status() never scans the store.
    """

    def __init__(
        self,
        store: JobStore,
        printer: PrinterResource,
        renderer: BadgeRenderer,
        publisher: Optional[StatusPublisher] = None,
        settings: Optional[QueueSettings] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.printer = printer
        self.renderer = renderer
        self.publisher = publisher
        self.settings = settings or QueueSettings()
        self._clock = clock
        self._rng = rng or random.Random()

        self._lock = threading.RLock()
        self._wakeup = threading.Condition(self._lock)
        # Serializes whole dequeue/print/resolve cycles: one print in flight at most.
        self._cycle_lock = threading.Lock()

        self._jobs: Dict[str, Job] = {}
        self._uids: Dict[str, str] = {}
        self._ready: List[_ReadyEntry] = []
        self._tokens: Dict[str, int] = {}
        self._token_seq = itertools.count(1)
        self._counts: Dict[JobStatus, int] = {s: 0 for s in JobStatus}
        self._documents: Dict[str, Image.Image] = {}
        self._current_id: Optional[str] = None
        self._in_flight: Optional[str] = None

        self._version = 0
        self._cached: Optional[Tuple[int, Dict[str, Any]]] = None

        self._thread: Optional[threading.Thread] = None
        self._started = False
        self._stopping = threading.Event()

        self._seq = itertools.count(store.max_seq() + 1)
        self._recover()

    # ----- Startup -----------------------------------------------------------

    def _recover(self) -> None:
        """Load counters and active jobs left in the store by a previous run."""
        counts = self.store.count_by_status()
        self._counts[JobStatus.COMPLETED] = counts.get(JobStatus.COMPLETED.value, 0)
        self._counts[JobStatus.FAILED] = counts.get(JobStatus.FAILED.value, 0)

        now = self._clock()
        for job in self.store.list_active():
            if job.status == JobStatus.PROCESSING:
                # The process died mid-print; the outcome is unknown.
                job.status = JobStatus.QUEUED
                job.error_message = "Interrupted by restart"
                job.eligible_at = min(job.eligible_at, now)
                job.updated_at = utc_from_timestamp(now)
                self.store.put(job)
                logger.warning("Recovered job %s from processing back to queued", job.id)
            self._jobs[job.id] = job
            self._uids[job.uid] = job.id
            self._counts[JobStatus.QUEUED] += 1
            self._push_ready(job)
        if self._jobs:
            logger.info("Recovered %d active job(s) from the store", len(self._jobs))

    # ----- Internal state helpers (call with the lock held) ------------------

    def _now(self) -> float:
        return self._clock()

    def _push_ready(self, job: Job) -> None:
        token = next(self._token_seq)
        self._tokens[job.id] = token
        heapq.heappush(self._ready, (job.eligible_at, job.created_at.timestamp(), job.seq, job.id, token))

    def _is_live(self, entry: _ReadyEntry) -> bool:
        job_id, token = entry[3], entry[4]
        job = self._jobs.get(job_id)
        return job is not None and job.status == JobStatus.QUEUED and self._tokens.get(job_id) == token

    def _peek_ready(self) -> Optional[_ReadyEntry]:
        while self._ready and not self._is_live(self._ready[0]):
            heapq.heappop(self._ready)
        return self._ready[0] if self._ready else None

    def _forget(self, job_id: str) -> None:
        job = self._jobs.pop(job_id, None)
        if job is not None and self._uids.get(job.uid) == job_id:
            del self._uids[job.uid]
        self._tokens.pop(job_id, None)
        self._documents.pop(job_id, None)
        if self._current_id == job_id:
            self._current_id = None
        if len(self._ready) > 2 * len(self._jobs) + 16:
            self._ready = [e for e in self._ready if self._is_live(e)]
            heapq.heapify(self._ready)

    def _commit(self, job: Job, previous: Optional[JobStatus]) -> None:
        """
        Durably record `job` and fold its new status into the in-memory state,
        then publish the transition.
        """
        self.store.put(job)

        if previous is not None:
            self._counts[previous] -= 1
        self._counts[job.status] += 1
        if previous == JobStatus.PROCESSING and self._current_id == job.id:
            self._current_id = None

        if job.is_terminal:
            self._forget(job.id)
        else:
            self._jobs[job.id] = job
            self._uids[job.uid] = job.id
            if job.status == JobStatus.QUEUED:
                self._push_ready(job)
            else:
                self._tokens.pop(job.id, None)

        self._version += 1
        self._emit(job.id, job.status.value, job)

    def _emit(self, job_id: str, status: Optional[str], job: Optional[Job]) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher.publish(job_id, status, self._snapshot_locked(), job=job.to_dict() if job else None)
        except Exception:
            logger.exception("Status publish failed for job %s", job_id)

    def _check_readmit(self, job: Job) -> None:
        if len(self._jobs) >= self.settings.max_queue_size:
            raise CapacityExceeded(
                f"Queue is at maximum capacity ({self.settings.max_queue_size} jobs)",
                job_id=job.id,
            )
        if job.uid in self._uids:
            raise DuplicateUidError(f"UID {job.uid!r} is already in use by an active job", job_id=job.id, field="uid")

    # ----- Validation --------------------------------------------------------

    def _validate(self, template_id: Any, uid: Any, badge_name: Any, preset: Any) -> Tuple[str, str, str, str]:
        if not isinstance(template_id, str) or not template_id.strip():
            raise ValidationError("templateId is required and must be a non-empty string", field="template_id")
        if not isinstance(uid, str) or not uid.strip():
            raise ValidationError("uid is required and must be a non-empty string", field="uid")
        if not isinstance(badge_name, str) or not badge_name.strip():
            raise ValidationError("badgeName is required and must be a non-empty string", field="badge_name")

        template_id, uid, badge_name = template_id.strip(), uid.strip(), badge_name.strip()
        if len(template_id) > MAX_TEMPLATE_ID_LEN:
            raise ValidationError(f"template_id must be {MAX_TEMPLATE_ID_LEN} characters or less", field="template_id")
        if len(uid) > MAX_UID_LEN:
            raise ValidationError(f"uid must be {MAX_UID_LEN} characters or less", field="uid")
        if not UID_RE.match(uid):
            raise ValidationError("uid can only contain letters, numbers, hyphens, and underscores", field="uid")
        if len(badge_name) > MAX_BADGE_NAME_LEN:
            raise ValidationError(f"badge_name must be {MAX_BADGE_NAME_LEN} characters or less", field="badge_name")
        if has_control_chars(badge_name):
            raise ValidationError("badge_name cannot contain control characters", field="badge_name")

        template = self.renderer.get_template(template_id)
        if template is None:
            raise ValidationError(f"Template with ID {template_id!r} does not exist", field="template_id")

        resolved = preset or template.preset or self.settings.default_preset
        try:
            self.printer.get_preset(resolved)
        except UnknownPreset as e:
            raise ValidationError(e.message, field="preset") from e
        return template_id, uid, badge_name, resolved

    # ----- Operations --------------------------------------------------------

    def submit(self, template_id: str, uid: str, badge_name: str, preset: Optional[str] = None) -> str:
        """
        Create a queued job and return its id. Does not touch the printer.

        Raises ValidationError (including DuplicateUidError) or CapacityExceeded.
        """
        template_id, uid, badge_name, preset = self._validate(template_id, uid, badge_name, preset)
        with self._lock:
            if len(self._jobs) >= self.settings.max_queue_size:
                raise CapacityExceeded(f"Queue is at maximum capacity ({self.settings.max_queue_size} jobs)")
            if uid in self._uids:
                raise DuplicateUidError(f"UID {uid!r} is already in use by an active job", field="uid")

            now = self._now()
            stamp = utc_from_timestamp(now)
            job = Job(
                id=new_job_id(),
                template_id=template_id,
                uid=uid,
                badge_name=badge_name,
                preset=preset,
                seq=next(self._seq),
                status=JobStatus.QUEUED,
                eligible_at=now,
                created_at=stamp,
                updated_at=stamp,
            )
            self._commit(job, None)
            self._wakeup.notify_all()
        logger.info("Job %s queued uid=%s template=%s", job.id, uid, template_id)
        return job.id

    def cancel(self, job_id: str) -> None:
        """
        Remove a non-terminal job. A processing job can only be cancelled when
        the printer can abort the in-flight print.
        """
        abort = False
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFound(f"Job with ID {job_id} not found or already finished", job_id=job_id)
            if job.status == JobStatus.PROCESSING:
                if not self.printer.supports_abort:
                    raise InvalidState(
                        "Job is printing and the printer cannot abort; it must finish first",
                        job_id=job_id,
                    )
                abort = True

            self.store.delete(job_id)
            self._counts[job.status] -= 1
            self._forget(job_id)
            self._version += 1
            self._emit(job_id, None, None)

        if abort:
            try:
                self.printer.abort()
            except Exception:
                logger.exception("Printer abort failed while cancelling job %s", job_id)
        logger.info("Job %s cancelled", job_id)

    def retry(self, job_id: str, override: bool = False) -> Job:
        """
        Re-queue a failed job. The retry cap applies unless override is set.
        retry_count is left as is; error_message is cleared.
        """
        with self._lock:
            job = self._jobs.get(job_id) or self.store.get(job_id)
            if job is None:
                raise NotFound(f"Job with ID {job_id} not found", job_id=job_id)
            if job.status != JobStatus.FAILED:
                raise InvalidState(f"Only failed jobs can be retried (status: {job.status.value})", job_id=job_id)
            if job.retry_count >= self.settings.max_retries and not override:
                raise RetryLimitExceeded(
                    f"Job has exceeded maximum retry attempts ({self.settings.max_retries})",
                    job_id=job_id,
                )
            self._check_readmit(job)

            now = self._now()
            updated = job.copy()
            updated.status = JobStatus.QUEUED
            updated.error_message = None
            updated.eligible_at = now
            updated.updated_at = utc_from_timestamp(now)
            self._commit(updated, JobStatus.FAILED)
            self._wakeup.notify_all()
        logger.info("Job %s re-queued by retry (override=%s)", job_id, override)
        return updated.copy()

    def intervene(self, job_id: str, action: str | InterventionAction, reason: Optional[str] = None) -> Job:
        """
        Operator override: reset, complete or fail a job outside the normal flow.

        The reason and timestamp are recorded on the job even when the action
        turns out not to be valid for the job's status.
        """
        try:
            act = InterventionAction(action)
        except ValueError as e:
            raise ValidationError("action must be one of: reset, complete, fail", field="action") from e
        reason = (reason or "").strip() or f"Manual intervention: {act.value}"

        with self._lock:
            job = self._jobs.get(job_id) or self.store.get(job_id)
            if job is None:
                raise NotFound(f"Job with ID {job_id} not found", job_id=job_id)

            now = self._now()
            stamp = utc_from_timestamp(now)
            prev = job.status
            updated = job.copy()
            updated.last_intervention_at = stamp
            updated.intervention_reason = reason
            updated.updated_at = stamp

            target = _INTERVENTIONS.get((prev, act))
            try:
                if target is None:
                    raise InvalidState(f"Cannot {act.value} a job that is {prev.value}", job_id=job_id)
                if prev == JobStatus.FAILED:
                    self._check_readmit(job)
            except QueueError:
                self._record_intervention(updated)
                raise

            updated.status = target
            if target == JobStatus.QUEUED:
                updated.error_message = None
                updated.eligible_at = now
            elif target == JobStatus.COMPLETED:
                updated.error_message = None
                updated.processed_at = stamp
            else:
                updated.error_message = reason
                updated.processed_at = stamp

            if prev == JobStatus.PROCESSING:
                logger.warning("Job %s resolved by intervention while printing; late printer outcome will be ignored", job_id)
            self._commit(updated, prev)
            if target == JobStatus.QUEUED:
                self._wakeup.notify_all()
        logger.info("Job %s intervention %s: %s -> %s (%s)", job_id, act.value, prev.value, target.value, reason)
        return updated.copy()

    def _record_intervention(self, job: Job) -> None:
        """Persist intervention metadata without a status change."""
        self.store.put(job)
        if job.id in self._jobs:
            self._jobs[job.id] = job
        self._version += 1

    # ----- Run loop ----------------------------------------------------------

    def _begin_next_locked(self) -> Optional[Job]:
        if self._current_id is not None:
            return None
        now = self._now()
        entry = self._peek_ready()
        if entry is None or entry[0] > now:
            return None
        # The heap entry goes stale once the job leaves Queued; nothing is
        # popped here so a failed store write leaves the job where it was.
        job = self._jobs[entry[3]]

        stamp = utc_from_timestamp(now)
        updated = job.copy()
        updated.status = JobStatus.PROCESSING
        updated.attempts += 1
        updated.started_at = stamp
        updated.updated_at = stamp
        self._commit(updated, JobStatus.QUEUED)
        self._current_id = updated.id
        logger.info("Job %s processing (attempt %d)", updated.id, updated.attempts)
        return updated

    def _finish_locked(self, job_id: str, attempt: int, error: Optional[str]) -> Optional[Job]:
        live = self._jobs.get(job_id)
        if live is None or live.status != JobStatus.PROCESSING or live.attempts != attempt:
            logger.warning("Discarding printer outcome for job %s; it changed while printing", job_id)
            current = live or self.store.get(job_id)
            return current.copy() if current else None

        now = self._now()
        stamp = utc_from_timestamp(now)
        updated = live.copy()
        updated.updated_at = stamp
        if error is None:
            updated.status = JobStatus.COMPLETED
            updated.error_message = None
            updated.processed_at = stamp
            logger.info("Job %s completed", job_id)
        elif live.retry_count < self.settings.max_retries:
            delay = backoff_delay(live.retry_count, self.settings, self._rng)
            updated.status = JobStatus.QUEUED
            updated.retry_count += 1
            updated.error_message = error
            updated.eligible_at = now + delay
            logger.warning(
                "Job %s failed (%s); retry %d/%d in %.2fs",
                job_id,
                error,
                updated.retry_count,
                self.settings.max_retries,
                delay,
            )
        else:
            updated.status = JobStatus.FAILED
            updated.error_message = error
            updated.processed_at = stamp
            logger.error("Job %s failed permanently after %d retries: %s", job_id, live.retry_count, error)
        self._commit(updated, JobStatus.PROCESSING)
        return updated.copy()

    def run_once(self) -> Optional[Job]:
        """
        Run one dequeue/render/print/resolve cycle.

        Returns the job as it stands after the cycle, or None when no queued
        job is eligible yet.
        """
        with self._cycle_lock:
            with self._lock:
                job = self._begin_next_locked()
                if job is None:
                    return None
                self._in_flight = job.id
                document = self._documents.get(job.id)

            error: Optional[str] = None
            with job_context(job.id):
                try:
                    if document is None:
                        document = self.renderer.render(job.template_id, job.uid, job.badge_name)
                        with self._lock:
                            if job.id in self._jobs:
                                self._documents[job.id] = document
                    self.printer.print_document(document, job.preset)
                except (RenderError, PrintError) as e:
                    error = e.message
                except Exception as e:
                    logger.exception("Unexpected error while printing job %s", job.id)
                    error = f"{type(e).__name__}: {e}"

            with self._lock:
                self._in_flight = None
                return self._finish_locked(job.id, job.attempts, error)

    def _idle_timeout_locked(self) -> float:
        if self._current_id is not None:
            return self.settings.idle_poll_seconds
        entry = self._peek_ready()
        if entry is None:
            return self.settings.idle_poll_seconds
        return min(max(0.0, entry[0] - self._now()), self.settings.idle_poll_seconds)

    def _run_loop(self) -> None:
        """
        Worker loop that drains the queue. Never raises; a failed cycle is
        logged and the loop carries on with the next job.
        """
        while not self._stopping.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Print worker cycle failed")
                self._stopping.wait(1.0)
                continue
            with self._wakeup:
                if self._stopping.is_set():
                    break
                timeout = self._idle_timeout_locked()
                if timeout > 0:
                    self._wakeup.wait(timeout)
        logger.info("Background print worker stopped")

    def start(self) -> None:
        """
        Ensure the background worker thread is started (idempotent).
        """
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._stopping.clear()
            t = threading.Thread(target=self._run_loop, daemon=True, name="badge-printer-queue")
            self._thread = t
            self._started = True
        t.start()
        logger.info("Background print worker started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stopping.set()
        with self._wakeup:
            self._wakeup.notify_all()
        t = self._thread
        if t is not None:
            t.join(timeout)

    # ----- Queries -----------------------------------------------------------

    def _snapshot_locked(self) -> Dict[str, Any]:
        if self._cached is None or self._cached[0] != self._version:
            queued = sorted(e for e in self._ready if self._is_live(e))
            counts = self._counts
            active = len(self._jobs)
            maximum = self.settings.max_queue_size
            base = {
                "stats": {
                    "queued": counts[JobStatus.QUEUED],
                    "processing": counts[JobStatus.PROCESSING],
                    "completed": counts[JobStatus.COMPLETED],
                    "failed": counts[JobStatus.FAILED],
                    "total": sum(counts.values()),
                },
                "queued_jobs": [self._jobs[e[3]].to_dict() for e in queued],
                "capacity": {
                    "current": active,
                    "maximum": maximum,
                    "available": max(0, maximum - active),
                    "percent_full": round(active * 100 / maximum) if maximum else 100,
                },
            }
            self._cached = (self._version, base)
        base = self._cached[1]

        processing: List[Dict[str, Any]] = []
        current = self._jobs.get(self._current_id) if self._current_id else None
        if current is not None:
            item = current.to_dict()
            # Elapsed time is not exposed, only the stale flag
            elapsed = self._now() - current.started_at.timestamp() if current.started_at else 0.0
            item["stale"] = elapsed > self.settings.stale_after_seconds
            processing.append(item)

        return {
            "stats": dict(base["stats"]),
            "queued_jobs": [dict(j) for j in base["queued_jobs"]],
            "processing_jobs": processing,
            "current_job": dict(processing[0]) if processing else None,
            "capacity": dict(base["capacity"]),
        }

    def status(self) -> Dict[str, Any]:
        """
        Point-in-time view: counts per state, queued jobs in dequeue order,
        the processing job (0 or 1, with a `stale` marker) and capacity.
        """
        with self._lock:
            return self._snapshot_locked()

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                return job.copy()
        return self.store.get(job_id)

    def history(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        """
        Page of terminal jobs ordered by processed_at descending.
        """
        if status is not None:
            try:
                st = JobStatus(status)
            except ValueError as e:
                raise ValidationError(f"Unknown status {status!r}", field="status") from e
            if not st.is_terminal:
                raise ValidationError("History only contains completed or failed jobs", field="status")
        if not 1 <= int(limit) <= MAX_HISTORY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}", field="limit")
        if int(offset) < 0:
            raise ValidationError("offset must not be negative", field="offset")

        jobs, total = self.store.list_history(status, int(limit), int(offset))
        return {
            "jobs": [j.to_dict() for j in jobs],
            "pagination": {
                "total": total,
                "limit": int(limit),
                "offset": int(offset),
                "has_more": int(offset) + int(limit) < total,
            },
        }

    def capacity(self) -> Dict[str, Any]:
        with self._lock:
            return self._snapshot_locked()["capacity"]

    def worker_status(self) -> Dict[str, Any]:
        """
        Return basic worker/queue status.
        """
        t = self._thread
        with self._lock:
            return {
                "worker_started": self._started,
                "worker_alive": bool(t and t.is_alive()),
                "queue_size": self._counts[JobStatus.QUEUED],
                "current_job_id": self._current_id,
                "print_in_flight": self._in_flight is not None,
            }


__all__ = ["PrintQueue", "backoff_delay"]
