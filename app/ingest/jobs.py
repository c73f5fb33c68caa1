"""In-process job queue for background work: indexing and transcription jobs run one at a time, FIFO, on a
single worker thread; callers poll status by job_id (pending / processing / completed / failed)."""
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .pipeline import IndexingPayload
from .transcription import TranscriptionPayload

logger = logging.getLogger(__name__)


class JobType(str, Enum):
    INDEXING = "indexing"
    TRANSCRIPTION = "transcription"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


JobPayload = Union[IndexingPayload, TranscriptionPayload]
JobHandler = Callable[[JobPayload], Optional[Dict[str, Any]]]


@dataclass
class Job:
    """A single background job: job_id, type, status (pending | processing | completed | failed), payload,
    timestamps, and optional error or result.
    Why available: Returned by JobQueue.get_status so /jobs/{job_id} can be polled until the job finishes."""

    job_id: str
    type: JobType
    payload: Any
    created_at: float
    status: JobStatus = JobStatus.PENDING
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "type": self.type.value,
            "status": self.status.value,
            "error": self.error,
            "result": self.result,
        }


def new_job_id(job_type: JobType) -> str:
    return f"{job_type.value}-{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class JobQueue:
    """Serial FIFO executor. enqueue() never blocks on work; at most one job is processing at any time.

    Finished jobs stay visible for retention_seconds after they finish, then get_status returns None.
    There is no persistence, retry, cancellation or per-job timeout: a restart loses every queued job."""

    def __init__(
        self,
        handlers: Mapping[JobType, JobHandler],
        *,
        retention_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.handlers = dict(handlers)
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending: List[Job] = []
        self._active: Dict[str, Job] = {}
        self._running = False
        self._thread: Optional[threading.Thread] = None

    # -------------------------
    # Public API
    # -------------------------

    def enqueue(self, job_type: JobType, payload: JobPayload) -> str:
        job_type = JobType(job_type)
        job = Job(job_id=new_job_id(job_type), type=job_type, payload=payload, created_at=self._clock())
        with self._lock:
            self._evict_expired()
            self._pending.append(job)
            start_worker = not self._running
            if start_worker:
                self._running = True
        logger.info("job_enqueued", extra={"job_id": job.job_id, "job_type": job_type.value})
        if start_worker:
            self._thread = threading.Thread(target=self._work, name="job-queue-worker", daemon=True)
            self._thread.start()
        return job.job_id

    def get_status(self, job_id: str) -> Optional[Job]:
        """Active table first (processing or recently finished), then the pending list; None once evicted."""
        with self._lock:
            self._evict_expired()
            job = self._active.get(job_id)
            if job is not None:
                return job
            for pending in self._pending:
                if pending.job_id == job_id:
                    return pending
            return None

    def stats(self) -> Dict[str, int]:
        with self._lock:
            self._evict_expired()
            processing = sum(1 for j in self._active.values() if j.status == JobStatus.PROCESSING)
            return {
                "pending": len(self._pending),
                "processing": processing,
                "retained": len(self._active) - processing,
            }

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is pending or processing. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._running, timeout=timeout)

    # -------------------------
    # Worker
    # -------------------------

    def _work(self) -> None:
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        return
                    job = self._pending.pop(0)
                    job.status = JobStatus.PROCESSING
                    job.started_at = self._clock()
                    self._active[job.job_id] = job

                self._run(job)
        finally:
            with self._lock:
                self._running = False
                self._idle.notify_all()

    def _run(self, job: Job) -> None:
        logger.info("job_started", extra={"job_id": job.job_id, "job_type": job.type.value})
        status, error, result = JobStatus.FAILED, None, None
        try:
            handler = self.handlers.get(job.type)
            if handler is None:
                raise LookupError(f"No handler registered for job type {job.type.value}")
            result = handler(job.payload)
            status = JobStatus.COMPLETED
        except Exception as e:
            error = _error_message(e)
            logger.exception("job_failed", extra={"job_id": job.job_id, "job_type": job.type.value})
        except BaseException as e:
            # SystemExit from a handler ends the job, not the worker thread
            error = _error_message(e)
            logger.error("job_aborted", extra={"job_id": job.job_id, "job_type": job.type.value, "error": error})
        finally:
            with self._lock:
                job.result = result
                job.error = error
                job.finished_at = self._clock()
                job.status = status
            logger.info("job_finished", extra={"job_id": job.job_id, "status": status.value})

    def _evict_expired(self) -> None:
        # caller holds self._lock
        now = self._clock()
        expired = [
            job_id
            for job_id, job in self._active.items()
            if job.is_finished and job.finished_at is not None and now - job.finished_at >= self.retention_seconds
        ]
        for job_id in expired:
            del self._active[job_id]
