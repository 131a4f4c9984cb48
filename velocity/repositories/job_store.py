import logging
import threading
import uuid
from collections.abc import Callable
from copy import deepcopy
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from velocity.models.job import Job, JobStatus
from velocity.repositories.base import AbstractJobStore, JobStateError

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.PENDING, JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

_IMMUTABLE_FIELDS = {"id", "domain", "created_at"}
_OUTCOME_FIELDS = {"result": JobStatus.COMPLETED, "error": JobStatus.FAILED}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryJobStore(AbstractJobStore):
    """
    Process-local job registry. Every read and write goes through one lock, and
    callers only ever see copies, so the store stays the sole owner of each record.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _new_id(self, created_at: datetime) -> str:
        while True:
            job_id = f"job_{int(created_at.timestamp() * 1000)}_{uuid.uuid4().hex[:12]}"
            if job_id not in self._jobs:
                return job_id

    def create(self, domain: str) -> str:
        created_at = self._clock()
        with self._lock:
            job_id = self._new_id(created_at)
            self._jobs[job_id] = Job(id=job_id, domain=domain, created_at=created_at)
        logger.info("[jobs] created | job_id=%s | domain=%s", job_id, domain)
        return job_id

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job, result=deepcopy(job.result)) if job is not None else None

    def update(self, job_id: str, **fields: Any) -> bool:
        """
        Merge fields into a job. Status may only move forward
        (pending -> processing -> completed|failed); id, domain and created_at are fixed.
        Finished jobs accept no writes. All checks run before any field changes.
        """
        frozen = _IMMUTABLE_FIELDS.intersection(fields)
        if frozen:
            raise JobStateError(f"Cannot modify immutable job fields: {sorted(frozen)}")
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.debug("[jobs] update for unknown job | job_id=%s", job_id)
                return False
            unknown = [name for name in fields if not hasattr(job, name)]
            if unknown:
                raise JobStateError(f"Unknown job fields: {sorted(unknown)}")
            if job.status.is_terminal:
                raise JobStateError(f"Job {job_id} is already {job.status.value}")

            target = JobStatus(fields.get("status", job.status))
            if target not in _ALLOWED_TRANSITIONS[job.status]:
                raise JobStateError(
                    f"Job {job_id} cannot move from {job.status.value} to {target.value}"
                )
            # result belongs to completed jobs only, error to failed jobs only.
            for name, owner in _OUTCOME_FIELDS.items():
                if fields.get(name) is not None and target != owner:
                    raise JobStateError(f"Job {job_id} cannot set {name} while {target.value}")

            fields["status"] = target
            for name, value in fields.items():
                setattr(job, name, value)
        return True

    def complete(self, job_id: str, result: dict[str, Any]) -> bool:
        return self.update(
            job_id,
            status=JobStatus.COMPLETED,
            result=result,
            error=None,
            completed_at=self._clock(),
        )

    def fail(self, job_id: str, error: str) -> bool:
        return self.update(
            job_id,
            status=JobStatus.FAILED,
            result=None,
            error=error,
            completed_at=self._clock(),
        )

    def purge_expired(self, now: datetime | None = None) -> int:
        cutoff = (now or self._clock()) - self._ttl
        with self._lock:
            expired = [job_id for job_id, job in self._jobs.items() if job.created_at < cutoff]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info("[jobs] purged expired | count=%d", len(expired))
        return len(expired)
