from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from velocity.models.job import Job


class JobStateError(ValueError):
    """Raised when a job is asked to move to a status it cannot reach from its current one."""


class AbstractJobStore(ABC):
    @abstractmethod
    def create(self, domain: str) -> str:
        """Insert a pending job for the domain. Returns the new job id."""

    @abstractmethod
    def get(self, job_id: str) -> Job | None:
        """Return a snapshot of the job, or None if unknown or expired."""

    @abstractmethod
    def update(self, job_id: str, **fields: Any) -> bool:
        """Merge fields into a job. Returns False if the job does not exist."""

    @abstractmethod
    def complete(self, job_id: str, result: dict[str, Any]) -> bool:
        """Mark a processing job completed with its result."""

    @abstractmethod
    def fail(self, job_id: str, error: str) -> bool:
        """Mark a processing job failed with an error message."""

    @abstractmethod
    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete jobs older than the retention window. Returns how many were removed."""
