"""Process-wide registry of bulk jobs keyed by job id."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Literal

from .profile_store import Profile

JobStatus = Literal["running", "paused", "ended"]
JOB_STATUSES: frozenset[str] = frozenset({"running", "paused", "ended"})


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True, slots=True)
class JobConfig:
    """Template fields and options captured when the job starts."""

    subject: str
    description: str
    profile: Profile
    delay_sec: float = 0.0
    send_direct_reply: bool = False
    verify_email: bool = False


@dataclass(slots=True)
class Job:
    """Runtime state for one bulk run."""

    job_id: str
    session_id: str
    config: JobConfig
    items: list[str] = field(default_factory=list)
    status: JobStatus = "running"
    cursor: int = 0
    created_at: str = field(default_factory=_utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "sessionId": self.session_id,
            "status": self.status,
            "cursor": self.cursor,
            "total": len(self.items),
            "profileName": self.config.profile.name,
            "delay": self.config.delay_sec,
            "sendDirectReply": self.config.send_direct_reply,
            "verifyEmail": self.config.verify_email,
            "createdAt": self.created_at,
        }


class JobRegistry:
    """Map job id -> Job. Absence of an id means the job is not running."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = RLock()

    def create(self, job_id: str, *, session_id: str, items: list[str], config: JobConfig) -> Job:
        """Register a new job. Raises `KeyError` while `job_id` is still registered."""
        job = Job(job_id=job_id, session_id=session_id, config=config, items=list(items))
        with self._lock:
            if job_id in self._jobs:
                raise KeyError(job_id)
            self._jobs[job_id] = job
        return job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def status_of(self, job_id: str) -> JobStatus | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.status if job is not None else None

    def set_status(self, job_id: str, status: JobStatus) -> Job | None:
        if status not in JOB_STATUSES:
            raise ValueError(f"Unknown job status: {status}")
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                job.status = status
            return job

    def transition(self, job_id: str, *, from_statuses: set[str], to_status: JobStatus) -> Job | None:
        """Move to `to_status` only when the current status is in `from_statuses`."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None and job.status in from_statuses:
                job.status = to_status
            return job

    def advance(self, job_id: str, cursor: int) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                job.cursor = cursor

    def remove(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.pop(job_id, None)

    def remove_if(self, job_id: str, job: Job) -> bool:
        """Remove `job_id` only while it still maps to `job`."""
        with self._lock:
            if self._jobs.get(job_id) is not job:
                return False
            del self._jobs[job_id]
            return True

    def jobs_for_session(self, session_id: str) -> list[Job]:
        with self._lock:
            return [job for job in self._jobs.values() if job.session_id == session_id]

    def all_jobs(self) -> list[Job]:
        with self._lock:
            return list(self._jobs.values())

    def list_jobs(self) -> list[dict[str, Any]]:
        with self._lock:
            return [self._jobs[key].to_dict() for key in sorted(self._jobs)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
