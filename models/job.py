import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class JobStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR})


def new_job_id(identifier: str) -> str:
    """identifier + creation time in ms + random suffix, so duplicates stay distinct."""
    return f"{identifier}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class Job:
    id: str
    identifier: str
    status: JobStatus = JobStatus.PENDING
    error: Optional[str] = None
    file_path: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None

    @classmethod
    def create(cls, identifier: str) -> "Job":
        return cls(id=new_job_id(identifier), identifier=identifier)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "identifier": self.identifier,
            "status": self.status.value,
            "error": self.error,
            "file_path": self.file_path,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ── Transitions ───────────────────────────────────────────────────────────────
# Pure functions: each returns a new Job and leaves the input untouched.

def mark_downloading(job: Job) -> Job:
    if job.status != JobStatus.PENDING:
        raise ValueError(f"Job {job.id} is {job.status.value}, expected pending")
    return replace(job, status=JobStatus.DOWNLOADING, updated_at=datetime.now())


def mark_completed(job: Job, file_path: str) -> Job:
    if job.status != JobStatus.DOWNLOADING:
        raise ValueError(f"Job {job.id} is {job.status.value}, expected downloading")
    return replace(
        job, status=JobStatus.COMPLETED, file_path=file_path, updated_at=datetime.now()
    )


def mark_error(job: Job, message: str) -> Job:
    if job.status != JobStatus.DOWNLOADING:
        raise ValueError(f"Job {job.id} is {job.status.value}, expected downloading")
    return replace(job, status=JobStatus.ERROR, error=message, updated_at=datetime.now())


@dataclass(frozen=True)
class BatchSummary:
    total: int
    pending: int
    downloading: int
    completed: int
    error: int
    processing: bool

    @classmethod
    def from_jobs(cls, jobs: list[Job], processing: bool) -> "BatchSummary":
        counts = {status: 0 for status in JobStatus}
        for job in jobs:
            counts[job.status] += 1
        return cls(
            total=len(jobs),
            pending=counts[JobStatus.PENDING],
            downloading=counts[JobStatus.DOWNLOADING],
            completed=counts[JobStatus.COMPLETED],
            error=counts[JobStatus.ERROR],
            processing=processing,
        )

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "downloading": self.downloading,
            "completed": self.completed,
            "error": self.error,
            "processing": self.processing,
        }
