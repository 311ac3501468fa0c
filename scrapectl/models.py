from dataclasses import dataclass, field, asdict
from typing import List, Optional

# Job statuses
PENDING = "pending"
RUNNING = "running"
PAUSED = "paused"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

JOB_STATUSES = (PENDING, RUNNING, PAUSED, COMPLETED, FAILED, CANCELLED)
ACTIVE_STATUSES = (RUNNING, PAUSED)
TERMINAL_STATUSES = (COMPLETED, FAILED, CANCELLED)
RESUMABLE_STATUSES = (PAUSED, FAILED)

# Target result statuses (PENDING and FAILED shared with jobs)
SUCCESS = "success"
SKIPPED = "skipped"

DONE_RESULT_STATUSES = (SUCCESS, SKIPPED)


@dataclass
class Target:
    id: str
    url: str
    name: str
    enabled: bool = True
    added_at: str = ""
    last_scraped_at: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Target":
        return cls(
            id=row["id"],
            url=row["url"],
            name=row["name"],
            enabled=bool(row["enabled"]),
            added_at=row["added_at"],
            last_scraped_at=row["last_scraped_at"],
        )


@dataclass
class TargetResult:
    target_id: str
    target_name: str
    status: str = PENDING
    posts_scraped: Optional[int] = None
    error: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "TargetResult":
        return cls(**d)


@dataclass
class ExtractionSummary:
    posts_scraped: int = 0


@dataclass
class Job:
    id: str
    status: str = PENDING
    created_at: str = ""
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    total_targets: int = 0
    current_index: int = 0
    target_results: List[TargetResult] = field(default_factory=list)
    success_count: int = 0
    failed_count: int = 0
    error: Optional[str] = None
    updated_at: str = ""
    # Identifies the executor launch that owns the job; replaced on every start/resume.
    run_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict:
        return asdict(self)
