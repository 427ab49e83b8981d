"""Typed containers shared across the minutes pipeline.

These live in their own module so the stage table, the orchestrator and the
service adapters can import them without creating circular dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict

from app.config.settings import PipelineConfig

from .retry import PollPolicy, RetryPolicy


class JobStatus(str, Enum):
    PENDING = "PENDING"
    TRANSCRIBING = "TRANSCRIBING"
    ANALYZING_SENTIMENT = "ANALYZING_SENTIMENT"
    SUMMARIZING = "SUMMARIZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


PROGRESSION: tuple[JobStatus, ...] = (
    JobStatus.PENDING,
    JobStatus.TRANSCRIBING,
    JobStatus.ANALYZING_SENTIMENT,
    JobStatus.SUMMARIZING,
    JobStatus.COMPLETED,
)


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return True when writing ``target`` over ``current`` keeps the path monotonic.

    Re-writing the same non-terminal status is allowed (it is how stage handles
    are persisted); terminal records accept no further writes.
    """

    if current.is_terminal:
        return False
    if target is JobStatus.FAILED:
        return True
    step = PROGRESSION.index(target) - PROGRESSION.index(current)
    return step in (0, 1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRecord(BaseModel):
    """Durable per-run status entity stored in the job table."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    source_key: str
    status: JobStatus = JobStatus.PENDING
    transcript_key: Optional[str] = None
    sentiment_key: Optional[str] = None
    summary_key: Optional[str] = None
    transcription_handle: Optional[str] = None
    sentiment_handle: Optional[str] = None
    error_detail: Optional[str] = None
    stage_started_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    version: int = 0

    @classmethod
    def new(cls, job_id: str, source_key: str) -> "JobRecord":
        now = utcnow()
        return cls(job_id=job_id, source_key=source_key, created_at=now, updated_at=now)

    def evolve(self, **changes) -> "JobRecord":
        """Return a copy with ``changes`` applied and validated."""

        return self.model_validate({**self.model_dump(), **changes})

    def committed(self) -> "JobRecord":
        """Return the copy a table stores: next version, later ``updated_at``."""

        now = utcnow()
        floor = self.updated_at + timedelta(microseconds=1)
        return self.evolve(
            updated_at=now if now >= floor else floor,
            version=self.version + 1,
        )

    @property
    def result_keys(self) -> dict[str, Optional[str]]:
        return {
            "transcript_key": self.transcript_key,
            "sentiment_key": self.sentiment_key,
            "summary_key": self.summary_key,
        }


class ExternalState(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ExternalJobState:
    """Snapshot of an external job as reported by a stage backend."""

    handle: str
    state: ExternalState
    output_location: str | None = None
    failure_reason: str | None = None
    payload: bytes | None = None

    @property
    def settled(self) -> bool:
        return self.state is not ExternalState.RUNNING


@dataclass(frozen=True)
class OrchestratorConfig:
    """Explicit policy handed to the orchestrator at construction time."""

    output_prefix: str = "output-data/"
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    poll: PollPolicy = field(default_factory=PollPolicy)
    stage_timeouts: Mapping[JobStatus, float] = field(
        default_factory=lambda: {
            JobStatus.TRANSCRIBING: 3600.0,
            JobStatus.ANALYZING_SENTIMENT: 3600.0,
            JobStatus.SUMMARIZING: 300.0,
        }
    )

    @classmethod
    def from_pipeline_config(
        cls,
        config: PipelineConfig,
        *,
        output_prefix: str = "output-data/",
    ) -> "OrchestratorConfig":
        return cls(
            output_prefix=output_prefix,
            retry=RetryPolicy(
                max_attempts=config.retry_max_attempts,
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
            ),
            poll=PollPolicy(
                base_delay=config.poll_base_delay,
                max_interval=config.poll_max_interval,
            ),
            stage_timeouts={
                JobStatus.TRANSCRIBING: config.transcription_timeout,
                JobStatus.ANALYZING_SENTIMENT: config.sentiment_timeout,
                JobStatus.SUMMARIZING: config.summary_timeout,
            },
        )

    def timeout_for(self, status: JobStatus) -> float:
        return float(self.stage_timeouts[status])


__all__ = [
    "JobStatus",
    "PROGRESSION",
    "can_transition",
    "utcnow",
    "JobRecord",
    "ExternalState",
    "ExternalJobState",
    "OrchestratorConfig",
]
