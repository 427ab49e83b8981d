"""Stage table for the meeting minutes pipeline.

The orchestrator in ``app/pipelines/minutes/orchestrator.py`` owns the control
flow; this module declares what each stage is so the loop itself stays
service-agnostic:

1. ``transcription`` – Amazon Transcribe batch job over the uploaded audio.
2. ``sentiment`` – Amazon Comprehend sentiment-detection job over the transcript.
3. ``summary`` – single Bedrock call producing the minutes summary.

A job's persisted ``status`` names the stage currently owning it; ``PENDING``
belongs to the first stage and terminal statuses belong to none.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .types import JobStatus


@dataclass(frozen=True)
class Stage:
    """One unit of pipeline work and the job-record fields it owns."""

    name: str
    status: JobStatus
    next_status: JobStatus
    result_field: str
    handle_field: Optional[str]
    artifact_name: str
    content_type: str

    def artifact_key(self, output_prefix: str, job_id: str) -> str:
        prefix = output_prefix.rstrip("/")
        return f"{prefix}/{job_id}/{self.artifact_name}" if prefix else f"{job_id}/{self.artifact_name}"


STAGES: tuple[Stage, ...] = (
    Stage(
        name="transcription",
        status=JobStatus.TRANSCRIBING,
        next_status=JobStatus.ANALYZING_SENTIMENT,
        result_field="transcript_key",
        handle_field="transcription_handle",
        artifact_name="transcript.txt",
        content_type="text/plain; charset=utf-8",
    ),
    Stage(
        name="sentiment",
        status=JobStatus.ANALYZING_SENTIMENT,
        next_status=JobStatus.SUMMARIZING,
        result_field="sentiment_key",
        handle_field="sentiment_handle",
        artifact_name="sentiment.json",
        content_type="application/json",
    ),
    Stage(
        name="summary",
        status=JobStatus.SUMMARIZING,
        next_status=JobStatus.COMPLETED,
        result_field="summary_key",
        handle_field=None,
        artifact_name="summary.md",
        content_type="text/markdown; charset=utf-8",
    ),
)

_STAGE_BY_STATUS = {stage.status: stage for stage in STAGES}


def stage_for(status: JobStatus) -> Optional[Stage]:
    """Return the stage that owns a record in ``status`` (None when terminal)."""

    if status is JobStatus.PENDING:
        return STAGES[0]
    return _STAGE_BY_STATUS.get(status)


__all__ = ["Stage", "STAGES", "stage_for"]
