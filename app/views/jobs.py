"""Schemas for event intake and job inspection endpoints."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel

from app.pipelines.minutes import JobRecord, JobStatus


class EventAcceptedResponse(BaseModel):
    job_id: str
    source_key: str


class EventIgnoredResponse(BaseModel):
    status: Literal["ignored"] = "ignored"


class JobResponse(BaseModel):
    job_id: str
    source_key: str
    status: JobStatus
    transcript_key: Optional[str] = None
    sentiment_key: Optional[str] = None
    summary_key: Optional[str] = None
    error_detail: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobResponse":
        return cls(
            job_id=record.job_id,
            source_key=record.source_key,
            status=record.status,
            error_detail=record.error_detail,
            created_at=record.created_at,
            updated_at=record.updated_at,
            **record.result_keys,
        )


class MinutesResponse(BaseModel):
    job_id: str
    source_key: str
    transcript: str
    sentiment: dict[str, Any]
    summary: str
