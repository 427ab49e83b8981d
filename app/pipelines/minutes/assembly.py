"""Read-only view over the artifacts of a completed job."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from pydantic import BaseModel

from .interfaces import ObjectStoreInterface
from .types import JobRecord, JobStatus


class MinutesNotReady(LookupError):
    """The job has not reached ``COMPLETED`` so its minutes do not exist yet."""

    def __init__(self, job_id: str, status: JobStatus) -> None:
        super().__init__(f"Job {job_id} is {status.value}; minutes are not available")
        self.job_id = job_id
        self.status = status


class MinutesBundle(BaseModel):
    job_id: str
    source_key: str
    transcript: str
    sentiment: dict[str, Any]
    summary: str


async def assemble_minutes(record: JobRecord, store: ObjectStoreInterface) -> MinutesBundle:
    """Dereference the three result keys of a ``COMPLETED`` record."""

    if record.status is not JobStatus.COMPLETED:
        raise MinutesNotReady(record.job_id, record.status)

    transcript, sentiment, summary = await asyncio.gather(
        store.get(record.transcript_key),
        store.get(record.sentiment_key),
        store.get(record.summary_key),
    )
    return MinutesBundle(
        job_id=record.job_id,
        source_key=record.source_key,
        transcript=transcript.decode("utf-8"),
        sentiment=json.loads(sentiment),
        summary=summary.decode("utf-8"),
    )


__all__ = ["MinutesBundle", "MinutesNotReady", "assemble_minutes"]
