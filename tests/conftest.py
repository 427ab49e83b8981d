"""Shared fixtures and in-memory fakes for the minutes pipeline tests."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from app.pipelines.minutes import (  # noqa: E402
    ExternalJobState,
    ExternalState,
    JobRecord,
    JobStatus,
    MinutesOrchestrator,
    OrchestratorConfig,
    SummaryBackend,
)
from app.pipelines.minutes.errors import (  # noqa: E402
    ConflictingStatus,
    PermanentExternalError,
    TransientExternalError,
)
from app.pipelines.minutes.interfaces import (  # noqa: E402
    JobTableInterface,
    ObjectStoreInterface,
    StageBackend,
    TextGenerationInterface,
)
from app.pipelines.minutes.retry import PollPolicy, RetryPolicy  # noqa: E402

BUCKET = "minutes-data-bucket"
WATCHED_PREFIX = "meetings/"


class InMemoryJobTable(JobTableInterface):
    """Job table with the same conditional-write contract as DynamoDB."""

    def __init__(self) -> None:
        self.items: dict[str, JobRecord] = {}
        self.history: dict[str, list[JobStatus]] = {}
        self.put_errors: list[Exception] = []
        # Errors raised before a write of the given status is applied.
        self.status_errors: dict[JobStatus, list[Exception]] = {}
        # Statuses whose next write is applied but answered with a timeout.
        self.lost_acks: list[JobStatus] = []
        self.put_calls = 0

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self.items.get(job_id)

    async def put_job(
        self,
        record: JobRecord,
        expected_prior_status: Optional[JobStatus],
    ) -> JobRecord:
        self.put_calls += 1
        if self.put_errors:
            raise self.put_errors.pop(0)
        if self.status_errors.get(record.status):
            raise self.status_errors[record.status].pop(0)

        current = self.items.get(record.job_id)
        if expected_prior_status is None:
            if current is not None:
                raise ConflictingStatus(record.job_id, None)
        elif (
            current is None
            or current.status is not expected_prior_status
            or current.version != record.version
        ):
            raise ConflictingStatus(record.job_id, expected_prior_status.value)

        committed = record.committed()
        self.items[record.job_id] = committed
        self.history.setdefault(record.job_id, []).append(committed.status)
        if record.status in self.lost_acks:
            self.lost_acks.remove(record.status)
            raise TransientExternalError(f"RequestTimeout after writing {record.job_id}", code="RequestTimeout")
        return committed

    def seed(self, record: JobRecord) -> JobRecord:
        """Store ``record`` directly, as if an earlier run had written it."""

        committed = record.committed()
        self.items[record.job_id] = committed
        self.history.setdefault(record.job_id, []).append(committed.status)
        return committed


class InMemoryObjectStore(ObjectStoreInterface):
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}

    async def get(self, key: str) -> bytes:
        try:
            return self.objects[key]
        except KeyError:
            raise PermanentExternalError(f"s3.get_object rejected (NoSuchKey): {key}", code="NoSuchKey") from None

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
    ) -> None:
        self.objects[key] = bytes(data)
        self.content_types[key] = content_type


class FakeStageBackend(StageBackend):
    """Asynchronous external service that settles after a number of polls."""

    def __init__(
        self,
        name: str,
        artifact: bytes,
        *,
        polls_until_done: int = 1,
        fail_reason: str | None = None,
        start_errors: list[Exception] | None = None,
        hang_on_start: bool = False,
    ) -> None:
        self.name = name
        self.artifact = artifact
        self.polls_until_done = polls_until_done
        self.fail_reason = fail_reason
        self.start_errors = list(start_errors or [])
        self.hang_on_start = hang_on_start
        self.start_calls = 0
        self.describe_calls = 0
        self.collect_calls = 0
        self.started_with: list[JobRecord] = []
        self._polls: dict[str, int] = {}

    async def start(self, job: JobRecord) -> ExternalJobState:
        self.start_calls += 1
        self.started_with.append(job)
        if self.start_errors:
            raise self.start_errors.pop(0)
        if self.hang_on_start:
            await asyncio.Event().wait()
        handle = f"{self.name}-{job.job_id}"
        self._polls[handle] = 0
        return ExternalJobState(handle=handle, state=ExternalState.RUNNING)

    async def describe(self, handle: str) -> ExternalJobState:
        self.describe_calls += 1
        self._polls[handle] = self._polls.get(handle, 0) + 1
        if self._polls[handle] < self.polls_until_done:
            return ExternalJobState(handle=handle, state=ExternalState.RUNNING)
        if self.fail_reason:
            return ExternalJobState(handle=handle, state=ExternalState.FAILED, failure_reason=self.fail_reason)
        return ExternalJobState(handle=handle, state=ExternalState.SUCCEEDED, output_location=f"fake://{handle}")

    async def collect(self, job: JobRecord, state: ExternalJobState) -> bytes:
        self.collect_calls += 1
        return self.artifact


class FakeTextGenerator(TextGenerationInterface):
    def __init__(self, text: str = "## Summary\nBudget approved.\n", *, delay: float = 0.0) -> None:
        self.text = text
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def invoke(self, *, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.text


TRANSCRIPT = "皆さん、おはようございます。\n予算案を承認します。\n"
SENTIMENT = {
    "overall": "POSITIVE",
    "counts": {"positive": 2, "negative": 0, "neutral": 0, "mixed": 0},
    "average_scores": {"positive": 0.9, "negative": 0.02, "neutral": 0.07, "mixed": 0.01},
    "scored_lines": 2,
    "errors": 0,
    "lines": [],
}


def fast_config(**timeouts: float) -> OrchestratorConfig:
    budget = {
        JobStatus.TRANSCRIBING: 5.0,
        JobStatus.ANALYZING_SENTIMENT: 5.0,
        JobStatus.SUMMARIZING: 5.0,
    }
    budget.update({JobStatus[name.upper()]: value for name, value in timeouts.items()})
    return OrchestratorConfig(
        retry=RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0),
        poll=PollPolicy(base_delay=0.001, max_interval=0.004),
        stage_timeouts=budget,
    )


class PipelineHarness:
    """Orchestrator wired to in-memory fakes, with handles on every fake."""

    def __init__(self, config: OrchestratorConfig | None = None) -> None:
        self.config = config or fast_config()
        self.table = InMemoryJobTable()
        self.store = InMemoryObjectStore()
        self.transcription = FakeStageBackend("transcription", TRANSCRIPT.encode("utf-8"))
        self.sentiment = FakeStageBackend("sentiment", json.dumps(SENTIMENT).encode("utf-8"))
        self.generator = FakeTextGenerator()

    def orchestrator(self) -> MinutesOrchestrator:
        return MinutesOrchestrator(
            self.config,
            job_table=self.table,
            object_store=self.store,
            backends={
                "transcription": self.transcription,
                "sentiment": self.sentiment,
                "summary": SummaryBackend(object_store=self.store, generator=self.generator),
            },
        )


@pytest.fixture
def harness() -> PipelineHarness:
    return PipelineHarness()
