"""Behavioural tests for the minutes orchestrator against in-memory fakes."""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta

import pytest

from app.pipelines.minutes import (
    JobRecord,
    JobStatus,
    MinutesOrchestrator,
    TriggerBinding,
)
from app.pipelines.minutes.errors import PermanentExternalError, TransientExternalError
from app.pipelines.minutes.types import PROGRESSION, utcnow

from conftest import BUCKET, WATCHED_PREFIX, FakeTextGenerator, PipelineHarness, fast_config

SOURCE_KEY = "meetings/2024-01-01.wav"


def _request(key: str = SOURCE_KEY):
    binding = TriggerBinding(bucket=BUCKET, prefix=WATCHED_PREFIX)
    request = binding.bind(
        {
            "source": "object-store",
            "detail_type": "ObjectCreated",
            "detail": {"bucket": BUCKET, "object_key": key},
        }
    )
    assert request is not None
    return request


def _assert_monotonic(statuses):
    positions = [
        PROGRESSION.index(status) for status in statuses if status is not JobStatus.FAILED
    ]
    assert positions == sorted(positions)
    if JobStatus.FAILED in statuses:
        assert statuses[-1] is JobStatus.FAILED
        assert statuses.count(JobStatus.FAILED) == 1


def test_happy_path_produces_all_artifacts(harness: PipelineHarness):
    request = _request()

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.COMPLETED
    record = harness.table.items[request.job_id]
    assert record.status is JobStatus.COMPLETED
    assert record.error_detail is None
    assert record.transcript_key == f"output-data/{request.job_id}/transcript.txt"
    assert record.sentiment_key == f"output-data/{request.job_id}/sentiment.json"
    assert record.summary_key == f"output-data/{request.job_id}/summary.md"

    store = harness.store
    assert asyncio.run(store.get(record.transcript_key)).decode("utf-8").startswith("皆さん")
    assert b"POSITIVE" in asyncio.run(store.get(record.sentiment_key))
    assert asyncio.run(store.get(record.summary_key)) == b"## Summary\nBudget approved.\n"
    assert store.content_types[record.summary_key].startswith("text/markdown")


def test_status_path_is_monotonic(harness: PipelineHarness):
    request = _request()

    asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    history = harness.table.history[request.job_id]
    _assert_monotonic(history)
    assert history[0] is JobStatus.PENDING
    assert history[-1] is JobStatus.COMPLETED
    assert set(PROGRESSION) <= set(history)


def test_each_stage_starts_after_previous_result_is_committed(harness: PipelineHarness):
    request = _request()

    asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    (sentiment_input,) = harness.sentiment.started_with
    assert sentiment_input.status is JobStatus.ANALYZING_SENTIMENT
    assert sentiment_input.transcript_key is not None
    system_prompt, user_prompt = harness.generator.calls[0]
    assert "予算案を承認します。" in user_prompt
    assert "Overall sentiment: POSITIVE" in user_prompt
    assert "same language as the transcript" in system_prompt


def test_redelivery_after_completion_is_a_no_op(harness: PipelineHarness):
    request = _request()
    orchestrator = harness.orchestrator()
    asyncio.run(orchestrator.run(request.job_id, request.source_key))
    before = harness.table.items[request.job_id]
    puts = harness.table.put_calls

    status = asyncio.run(orchestrator.run(request.job_id, request.source_key))

    assert status is JobStatus.COMPLETED
    assert harness.table.items[request.job_id] == before
    assert harness.table.put_calls == puts
    assert harness.transcription.start_calls == 1
    assert harness.sentiment.start_calls == 1
    assert len(harness.generator.calls) == 1


def test_restart_after_kill_does_not_restart_finished_stage(harness: PipelineHarness):
    request = _request()
    harness.sentiment.hang_on_start = True

    async def kill_during_sentiment() -> None:
        task = asyncio.create_task(harness.orchestrator().run(request.job_id, request.source_key))
        for _ in range(1000):
            if harness.sentiment.start_calls:
                break
            await asyncio.sleep(0.001)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(kill_during_sentiment())

    interrupted = harness.table.items[request.job_id]
    assert interrupted.status is JobStatus.ANALYZING_SENTIMENT
    assert interrupted.transcript_key is not None

    harness.sentiment.hang_on_start = False
    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.COMPLETED
    assert harness.transcription.start_calls == 1
    assert harness.transcription.collect_calls == 1
    _assert_monotonic(harness.table.history[request.job_id])


def test_persisted_handle_resumes_polling(harness: PipelineHarness):
    request = _request()
    handle = f"transcription-{request.job_id}"
    harness.table.seed(
        JobRecord.new(request.job_id, request.source_key).evolve(
            status=JobStatus.TRANSCRIBING,
            transcription_handle=handle,
            stage_started_at=utcnow(),
        )
    )

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.COMPLETED
    assert harness.transcription.start_calls == 0
    assert harness.transcription.describe_calls >= 1
    assert harness.table.items[request.job_id].transcription_handle == handle


def test_stage_timeout_fails_job_without_later_results():
    harness = PipelineHarness(fast_config(transcribing=0.05))
    harness.transcription.polls_until_done = 10**9
    request = _request()

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.FAILED
    record = harness.table.items[request.job_id]
    assert "transcription timed out" in record.error_detail
    assert record.transcript_key is None
    assert record.sentiment_key is None
    assert record.summary_key is None
    assert harness.sentiment.start_calls == 0
    _assert_monotonic(harness.table.history[request.job_id])


def test_budget_spent_before_restart_fails_immediately():
    harness = PipelineHarness(fast_config(transcribing=60.0))
    request = _request()
    harness.table.seed(
        JobRecord.new(request.job_id, request.source_key).evolve(
            status=JobStatus.TRANSCRIBING,
            transcription_handle=f"transcription-{request.job_id}",
            stage_started_at=utcnow() - timedelta(minutes=5),
        )
    )

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.FAILED
    assert harness.transcription.describe_calls == 0
    assert "timed out after 60.0s" in harness.table.items[request.job_id].error_detail


def test_transient_start_failure_is_retried(harness: PipelineHarness):
    harness.transcription.start_errors = [TransientExternalError("ThrottlingException")]
    request = _request()

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.COMPLETED
    assert harness.transcription.start_calls == 2


def test_transient_table_failure_is_retried(harness: PipelineHarness):
    harness.table.put_errors = [TransientExternalError("ProvisionedThroughputExceededException")]
    request = _request()

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.COMPLETED


def test_exhausted_retries_fail_the_stage(harness: PipelineHarness):
    harness.transcription.start_errors = [TransientExternalError("throttled")] * 3
    request = _request()

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.FAILED
    assert harness.transcription.start_calls == 3
    assert "gave up after 3 attempts" in harness.table.items[request.job_id].error_detail


def test_permanent_error_fails_without_retry(harness: PipelineHarness):
    harness.sentiment.start_errors = [PermanentExternalError("AccessDeniedException")]
    request = _request()

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.FAILED
    record = harness.table.items[request.job_id]
    assert harness.sentiment.start_calls == 1
    assert record.transcript_key is not None
    assert record.sentiment_key is None
    assert "AccessDeniedException" in record.error_detail


def test_external_job_failure_is_recorded(harness: PipelineHarness):
    harness.transcription.fail_reason = "Unsupported audio format"
    request = _request()

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.FAILED
    assert "Unsupported audio format" in harness.table.items[request.job_id].error_detail
    assert harness.transcription.collect_calls == 0


def test_empty_summary_fails_the_job(harness: PipelineHarness):
    harness.generator.text = "   "
    request = _request()

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.FAILED
    record = harness.table.items[request.job_id]
    assert record.sentiment_key is not None
    assert record.summary_key is None


def test_failed_job_is_not_resumed(harness: PipelineHarness):
    harness.transcription.fail_reason = "boom"
    request = _request()
    orchestrator = harness.orchestrator()
    asyncio.run(orchestrator.run(request.job_id, request.source_key))
    harness.transcription.fail_reason = None
    puts = harness.table.put_calls

    status = asyncio.run(orchestrator.run(request.job_id, request.source_key))

    assert status is JobStatus.FAILED
    assert harness.table.put_calls == puts
    assert harness.transcription.start_calls == 1


def test_duplicate_concurrent_deliveries_advance_once(harness: PipelineHarness):
    harness.transcription.polls_until_done = 3
    request = _request()
    orchestrator = harness.orchestrator()

    async def deliver_twice():
        return await asyncio.gather(
            orchestrator.run(request.job_id, request.source_key),
            orchestrator.run(request.job_id, request.source_key),
        )

    results = asyncio.run(deliver_twice())

    assert JobStatus.COMPLETED in results
    assert harness.table.items[request.job_id].status is JobStatus.COMPLETED
    assert harness.transcription.start_calls == 1
    history = harness.table.history[request.job_id]
    _assert_monotonic(history)
    assert history.count(JobStatus.COMPLETED) == 1
    assert len(harness.generator.calls) == 1


def test_independent_jobs_run_concurrently():
    def build() -> PipelineHarness:
        harness = PipelineHarness()
        harness.generator = FakeTextGenerator(delay=0.1)
        return harness

    single = build()
    started = time.perf_counter()
    asyncio.run(single.orchestrator().run("solo", "meetings/solo.wav"))
    single_latency = time.perf_counter() - started

    jobs = 10
    many = build()
    started = time.perf_counter()
    results = asyncio.run(
        many.orchestrator().run_many((f"job-{n}", f"meetings/{n}.wav") for n in range(jobs))
    )
    elapsed = time.perf_counter() - started

    assert results == [JobStatus.COMPLETED] * jobs
    assert elapsed < single_latency * jobs / 3


def test_one_failing_job_does_not_block_others(harness: PipelineHarness):
    harness.transcription.start_errors = [PermanentExternalError("bad media")]

    results = asyncio.run(
        harness.orchestrator().run_many([("bad", "meetings/bad.wav"), ("good", "meetings/good.wav")])
    )

    assert results == [JobStatus.FAILED, JobStatus.COMPLETED]
    assert harness.table.items["good"].summary_key == "output-data/good/summary.md"


def test_missing_backend_is_rejected(harness: PipelineHarness):
    with pytest.raises(ValueError, match="summary"):
        MinutesOrchestrator(
            harness.config,
            job_table=harness.table,
            object_store=harness.store,
            backends={"transcription": harness.transcription, "sentiment": harness.sentiment},
        )


def test_redelivery_during_summary_leaves_the_call_to_its_owner(harness: PipelineHarness):
    harness.generator.delay = 0.2
    request = _request()
    orchestrator = harness.orchestrator()

    async def redeliver_mid_summary():
        owner = asyncio.create_task(orchestrator.run(request.job_id, request.source_key))
        for _ in range(1000):
            if harness.generator.calls:
                break
            await asyncio.sleep(0.001)
        redelivered = await orchestrator.run(request.job_id, request.source_key)
        return await owner, redelivered

    owner_status, redelivered_status = asyncio.run(redeliver_mid_summary())

    assert owner_status is JobStatus.COMPLETED
    assert redelivered_status is JobStatus.SUMMARIZING
    assert len(harness.generator.calls) == 1
    assert harness.table.history[request.job_id].count(JobStatus.COMPLETED) == 1


def test_summary_stage_persists_its_start(harness: PipelineHarness):
    harness.generator.delay = 60.0
    request = _request()

    async def kill_during_summary() -> None:
        task = asyncio.create_task(harness.orchestrator().run(request.job_id, request.source_key))
        for _ in range(1000):
            if harness.generator.calls:
                break
            await asyncio.sleep(0.001)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(kill_during_summary())

    claimed = harness.table.items[request.job_id]
    assert claimed.status is JobStatus.SUMMARIZING
    assert claimed.stage_started_at is not None

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.SUMMARIZING
    assert len(harness.generator.calls) == 1
    assert harness.table.items[request.job_id] == claimed


def test_summary_budget_spent_before_restart_fails_immediately():
    harness = PipelineHarness(fast_config(summarizing=60.0))
    request = _request()
    harness.table.seed(
        JobRecord.new(request.job_id, request.source_key).evolve(
            status=JobStatus.SUMMARIZING,
            transcript_key=f"output-data/{request.job_id}/transcript.txt",
            sentiment_key=f"output-data/{request.job_id}/sentiment.json",
            stage_started_at=utcnow() - timedelta(minutes=10),
        )
    )

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.FAILED
    assert harness.generator.calls == []
    assert "summary timed out after 60.0s" in harness.table.items[request.job_id].error_detail


def test_write_applied_despite_lost_acknowledgement_is_kept(harness: PipelineHarness):
    harness.table.lost_acks = [JobStatus.ANALYZING_SENTIMENT]
    request = _request()

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.COMPLETED
    assert harness.table.lost_acks == []
    assert harness.transcription.start_calls == 1
    assert harness.sentiment.start_calls == 1
    history = harness.table.history[request.job_id]
    _assert_monotonic(history)
    assert history.count(JobStatus.COMPLETED) == 1


def test_unwritable_failure_is_reported_without_raising(harness: PipelineHarness):
    harness.transcription.fail_reason = "Unsupported audio format"
    harness.table.status_errors[JobStatus.FAILED] = [TransientExternalError("RequestTimeout")] * 3
    request = _request()

    status = asyncio.run(harness.orchestrator().run(request.job_id, request.source_key))

    assert status is JobStatus.TRANSCRIBING
    record = harness.table.items[request.job_id]
    assert record.status is JobStatus.TRANSCRIBING
    assert record.error_detail is None
