"""Stage sequencer driving one job record through the minutes pipeline.

Every write to the job table goes through ``_JobRun.commit`` which refuses
regressive transitions and relies on the table's conditional write, so two
deliveries of the same event can never both advance a record. A second
instance that loses such a race stops quietly and reports the persisted
status.

Stages without an external handle are claimed by writing ``stage_started_at``
before the backend is called. A redelivery that finds the claim backs off; once
the stage budget has run out the job fails with a timeout instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable, Mapping

from app.telemetry import observe_stage, observe_transition

from .errors import ConflictingStatus, PermanentExternalError, PipelineError, StageTimeoutError
from .interfaces import JobTableInterface, ObjectStoreInterface, StageBackend
from .retry import call_with_retry, poll_until_settled
from .stages import STAGES, Stage, stage_for
from .types import (
    ExternalJobState,
    ExternalState,
    JobRecord,
    JobStatus,
    OrchestratorConfig,
    can_transition,
    utcnow,
)

logger = logging.getLogger("app.pipelines.minutes")

_MAX_ERROR_DETAIL = 2000
_WRITE_STAMPS = {"version", "updated_at"}


class _JobRun:
    """Latest committed record of one job plus the guarded write path."""

    def __init__(self, table: JobTableInterface, config: OrchestratorConfig, record: JobRecord) -> None:
        self._table = table
        self._config = config
        self.record = record

    async def commit(self, **changes) -> JobRecord:
        current = self.record
        target = changes.get("status", current.status)
        if not can_transition(current.status, target):
            raise ConflictingStatus(current.job_id, current.status.value)

        candidate = current.evolve(**changes)
        attempts = 0

        async def put() -> JobRecord:
            nonlocal attempts
            attempts += 1
            return await self._table.put_job(candidate, current.status)

        try:
            self.record = await call_with_retry("job_table.put_job", put, self._config.retry)
        except ConflictingStatus:
            # A retried put can collide with its own earlier attempt whose
            # acknowledgement was lost; that write is ours to keep.
            if attempts < 2:
                raise
            self.record = await self._adopt(current, candidate)
        if self.record.status is not current.status:
            observe_transition(self.record.status.value)
        return self.record

    async def _adopt(self, current: JobRecord, candidate: JobRecord) -> JobRecord:
        latest = await call_with_retry(
            "job_table.get_job",
            lambda: self._table.get_job(current.job_id),
            self._config.retry,
        )
        if latest is None or latest.version != current.version + 1:
            raise ConflictingStatus(current.job_id, current.status.value)
        if latest.model_dump(exclude=_WRITE_STAMPS) != candidate.model_dump(exclude=_WRITE_STAMPS):
            raise ConflictingStatus(current.job_id, current.status.value)
        logger.info("Escritura confirmada tras reintento job=%s version=%s", latest.job_id, latest.version)
        return latest


class MinutesOrchestrator:
    """Drive jobs through transcription, sentiment analysis and summarization."""

    def __init__(
        self,
        config: OrchestratorConfig,
        *,
        job_table: JobTableInterface,
        object_store: ObjectStoreInterface,
        backends: Mapping[str, StageBackend],
    ) -> None:
        missing = [stage.name for stage in STAGES if stage.name not in backends]
        if missing:
            raise ValueError(f"No backend configured for stages: {', '.join(missing)}")
        self._config = config
        self._table = job_table
        self._store = object_store
        self._backends = dict(backends)

    async def run(self, job_id: str, source_key: str) -> JobStatus:
        """Advance ``job_id`` as far as possible and return the status it ends in.

        Safe to call repeatedly for the same job: finished stages are skipped,
        a persisted external handle resumes polling, and terminal jobs are
        returned untouched.
        """

        job = _JobRun(self._table, self._config, await self._load_or_create(job_id, source_key))

        while True:
            stage = stage_for(job.record.status)
            if stage is None:
                logger.info("Job terminado job=%s status=%s", job_id, job.record.status.value)
                return job.record.status

            try:
                await self._run_stage(job, stage)
            except ConflictingStatus:
                status = await self._persisted_status(job)
                logger.info(
                    "Job en manos de otra instancia job=%s stage=%s; estado persistido=%s",
                    job_id,
                    stage.name,
                    status.value,
                )
                return status
            except PipelineError as exc:
                await self._fail(job, stage, str(exc))
            except Exception as exc:
                logger.exception("Error inesperado job=%s stage=%s", job_id, stage.name)
                await self._fail(job, stage, f"unexpected error: {exc!r}")
            else:
                continue

            if not job.record.status.is_terminal:
                # FAILED was not persisted; another instance owns the job or the table is unreachable.
                return job.record.status

    async def run_many(self, requests: Iterable[tuple[str, str]]) -> list[JobStatus]:
        """Run independent jobs concurrently; one job's failure never blocks another."""

        return list(await asyncio.gather(*(self.run(job_id, key) for job_id, key in requests)))

    async def _read(self, job_id: str) -> JobRecord | None:
        return await call_with_retry(
            "job_table.get_job",
            lambda: self._table.get_job(job_id),
            self._config.retry,
        )

    async def _persisted_status(self, job: _JobRun) -> JobStatus:
        try:
            latest = await self._read(job.record.job_id)
        except PipelineError as exc:
            logger.error("No se pudo releer job=%s: %s", job.record.job_id, exc)
            return job.record.status
        if latest is not None:
            job.record = latest
        return job.record.status

    async def _load_or_create(self, job_id: str, source_key: str) -> JobRecord:
        record = await self._read(job_id)
        if record is not None:
            if record.source_key != source_key:
                logger.warning(
                    "source_key distinto para job=%s persistido=%s recibido=%s",
                    job_id,
                    record.source_key,
                    source_key,
                )
            return record

        try:
            record = await call_with_retry(
                "job_table.put_job",
                lambda: self._table.put_job(JobRecord.new(job_id, source_key), None),
                self._config.retry,
            )
        except ConflictingStatus:
            # Another delivery created the record first.
            record = await self._read(job_id)
            if record is None:
                raise
            return record

        observe_transition(JobStatus.PENDING.value)
        logger.info("Job creado job=%s source=%s", job_id, source_key)
        return record

    def _remaining_budget(self, record: JobRecord, stage: Stage) -> float:
        budget = self._config.timeout_for(stage.status)
        if record.status is stage.status and record.stage_started_at is not None:
            elapsed = (utcnow() - record.stage_started_at).total_seconds()
            return budget - max(elapsed, 0.0)
        return budget

    async def _run_stage(self, job: _JobRun, stage: Stage) -> None:
        budget = self._config.timeout_for(stage.status)
        remaining = self._remaining_budget(job.record, stage)
        if remaining <= 0:
            raise StageTimeoutError(stage.name, budget)

        started = time.perf_counter()
        try:
            await asyncio.wait_for(self._drive(job, stage), timeout=remaining)
        except asyncio.TimeoutError as exc:
            if isinstance(exc, StageTimeoutError):
                raise
            raise StageTimeoutError(stage.name, budget) from exc
        finally:
            observe_stage(stage.name, time.perf_counter() - started)

    async def _drive(self, job: _JobRun, stage: Stage) -> None:
        backend = self._backends[stage.name]
        retry = self._config.retry
        latest = await self._read(job.record.job_id)
        if latest is None or latest.version != job.record.version:
            # Another instance wrote since this one last read the record.
            raise ConflictingStatus(job.record.job_id, job.record.status.value)
        record = job.record
        handle = getattr(record, stage.handle_field) if stage.handle_field else None

        if handle:
            logger.info("Reanudando sondeo job=%s stage=%s handle=%s", record.job_id, stage.name, handle)
            state = await call_with_retry(
                f"{stage.name}.describe",
                lambda: backend.describe(handle),
                retry,
            )
        elif backend.synchronous or not stage.handle_field:
            if record.status is stage.status and record.stage_started_at is not None:
                # Claimed by an instance that may still be inside the call.
                raise ConflictingStatus(record.job_id, record.status.value)
            await job.commit(status=stage.status, stage_started_at=utcnow())
            logger.info("Etapa reclamada job=%s stage=%s", record.job_id, stage.name)
            state = await call_with_retry(f"{stage.name}.start", lambda: backend.start(job.record), retry)
        else:
            started_at = utcnow()
            state = await call_with_retry(f"{stage.name}.start", lambda: backend.start(job.record), retry)
            await job.commit(
                status=stage.status,
                stage_started_at=started_at,
                **{stage.handle_field: state.handle},
            )
            logger.info("Etapa iniciada job=%s stage=%s handle=%s", record.job_id, stage.name, state.handle)

        if not state.settled:
            state = await poll_until_settled(
                f"{stage.name}.describe",
                backend.describe,
                state,
                poll=self._config.poll,
                retry=retry,
            )

        await self._finalize(job, stage, backend, state)

    async def _finalize(
        self,
        job: _JobRun,
        stage: Stage,
        backend: StageBackend,
        state: ExternalJobState,
    ) -> None:
        if state.state is ExternalState.FAILED:
            reason = state.failure_reason or "no reason reported"
            raise PermanentExternalError(f"{stage.name} job {state.handle} failed: {reason}")

        retry = self._config.retry
        artifact = await call_with_retry(
            f"{stage.name}.collect",
            lambda: backend.collect(job.record, state),
            retry,
        )
        key = stage.artifact_key(self._config.output_prefix, job.record.job_id)
        await call_with_retry(
            "object_store.put",
            lambda: self._store.put(key, artifact, content_type=stage.content_type),
            retry,
        )
        await job.commit(
            status=stage.next_status,
            stage_started_at=None,
            **{stage.result_field: key},
        )
        logger.info(
            "Etapa completada job=%s stage=%s artefacto=%s siguiente=%s",
            job.record.job_id,
            stage.name,
            key,
            stage.next_status.value,
        )

    async def _fail(self, job: _JobRun, stage: Stage, detail: str) -> None:
        logger.error("Etapa fallida job=%s stage=%s: %s", job.record.job_id, stage.name, detail)
        if not can_transition(job.record.status, JobStatus.FAILED):
            return
        try:
            await job.commit(status=JobStatus.FAILED, error_detail=detail[:_MAX_ERROR_DETAIL])
        except ConflictingStatus:
            await self._persisted_status(job)
        except PipelineError as exc:
            logger.error("No se pudo registrar FAILED job=%s: %s", job.record.job_id, exc)


__all__ = ["MinutesOrchestrator"]
