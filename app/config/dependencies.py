"""Lazily-built singletons wiring the pipeline to its AWS services.

Controllers and the Lambda entry point receive these through FastAPI
``Depends`` or direct calls; tests replace them via ``dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from app.pipelines.minutes import (
    MinutesOrchestrator,
    OrchestratorConfig,
    SummaryBackend,
    TriggerBinding,
)
from app.pipelines.minutes.interfaces import JobTableInterface, ObjectStoreInterface
from app.services import (
    BedrockLlmClient,
    ComprehendSentimentService,
    DynamoJobTable,
    S3ObjectStore,
    TranscribeJobService,
)

from .settings import settings


@lru_cache
def get_object_store() -> ObjectStoreInterface:
    """Return the shared S3 object store."""

    return S3ObjectStore(settings.s3.bucket_name)


@lru_cache
def get_job_table() -> JobTableInterface:
    """Return the shared DynamoDB job table."""

    return DynamoJobTable(settings.dynamo.table_name)


@lru_cache
def get_orchestrator() -> MinutesOrchestrator:
    """Return the orchestrator configured from ``settings.pipeline``."""

    store = get_object_store()
    config = OrchestratorConfig.from_pipeline_config(
        settings.pipeline,
        output_prefix=settings.s3.output_prefix,
    )
    backends = {
        TranscribeJobService.name: TranscribeJobService(object_store=store),
        ComprehendSentimentService.name: ComprehendSentimentService(object_store=store),
        SummaryBackend.name: SummaryBackend(object_store=store, generator=BedrockLlmClient()),
    }
    return MinutesOrchestrator(
        config,
        job_table=get_job_table(),
        object_store=store,
        backends=backends,
    )


@lru_cache
def get_trigger_binding() -> TriggerBinding:
    """Return the binding for the watched bucket and input prefix."""

    return TriggerBinding(bucket=settings.s3.bucket_name, prefix=settings.s3.input_prefix)


__all__ = ["get_object_store", "get_job_table", "get_orchestrator", "get_trigger_binding"]
