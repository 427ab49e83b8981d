"""Summary stage backend: one synchronous text-generation call."""

from __future__ import annotations

import json
import logging

from .errors import PermanentExternalError
from .interfaces import ObjectStoreInterface, StageBackend, TextGenerationInterface
from .prompts import build_summary_prompts
from .types import ExternalJobState, ExternalState, JobRecord

logger = logging.getLogger("app.pipelines.minutes")


class SummaryBackend(StageBackend):
    """Read the transcript and sentiment artifacts and ask the model for minutes."""

    name = "summary"
    synchronous = True

    def __init__(self, *, object_store: ObjectStoreInterface, generator: TextGenerationInterface) -> None:
        self._store = object_store
        self._generator = generator

    async def _load_inputs(self, job: JobRecord) -> tuple[str, dict | None]:
        if not job.transcript_key:
            raise PermanentExternalError(f"Job {job.job_id} has no transcript to summarize")
        transcript = (await self._store.get(job.transcript_key)).decode("utf-8")

        sentiment = None
        if job.sentiment_key:
            try:
                sentiment = json.loads(await self._store.get(job.sentiment_key))
            except json.JSONDecodeError as exc:
                raise PermanentExternalError(f"Sentiment artifact for {job.job_id} is not JSON") from exc
        return transcript, sentiment

    async def start(self, job: JobRecord) -> ExternalJobState:
        transcript, sentiment = await self._load_inputs(job)
        prompts = build_summary_prompts(transcript, sentiment)
        logger.info("Generando resumen job=%s caracteres=%s", job.job_id, len(prompts.user_prompt))
        text = await self._generator.invoke(
            system_prompt=prompts.system_prompt,
            user_prompt=prompts.user_prompt,
        )
        if not text or not text.strip():
            raise PermanentExternalError(f"Text generation returned no summary for {job.job_id}")
        return ExternalJobState(
            handle=job.job_id,
            state=ExternalState.SUCCEEDED,
            payload=(text.strip() + "\n").encode("utf-8"),
        )

    async def collect(self, job: JobRecord, state: ExternalJobState) -> bytes:
        if state.payload is None:
            raise PermanentExternalError(f"Summary for {job.job_id} has no content")
        return state.payload


__all__ = ["SummaryBackend"]
