"""Amazon Transcribe batch jobs for the transcription stage."""

from __future__ import annotations

import json
import logging
import re
from pathlib import PurePosixPath
from typing import Any

from app.config.settings import settings
from app.pipelines.minutes.errors import PermanentExternalError, PipelineError
from app.pipelines.minutes.interfaces import ObjectStoreInterface, StageBackend
from app.pipelines.minutes.types import ExternalJobState, ExternalState, JobRecord
from app.services.aws import call_aws, create_boto3_client, s3_uri, split_s3_location

logger = logging.getLogger(__name__)

# Comprehend rejects documents above 5 000 bytes; keep each line well below it.
MAX_SEGMENT_BYTES = 4500

_SENTENCE_END = re.compile(r"(?<=[。．!?！？])\s*|(?<=\.)\s+")

_MEDIA_FORMATS = {
    ".amr": "amr",
    ".flac": "flac",
    ".m4a": "m4a",
    ".mp3": "mp3",
    ".mp4": "mp4",
    ".ogg": "ogg",
    ".wav": "wav",
    ".webm": "webm",
}

_STATE_BY_STATUS = {
    "QUEUED": ExternalState.RUNNING,
    "IN_PROGRESS": ExternalState.RUNNING,
    "COMPLETED": ExternalState.SUCCEEDED,
    "FAILED": ExternalState.FAILED,
}


def _split_oversized(sentence: str, limit: int) -> list[str]:
    pieces: list[str] = []
    current = ""
    for char in sentence:
        if len((current + char).encode("utf-8")) > limit:
            pieces.append(current)
            current = char
        else:
            current += char
    if current:
        pieces.append(current)
    return pieces


def segment_transcript(text: str, *, max_bytes: int = MAX_SEGMENT_BYTES) -> list[str]:
    """Split transcript text into one sentence per line.

    Sentences longer than ``max_bytes`` (UTF-8) are cut into several lines so
    every line stays a valid Comprehend document.
    """

    segments: list[str] = []
    for sentence in _SENTENCE_END.split(text):
        sentence = " ".join(sentence.split())
        if not sentence:
            continue
        if len(sentence.encode("utf-8")) <= max_bytes:
            segments.append(sentence)
        else:
            segments.extend(_split_oversized(sentence, max_bytes))
    return segments


def extract_transcript_text(raw: bytes) -> str:
    """Return the joined transcript from a Transcribe output document."""

    try:
        document = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PermanentExternalError(f"Transcribe output is not valid JSON: {exc}") from exc

    transcripts = document.get("results", {}).get("transcripts", [])
    return " ".join(
        str(item.get("transcript", "")).strip()
        for item in transcripts
        if isinstance(item, dict) and item.get("transcript")
    ).strip()


class TranscribeJobService(StageBackend):
    """Start, poll and collect Amazon Transcribe batch jobs."""

    name = "transcription"

    def __init__(
        self,
        *,
        object_store: ObjectStoreInterface,
        bucket: str | None = None,
        work_prefix: str | None = None,
        language_code: str | None = None,
        client: Any = None,
    ) -> None:
        self._store = object_store
        self._bucket = bucket or settings.s3.bucket_name
        self._work_prefix = work_prefix if work_prefix is not None else settings.s3.work_prefix
        self._language_code = language_code or settings.transcribe.language_code
        self._client = client or create_boto3_client(
            "transcribe", region_name=settings.transcribe.region
        )

    def output_key(self, job_id: str) -> str:
        return f"{self._work_prefix}{job_id}/transcribe.json"

    async def start(self, job: JobRecord) -> ExternalJobState:
        params: dict[str, Any] = {
            "TranscriptionJobName": job.job_id,
            "Media": {"MediaFileUri": s3_uri(self._bucket, job.source_key)},
            "OutputBucketName": self._bucket,
            "OutputKey": self.output_key(job.job_id),
        }
        media_format = _MEDIA_FORMATS.get(PurePosixPath(job.source_key).suffix.lower())
        if media_format:
            params["MediaFormat"] = media_format
        if self._language_code == "auto":
            params["IdentifyLanguage"] = True
        else:
            params["LanguageCode"] = self._language_code

        try:
            await call_aws(
                "transcribe.start_transcription_job",
                self._client.start_transcription_job,
                **params,
            )
        except PipelineError as exc:
            if exc.code != "ConflictException":
                raise
            # The job name is the job id, so the existing job is ours.
            logger.info("Transcription job already exists job=%s; resuming", job.job_id)
        return await self.describe(job.job_id)

    async def describe(self, handle: str) -> ExternalJobState:
        response = await call_aws(
            "transcribe.get_transcription_job",
            self._client.get_transcription_job,
            TranscriptionJobName=handle,
        )
        details = response.get("TranscriptionJob", {})
        status = details.get("TranscriptionJobStatus", "")
        state = _STATE_BY_STATUS.get(status)
        if state is None:
            raise PermanentExternalError(f"Unknown transcription status {status!r} for {handle}")
        return ExternalJobState(
            handle=handle,
            state=state,
            output_location=details.get("Transcript", {}).get("TranscriptFileUri"),
            failure_reason=details.get("FailureReason"),
        )

    async def collect(self, job: JobRecord, state: ExternalJobState) -> bytes:
        key = self.output_key(job.job_id)
        if state.output_location:
            _, key = split_s3_location(state.output_location, default_bucket=self._bucket)

        text = extract_transcript_text(await self._store.get(key))
        segments = segment_transcript(text)
        if not segments:
            raise PermanentExternalError(f"Transcription for {job.job_id} produced no text")
        logger.info("Transcripcion lista job=%s segmentos=%s", job.job_id, len(segments))
        return ("\n".join(segments) + "\n").encode("utf-8")


__all__ = [
    "TranscribeJobService",
    "segment_transcript",
    "extract_transcript_text",
    "MAX_SEGMENT_BYTES",
]
