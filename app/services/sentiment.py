"""Amazon Comprehend sentiment-detection jobs for the sentiment stage.

The transcript artifact is submitted as ``ONE_DOC_PER_LINE`` input, so every
transcript segment is scored separately. Comprehend writes a gzipped tarball
holding one JSON result per line; :func:`aggregate_sentiment` folds those
results into the ``sentiment.json`` artifact.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import tarfile
from collections import Counter
from typing import Any, Iterable

from app.config.settings import settings
from app.pipelines.minutes.errors import PermanentExternalError
from app.pipelines.minutes.interfaces import ObjectStoreInterface, StageBackend
from app.pipelines.minutes.types import ExternalJobState, ExternalState, JobRecord
from app.services.aws import call_aws, create_boto3_client, s3_uri, split_s3_location

logger = logging.getLogger(__name__)

SENTIMENT_LABELS = ("POSITIVE", "NEGATIVE", "NEUTRAL", "MIXED")

_STATE_BY_STATUS = {
    "SUBMITTED": ExternalState.RUNNING,
    "IN_PROGRESS": ExternalState.RUNNING,
    "STOP_REQUESTED": ExternalState.RUNNING,
    "COMPLETED": ExternalState.SUCCEEDED,
    "FAILED": ExternalState.FAILED,
    "STOPPED": ExternalState.FAILED,
}


def client_request_token(job_id: str) -> str:
    """Idempotency token for the start call; Comprehend allows 64 ``[a-zA-Z0-9-]`` chars."""

    return hashlib.sha256(job_id.encode("utf-8")).hexdigest()


def read_output_archive(archive: bytes) -> list[dict[str, Any]]:
    """Return the per-line JSON results stored in a Comprehend output tarball."""

    results: list[dict[str, Any]] = []
    try:
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as bundle:
            for member in bundle.getmembers():
                if not member.isfile():
                    continue
                handle = bundle.extractfile(member)
                if handle is None:
                    continue
                for raw_line in handle.read().decode("utf-8").splitlines():
                    if raw_line.strip():
                        results.append(json.loads(raw_line))
    except (tarfile.TarError, OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PermanentExternalError(f"Unreadable Comprehend output: {exc}") from exc
    return results


def aggregate_sentiment(results: Iterable[dict[str, Any]]) -> dict[str, Any]:
    """Fold per-line Comprehend results into one summary document.

    ``overall`` is the label with the highest mean score across lines; lines
    Comprehend could not score are counted under ``errors``.
    """

    counts: Counter[str] = Counter({label: 0 for label in SENTIMENT_LABELS})
    totals = {label: 0.0 for label in SENTIMENT_LABELS}
    lines: list[dict[str, Any]] = []
    errors = 0

    for result in results:
        label = result.get("Sentiment")
        if label not in counts:
            errors += 1
            continue
        scores = result.get("SentimentScore", {})
        counts[label] += 1
        for name in SENTIMENT_LABELS:
            totals[name] += float(scores.get(name.capitalize(), 0.0))
        lines.append(
            {
                "line": result.get("Line"),
                "sentiment": label,
                "scores": {name.lower(): scores.get(name.capitalize(), 0.0) for name in SENTIMENT_LABELS},
            }
        )

    scored = len(lines)
    if not scored:
        raise PermanentExternalError("Comprehend returned no scored lines")

    lines.sort(key=lambda item: (item["line"] is None, item["line"] or 0))
    average = {name.lower(): round(totals[name] / scored, 4) for name in SENTIMENT_LABELS}
    overall = max(SENTIMENT_LABELS, key=lambda name: totals[name])
    return {
        "overall": overall,
        "counts": {name.lower(): counts[name] for name in SENTIMENT_LABELS},
        "average_scores": average,
        "scored_lines": scored,
        "errors": errors,
        "lines": lines,
    }


class ComprehendSentimentService(StageBackend):
    """Start, poll and collect Comprehend sentiment-detection jobs."""

    name = "sentiment"

    def __init__(
        self,
        *,
        object_store: ObjectStoreInterface,
        bucket: str | None = None,
        work_prefix: str | None = None,
        language_code: str | None = None,
        data_access_role_arn: str | None = None,
        client: Any = None,
    ) -> None:
        self._store = object_store
        self._bucket = bucket or settings.s3.bucket_name
        self._work_prefix = work_prefix if work_prefix is not None else settings.s3.work_prefix
        self._language_code = language_code or settings.comprehend.language_code
        self._role_arn = data_access_role_arn or settings.comprehend.data_access_role_arn
        self._client = client or create_boto3_client(
            "comprehend", region_name=settings.comprehend.region
        )

    def output_prefix(self, job_id: str) -> str:
        return f"{self._work_prefix}{job_id}/comprehend/"

    async def start(self, job: JobRecord) -> ExternalJobState:
        if not job.transcript_key:
            raise PermanentExternalError(f"Job {job.job_id} has no transcript to analyze")
        if not self._role_arn:
            raise PermanentExternalError("Comprehend data access role is not configured.")

        response = await call_aws(
            "comprehend.start_sentiment_detection_job",
            self._client.start_sentiment_detection_job,
            InputDataConfig={
                "S3Uri": s3_uri(self._bucket, job.transcript_key),
                "InputFormat": "ONE_DOC_PER_LINE",
            },
            OutputDataConfig={"S3Uri": s3_uri(self._bucket, self.output_prefix(job.job_id))},
            DataAccessRoleArn=self._role_arn,
            JobName=job.job_id,
            LanguageCode=self._language_code,
            ClientRequestToken=client_request_token(job.job_id),
        )
        handle = response["JobId"]
        logger.info("Analisis de sentimiento iniciado job=%s handle=%s", job.job_id, handle)
        return ExternalJobState(
            handle=handle,
            state=_STATE_BY_STATUS.get(response.get("JobStatus", ""), ExternalState.RUNNING),
        )

    async def describe(self, handle: str) -> ExternalJobState:
        response = await call_aws(
            "comprehend.describe_sentiment_detection_job",
            self._client.describe_sentiment_detection_job,
            JobId=handle,
        )
        details = response.get("SentimentDetectionJobProperties", {})
        status = details.get("JobStatus", "")
        state = _STATE_BY_STATUS.get(status)
        if state is None:
            raise PermanentExternalError(f"Unknown sentiment job status {status!r} for {handle}")
        return ExternalJobState(
            handle=handle,
            state=state,
            output_location=details.get("OutputDataConfig", {}).get("S3Uri"),
            failure_reason=details.get("Message"),
        )

    async def collect(self, job: JobRecord, state: ExternalJobState) -> bytes:
        if not state.output_location:
            raise PermanentExternalError(f"Sentiment job {state.handle} reported no output location")
        _, key = split_s3_location(state.output_location, default_bucket=self._bucket)
        if key.endswith("/"):
            key = f"{key}output.tar.gz"

        summary = aggregate_sentiment(read_output_archive(await self._store.get(key)))
        logger.info(
            "Sentimiento agregado job=%s overall=%s lineas=%s errores=%s",
            job.job_id,
            summary["overall"],
            summary["scored_lines"],
            summary["errors"],
        )
        return json.dumps(summary, ensure_ascii=False, indent=2).encode("utf-8")


__all__ = [
    "ComprehendSentimentService",
    "aggregate_sentiment",
    "client_request_token",
    "read_output_archive",
    "SENTIMENT_LABELS",
]
