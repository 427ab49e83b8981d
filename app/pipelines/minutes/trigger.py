"""Map "object created" notifications to orchestrator invocations.

Two envelope shapes are accepted: the normalized form used by internal
producers and the native EventBridge S3 notification. Binding only guarantees
at-least-once delivery; repeated deliveries of one object map to the same
``job_id`` and the orchestrator makes them idempotent.
"""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import PurePosixPath
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedEvent

logger = logging.getLogger("app.pipelines.minutes")

_ACCEPTED_KINDS = frozenset(
    {
        ("object-store", "ObjectCreated"),
        ("aws.s3", "Object Created"),
    }
)
_UNSAFE_CHARS = re.compile(r"[^0-9A-Za-z._-]+")
_MAX_JOB_ID_LENGTH = 200  # Amazon Transcribe job-name limit.
_DIGEST_LENGTH = 16


class TriggerRequest(BaseModel):
    """Orchestrator invocation derived from one notification."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    source_key: str
    bucket: str
    version_id: Optional[str] = None


class _NormalizedDetail(BaseModel):
    bucket: str = Field(min_length=1)
    object_key: str = Field(min_length=1)
    version_id: Optional[str] = None


class _S3BucketRef(BaseModel):
    name: str = Field(min_length=1)


class _S3ObjectRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(min_length=1)
    version_id: Optional[str] = Field(default=None, alias="version-id")


class _S3Detail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bucket: _S3BucketRef
    object_ref: _S3ObjectRef = Field(alias="object")


def derive_job_id(bucket: str, key: str, version_id: str | None = None) -> str:
    """Deterministic job id: readable stem of the key plus a digest of its identity."""

    identity = f"{bucket}/{key}"
    if version_id:
        identity = f"{identity}@{version_id}"
    digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()[:_DIGEST_LENGTH]

    slug = _UNSAFE_CHARS.sub("-", PurePosixPath(key).stem).strip("-._")
    slug = slug[: _MAX_JOB_ID_LENGTH - _DIGEST_LENGTH - 1] or "job"
    return f"{slug}-{digest}"


def _detail_type(payload: Mapping[str, Any]) -> Any:
    return payload.get("detail_type", payload.get("detail-type"))


def parse_event(payload: Any) -> tuple[str, str, Optional[str]] | None:
    """Extract (bucket, key, version_id) from an object-created event.

    Returns None for well-formed events of another kind; raises
    ``MalformedEvent`` when an object-created event lacks required fields.
    """

    if not isinstance(payload, Mapping):
        raise MalformedEvent("Event payload must be a JSON object")

    kind = (payload.get("source"), _detail_type(payload))
    if not all(isinstance(part, str) for part in kind) or kind not in _ACCEPTED_KINDS:
        return None

    detail = payload.get("detail")
    if not isinstance(detail, Mapping):
        raise MalformedEvent("Event is missing its detail section")

    try:
        if kind[0] == "aws.s3":
            parsed = _S3Detail.model_validate(detail)
            return parsed.bucket.name, parsed.object_ref.key, parsed.object_ref.version_id
        normalized = _NormalizedDetail.model_validate(detail)
        return normalized.bucket, normalized.object_key, normalized.version_id
    except ValidationError as exc:
        raise MalformedEvent(f"Invalid object-created detail: {exc.error_count()} error(s)") from exc


class TriggerBinding:
    """Filter notifications to the watched bucket/prefix and derive job ids."""

    def __init__(self, *, bucket: str, prefix: str) -> None:
        self._bucket = bucket
        self._prefix = prefix

    def accepts(self, bucket: str, key: str) -> bool:
        if self._bucket and bucket != self._bucket:
            return False
        if key.endswith("/"):
            return False
        return key.startswith(self._prefix)

    def bind(self, payload: Any) -> TriggerRequest | None:
        """Return the orchestrator request for ``payload`` or None when it is ignored."""

        try:
            parsed = parse_event(payload)
        except MalformedEvent as exc:
            logger.warning("Evento descartado (malformado): %s", exc)
            return None

        if parsed is None:
            logger.debug("Evento ignorado: tipo no soportado")
            return None

        bucket, key, version_id = parsed
        if not self.accepts(bucket, key):
            logger.info("Evento ignorado fuera del prefijo bucket=%s key=%s", bucket, key)
            return None

        request = TriggerRequest(
            job_id=derive_job_id(bucket, key, version_id),
            source_key=key,
            bucket=bucket,
            version_id=version_id,
        )
        logger.info("Evento aceptado job=%s key=%s", request.job_id, key)
        return request


__all__ = ["TriggerBinding", "TriggerRequest", "derive_job_id", "parse_event"]
