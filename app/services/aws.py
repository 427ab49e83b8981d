"""Shared AWS helpers for service clients."""

from __future__ import annotations

from typing import Any, Callable

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from app.config.settings import settings
from app.pipelines.minutes.errors import classify_aws_error

# SDK-level retries are disabled; the pipeline applies its own backoff policy.
_CLIENT_CONFIG = Config(retries={"max_attempts": 1, "mode": "standard"})


def create_boto3_client(
    service_name: str,
    *,
    region_name: str | None = None,
    aws_access_key_id: str | None = None,
    aws_secret_access_key: str | None = None,
) -> boto3.client:
    """Instantiate a boto3 client using configured credentials if available."""

    region = region_name or settings.s3.region
    client_kwargs: dict[str, Any] = {"region_name": region, "config": _CLIENT_CONFIG}
    if aws_access_key_id and aws_secret_access_key:
        client_kwargs["aws_access_key_id"] = aws_access_key_id
        client_kwargs["aws_secret_access_key"] = aws_secret_access_key
    elif settings.s3.access_key and settings.s3.secret_key:
        client_kwargs["aws_access_key_id"] = settings.s3.access_key
        client_kwargs["aws_secret_access_key"] = settings.s3.secret_key
    return boto3.client(service_name, **client_kwargs)


async def call_aws(operation: str, method: Callable[..., Any], **params: Any) -> Any:
    """Run a blocking SDK call in the thread pool and classify its failures."""

    try:
        return await run_in_threadpool(method, **params)
    except (BotoCoreError, ClientError) as exc:
        raise classify_aws_error(exc, operation=operation) from exc


def s3_uri(bucket: str, key: str) -> str:
    """Return the ``s3://`` URI for an object."""

    return f"s3://{bucket}/{key.lstrip('/')}"


def split_s3_location(location: str, *, default_bucket: str) -> tuple[str, str]:
    """Split an ``s3://`` URI or an HTTPS object URL into (bucket, key).

    Transcribe reports its output as an HTTPS URL while Comprehend reports an
    ``s3://`` URI; bare keys are resolved against ``default_bucket``.
    """

    if location.startswith("s3://"):
        bucket, _, key = location[len("s3://") :].partition("/")
        return bucket, key

    if location.startswith("https://"):
        host, _, path = location[len("https://") :].partition("/")
        if host.startswith("s3.") or host.startswith("s3-"):
            # Path-style URL: https://s3.<region>.amazonaws.com/<bucket>/<key>
            bucket, _, key = path.partition("/")
            return bucket, key
        # Virtual-hosted URL: https://<bucket>.s3.<region>.amazonaws.com/<key>
        return host.split(".s3", 1)[0], path

    return default_bucket, location.lstrip("/")


__all__ = ["call_aws", "create_boto3_client", "s3_uri", "split_s3_location"]
