"""S3 object store for source audio and pipeline artifacts."""

from __future__ import annotations

from typing import Any

from fastapi.concurrency import run_in_threadpool

from app.config.settings import settings
from app.pipelines.minutes.errors import PermanentExternalError
from app.pipelines.minutes.interfaces import ObjectStoreInterface
from app.services.aws import call_aws, create_boto3_client


class S3ObjectStore(ObjectStoreInterface):
    """Read and write objects of a single bucket."""

    def __init__(self, bucket: str | None = None, *, client: Any = None) -> None:
        self._bucket = bucket or settings.s3.bucket_name
        if not self._bucket:
            raise PermanentExternalError("S3 bucket name is not configured.")
        self._client = client or create_boto3_client("s3", region_name=settings.s3.region)

    @property
    def bucket(self) -> str:
        return self._bucket

    async def get(self, key: str) -> bytes:
        response = await call_aws(
            "s3.get_object",
            self._client.get_object,
            Bucket=self._bucket,
            Key=key,
        )
        body = response["Body"]
        try:
            return await run_in_threadpool(body.read)
        finally:
            body.close()

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
    ) -> None:
        await call_aws(
            "s3.put_object",
            self._client.put_object,
            Bucket=self._bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )


__all__ = ["S3ObjectStore"]
