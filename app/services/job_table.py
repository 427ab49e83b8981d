"""DynamoDB-backed job table.

Each job is one item keyed by ``job_id``. Every field of
:class:`~app.pipelines.minutes.types.JobRecord` is a top-level attribute:
strings and ISO-8601 timestamps as ``S``, ``version`` as ``N`` and empty
pointers as ``NULL``. Writes are conditional on the status and version the
writer last read, which is what keeps one orchestrator in charge of a job.
"""

from __future__ import annotations

from typing import Any, Optional

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from app.config.settings import settings
from app.pipelines.minutes.errors import ConflictingStatus, PipelineError
from app.pipelines.minutes.interfaces import JobTableInterface
from app.pipelines.minutes.types import JobRecord, JobStatus
from app.services.aws import call_aws, create_boto3_client

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def record_to_item(record: JobRecord) -> dict[str, Any]:
    """Serialize a record into DynamoDB attribute values."""

    return {name: _serializer.serialize(value) for name, value in record.model_dump(mode="json").items()}


def item_to_record(item: dict[str, Any]) -> JobRecord:
    """Deserialize a DynamoDB item into a record."""

    data = {name: _deserializer.deserialize(value) for name, value in item.items()}
    data["version"] = int(data.get("version", 0))
    return JobRecord.model_validate(data)


class DynamoJobTable(JobTableInterface):
    """Conditional-write job table stored in DynamoDB."""

    def __init__(self, table_name: str | None = None, *, client: Any = None) -> None:
        self._table_name = table_name or settings.dynamo.table_name
        self._client = client or create_boto3_client("dynamodb", region_name=settings.dynamo.region)

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        response = await call_aws(
            "dynamodb.get_item",
            self._client.get_item,
            TableName=self._table_name,
            Key={"job_id": {"S": job_id}},
            ConsistentRead=True,
        )
        item = response.get("Item")
        return item_to_record(item) if item else None

    async def put_job(
        self,
        record: JobRecord,
        expected_prior_status: Optional[JobStatus],
    ) -> JobRecord:
        committed = record.committed()
        params: dict[str, Any] = {
            "TableName": self._table_name,
            "Item": record_to_item(committed),
        }
        if expected_prior_status is None:
            params["ConditionExpression"] = "attribute_not_exists(job_id)"
        else:
            params["ConditionExpression"] = "#status = :expected_status AND #version = :expected_version"
            params["ExpressionAttributeNames"] = {"#status": "status", "#version": "version"}
            params["ExpressionAttributeValues"] = {
                ":expected_status": {"S": expected_prior_status.value},
                ":expected_version": {"N": str(record.version)},
            }

        try:
            await call_aws("dynamodb.put_item", self._client.put_item, **params)
        except PipelineError as exc:
            if exc.code == "ConditionalCheckFailedException":
                raise ConflictingStatus(
                    record.job_id,
                    expected_prior_status.value if expected_prior_status else None,
                ) from exc
            raise
        return committed


__all__ = ["DynamoJobTable", "record_to_item", "item_to_record"]
