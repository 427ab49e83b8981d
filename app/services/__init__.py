"""Service layer helpers for external integrations."""

from .job_table import DynamoJobTable
from .llm_client import BedrockLlmClient
from .sentiment import ComprehendSentimentService, aggregate_sentiment
from .storage import S3ObjectStore
from .transcribe import TranscribeJobService, segment_transcript

__all__ = [
    "DynamoJobTable",
    "BedrockLlmClient",
    "ComprehendSentimentService",
    "aggregate_sentiment",
    "S3ObjectStore",
    "TranscribeJobService",
    "segment_transcript",
]
