"""Error taxonomy shared by the minutes pipeline and its service adapters."""

from __future__ import annotations

from botocore.exceptions import BotoCoreError, ClientError

# Error codes AWS returns for throttling, quota pressure and server-side faults.
_TRANSIENT_ERROR_CODES = frozenset(
    {
        "InternalFailure",
        "InternalServerError",
        "InternalServerException",
        "LimitExceededException",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
        "RequestTimeout",
        "RequestTimeoutException",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "TransactionInProgressException",
    }
)


class PipelineError(RuntimeError):
    """Base class for failures raised inside the minutes pipeline."""

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class TransientExternalError(PipelineError):
    """An external call failed in a way that is worth retrying."""


class PermanentExternalError(PipelineError):
    """An external call was rejected and retrying cannot help."""


class StageTimeoutError(PipelineError, TimeoutError):
    """A stage exceeded its wall-clock budget."""

    def __init__(self, stage: str, budget_seconds: float) -> None:
        super().__init__(f"{stage} timed out after {budget_seconds:.1f}s")
        self.stage = stage
        self.budget_seconds = budget_seconds


class ConflictingStatus(PipelineError):
    """The job record changed underneath the writer; the write was rejected."""

    def __init__(self, job_id: str, expected_status: str | None) -> None:
        super().__init__(
            f"Job {job_id} no longer matches expected status {expected_status}"
        )
        self.job_id = job_id
        self.expected_status = expected_status


class MalformedEvent(ValueError):
    """The inbound notification cannot be mapped to a pipeline run."""


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "") or ""


def classify_aws_error(exc: Exception, *, operation: str) -> PipelineError:
    """Translate a botocore failure into the pipeline's taxonomy."""

    if isinstance(exc, ClientError):
        code = error_code(exc)
        status_code = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        if code in _TRANSIENT_ERROR_CODES or int(status_code) >= 500:
            return TransientExternalError(f"{operation} failed ({code}): {exc}", code=code)
        return PermanentExternalError(f"{operation} rejected ({code}): {exc}", code=code)
    if isinstance(exc, BotoCoreError):
        return TransientExternalError(f"{operation} failed: {exc}")
    return PermanentExternalError(f"{operation} failed: {exc}")


__all__ = [
    "PipelineError",
    "TransientExternalError",
    "PermanentExternalError",
    "StageTimeoutError",
    "ConflictingStatus",
    "MalformedEvent",
    "classify_aws_error",
    "error_code",
]
