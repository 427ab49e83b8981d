"""Meeting minutes pipeline: transcription, sentiment analysis and summary."""

from .assembly import MinutesBundle, MinutesNotReady, assemble_minutes
from .errors import (
    ConflictingStatus,
    MalformedEvent,
    PermanentExternalError,
    PipelineError,
    StageTimeoutError,
    TransientExternalError,
)
from .orchestrator import MinutesOrchestrator
from .stages import STAGES, Stage, stage_for
from .summary import SummaryBackend
from .trigger import TriggerBinding, TriggerRequest, derive_job_id, parse_event
from .types import (
    ExternalJobState,
    ExternalState,
    JobRecord,
    JobStatus,
    OrchestratorConfig,
    can_transition,
)

__all__ = [
    "MinutesOrchestrator",
    "OrchestratorConfig",
    "JobRecord",
    "JobStatus",
    "ExternalState",
    "ExternalJobState",
    "can_transition",
    "Stage",
    "STAGES",
    "stage_for",
    "SummaryBackend",
    "TriggerBinding",
    "TriggerRequest",
    "derive_job_id",
    "parse_event",
    "MinutesBundle",
    "MinutesNotReady",
    "assemble_minutes",
    "PipelineError",
    "TransientExternalError",
    "PermanentExternalError",
    "StageTimeoutError",
    "ConflictingStatus",
    "MalformedEvent",
]
