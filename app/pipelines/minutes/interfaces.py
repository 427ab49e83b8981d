"""Contracts the orchestrator depends on.

Production implementations live in ``app.services``; the test-suite swaps in
in-memory fakes that honour the same semantics.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar, Optional

from .types import ExternalJobState, JobRecord, JobStatus


class ObjectStoreInterface(ABC):
    """Key-addressed blob storage for source audio and pipeline artifacts"""

    @abstractmethod
    async def get(self, key: str) -> bytes:
        ...

    @abstractmethod
    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
    ) -> None:
        ...


class JobTableInterface(ABC):
    """Persistence contract for job records"""

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        ...

    @abstractmethod
    async def put_job(
        self,
        record: JobRecord,
        expected_prior_status: Optional[JobStatus],
    ) -> JobRecord:
        """Persist ``record`` and return the committed copy.

        The write succeeds only if the stored item still has
        ``expected_prior_status`` and the version ``record`` was derived from;
        ``None`` means the item must not exist yet. Otherwise
        ``ConflictingStatus`` is raised.
        """


class TextGenerationInterface(ABC):
    """Single-shot text generation used by the summary stage"""

    @abstractmethod
    async def invoke(self, *, system_prompt: str, user_prompt: str) -> str:
        ...


class StageBackend(ABC):
    """Capability interface shared by every external service a stage drives.

    Asynchronous services return a ``RUNNING`` state from :meth:`start` and
    are polled through :meth:`describe`. Synchronous services set
    ``synchronous`` and return a settled state straight from :meth:`start`.
    """

    name: ClassVar[str] = "backend"
    synchronous: ClassVar[bool] = False

    @abstractmethod
    async def start(self, job: JobRecord) -> ExternalJobState:
        ...

    async def describe(self, handle: str) -> ExternalJobState:
        raise NotImplementedError(f"{self.name} does not support polling")

    @abstractmethod
    async def collect(self, job: JobRecord, state: ExternalJobState) -> bytes:
        """Turn a ``SUCCEEDED`` external result into the stage's artifact bytes."""


__all__ = [
    "ObjectStoreInterface",
    "JobTableInterface",
    "TextGenerationInterface",
    "StageBackend",
]
