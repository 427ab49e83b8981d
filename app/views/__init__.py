"""Pydantic schemas used as views in the MVC architecture."""

from .common import ErrorResponse
from .jobs import (
    EventAcceptedResponse,
    EventIgnoredResponse,
    JobResponse,
    MinutesResponse,
)

__all__ = [
    "EventAcceptedResponse",
    "EventIgnoredResponse",
    "JobResponse",
    "MinutesResponse",
    "ErrorResponse",
]
