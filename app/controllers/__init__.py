"""FastAPI routers acting as controllers in the MVC architecture."""

from . import events, jobs

__all__ = ["events", "jobs"]
