"""AWS Lambda handler for EventBridge "Object Created" targets.

The function runs the trigger binding and then drives the orchestrator to a
terminal (or hand-off) status inside the invocation. Lambda retries and
EventBridge redelivery are both safe because job ids are deterministic.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from app.config.dependencies import get_orchestrator, get_trigger_binding

logger = logging.getLogger("app.pipelines.minutes")


async def handle_event(event: Any) -> dict[str, Any]:
    request = get_trigger_binding().bind(event)
    if request is None:
        return {"status": "ignored"}

    final_status = await get_orchestrator().run(request.job_id, request.source_key)
    return {
        "job_id": request.job_id,
        "source_key": request.source_key,
        "status": final_status.value,
    }


def handler(event: Any, context: Any = None) -> dict[str, Any]:
    """Lambda entry point."""

    request_id = getattr(context, "aws_request_id", None)
    logger.info("Invocacion Lambda request_id=%s", request_id)
    return asyncio.run(handle_event(event))


__all__ = ["handler", "handle_event"]
