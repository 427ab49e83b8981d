"""Inbound "object created" notifications.

The endpoint only binds the event and schedules the orchestrator; the job
itself runs after the response is sent. Redelivered events map to the same
``job_id`` and are absorbed by the orchestrator's idempotency.
"""

import logging
from typing import Annotated, Any, Union

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Response, status

from app.config.dependencies import get_orchestrator, get_trigger_binding
from app.pipelines.minutes import MinutesOrchestrator, TriggerBinding
from app.views import EventAcceptedResponse, EventIgnoredResponse

router = APIRouter(prefix="/events", tags=["events"])

logger = logging.getLogger(__name__)


async def _run_job(orchestrator: MinutesOrchestrator, job_id: str, source_key: str) -> None:
    try:
        final_status = await orchestrator.run(job_id, source_key)
    except Exception:
        logger.exception("Orchestrator run aborted job=%s", job_id)
        return
    logger.info("Orchestrator run finished job=%s status=%s", job_id, final_status.value)


@router.post(
    "",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=Union[EventAcceptedResponse, EventIgnoredResponse],
)
async def receive_event(
    response: Response,
    background_tasks: BackgroundTasks,
    binding: Annotated[TriggerBinding, Depends(get_trigger_binding)],
    orchestrator: Annotated[MinutesOrchestrator, Depends(get_orchestrator)],
    payload: Any = Body(...),
) -> Union[EventAcceptedResponse, EventIgnoredResponse]:
    """Bind an event to a job and run it in the background."""

    request = binding.bind(payload)
    if request is None:
        response.status_code = status.HTTP_200_OK
        return EventIgnoredResponse()

    background_tasks.add_task(_run_job, orchestrator, request.job_id, request.source_key)
    return EventAcceptedResponse(job_id=request.job_id, source_key=request.source_key)
