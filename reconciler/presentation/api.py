import json
import logging
from http import HTTPStatus

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from reconciler.application.container import ApplicationContainer
from reconciler.application.process_webhook_queue import ProcessWebhookQueueUseCase
from reconciler.core.models import QueueRunStats, WebhookEnvelope
from reconciler.infrastructure.circuit_breaker import CircuitBreaker
from reconciler.infrastructure.event_queue import EventQueueStore
from reconciler.infrastructure.signature import SIGNATURE_HEADER, WebhookSignatureVerifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


class WebhookReceivedResponse(BaseModel):
    received: bool
    event_id: str


class QueueStatusResponse(BaseModel):
    counts: dict[str, int]
    circuit_breaker: dict


@router.post(
    "/commerce",
    status_code=HTTPStatus.OK,
    response_model=WebhookReceivedResponse,
)
@inject
async def receive_webhook(
    request: Request,
    signature_verifier: WebhookSignatureVerifier = Depends(
        Provide[ApplicationContainer.signature_verifier]
    ),
    event_queue: EventQueueStore = Depends(
        Provide[ApplicationContainer.infrastructure_container.event_queue]
    ),
):
    body = await request.body()

    if not signature_verifier.verify(body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Rejected webhook with invalid signature")
        return JSONResponse(
            content={"message": "Invalid webhook signature"},
            status_code=HTTPStatus.UNAUTHORIZED,
        )

    try:
        envelope = WebhookEnvelope.model_validate_json(body)
    except ValidationError as e:
        logger.warning(f"Rejected malformed webhook: {e}")
        return JSONResponse(
            content={"message": "Malformed webhook payload"},
            status_code=HTTPStatus.BAD_REQUEST,
        )

    try:
        await event_queue.enqueue(envelope, payload=json.loads(body))
    except Exception as e:
        logger.error(f"Failed to queue webhook {envelope.event_id}: {e}", exc_info=True)
        return JSONResponse(
            content={"message": "Internal server error while queueing webhook"},
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        )

    return WebhookReceivedResponse(received=True, event_id=envelope.event_id)


@router.post(
    "/process",
    status_code=HTTPStatus.OK,
    response_model=QueueRunStats,
)
@inject
async def process_queue(
    max_items: int | None = Query(default=None, gt=0),
    timeout: float | None = Query(default=None, gt=0),
    use_case: ProcessWebhookQueueUseCase = Depends(
        Provide[ApplicationContainer.process_webhook_queue_use_case]
    ),
):
    try:
        return await use_case(max_items=max_items, timeout=timeout)
    except Exception as e:
        logger.error(f"Webhook queue run failed: {e}", exc_info=True)
        return JSONResponse(
            content={"message": f"Internal server error: {str(e)}"},
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        )


@router.get(
    "/queue",
    status_code=HTTPStatus.OK,
    response_model=QueueStatusResponse,
)
@inject
async def queue_status(
    event_queue: EventQueueStore = Depends(
        Provide[ApplicationContainer.infrastructure_container.event_queue]
    ),
    circuit_breaker: CircuitBreaker = Depends(
        Provide[ApplicationContainer.infrastructure_container.circuit_breaker]
    ),
):
    return QueueStatusResponse(
        counts=await event_queue.counts(),
        circuit_breaker=circuit_breaker.stats(),
    )
