"""Ingress route for normalized inbound messages."""

import json
import logging
import os

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError
from slowapi import Limiter

from ..conversations.schemas import IngestAck, InboundMessage
from ..security.dedup import payload_fingerprint

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])


def get_client_ip(request: Request) -> str:
    """Extract a best-effort client IP for rate limiting.

    Prefer ``X-Forwarded-For`` (first hop) if present, otherwise use the
    socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _ingress_limit() -> str:
    return os.getenv("INGRESS_RATE_LIMIT", "120/minute")


limiter = Limiter(key_func=get_client_ip)


async def _run_pipeline(orchestrator, inbound: InboundMessage) -> None:
    try:
        await orchestrator.handle_message(inbound)
    except Exception:
        logger.exception(
            "Background pipeline failed for conversation %s", inbound.conversation_id
        )


@router.post(
    "/api/messages",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=IngestAck,
)
@limiter.limit(_ingress_limit)
async def ingest_message(request: Request, background_tasks: BackgroundTasks) -> IngestAck:
    """Acknowledge an inbound message and process it in the background.

    Identical payloads delivered again within the de-duplication window are
    acknowledged as ``duplicate`` and not processed twice.
    """
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid JSON payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Payload must be a JSON object")

    header_tenant = request.headers.get("x-tenant-id")
    if header_tenant and not (payload.get("tenantId") or payload.get("tenant_id")):
        payload["tenantId"] = header_tenant

    try:
        inbound = InboundMessage.model_validate(payload)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=422, detail=json.loads(exc.json())) from exc

    runtime = request.app.state.runtime
    if not runtime.ingress_dedup.is_new(payload_fingerprint(payload)):
        logger.info("Duplicate delivery for conversation %s ignored", inbound.conversation_id)
        return IngestAck(status="duplicate", conversation_id=inbound.conversation_id)

    background_tasks.add_task(_run_pipeline, runtime.orchestrator, inbound)
    return IngestAck(status="accepted", conversation_id=inbound.conversation_id)
