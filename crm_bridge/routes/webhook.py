"""
Evolution API webhook endpoints

- POST /webhook/evolution                    - main receiver (all events)
- POST /webhook/messages-upsert              - per-event URL / bare message bodies
- POST /webhook/evolution/connection-update  - per-event URL for CONNECTION_UPDATE
- POST /webhook/send-message                 - send a WhatsApp text
- GET  /webhook/health                       - receiver status
- GET  /webhook/ws-stats                     - realtime connection stats
"""
import time
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse

from crm_bridge import __version__
from crm_bridge.dependencies import (
    get_connection_manager,
    get_outbound_service,
    get_webhook_processor,
)
from crm_bridge.models.schemas import (
    SendMessageRequest,
    SendMessageResult,
    WebhookPayload,
    WebhookResponse,
)
from crm_bridge.services.connection_manager import ConnectionManager
from crm_bridge.services.outbound import OutboundMessageService
from crm_bridge.services.ticket_router import TicketRoutingError
from crm_bridge.services.webhook_processor import WebhookProcessor
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])

STARTED_AT = time.time()

ENDPOINTS = [
    "POST /webhook/evolution",
    "POST /webhook/messages-upsert",
    "POST /webhook/evolution/connection-update",
    "POST /webhook/send-message",
    "GET /webhook/health",
    "GET /webhook/ws-stats",
    "WS /ws",
]


async def _process(processor: WebhookProcessor, payload: WebhookPayload) -> WebhookResponse:
    """Run the processor; failures answer 500 so Evolution redelivers"""
    try:
        return await processor.process(payload)
    except TicketRoutingError as e:
        logger.error(f"Routing failed for {payload.event} from {payload.instance}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Message routing failed: {e}"
        )
    except Exception as e:
        logger.error(f"Webhook processing failed for {payload.event}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Webhook processing failed: {e}"
        )


def _wrap(event: str, body: Dict[str, Any], header_instance: Optional[str]) -> WebhookPayload:
    """Build a full payload from a per-event body that may lack envelope fields"""
    return WebhookPayload(
        event=body.get("event") or event,
        instance=body.get("instance") or header_instance,
        data=body["data"] if "data" in body else body,
    )


@router.post("/evolution", response_model=WebhookResponse)
async def evolution_webhook(
    payload: WebhookPayload,
    processor: WebhookProcessor = Depends(get_webhook_processor)
) -> WebhookResponse:
    """
    Main Evolution API webhook

    Ignored events are acknowledged with processed=false; routing errors
    return 500.
    """
    return await _process(processor, payload)


@router.post("/messages-upsert", response_model=WebhookResponse)
async def messages_upsert_webhook(
    body: Dict[str, Any] = Body(...),
    instance: Optional[str] = Header(None),
    processor: WebhookProcessor = Depends(get_webhook_processor)
) -> WebhookResponse:
    return await _process(processor, _wrap("MESSAGES_UPSERT", body, instance))


@router.post("/evolution/connection-update", response_model=WebhookResponse)
async def connection_update_webhook(
    body: Dict[str, Any] = Body(...),
    instance: Optional[str] = Header(None),
    processor: WebhookProcessor = Depends(get_webhook_processor)
) -> WebhookResponse:
    return await _process(processor, _wrap("CONNECTION_UPDATE", body, instance))


@router.post("/send-message", response_model=SendMessageResult)
async def send_message(
    request: SendMessageRequest,
    outbound: OutboundMessageService = Depends(get_outbound_service)
):
    """
    Send a WhatsApp text to a phone

    Returns 400 without phone/text and 502 when Evolution rejects the message.
    """
    if not request.phone or not request.text:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="phone and text are required"
        )

    result = await outbound.send_direct(request)
    if not result.success:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=result.model_dump())
    return result


@router.get("/health")
async def webhook_health(connections: ConnectionManager = Depends(get_connection_manager)):
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat(),
        "uptime_seconds": round(time.time() - STARTED_AT, 2),
        "websocket": connections.get_stats(),
        "endpoints": ENDPOINTS,
    }


@router.get("/ws-stats")
async def websocket_stats(connections: ConnectionManager = Depends(get_connection_manager)):
    return {
        **connections.get_stats(),
        "timestamp": datetime.utcnow().isoformat(),
    }
