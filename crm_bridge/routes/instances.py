"""
Evolution instance management API

Requires admin API key authentication (X-Admin-API-Key).
"""
import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from crm_bridge.config import get_settings
from crm_bridge.dependencies import get_evolution_client, get_ticket_router
from crm_bridge.middleware.admin_auth import verify_admin_key
from crm_bridge.models.schemas import EvolutionInstance, InstanceStatus
from crm_bridge.services.evolution import (
    EvolutionAPIError,
    EvolutionClient,
    instance_name_of,
    instance_state_of,
)
from crm_bridge.services.ticket_router import TicketRoutingService
from crm_bridge.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/instances",
    tags=["instances"],
    dependencies=[Depends(verify_admin_key)]
)


# Request Models

class InstanceCreateRequest(BaseModel):
    instance_name: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9_\-]+$")
    display_name: Optional[str] = None
    department_id: Optional[str] = None
    webhook_url: Optional[str] = None
    is_default: bool = False


class WebhookSetRequest(BaseModel):
    url: Optional[str] = None
    events: Optional[List[str]] = None


def evolution_http_error(e: EvolutionAPIError) -> HTTPException:
    """Client errors keep their status; anything else is a bad gateway"""
    if e.status_code and 400 <= e.status_code < 500:
        code = e.status_code
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail={"message": str(e), "upstream": e.detail})


# Routes

@router.get("")
async def list_instances(
    evolution: EvolutionClient = Depends(get_evolution_client),
    routing: TicketRoutingService = Depends(get_ticket_router)
) -> Dict[str, Any]:
    """Instances known to Evolution and rows in evolution_instances"""
    try:
        remote = await evolution.fetch_instances()
    except EvolutionAPIError as e:
        raise evolution_http_error(e)

    local = await asyncio.to_thread(routing.instances.list_all)
    return {
        "remote": [
            {"instance_name": instance_name_of(entry), "state": instance_state_of(entry)}
            for entry in remote
        ],
        "local": [i.model_dump() for i in local],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_instance(
    request: InstanceCreateRequest,
    evolution: EvolutionClient = Depends(get_evolution_client),
    routing: TicketRoutingService = Depends(get_ticket_router)
) -> Dict[str, Any]:
    """Create the instance on Evolution (with webhook) and register it locally"""
    webhook_url = request.webhook_url or settings.webhook_public_url or None
    try:
        created = await evolution.create_instance(request.instance_name, webhook_url=webhook_url)
    except EvolutionAPIError as e:
        raise evolution_http_error(e)

    row = await asyncio.to_thread(routing.instances.upsert, EvolutionInstance(
        instance_name=request.instance_name,
        instance_display_name=request.display_name or request.instance_name,
        department_id=request.department_id,
        status=InstanceStatus.QR_PENDING.value,
        webhook_url=webhook_url,
        is_default=request.is_default,
    ))
    logger.info(f"Instance {request.instance_name} created")
    return {"instance": row.model_dump(), "evolution": created}


@router.get("/{name}/connect")
async def connect_instance(name: str, evolution: EvolutionClient = Depends(get_evolution_client)):
    """Start pairing; the response carries the QR code"""
    try:
        return await evolution.connect_instance(name)
    except EvolutionAPIError as e:
        raise evolution_http_error(e)


@router.get("/{name}/state")
async def instance_state(name: str, evolution: EvolutionClient = Depends(get_evolution_client)):
    return await evolution.connection_state(name)


@router.post("/{name}/logout")
async def logout_instance(
    name: str,
    evolution: EvolutionClient = Depends(get_evolution_client),
    routing: TicketRoutingService = Depends(get_ticket_router)
):
    try:
        result = await evolution.logout_instance(name)
    except EvolutionAPIError as e:
        raise evolution_http_error(e)

    await asyncio.to_thread(routing.instances.update_status, name, InstanceStatus.DISCONNECTED.value)
    return {"instance": name, "result": result}


@router.delete("/{name}")
async def delete_instance(name: str, evolution: EvolutionClient = Depends(get_evolution_client)):
    try:
        return {"instance": name, "result": await evolution.delete_instance(name)}
    except EvolutionAPIError as e:
        raise evolution_http_error(e)


@router.post("/{name}/webhook")
async def set_instance_webhook(
    name: str,
    request: WebhookSetRequest,
    evolution: EvolutionClient = Depends(get_evolution_client)
):
    url = request.url or settings.webhook_public_url
    if not url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook URL not provided and WEBHOOK_PUBLIC_URL not configured"
        )

    try:
        return await evolution.set_webhook(name, url, request.events)
    except EvolutionAPIError as e:
        raise evolution_http_error(e)


@router.get("/{name}/webhook")
async def find_instance_webhook(name: str, evolution: EvolutionClient = Depends(get_evolution_client)):
    try:
        webhook = await evolution.find_webhook(name)
    except EvolutionAPIError as e:
        raise evolution_http_error(e)

    if webhook is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No webhook for {name}")
    return webhook
