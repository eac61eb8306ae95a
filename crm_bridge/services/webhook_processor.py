"""
Evolution webhook event processing

Dispatches each event to its handler and returns the acknowledgement sent
back to Evolution. Routing failures propagate so the receiver can answer
with an error and Evolution redelivers the event.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from crm_bridge.models.schemas import (
    InstanceStatus,
    RoutingAction,
    RoutingResult,
    WebhookPayload,
    WebhookResponse,
)
from crm_bridge.repositories import InstanceRepository
from crm_bridge.services.connection_manager import ConnectionManager, get_connection_manager
from crm_bridge.services.ticket_router import TicketRoutingService, get_ticket_router, parse_message
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)

MESSAGES_UPSERT = "MESSAGES_UPSERT"
SEND_MESSAGE = "SEND_MESSAGE"
CONNECTION_UPDATE = "CONNECTION_UPDATE"
QRCODE_UPDATED = "QRCODE_UPDATED"

CONNECTION_STATES = {
    "open": InstanceStatus.CONNECTED,
    "close": InstanceStatus.DISCONNECTED,
    "connecting": InstanceStatus.CONNECTING,
}


def message_entries(data: Any) -> List[Dict[str, Any]]:
    """Message entries of an upsert event: a single object, a list or {messages: [...]}"""
    if isinstance(data, list):
        return [e for e in data if isinstance(e, dict)]
    if isinstance(data, dict):
        if isinstance(data.get("messages"), list):
            return [e for e in data["messages"] if isinstance(e, dict)]
        return [data]
    return []


class WebhookProcessor:
    """Handles Evolution API webhook events"""

    def __init__(
        self,
        router: Optional[TicketRoutingService] = None,
        connections: Optional[ConnectionManager] = None,
        instances: Optional[InstanceRepository] = None
    ):
        self.router = router or get_ticket_router()
        self.connections = connections or get_connection_manager()
        self.instances = instances or self.router.instances

    async def process(self, payload: WebhookPayload) -> WebhookResponse:
        event = payload.normalized_event
        logger.info(f"Webhook event {event or '<none>'} from instance {payload.instance}")

        if event in (MESSAGES_UPSERT, SEND_MESSAGE):
            return await self.handle_messages(payload, outgoing=event == SEND_MESSAGE)
        if event == CONNECTION_UPDATE:
            return await self.handle_connection_update(payload)
        if event == QRCODE_UPDATED:
            return await self.handle_qrcode_updated(payload)

        return WebhookResponse(
            event=payload.event,
            instance=payload.instance,
            processed=False,
            message=f"Event {payload.event or '<none>'} ignored",
        )

    async def handle_messages(self, payload: WebhookPayload, outgoing: bool = False) -> WebhookResponse:
        """
        Route every message of an upsert event

        Incoming events ignore messages sent from our own account unless
        the event itself reports an outgoing message (SEND_MESSAGE).
        """
        results: List[RoutingResult] = []

        for entry in message_entries(payload.data):
            incoming = parse_message(entry, payload.instance)
            if incoming is None:
                results.append(RoutingResult(action=RoutingAction.IGNORED, message="Message not routable"))
                continue

            if incoming.from_me and not outgoing:
                logger.debug(f"Ignoring own message {incoming.message_id} in {payload.event}")
                results.append(RoutingResult(action=RoutingAction.IGNORED, message="Message sent by us"))
                continue

            result = await self.router.route_message(incoming)
            results.append(result)

            if result.action in (RoutingAction.CREATED, RoutingAction.UPDATED):
                await self._broadcast_message(incoming, result)

        routed = [r for r in results if r.action in (RoutingAction.CREATED, RoutingAction.UPDATED)]
        return WebhookResponse(
            event=payload.event,
            instance=payload.instance,
            processed=bool(routed),
            message=routed[-1].message if routed else (results[-1].message if results else "No messages in event"),
            ticket_id=routed[-1].ticket_id if routed else None,
            results=results,
        )

    async def _broadcast_message(self, incoming, result: RoutingResult) -> None:
        message = {
            "id": result.message_id,
            "ticket_id": result.ticket_id,
            "content": incoming.content,
            "sender_type": "agent" if incoming.from_me else "customer",
            "sender_name": "WhatsApp" if incoming.from_me else incoming.contact_name,
            "message_type": incoming.message_type,
            "is_internal": False,
            "created_at": incoming.timestamp,
            "metadata": {
                "whatsapp_message_id": incoming.message_id,
                "whatsapp_phone": incoming.phone,
                "instance_name": incoming.instance_name,
            },
        }
        await self.connections.broadcast_to_ticket(result.ticket_id, "new-message", message)
        await self.connections.broadcast_all("ticket-updated", {
            "ticket_id": result.ticket_id,
            "is_new_ticket": result.is_new_ticket,
            "last_message_at": incoming.timestamp,
            "phone": incoming.phone_info.formatted,
        })

    async def handle_connection_update(self, payload: WebhookPayload) -> WebhookResponse:
        data = payload.data if isinstance(payload.data, dict) else {}
        state = data.get("state") or data.get("connection")
        status = CONNECTION_STATES.get(state)

        if not payload.instance or status is None:
            return WebhookResponse(
                event=payload.event,
                instance=payload.instance,
                processed=False,
                message=f"Unknown connection state: {state}",
            )

        updated = await asyncio.to_thread(
            self.instances.update_status,
            payload.instance,
            status.value,
        )
        logger.info(f"Instance {payload.instance} is now {status.value}")

        await self.connections.broadcast_all("instance-status", {
            "instance": payload.instance,
            "state": state,
            "status": status.value,
            "status_reason": data.get("statusReason"),
        })

        return WebhookResponse(
            event=payload.event,
            instance=payload.instance,
            processed=True,
            message=f"Instance status {status.value}" + ("" if updated else " (instance not registered)"),
        )

    async def handle_qrcode_updated(self, payload: WebhookPayload) -> WebhookResponse:
        data = payload.data if isinstance(payload.data, dict) else {}
        qrcode = data.get("qrcode") if isinstance(data.get("qrcode"), dict) else data

        if payload.instance:
            await asyncio.to_thread(
                self.instances.update_status,
                payload.instance,
                InstanceStatus.QR_PENDING.value,
            )

        await self.connections.broadcast_all("instance-qrcode", {
            "instance": payload.instance,
            "base64": qrcode.get("base64"),
            "code": qrcode.get("code"),
            "updated_at": datetime.utcnow(),
        })

        return WebhookResponse(
            event=payload.event,
            instance=payload.instance,
            processed=True,
            message="QR code updated",
        )
