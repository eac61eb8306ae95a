"""
Realtime channel for agents

Clients exchange JSON frames {"event": ..., "data": ...} over /ws:
- join-ticket {ticketId, userId}          -> joined-ticket, connection-stats
- leave-ticket {ticketId}                 -> left-ticket
- request-messages {ticketId, limit}      -> messages-loaded
- send-message {ticketId, content, ...}   -> message-sent, new-message (room)
- ping                                    -> pong
Handler failures answer with an "error" event; the socket stays open.
"""
import asyncio
import json
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from crm_bridge.dependencies import (
    get_connection_manager,
    get_message_repository,
    get_outbound_service,
)
from crm_bridge.models.schemas import AgentMessage
from crm_bridge.repositories import MessageRepository
from crm_bridge.services.connection_manager import ConnectionManager
from crm_bridge.services.outbound import OutboundMessageService, TicketNotFoundError
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["realtime"])


class RealtimeSession:
    """Event handlers for one connected client"""

    def __init__(
        self,
        client_id: str,
        connections: ConnectionManager,
        messages: MessageRepository,
        outbound: OutboundMessageService
    ):
        self.client_id = client_id
        self.connections = connections
        self.messages = messages
        self.outbound = outbound

    async def emit(self, event: str, data: Any) -> None:
        await self.connections.send(self.client_id, event, data)

    async def error(self, message: str, error: str = "") -> None:
        await self.emit("error", {"message": message, "error": error})

    async def handle(self, frame: Dict[str, Any]) -> None:
        event = frame.get("event")
        data = frame.get("data") or {}

        handlers = {
            "join-ticket": self.join_ticket,
            "leave-ticket": self.leave_ticket,
            "request-messages": self.request_messages,
            "send-message": self.send_message,
            "ping": self.ping,
        }
        handler = handlers.get(event)
        if handler is None:
            await self.error(f"Unknown event: {event}")
            return

        try:
            await handler(data)
        except Exception as e:
            logger.error(f"Realtime handler {event} failed for {self.client_id}: {e}", exc_info=True)
            await self.error(f"Failed to handle {event}", str(e))

    async def join_ticket(self, data: Dict[str, Any]) -> None:
        ticket_id = data.get("ticketId")
        if not ticket_id:
            await self.error("ticketId is required")
            return

        self.connections.join_ticket(self.client_id, ticket_id, data.get("userId"))
        await self.emit("joined-ticket", {"ticketId": ticket_id, "clientId": self.client_id})
        await self.connections.broadcast_to_ticket(ticket_id, "connection-stats", {
            "ticketId": ticket_id,
            "connections": len(self.connections.ticket_rooms.get(ticket_id, ())),
            **self.connections.get_stats(),
        })

    async def leave_ticket(self, data: Dict[str, Any]) -> None:
        ticket_id = data.get("ticketId")
        if ticket_id:
            self.connections.leave_ticket(self.client_id, ticket_id)
            await self.emit("left-ticket", {"ticketId": ticket_id})

    async def request_messages(self, data: Dict[str, Any]) -> None:
        ticket_id = data.get("ticketId")
        if not ticket_id:
            await self.error("ticketId is required")
            return

        limit = min(int(data.get("limit") or 50), 500)
        messages = await asyncio.to_thread(self.messages.list_for_ticket, ticket_id, limit)
        await self.emit("messages-loaded", {
            "ticketId": ticket_id,
            "messages": [m.model_dump() for m in messages],
        })

    async def send_message(self, data: Dict[str, Any]) -> None:
        try:
            agent_message = AgentMessage.model_validate(data)
        except ValidationError as e:
            await self.error("Invalid message", str(e.errors()[:1]))
            return

        try:
            result = await self.outbound.send_agent_message(agent_message)
        except TicketNotFoundError as e:
            await self.error("Ticket not found", str(e))
            return

        whatsapp = result["whatsapp"]
        await self.emit("message-sent", {
            "ticketId": agent_message.ticket_id,
            "message": result["message"].model_dump(),
            "whatsapp": whatsapp.model_dump() if whatsapp else None,
        })

    async def ping(self, data: Dict[str, Any]) -> None:
        await self.emit("pong", {"timestamp": datetime.utcnow()})


@router.websocket("/ws")
async def realtime_endpoint(
    websocket: WebSocket,
    connections: ConnectionManager = Depends(get_connection_manager),
    messages: MessageRepository = Depends(get_message_repository),
    outbound: OutboundMessageService = Depends(get_outbound_service)
):
    client_id = await connections.connect(websocket)
    session = RealtimeSession(client_id, connections, messages, outbound)

    try:
        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except ValueError:
                await session.error("Invalid JSON frame")
                continue

            if not isinstance(frame, dict):
                await session.error("Frame must be an object")
                continue

            await session.handle(frame)

    except WebSocketDisconnect:
        logger.info(f"Client {client_id} closed the connection")
    finally:
        connections.disconnect(client_id)
