"""
Outbound messages written by agents

An agent message is stored, pushed to everyone watching the ticket and,
unless it is an internal note, delivered to the customer on WhatsApp.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from crm_bridge.config import get_settings
from crm_bridge.models.schemas import (
    AgentMessage,
    Message,
    MessageCreate,
    SendMessageRequest,
    SendMessageResult,
    SenderType,
)
from crm_bridge.repositories import TicketRepository, MessageRepository
from crm_bridge.services.connection_manager import ConnectionManager, get_connection_manager
from crm_bridge.services.evolution import EvolutionClient, get_evolution_client
from crm_bridge.services.ticket_router import TicketRoutingService, get_ticket_router
from crm_bridge.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)


class TicketNotFoundError(Exception):
    """Agent message for a ticket that does not exist"""


class OutboundMessageService:
    """Stores, broadcasts and delivers agent messages"""

    def __init__(
        self,
        tickets: Optional[TicketRepository] = None,
        messages: Optional[MessageRepository] = None,
        evolution: Optional[EvolutionClient] = None,
        connections: Optional[ConnectionManager] = None,
        router: Optional[TicketRoutingService] = None
    ):
        self.router = router or get_ticket_router()
        self.tickets = tickets or self.router.tickets
        self.messages = messages or self.router.messages
        self.evolution = evolution or get_evolution_client()
        self.connections = connections or get_connection_manager()

    async def send_agent_message(self, agent_message: AgentMessage) -> Dict[str, Any]:
        """
        Save, broadcast and deliver an agent message

        Returns:
            {"message": Message, "whatsapp": SendMessageResult | None}

        Raises:
            TicketNotFoundError: If the ticket does not exist
        """
        ticket = await asyncio.to_thread(self.tickets.get_by_id, agent_message.ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {agent_message.ticket_id} not found")

        message = await asyncio.to_thread(self.messages.create, MessageCreate(
            ticket_id=ticket.id,
            content=agent_message.content,
            sender_id=agent_message.user_id,
            sender_name=agent_message.sender_name or "Agente",
            sender_type=SenderType.AGENT,
            is_internal=agent_message.is_internal,
            is_read=True,
            metadata={"source": "crm"},
        ))

        await self.connections.broadcast_to_ticket(ticket.id, "new-message", message.model_dump())

        whatsapp: Optional[SendMessageResult] = None
        phone = ticket.customer_phone
        if not agent_message.is_internal and ticket.is_whatsapp and phone:
            instance = ticket.metadata.get("instance_name") or settings.evolution_default_instance
            whatsapp = await self._deliver(message, phone, instance)
            await self.connections.broadcast_to_ticket(ticket.id, "message-status", {
                "message_id": message.id,
                "evolution_sent": whatsapp.success,
                "error": whatsapp.error,
            })

        at = message.created_at or datetime.now(timezone.utc)
        await asyncio.to_thread(self.tickets.touch_last_message, ticket.id, at, False)

        return {"message": message, "whatsapp": whatsapp}

    async def _deliver(self, message: Message, phone: str, instance: Optional[str]) -> SendMessageResult:
        if not instance:
            result = SendMessageResult(success=False, error="No Evolution instance configured", phone=phone)
        else:
            result = await self.evolution.send_text(instance, phone, message.content)

        metadata = dict(message.metadata)
        metadata.update({
            "evolution_sent": result.success,
            "evolution_instance": instance,
        })
        if result.success:
            metadata["evolution_message_id"] = result.message_id
            metadata["whatsapp_message_id"] = result.message_id
            metadata["evolution_status"] = result.status
            # The SEND_MESSAGE echo for this id must not be stored again
            self.router.remember(result.message_id)
        else:
            metadata["evolution_error"] = result.error
            logger.error(f"WhatsApp delivery failed for message {message.id}: {result.error}")

        await asyncio.to_thread(self.messages.update_metadata, message.id, metadata)
        return result

    async def send_direct(self, request: SendMessageRequest) -> SendMessageResult:
        """Send a text to any phone, outside of a ticket"""
        instance = request.instance or settings.evolution_default_instance
        if not instance:
            return SendMessageResult(success=False, error="No Evolution instance configured", phone=request.phone)

        result = await self.evolution.send_text(
            instance,
            request.phone,
            request.text,
            delay=int(request.options.get("delay", 1000)),
            link_preview=bool(request.options.get("linkPreview", True)),
        )
        self.router.remember(result.message_id)
        return result
