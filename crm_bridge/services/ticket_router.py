"""
Ticket routing for incoming WhatsApp messages

Flow for one message:
1. Drop redelivered messages (recent id cache, then the messages table)
2. Serialize per customer phone so concurrent deliveries share one ticket
3. Find or create the customer profile (best effort)
4. Reuse the most recent open ticket for any stored phone format,
   otherwise create one in the instance's department
5. Store the message and mark the ticket as having unread activity
"""
import asyncio
import math
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional
from uuid import uuid4

from dateutil import parser as date_parser
from pydantic import ValidationError

from crm_bridge.config import get_settings
from crm_bridge.models.schemas import (
    IncomingMessage,
    MessageCreate,
    MessageUpsertData,
    Message,
    Profile,
    RoutingAction,
    RoutingResult,
    SenderType,
    Ticket,
    TicketCreate,
    Priority,
    TicketStatus,
)
from crm_bridge.repositories import (
    TicketRepository,
    MessageRepository,
    ProfileRepository,
    InstanceRepository,
)
from crm_bridge.utils.logger import get_logger
from crm_bridge.utils.message_content import extract_message_content, detect_message_type
from crm_bridge.utils.phone import describe_phone, is_group_jid, phone_lookup_variants

settings = get_settings()
logger = get_logger(__name__)

# How long an agent message may wait for its SEND_MESSAGE echo
CRM_ECHO_WINDOW = timedelta(minutes=2)


class TicketRoutingError(Exception):
    """No ticket could be found or created for a message"""


class RecentMessageCache:
    """Bounded LRU set of recently processed WhatsApp message ids"""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._ids: "OrderedDict[str, None]" = OrderedDict()

    def add(self, message_id: str) -> None:
        self._ids[message_id] = None
        self._ids.move_to_end(message_id)
        while len(self._ids) > self.max_size:
            self._ids.popitem(last=False)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, dict):
        # Baileys Long: 64-bit value split in two 32-bit halves
        try:
            value = (int(value.get("high") or 0) << 32) + (int(value.get("low") or 0) & 0xFFFFFFFF)
        except (TypeError, ValueError):
            logger.warning(f"Unparseable message timestamp: {value!r}")
            value = None
    elif isinstance(value, float):
        value = int(value) if math.isfinite(value) else None
    if isinstance(value, bool):
        value = None
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    elif isinstance(value, str) and value:
        try:
            parsed = date_parser.isoparse(value)
        except ValueError:
            logger.warning(f"Unparseable message timestamp: {value!r}")
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, int) and value > 0:
        # Some Evolution builds send milliseconds
        if value > 10 ** 11:
            value = value / 1000
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return datetime.now(timezone.utc)


def parse_message(entry: Dict[str, Any], instance_name: Optional[str] = None) -> Optional[IncomingMessage]:
    """
    Convert one MESSAGES_UPSERT entry to an IncomingMessage

    Returns None for entries that must not be routed: malformed keys,
    group chats, unusable phone numbers and empty messages.
    """
    try:
        data = MessageUpsertData.model_validate(entry)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed message entry: {e.errors()[:1]}")
        return None

    jid = data.key.remote_jid
    if not jid or is_group_jid(jid):
        logger.debug(f"Ignoring message from {jid or 'no jid'}")
        return None

    phone_info = describe_phone(jid, data.push_name)
    if not phone_info.is_valid:
        logger.warning(f"Ignoring message with invalid phone: {jid}")
        return None

    content = extract_message_content(data.message)
    if content is None:
        logger.debug(f"Ignoring empty message {data.key.id}")
        return None

    return IncomingMessage(
        message_id=data.key.id,
        phone=phone_info.phone,
        phone_info=phone_info,
        jid=jid,
        # On outgoing messages pushName is our own account name
        push_name=None if data.key.from_me else data.push_name,
        content=content,
        message_type=detect_message_type(data.message),
        from_me=data.key.from_me,
        instance_name=instance_name,
        timestamp=_parse_timestamp(data.message_timestamp),
        raw=entry,
    )


class TicketRoutingService:
    """
    Routes WhatsApp messages to tickets
    """

    def __init__(
        self,
        tickets: Optional[TicketRepository] = None,
        messages: Optional[MessageRepository] = None,
        profiles: Optional[ProfileRepository] = None,
        instances: Optional[InstanceRepository] = None,
        cache_size: Optional[int] = None
    ):
        self.tickets = tickets or TicketRepository()
        self.messages = messages or MessageRepository()
        self.profiles = profiles or ProfileRepository()
        self.instances = instances or InstanceRepository()
        self.recent = RecentMessageCache(cache_size or settings.message_cache_size)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _phone_lock(self, phone: str):
        lock = self._locks.get(phone)
        if lock is None:
            lock = self._locks[phone] = asyncio.Lock()
        self._lock_users[phone] = self._lock_users.get(phone, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[phone] -= 1
            if self._lock_users[phone] == 0:
                del self._lock_users[phone]
                del self._locks[phone]

    def remember(self, message_id: Optional[str]) -> None:
        """Mark a WhatsApp message id as processed (e.g. our own sends)"""
        if message_id:
            self.recent.add(message_id)

    async def is_duplicate(self, message_id: Optional[str]) -> bool:
        if not message_id:
            return False
        if message_id in self.recent:
            return True
        if await asyncio.to_thread(self.messages.exists_whatsapp_id, message_id):
            self.recent.add(message_id)
            return True
        return False

    async def route_message(self, incoming: IncomingMessage) -> RoutingResult:
        """
        Route one message to a ticket

        Raises:
            TicketRoutingError: If no ticket could be found or created, or the
                message could not be stored
        """
        if incoming.message_id and incoming.message_id in self.recent:
            logger.info(f"Duplicate delivery of {incoming.message_id}, skipping")
            return RoutingResult(action=RoutingAction.DUPLICATE, message="Message already processed")

        async with self._phone_lock(incoming.phone):
            try:
                if await self.is_duplicate(incoming.message_id):
                    logger.info(f"Message {incoming.message_id} already stored, skipping")
                    return RoutingResult(action=RoutingAction.DUPLICATE, message="Message already processed")

                if incoming.from_me:
                    return await self._route_outbound_echo(incoming)

                return await self._route_inbound(incoming)

            except TicketRoutingError:
                raise
            except Exception as e:
                logger.error(f"Routing failed for {incoming.phone}: {e}")
                raise TicketRoutingError(str(e)) from e

    async def _route_inbound(self, incoming: IncomingMessage) -> RoutingResult:
        customer = await self._find_or_create_customer(incoming)
        ticket = await self._find_open_ticket(incoming, customer)

        is_new_ticket = ticket is None
        if ticket is None:
            department_id = await self._resolve_department(incoming.instance_name)
            ticket = await self._create_ticket(incoming, customer, department_id)
        elif customer and not ticket.customer_id:
            await asyncio.to_thread(self.tickets.update, ticket.id, {"customer_id": customer.id})

        message = await self._save_message(
            ticket,
            incoming,
            sender_type=SenderType.CUSTOMER,
            sender_id=customer.id if customer else None,
            sender_name=incoming.contact_name,
        )
        await self._touch_ticket(ticket.id, incoming.timestamp, unread=True)
        self.remember(incoming.message_id)

        action = RoutingAction.CREATED if is_new_ticket else RoutingAction.UPDATED
        logger.info(f"Message from {incoming.phone} {action.value} ticket {ticket.id}")
        return RoutingResult(
            ticket_id=ticket.id,
            message_id=message.id,
            customer_id=customer.id if customer else None,
            is_new_ticket=is_new_ticket,
            action=action,
            message="Ticket created" if is_new_ticket else "Message added to existing ticket",
        )

    async def _route_outbound_echo(self, incoming: IncomingMessage) -> RoutingResult:
        """Messages typed on the phone itself are only appended to open tickets"""
        variants = phone_lookup_variants(incoming.phone)
        ticket = await asyncio.to_thread(self.tickets.find_open_by_phone, variants)
        if ticket is None:
            logger.info(f"Outgoing message to {incoming.phone} has no open ticket, ignoring")
            return RoutingResult(action=RoutingAction.IGNORED, message="No open ticket for outgoing message")

        # Evolution can post the echo of a CRM send before send_text returns
        pending = await self._find_unconfirmed_agent_message(ticket.id, incoming.content)
        if pending is not None:
            metadata = {**pending.metadata, "whatsapp_message_id": incoming.message_id}
            await asyncio.to_thread(self.messages.update_metadata, pending.id, metadata)
            self.remember(incoming.message_id)
            logger.info(f"Echo {incoming.message_id} matched CRM message {pending.id}")
            return RoutingResult(
                ticket_id=ticket.id,
                message_id=pending.id,
                customer_id=ticket.customer_id,
                action=RoutingAction.DUPLICATE,
                message="Echo of a message sent from the CRM",
            )

        message = await self._save_message(
            ticket,
            incoming,
            sender_type=SenderType.AGENT,
            sender_id=None,
            sender_name="WhatsApp",
        )
        await self._touch_ticket(ticket.id, incoming.timestamp, unread=False)
        self.remember(incoming.message_id)

        return RoutingResult(
            ticket_id=ticket.id,
            message_id=message.id,
            customer_id=ticket.customer_id,
            action=RoutingAction.UPDATED,
            message="Outgoing message added to existing ticket",
        )

    async def _find_unconfirmed_agent_message(self, ticket_id: str, content: str) -> Optional[Message]:
        """Recent CRM agent message with the same text and no WhatsApp id yet"""
        recent = await asyncio.to_thread(self.messages.list_for_ticket, ticket_id, 20)
        cutoff = datetime.now(timezone.utc) - CRM_ECHO_WINDOW
        for message in reversed(recent):
            if (
                message.sender_type != SenderType.AGENT.value
                or message.is_internal
                or message.metadata.get("source") != "crm"
                or message.metadata.get("whatsapp_message_id")
                or message.content != content
            ):
                continue
            created_at = message.created_at
            if created_at is not None:
                if created_at.tzinfo is None:
                    created_at = created_at.replace(tzinfo=timezone.utc)
                if created_at < cutoff:
                    continue
            return message
        return None

    async def _find_or_create_customer(self, incoming: IncomingMessage) -> Optional[Profile]:
        """Customer profile for the sender; None when the lookup fails"""
        try:
            variants = phone_lookup_variants(incoming.phone)
            customer = await asyncio.to_thread(self.profiles.find_customer_by_phone, variants)
            if customer:
                if incoming.push_name and customer.full_name in (None, "", f"Cliente {incoming.phone[-4:]}"):
                    await asyncio.to_thread(self.profiles.update, customer.id, {"full_name": incoming.push_name})
                return customer

            return await asyncio.to_thread(
                self.profiles.create_customer,
                incoming.phone,
                incoming.contact_name,
                incoming.instance_name,
            )
        except Exception as e:
            logger.warning(f"Customer lookup failed for {incoming.phone}, continuing without customer: {e}")
            return None

    async def _find_open_ticket(self, incoming: IncomingMessage, customer: Optional[Profile]) -> Optional[Ticket]:
        variants = phone_lookup_variants(incoming.phone)
        ticket = await asyncio.to_thread(self.tickets.find_open_by_phone, variants)
        if ticket is None and customer is not None:
            ticket = await asyncio.to_thread(self.tickets.find_open_by_customer, customer.id)
        return ticket

    async def _resolve_department(self, instance_name: Optional[str]) -> Optional[str]:
        """Instance department, then the configured default, then none"""
        if instance_name:
            try:
                instance = await asyncio.to_thread(self.instances.get_by_name, instance_name)
                if instance and instance.department_id:
                    return instance.department_id
            except Exception as e:
                logger.warning(f"Could not read department of instance {instance_name}: {e}")

        return settings.default_department_id or None

    async def _create_ticket(
        self,
        incoming: IncomingMessage,
        customer: Optional[Profile],
        department_id: Optional[str]
    ) -> Ticket:
        name = customer.full_name if customer and customer.full_name else incoming.contact_name
        ticket = TicketCreate(
            title=f"WhatsApp: {name}",
            description=f"Mensagem inicial: {incoming.content[:500]}",
            status=TicketStatus.OPEN.value,
            priority=Priority.MEDIUM.value,
            customer_id=customer.id if customer else None,
            department_id=department_id,
            channel="whatsapp",
            nunmsg=incoming.phone,
            metadata={
                "client_name": name,
                "client_phone": incoming.phone,
                "whatsapp_phone": incoming.phone,
                "phone_formatted": incoming.phone_info.formatted,
                "whatsapp_jid": incoming.jid,
                "instance_name": incoming.instance_name,
                "first_message": incoming.content[:500],
                "is_whatsapp": True,
                "auto_created": True,
                "created_via": "webhook",
            },
            unread=True,
            last_message_at=incoming.timestamp,
        )
        return await asyncio.to_thread(self.tickets.create, ticket)

    async def _save_message(
        self,
        ticket: Ticket,
        incoming: IncomingMessage,
        sender_type: SenderType,
        sender_id: Optional[str],
        sender_name: str
    ) -> Message:
        message = MessageCreate(
            ticket_id=ticket.id,
            content=incoming.content,
            sender_id=sender_id,
            sender_name=sender_name,
            sender_type=sender_type,
            message_type=incoming.message_type,
            is_internal=False,
            is_read=sender_type != SenderType.CUSTOMER,
            metadata={
                "whatsapp_message_id": incoming.message_id,
                "whatsapp_phone": incoming.phone,
                "instance_name": incoming.instance_name,
                "jid": incoming.jid,
                "push_name": incoming.push_name,
                "timestamp": incoming.timestamp.isoformat(),
                "source": "whatsapp",
            },
        )
        return await asyncio.to_thread(self.messages.create, message)

    async def _touch_ticket(self, ticket_id: str, at: datetime, unread: bool) -> None:
        try:
            await asyncio.to_thread(self.tickets.touch_last_message, ticket_id, at, unread)
        except Exception as e:
            # The message is stored; a stale last_message_at is tolerable
            logger.warning(f"Could not update activity on ticket {ticket_id}: {e}")

    async def simulate_incoming_message(
        self,
        phone: str,
        content: str = "Mensagem de teste",
        push_name: str = "Teste",
        instance_name: Optional[str] = None
    ) -> RoutingResult:
        """Route a synthetic customer message, for diagnostics"""
        entry = {
            "key": {
                "remoteJid": f"{phone}@s.whatsapp.net",
                "fromMe": False,
                "id": f"SIM-{uuid4().hex[:16].upper()}",
            },
            "pushName": push_name,
            "message": {"conversation": content},
            "messageTimestamp": int(datetime.now(timezone.utc).timestamp()),
        }
        incoming = parse_message(entry, instance_name or settings.evolution_default_instance or None)
        if incoming is None:
            return RoutingResult(action=RoutingAction.IGNORED, message=f"Invalid phone: {phone}")
        return await self.route_message(incoming)


@lru_cache()
def get_ticket_router() -> TicketRoutingService:
    """Shared router (one lock registry and message cache per process)"""
    return TicketRoutingService()
