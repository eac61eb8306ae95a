"""
Realtime connection manager

Tracks agent WebSocket connections and the ticket "rooms" they joined.
Frames are JSON objects {"event": <name>, "data": <payload>}.
"""
from typing import Any, Dict, Optional, Set
from uuid import uuid4

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)


class ConnectionManager:
    def __init__(self):
        # client_id -> socket
        self.connections: Dict[str, WebSocket] = {}
        # ticket_id -> {client_id}
        self.ticket_rooms: Dict[str, Set[str]] = {}
        # client_id -> {ticket_id}
        self.client_tickets: Dict[str, Set[str]] = {}
        # client_id -> user_id
        self.client_users: Dict[str, str] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a socket and return its client id"""
        await websocket.accept()
        client_id = uuid4().hex
        self.connections[client_id] = websocket
        self.client_tickets[client_id] = set()
        logger.info(f"Client connected: {client_id} (total {len(self.connections)})")
        return client_id

    def join_ticket(self, client_id: str, ticket_id: str, user_id: Optional[str] = None) -> None:
        self.ticket_rooms.setdefault(ticket_id, set()).add(client_id)
        self.client_tickets.setdefault(client_id, set()).add(ticket_id)
        if user_id:
            self.client_users[client_id] = user_id
        logger.info(f"Client {client_id} joined ticket {ticket_id}")

    def leave_ticket(self, client_id: str, ticket_id: str) -> None:
        room = self.ticket_rooms.get(ticket_id)
        if room is not None:
            room.discard(client_id)
            if not room:
                del self.ticket_rooms[ticket_id]
        self.client_tickets.get(client_id, set()).discard(ticket_id)

    def disconnect(self, client_id: str) -> None:
        """Forget a client and remove it from every room"""
        for ticket_id in list(self.client_tickets.get(client_id, ())):
            self.leave_ticket(client_id, ticket_id)
        self.client_tickets.pop(client_id, None)
        self.client_users.pop(client_id, None)
        if self.connections.pop(client_id, None) is not None:
            logger.info(f"Client disconnected: {client_id} (total {len(self.connections)})")

    async def send(self, client_id: str, event: str, data: Any) -> bool:
        """Send one event to one client; drops the client if the socket is dead"""
        websocket = self.connections.get(client_id)
        if websocket is None:
            return False

        try:
            await websocket.send_json({"event": event, "data": jsonable_encoder(data)})
            return True
        except Exception as e:
            logger.warning(f"Failed to send {event} to {client_id}, dropping connection: {e}")
            self.disconnect(client_id)
            return False

    async def broadcast_to_ticket(
        self,
        ticket_id: str,
        event: str,
        data: Any,
        exclude: Optional[str] = None
    ) -> int:
        """Send an event to every client in a ticket room; returns deliveries"""
        delivered = 0
        for client_id in list(self.ticket_rooms.get(ticket_id, ())):
            if client_id == exclude:
                continue
            if await self.send(client_id, event, data):
                delivered += 1

        logger.debug(f"Broadcast {event} to ticket {ticket_id}: {delivered} clients")
        return delivered

    async def broadcast_all(self, event: str, data: Any) -> int:
        delivered = 0
        for client_id in list(self.connections):
            if await self.send(client_id, event, data):
                delivered += 1
        return delivered

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_connections": len(self.connections),
            "active_tickets": len(self.ticket_rooms),
            "connections_by_ticket": {
                ticket_id: len(clients)
                for ticket_id, clients in self.ticket_rooms.items()
            },
        }


manager = ConnectionManager()


def get_connection_manager() -> ConnectionManager:
    return manager
