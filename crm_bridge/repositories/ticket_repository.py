"""
Ticket Repository for the `tickets` table

Features:
- Open-ticket lookup by any stored phone representation
- Creation and partial updates
- Window queries used by duplicate analysis
- Closing duplicates with merge metadata
"""
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from crm_bridge.models.schemas import Ticket, TicketCreate, TicketStatus, OPEN_STATUSES
from crm_bridge.repositories.base_repository import BaseRepository, or_filter
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)

# Columns where older flows stored the customer phone
PHONE_COLUMNS = [
    "nunmsg",
    "metadata->>client_phone",
    "metadata->>whatsapp_phone",
    "metadata->>phone",
]


class TicketRepository(BaseRepository):
    """Repository for tickets table operations"""

    table_name = "tickets"

    def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        try:
            response = self.table()\
                .select("*")\
                .eq("id", ticket_id)\
                .limit(1)\
                .execute()

            rows = self._rows(response)
            return Ticket(**rows[0]) if rows else None

        except Exception as e:
            logger.error(f"Failed to get ticket {ticket_id}: {e}")
            raise

    def find_open_by_phone(
        self,
        phone_variants: List[str],
        statuses: Optional[List[str]] = None
    ) -> Optional[Ticket]:
        """
        Most recent open ticket for any of the phone variants

        Args:
            phone_variants: Output of phone_lookup_variants()
            statuses: Statuses considered open (defaults to OPEN_STATUSES)

        Returns:
            Ticket if found, None otherwise
        """
        if not phone_variants:
            return None

        try:
            response = self.table()\
                .select("*")\
                .in_("status", statuses or OPEN_STATUSES)\
                .or_(or_filter(PHONE_COLUMNS, phone_variants))\
                .order("created_at", desc=True)\
                .limit(1)\
                .execute()

            rows = self._rows(response)
            return Ticket(**rows[0]) if rows else None

        except Exception as e:
            logger.error(f"Failed to find open ticket for {phone_variants[0]}: {e}")
            raise

    def find_open_by_customer(self, customer_id: str) -> Optional[Ticket]:
        try:
            response = self.table()\
                .select("*")\
                .eq("customer_id", customer_id)\
                .eq("channel", "whatsapp")\
                .in_("status", OPEN_STATUSES)\
                .order("created_at", desc=True)\
                .limit(1)\
                .execute()

            rows = self._rows(response)
            return Ticket(**rows[0]) if rows else None

        except Exception as e:
            logger.error(f"Failed to find open ticket for customer {customer_id}: {e}")
            raise

    def list_by_phone(self, phone_variants: List[str]) -> List[Ticket]:
        """All WhatsApp tickets (any status) for a phone, newest first"""
        try:
            response = self.table()\
                .select("*")\
                .or_(or_filter(PHONE_COLUMNS, phone_variants))\
                .order("created_at", desc=True)\
                .execute()

            return [Ticket(**row) for row in self._rows(response)]

        except Exception as e:
            logger.error(f"Failed to list tickets for {phone_variants[:1]}: {e}")
            raise

    def list_whatsapp_since(self, since: datetime) -> List[Ticket]:
        """WhatsApp tickets created after `since`, newest first"""
        try:
            response = self.table()\
                .select("*")\
                .or_("channel.eq.whatsapp,metadata->>is_whatsapp.eq.true")\
                .gte("created_at", since.isoformat())\
                .order("created_at", desc=True)\
                .execute()

            return [Ticket(**row) for row in self._rows(response)]

        except Exception as e:
            logger.error(f"Failed to list WhatsApp tickets since {since}: {e}")
            raise

    def list_open(self) -> List[Ticket]:
        try:
            response = self.table()\
                .select("*")\
                .in_("status", OPEN_STATUSES)\
                .execute()

            return [Ticket(**row) for row in self._rows(response)]

        except Exception as e:
            logger.error(f"Failed to list open tickets: {e}")
            raise

    def create(self, ticket: TicketCreate) -> Ticket:
        """
        Create a new ticket

        Raises:
            ValueError: If Supabase returns no row
        """
        try:
            data = ticket.model_dump(mode="json", exclude_none=True)
            response = self.table().insert(data).execute()

            rows = self._rows(response)
            if not rows:
                raise ValueError("Failed to create ticket")

            result = Ticket(**rows[0])
            logger.info(f"Created ticket: {result.id} ({result.title})")
            return result

        except Exception as e:
            logger.error(f"Failed to create ticket: {e}")
            raise

    def update(self, ticket_id: str, fields: Dict[str, Any]) -> Optional[Ticket]:
        try:
            data = dict(fields)
            data.setdefault("updated_at", datetime.now(timezone.utc).isoformat())

            response = self.table()\
                .update(data)\
                .eq("id", ticket_id)\
                .execute()

            rows = self._rows(response)
            return Ticket(**rows[0]) if rows else None

        except Exception as e:
            logger.error(f"Failed to update ticket {ticket_id}: {e}")
            raise

    def touch_last_message(self, ticket_id: str, at: datetime, unread: bool = True) -> None:
        """Record activity on a ticket"""
        self.update(ticket_id, {
            "last_message_at": at.isoformat(),
            "unread": unread,
        })

    def close_as_duplicate(self, ticket: Ticket, keep_ticket_id: str) -> Optional[Ticket]:
        """Close `ticket` as a duplicate of `keep_ticket_id`"""
        now = datetime.now(timezone.utc).isoformat()
        metadata = dict(ticket.metadata)
        metadata.update({
            "closed_reason": "duplicate_ticket",
            "merged_into": keep_ticket_id,
            "auto_closed_at": now,
            "original_status": ticket.status,
        })

        logger.info(f"Closing duplicate ticket {ticket.id} (kept {keep_ticket_id})")
        return self.update(ticket.id, {
            "status": TicketStatus.CLOSED.value,
            "metadata": metadata,
            "updated_at": now,
        })
