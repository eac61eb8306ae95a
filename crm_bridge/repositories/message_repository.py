"""
Message Repository for the `messages` table
"""
from typing import List, Dict, Any

from crm_bridge.models.schemas import Message, MessageCreate
from crm_bridge.repositories.base_repository import BaseRepository
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)


class MessageRepository(BaseRepository):
    """Repository for messages table operations"""

    table_name = "messages"

    def create(self, message: MessageCreate) -> Message:
        """
        Insert a message

        Raises:
            ValueError: If Supabase returns no row
        """
        try:
            data = message.model_dump(mode="json")
            response = self.table().insert(data).execute()

            rows = self._rows(response)
            if not rows:
                raise ValueError("Failed to create message")

            result = Message(**rows[0])
            logger.info(f"Created message {result.id} on ticket {result.ticket_id}")
            return result

        except Exception as e:
            logger.error(f"Failed to create message for ticket {message.ticket_id}: {e}")
            raise

    def list_for_ticket(self, ticket_id: str, limit: int = 50) -> List[Message]:
        """Latest `limit` messages of a ticket in chronological order"""
        try:
            response = self.table()\
                .select("*")\
                .eq("ticket_id", ticket_id)\
                .order("created_at", desc=True)\
                .limit(limit)\
                .execute()

            messages = [Message(**row) for row in self._rows(response)]
            messages.reverse()
            return messages

        except Exception as e:
            logger.error(f"Failed to list messages for ticket {ticket_id}: {e}")
            raise

    def exists_whatsapp_id(self, whatsapp_message_id: str) -> bool:
        """Whether a WhatsApp message id was already stored"""
        try:
            response = self.table()\
                .select("id")\
                .eq("metadata->>whatsapp_message_id", whatsapp_message_id)\
                .limit(1)\
                .execute()

            return bool(response.data)

        except Exception as e:
            logger.error(f"Failed to check message {whatsapp_message_id}: {e}")
            raise

    def update_metadata(self, message_id: str, metadata: Dict[str, Any]) -> None:
        try:
            self.table()\
                .update({"metadata": metadata})\
                .eq("id", message_id)\
                .execute()

        except Exception as e:
            logger.error(f"Failed to update message {message_id}: {e}")
            raise

    def move_to_ticket(self, from_ticket_id: str, to_ticket_id: str) -> int:
        """Re-parent all messages of one ticket; returns the number moved"""
        try:
            response = self.table()\
                .update({"ticket_id": to_ticket_id})\
                .eq("ticket_id", from_ticket_id)\
                .execute()

            moved = len(self._rows(response))
            logger.info(f"Moved {moved} messages from {from_ticket_id} to {to_ticket_id}")
            return moved

        except Exception as e:
            logger.error(f"Failed to move messages from {from_ticket_id}: {e}")
            raise
