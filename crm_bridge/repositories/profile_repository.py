"""
Profile Repository for the `profiles` table

Customers created from WhatsApp get a synthetic e-mail
"whatsapp-<phone>@auto-generated.com" so they can be found again even when
the phone column was never filled.
"""
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
from uuid import uuid4

from crm_bridge.models.schemas import Profile
from crm_bridge.repositories.base_repository import BaseRepository, or_filter
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)

STAFF_ROLES = ["agent", "admin"]


def customer_email(phone: str) -> str:
    return f"whatsapp-{phone}@auto-generated.com"


class ProfileRepository(BaseRepository):
    """Repository for profiles table operations"""

    table_name = "profiles"

    def find_customer_by_phone(self, phone_variants: List[str]) -> Optional[Profile]:
        if not phone_variants:
            return None

        try:
            emails = [customer_email(p) for p in phone_variants if p.isdigit()]
            filters = or_filter(["phone", "metadata->>phone"], phone_variants)
            if emails:
                filters = f"{filters},{or_filter(['email'], emails)}"

            response = self.table()\
                .select("*")\
                .eq("role", "customer")\
                .or_(filters)\
                .limit(1)\
                .execute()

            rows = self._rows(response)
            return Profile(**rows[0]) if rows else None

        except Exception as e:
            logger.error(f"Failed to find customer {phone_variants[0]}: {e}")
            raise

    def create_customer(
        self,
        phone: str,
        name: str,
        instance_name: Optional[str] = None
    ) -> Profile:
        """
        Create a customer profile for a WhatsApp contact

        Raises:
            ValueError: If Supabase returns no row
        """
        now = datetime.now(timezone.utc).isoformat()
        data = {
            "id": str(uuid4()),
            "full_name": name,
            "email": customer_email(phone),
            "phone": phone,
            "role": "customer",
            "metadata": {
                "phone": phone,
                "source": "whatsapp",
                "instance_name": instance_name,
                "auto_created": True,
                "created_via": "webhook",
            },
            "created_at": now,
            "updated_at": now,
        }

        try:
            response = self.table().insert(data).execute()

            rows = self._rows(response)
            if not rows:
                raise ValueError("Failed to create customer")

            result = Profile(**rows[0])
            logger.info(f"Created customer {result.id} for {phone}")
            return result

        except Exception as e:
            logger.error(f"Failed to create customer for {phone}: {e}")
            raise

    def update(self, profile_id: str, fields: Dict[str, Any]) -> None:
        try:
            data = dict(fields)
            data.setdefault("updated_at", datetime.now(timezone.utc).isoformat())
            self.table().update(data).eq("id", profile_id).execute()

        except Exception as e:
            logger.error(f"Failed to update profile {profile_id}: {e}")
            raise

    def list_staff(self) -> List[Profile]:
        """Agents and admins"""
        try:
            response = self.table()\
                .select("*")\
                .in_("role", STAFF_ROLES)\
                .execute()

            return [Profile(**row) for row in self._rows(response)]

        except Exception as e:
            logger.error(f"Failed to list staff profiles: {e}")
            raise

    def assign_department(self, user_ids: List[str], department_id: str) -> int:
        """Set the department of several users; returns rows updated"""
        if not user_ids:
            return 0

        try:
            response = self.table()\
                .update({
                    "department_id": department_id,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                })\
                .in_("id", user_ids)\
                .execute()

            updated = len(self._rows(response))
            logger.info(f"Assigned department {department_id} to {updated} users")
            return updated

        except Exception as e:
            logger.error(f"Failed to assign department {department_id}: {e}")
            raise
