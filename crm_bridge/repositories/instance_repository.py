"""
Instance Repository for the `evolution_instances` table
"""
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from crm_bridge.models.schemas import EvolutionInstance
from crm_bridge.repositories.base_repository import BaseRepository
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)


class InstanceRepository(BaseRepository):
    """Repository for evolution_instances table operations"""

    table_name = "evolution_instances"

    def get_by_name(self, instance_name: str) -> Optional[EvolutionInstance]:
        try:
            response = self.table()\
                .select("*")\
                .eq("instance_name", instance_name)\
                .limit(1)\
                .execute()

            rows = self._rows(response)
            return EvolutionInstance(**rows[0]) if rows else None

        except Exception as e:
            logger.error(f"Failed to get instance {instance_name}: {e}")
            raise

    def list_all(self) -> List[EvolutionInstance]:
        try:
            response = self.table()\
                .select("*")\
                .order("created_at")\
                .execute()

            return [EvolutionInstance(**row) for row in self._rows(response)]

        except Exception as e:
            logger.error(f"Failed to list instances: {e}")
            raise

    def update_status(
        self,
        instance_name: str,
        status: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Store a connection status; returns False when the row does not exist"""
        data: Dict[str, Any] = {
            "status": status,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        if metadata is not None:
            data["metadata"] = metadata

        try:
            response = self.table()\
                .update(data)\
                .eq("instance_name", instance_name)\
                .execute()

            return bool(response.data)

        except Exception as e:
            logger.error(f"Failed to update status of {instance_name}: {e}")
            raise

    def rename(self, old_name: str, new_name: str) -> bool:
        try:
            response = self.table()\
                .update({
                    "instance_name": new_name,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                })\
                .eq("instance_name", old_name)\
                .execute()

            renamed = bool(response.data)
            if renamed:
                logger.info(f"Renamed instance {old_name} -> {new_name}")
            return renamed

        except Exception as e:
            logger.error(f"Failed to rename instance {old_name}: {e}")
            raise

    def upsert(self, instance: EvolutionInstance) -> EvolutionInstance:
        try:
            data = instance.model_dump(mode="json", exclude_none=True)
            data["updated_at"] = datetime.now(timezone.utc).isoformat()

            response = self.table()\
                .upsert(data, on_conflict="instance_name")\
                .execute()

            rows = self._rows(response)
            return EvolutionInstance(**rows[0]) if rows else instance

        except Exception as e:
            logger.error(f"Failed to upsert instance {instance.instance_name}: {e}")
            raise
