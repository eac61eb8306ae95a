"""
Department Repository for the `departments` table
"""
from typing import List, Optional

from crm_bridge.models.schemas import Department
from crm_bridge.repositories.base_repository import BaseRepository
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)


class DepartmentRepository(BaseRepository):
    """Repository for departments table operations"""

    table_name = "departments"

    def list_all(self) -> List[Department]:
        try:
            response = self.table()\
                .select("*")\
                .order("created_at")\
                .execute()

            return [Department(**row) for row in self._rows(response)]

        except Exception as e:
            logger.error(f"Failed to list departments: {e}")
            raise

    def get_by_id(self, department_id: str) -> Optional[Department]:
        try:
            response = self.table()\
                .select("*")\
                .eq("id", department_id)\
                .limit(1)\
                .execute()

            rows = self._rows(response)
            return Department(**rows[0]) if rows else None

        except Exception as e:
            logger.error(f"Failed to get department {department_id}: {e}")
            raise

    def first_active(self) -> Optional[Department]:
        """Oldest active department, used as fallback assignment"""
        try:
            response = self.table()\
                .select("*")\
                .eq("is_active", True)\
                .order("created_at")\
                .limit(1)\
                .execute()

            rows = self._rows(response)
            return Department(**rows[0]) if rows else None

        except Exception as e:
            logger.error(f"Failed to get first active department: {e}")
            raise
