"""
Base Repository

Holds the Supabase client shared by all table repositories. Tests inject
a mock client; production code gets the cached service client.
"""
from typing import Iterable, List

from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)


def or_filter(columns: Iterable[str], values: Iterable[str]) -> str:
    """
    Build a PostgREST `or` filter matching any column against any value

    Values are double-quoted so "+" and "@" survive the filter syntax.
    """
    values = list(values)
    return ",".join(
        f'{column}.eq."{value}"'
        for column in columns
        for value in values
    )


class BaseRepository:
    """Base class for Supabase table repositories"""

    table_name: str = ""

    def __init__(self, supabase_client=None):
        """
        Initialize repository with Supabase client

        Args:
            supabase_client: Supabase client instance (uses default if None)
        """
        if supabase_client is None:
            from crm_bridge.services.supabase_client import get_supabase_client
            self.client = get_supabase_client()
        else:
            self.client = supabase_client

        logger.debug(f"{self.__class__.__name__} initialized for table: {self.table_name}")

    def table(self):
        return self.client.table(self.table_name)

    @staticmethod
    def _rows(response) -> List[dict]:
        return list(response.data or [])
