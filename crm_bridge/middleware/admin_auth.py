"""
Admin API Authentication

API key authentication for instance management and maintenance endpoints.
"""
import hmac
from typing import Annotated, Optional

from fastapi import HTTPException, Header, status

from crm_bridge.config import get_settings
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)


def verify_admin_key(
    api_key: Annotated[Optional[str], Header(alias="X-Admin-API-Key")] = None
) -> bool:
    """
    Verify admin API key from request headers.

    Args:
        api_key: API key from X-Admin-API-Key header

    Returns:
        True if valid

    Raises:
        HTTPException: If key invalid or missing

    Example:
        >>> router = APIRouter(dependencies=[Depends(verify_admin_key)])
    """
    if not api_key:
        logger.warning("Admin API request missing API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing admin API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    admin_api_key = get_settings().admin_api_key
    if not admin_api_key:
        logger.error("ADMIN_API_KEY not configured! Admin endpoints are disabled.")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin authentication not configured"
        )

    if not hmac.compare_digest(api_key, admin_api_key):
        logger.warning(f"Invalid admin API key attempt: {api_key[:4]}...")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key"
        )

    return True
