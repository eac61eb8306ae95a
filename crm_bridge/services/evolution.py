"""
Evolution API Client

Provides WhatsApp gateway integration for:
- Instance management (list, create, connect/QR, state, logout, delete)
- Webhook configuration (set, find)
- Sending text messages
All calls share one retry policy with exponential backoff.
"""
import httpx
from functools import lru_cache
from typing import Dict, Any, Optional, List
import asyncio

from crm_bridge.config import get_settings
from crm_bridge.models.schemas import SendMessageResult
from crm_bridge.utils.logger import get_logger
from crm_bridge.utils.phone import format_for_sending

settings = get_settings()
logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = [429, 500, 502, 503, 504]


class EvolutionAPIError(Exception):
    """Evolution API call failed after retries"""

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: str = "", detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint
        self.detail = detail


def instance_name_of(entry: Dict[str, Any]) -> Optional[str]:
    """Instance name from a fetchInstances entry (v1 and v2 shapes)"""
    if not isinstance(entry, dict):
        return None
    nested = entry.get("instance") if isinstance(entry.get("instance"), dict) else {}
    return entry.get("name") or entry.get("instanceName") or nested.get("instanceName")


def instance_state_of(entry: Dict[str, Any]) -> Optional[str]:
    """Connection state from a fetchInstances entry (v1 and v2 shapes)"""
    if not isinstance(entry, dict):
        return None
    nested = entry.get("instance") if isinstance(entry.get("instance"), dict) else {}
    return entry.get("connectionStatus") or nested.get("status") or nested.get("state")


class EvolutionClient:
    """
    Evolution API integration with retry logic and error handling
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None
    ):
        self.base_url = (base_url or settings.EVOLUTION_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.evolution_api_key
        self.headers = {
            "Content-Type": "application/json",
            "apikey": self.api_key
        }
        self.timeout = timeout or settings.evolution_timeout
        self.max_retries = max_retries or settings.evolution_max_retries

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Any:
        """
        Make HTTP request with retry logic

        Args:
            method: HTTP method (GET, POST, DELETE, ...)
            endpoint: API endpoint, e.g. "instance/fetchInstances"
            **kwargs: Additional arguments for httpx

        Returns:
            Response JSON (None for empty bodies)

        Raises:
            EvolutionAPIError: On HTTP or transport errors after retries
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(
                        method=method,
                        url=url,
                        headers=self.headers,
                        **kwargs
                    )
                    response.raise_for_status()
                    if not response.content:
                        return None
                    return response.json()

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt  # Exponential backoff
                    logger.warning(
                        f"Evolution request {method} {endpoint} failed with {status_code} "
                        f"(attempt {attempt + 1}/{self.max_retries}), retrying in {wait_time}s"
                    )
                    await asyncio.sleep(wait_time)
                    continue

                detail = _response_detail(e.response)
                logger.error(f"Evolution request {method} {endpoint} failed: {status_code} {detail}")
                raise EvolutionAPIError(
                    f"Evolution API returned {status_code} for {endpoint}",
                    status_code=status_code,
                    endpoint=endpoint,
                    detail=detail
                ) from e

            except httpx.TransportError as e:
                if attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt
                    logger.warning(
                        f"Evolution request {method} {endpoint} transport error "
                        f"(attempt {attempt + 1}/{self.max_retries}), retrying in {wait_time}s: {e}"
                    )
                    await asyncio.sleep(wait_time)
                    continue

                logger.error(f"Evolution request {method} {endpoint} failed: {e}")
                raise EvolutionAPIError(
                    f"Evolution API unreachable: {e}",
                    endpoint=endpoint
                ) from e

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    async def fetch_instances(self) -> List[Dict[str, Any]]:
        """List all instances known to the Evolution server"""
        result = await self._make_request("GET", "instance/fetchInstances")
        return result if isinstance(result, list) else []

    async def create_instance(
        self,
        name: str,
        webhook_url: Optional[str] = None,
        events: Optional[List[str]] = None,
        qrcode: bool = True
    ) -> Dict[str, Any]:
        """
        Create a Baileys instance, optionally with its webhook

        Returns:
            Evolution response (contains the QR code when qrcode=True)
        """
        payload: Dict[str, Any] = {
            "instanceName": name,
            "qrcode": qrcode,
            "integration": "WHATSAPP-BAILEYS",
        }
        if webhook_url:
            payload["webhook"] = {
                "url": webhook_url,
                "byEvents": False,
                "base64": False,
                "events": events or settings.WEBHOOK_EVENTS,
            }

        logger.info(f"Creating Evolution instance {name}")
        return await self._make_request("POST", "instance/create", json=payload)

    async def connect_instance(self, name: str) -> Dict[str, Any]:
        """Start a connection; returns the QR code payload"""
        return await self._make_request("GET", f"instance/connect/{name}")

    async def connection_state(self, name: str) -> Dict[str, Any]:
        """
        Connection state of an instance

        Returns {"instance": {"state": "close"}} when the state cannot be read.
        """
        try:
            return await self._make_request("GET", f"instance/connectionState/{name}")
        except EvolutionAPIError as e:
            logger.warning(f"Could not read connection state for {name}: {e}")
            return {"instance": {"instanceName": name, "state": "close"}}

    async def logout_instance(self, name: str) -> Any:
        logger.info(f"Logging out Evolution instance {name}")
        return await self._make_request("DELETE", f"instance/logout/{name}")

    async def delete_instance(self, name: str) -> Any:
        logger.info(f"Deleting Evolution instance {name}")
        return await self._make_request("DELETE", f"instance/delete/{name}")

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def set_webhook(
        self,
        name: str,
        url: str,
        events: Optional[List[str]] = None,
        by_events: bool = False,
        base64: bool = False
    ) -> Dict[str, Any]:
        """Point an instance's webhook at `url`"""
        payload = {
            "url": url,
            "enabled": True,
            "events": events or settings.WEBHOOK_EVENTS,
            "webhook_by_events": by_events,
            "webhook_base64": base64,
        }
        logger.info(f"Setting webhook for {name} -> {url}")
        return await self._make_request("POST", f"webhook/set/{name}", json=payload)

    async def find_webhook(self, name: str) -> Optional[Dict[str, Any]]:
        """Current webhook configuration, None when the instance has none"""
        try:
            return await self._make_request("GET", f"webhook/find/{name}")
        except EvolutionAPIError as e:
            if e.status_code == 404:
                return None
            raise

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_text(
        self,
        name: str,
        phone: str,
        text: str,
        delay: int = 1000,
        link_preview: bool = True
    ) -> SendMessageResult:
        """
        Send a text message

        Args:
            name: Instance name
            phone: Destination phone (any format, country code added if missing)
            text: Message text
            delay: Typing delay in milliseconds
            link_preview: Render link previews

        Returns:
            SendMessageResult; failures are reported, not raised
        """
        try:
            number = format_for_sending(phone)
        except ValueError as e:
            return SendMessageResult(success=False, error=str(e), phone=phone, instance=name)

        payload = {
            "number": number,
            "text": text,
            "delay": delay,
            "linkPreview": link_preview,
        }

        try:
            result = await self._make_request("POST", f"message/sendText/{name}", json=payload)
        except EvolutionAPIError as e:
            return SendMessageResult(success=False, error=str(e), phone=number, instance=name)

        result = result or {}
        key = result.get("key") or {}
        logger.info(f"Sent message to {number} via {name}: {key.get('id')}")
        return SendMessageResult(
            success=True,
            message_id=key.get("id"),
            status=result.get("status"),
            phone=number,
            instance=name
        )


def _response_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


@lru_cache()
def get_evolution_client() -> EvolutionClient:
    """Get cached Evolution client"""
    return EvolutionClient()
