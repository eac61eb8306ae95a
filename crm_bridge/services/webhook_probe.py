"""
Probe a running webhook receiver from outside

Used by operators to confirm the public webhook URL reaches this service
and that a synthetic message is routed end to end.
"""
import time
from typing import Any, Dict, Optional
from uuid import uuid4

import httpx

from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)


def build_test_upsert(phone: str, text: str, instance: Optional[str] = None, push_name: str = "Teste Webhook") -> Dict[str, Any]:
    """A MESSAGES_UPSERT body as Evolution would send it"""
    return {
        "event": "messages.upsert",
        "instance": instance or "test-instance",
        "data": {
            "key": {
                "remoteJid": f"{phone}@s.whatsapp.net",
                "fromMe": False,
                "id": f"TEST-{uuid4().hex[:16].upper()}",
            },
            "pushName": push_name,
            "message": {"conversation": text},
            "messageTimestamp": int(time.time()),
        },
    }


class WebhookProbe:
    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        start = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Probe {method} {path} failed: {e}")
            return {"ok": False, "status_code": None, "error": str(e)}

        try:
            body = response.json()
        except ValueError:
            body = response.text

        return {
            "ok": response.is_success,
            "status_code": response.status_code,
            "latency_ms": round((time.time() - start) * 1000, 2),
            "body": body,
        }

    async def check_health(self) -> Dict[str, Any]:
        return await self._call("GET", "/webhook/health")

    async def send_test_message(
        self,
        phone: str,
        text: str = "Mensagem de teste do webhook",
        instance: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = build_test_upsert(phone, text, instance)
        logger.info(f"Posting test message {payload['data']['key']['id']} for {phone}")
        return await self._call("POST", "/webhook/evolution", json=payload)
