"""
Evolution instance maintenance

- Reconcile evolution_instances rows with the instances Evolution knows
- Rename an instance everywhere it is referenced
- Configure and verify webhooks on every instance
"""
import asyncio
from typing import List, Optional

from crm_bridge.config import get_settings
from crm_bridge.models.schemas import InstanceReconciliation, WebhookConfigResult
from crm_bridge.repositories import InstanceRepository, TicketRepository
from crm_bridge.services.evolution import (
    EvolutionAPIError,
    EvolutionClient,
    get_evolution_client,
    instance_name_of,
    instance_state_of,
)
from crm_bridge.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)


class InstanceMaintenance:
    def __init__(
        self,
        evolution: Optional[EvolutionClient] = None,
        instances: Optional[InstanceRepository] = None,
        tickets: Optional[TicketRepository] = None
    ):
        self.evolution = evolution or get_evolution_client()
        self.instances = instances or InstanceRepository()
        self.tickets = tickets or TicketRepository()

    async def reconcile(self) -> InstanceReconciliation:
        remote = await self.evolution.fetch_instances()
        remote_states = {
            instance_name_of(entry): instance_state_of(entry) or "unknown"
            for entry in remote
            if instance_name_of(entry)
        }
        local = {i.instance_name for i in await asyncio.to_thread(self.instances.list_all)}

        result = InstanceReconciliation(
            matched=sorted(local & remote_states.keys()),
            missing_remote=sorted(local - remote_states.keys()),
            missing_local=sorted(remote_states.keys() - local),
            remote_states=remote_states,
        )
        if result.missing_remote or result.missing_local:
            logger.warning(
                f"Instance mismatch: not in Evolution {result.missing_remote}, "
                f"not in database {result.missing_local}"
            )
        return result

    async def rename(self, old_name: str, new_name: str) -> int:
        """
        Rename an instance row and the instance recorded on open tickets

        Returns:
            Number of open tickets updated

        Raises:
            ValueError: If no instance row has `old_name`
        """
        renamed = await asyncio.to_thread(self.instances.rename, old_name, new_name)
        if not renamed:
            raise ValueError(f"Instance {old_name} not found")

        updated = 0
        for ticket in await asyncio.to_thread(self.tickets.list_open):
            if ticket.metadata.get("instance_name") != old_name:
                continue
            metadata = dict(ticket.metadata, instance_name=new_name)
            await asyncio.to_thread(self.tickets.update, ticket.id, {"metadata": metadata})
            updated += 1

        logger.info(f"Renamed instance {old_name} -> {new_name}, {updated} open tickets updated")
        return updated

    async def configure_webhooks(
        self,
        url: Optional[str] = None,
        events: Optional[List[str]] = None,
        instance: Optional[str] = None,
        check_only: bool = False
    ) -> List[WebhookConfigResult]:
        """
        Set (unless check_only) and verify the webhook of each instance

        Raises:
            ValueError: If no webhook URL is given or configured
        """
        url = url or settings.webhook_public_url
        if not url:
            raise ValueError("Webhook URL not configured (WEBHOOK_PUBLIC_URL)")
        events = events or settings.WEBHOOK_EVENTS

        if instance:
            names = [instance]
        else:
            names = [n for n in (instance_name_of(e) for e in await self.evolution.fetch_instances()) if n]

        results = []
        for name in names:
            results.append(await self._configure_one(name, url, events, check_only))

        ok = sum(1 for r in results if r.success)
        logger.info(f"Webhooks {'checked' if check_only else 'configured'}: {ok}/{len(results)} ok")
        return results

    async def _configure_one(
        self,
        name: str,
        url: str,
        events: List[str],
        check_only: bool
    ) -> WebhookConfigResult:
        try:
            if not check_only:
                await self.evolution.set_webhook(name, url, events)

            current = await self.evolution.find_webhook(name) or {}
            # v2 nests the config under "webhook"
            current = current.get("webhook", current) if isinstance(current, dict) else {}
            verified = current.get("url") == url and current.get("enabled", True) is not False

            return WebhookConfigResult(
                instance=name,
                success=verified,
                url=current.get("url"),
                events=current.get("events") or [],
                verified=verified,
                error=None if verified else "Webhook URL does not match",
            )
        except EvolutionAPIError as e:
            logger.error(f"Webhook configuration failed for {name}: {e}")
            return WebhookConfigResult(instance=name, success=False, url=url, events=events, error=str(e))
