"""
Service providers for route dependencies

Each provider returns a process-wide instance; tests replace them through
app.dependency_overrides.
"""
from functools import lru_cache

from crm_bridge.repositories import MessageRepository
from crm_bridge.services.connection_manager import get_connection_manager
from crm_bridge.services.diagnostics import DepartmentDiagnostics
from crm_bridge.services.duplicates import DuplicateTicketService
from crm_bridge.services.evolution import get_evolution_client
from crm_bridge.services.instances import InstanceMaintenance
from crm_bridge.services.outbound import OutboundMessageService
from crm_bridge.services.ticket_router import get_ticket_router
from crm_bridge.services.webhook_processor import WebhookProcessor


@lru_cache()
def get_webhook_processor() -> WebhookProcessor:
    return WebhookProcessor()


@lru_cache()
def get_outbound_service() -> OutboundMessageService:
    return OutboundMessageService()


def get_message_repository() -> MessageRepository:
    return get_ticket_router().messages


@lru_cache()
def get_duplicate_service() -> DuplicateTicketService:
    router = get_ticket_router()
    return DuplicateTicketService(tickets=router.tickets, messages=router.messages)


@lru_cache()
def get_department_diagnostics() -> DepartmentDiagnostics:
    return DepartmentDiagnostics(tickets=get_ticket_router().tickets)


@lru_cache()
def get_instance_maintenance() -> InstanceMaintenance:
    router = get_ticket_router()
    return InstanceMaintenance(instances=router.instances, tickets=router.tickets)


__all__ = [
    "get_connection_manager",
    "get_evolution_client",
    "get_ticket_router",
    "get_webhook_processor",
    "get_outbound_service",
    "get_message_repository",
    "get_duplicate_service",
    "get_department_diagnostics",
    "get_instance_maintenance",
]
