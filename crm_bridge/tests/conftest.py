"""
Fixtures for crm_bridge tests
"""
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest

from crm_bridge.tests.fakes import (
    FakeInstanceRepository,
    FakeMessageRepository,
    FakeProfileRepository,
    FakeTicketRepository,
    make_upsert_entry,
)


@pytest.fixture
def mock_supabase():
    """Fixture for mock Supabase client (every builder call returns the client)"""
    client = MagicMock()
    for method in (
        "table", "select", "insert", "update", "upsert", "delete",
        "eq", "in_", "or_", "gte", "order", "limit",
    ):
        getattr(client, method).return_value = client
    client.execute.return_value = MagicMock(data=[], count=0)
    return client


@pytest.fixture
def ticket_repo():
    return FakeTicketRepository()


@pytest.fixture
def message_repo():
    return FakeMessageRepository()


@pytest.fixture
def profile_repo():
    return FakeProfileRepository()


@pytest.fixture
def instance_repo():
    repo = FakeInstanceRepository()
    repo.add(instance_name="atendimento", department_id="dept-support", status="connected")
    return repo


@pytest.fixture
def router(ticket_repo, message_repo, profile_repo, instance_repo):
    """TicketRoutingService wired to in-memory repositories"""
    from crm_bridge.services.ticket_router import TicketRoutingService
    return TicketRoutingService(
        tickets=ticket_repo,
        messages=message_repo,
        profiles=profile_repo,
        instances=instance_repo,
        cache_size=100,
    )


@pytest.fixture
def upsert_payload() -> Dict[str, Any]:
    """Full Evolution v2 MESSAGES_UPSERT webhook body"""
    return {
        "event": "messages.upsert",
        "instance": "atendimento",
        "data": make_upsert_entry(),
        "destination": "https://crm.test/webhook/evolution",
        "date_time": "2024-06-03T16:00:00.000Z",
        "sender": "5511988887777@s.whatsapp.net",
        "server_url": "http://evolution.test",
    }


@pytest.fixture
def live_connections():
    """A real ConnectionManager, isolated from the process-wide one"""
    from crm_bridge.services.connection_manager import ConnectionManager
    return ConnectionManager()


@pytest.fixture
def evolution_mock():
    """EvolutionClient replacement; every call succeeds"""
    from crm_bridge.models.schemas import SendMessageResult

    client = AsyncMock()
    client.send_text.return_value = SendMessageResult(
        success=True,
        message_id="BAE5F1A2C3D4",
        status="PENDING",
        phone="5511999998888",
        instance="atendimento",
    )
    client.fetch_instances.return_value = [{"name": "atendimento", "connectionStatus": "open"}]
    client.connection_state.return_value = {"instance": {"instanceName": "atendimento", "state": "open"}}
    client.find_webhook.return_value = None
    client.set_webhook.return_value = {"webhook": {"enabled": True}}
    client.logout_instance.return_value = {"status": "SUCCESS", "error": False}
    client.delete_instance.return_value = {"status": "SUCCESS", "error": False}
    return client


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"X-Admin-API-Key": "test-admin-key"}


@pytest.fixture
def client(router, live_connections, evolution_mock, ticket_repo, message_repo, profile_repo, instance_repo):
    """TestClient with every service wired to in-memory repositories"""
    from fastapi.testclient import TestClient

    from crm_bridge import dependencies
    from crm_bridge.main import app
    from crm_bridge.services.diagnostics import DepartmentDiagnostics
    from crm_bridge.services.duplicates import DuplicateTicketService
    from crm_bridge.services.instances import InstanceMaintenance
    from crm_bridge.services.outbound import OutboundMessageService
    from crm_bridge.services.webhook_processor import WebhookProcessor
    from crm_bridge.tests.fakes import FakeDepartmentRepository

    processor = WebhookProcessor(router=router, connections=live_connections, instances=instance_repo)
    outbound = OutboundMessageService(
        tickets=ticket_repo,
        messages=message_repo,
        evolution=evolution_mock,
        connections=live_connections,
        router=router,
    )

    app.dependency_overrides = {
        dependencies.get_ticket_router: lambda: router,
        dependencies.get_connection_manager: lambda: live_connections,
        dependencies.get_evolution_client: lambda: evolution_mock,
        dependencies.get_message_repository: lambda: message_repo,
        dependencies.get_webhook_processor: lambda: processor,
        dependencies.get_outbound_service: lambda: outbound,
        dependencies.get_duplicate_service: lambda: DuplicateTicketService(ticket_repo, message_repo),
        dependencies.get_department_diagnostics: lambda: DepartmentDiagnostics(
            profile_repo, FakeDepartmentRepository(), ticket_repo
        ),
        dependencies.get_instance_maintenance: lambda: InstanceMaintenance(
            evolution_mock, instance_repo, ticket_repo
        ),
    }
    yield TestClient(app)
    app.dependency_overrides = {}
