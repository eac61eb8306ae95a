"""
Unit tests for WebhookProcessor

Tests:
- Event name normalization and dispatch
- Message routing and realtime broadcasts
- Own-message filtering
- Connection and QR code events
"""
from unittest.mock import AsyncMock

import pytest

from crm_bridge.models.schemas import RoutingAction, WebhookPayload
from crm_bridge.services.ticket_router import TicketRoutingError
from crm_bridge.services.webhook_processor import WebhookProcessor, message_entries
from crm_bridge.tests.fakes import make_upsert_entry


@pytest.fixture
def connections():
    manager = AsyncMock()
    manager.broadcast_to_ticket.return_value = 1
    manager.broadcast_all.return_value = 1
    return manager


@pytest.fixture
def processor(router, connections, instance_repo):
    return WebhookProcessor(router=router, connections=connections, instances=instance_repo)


class TestMessageEntries:
    def test_single_object(self):
        entry = make_upsert_entry()
        assert message_entries(entry) == [entry]

    def test_list(self):
        entries = [make_upsert_entry(message_id="A"), "junk", make_upsert_entry(message_id="B")]
        assert len(message_entries(entries)) == 2

    def test_messages_wrapper(self):
        entry = make_upsert_entry()
        assert message_entries({"messages": [entry]}) == [entry]

    def test_nothing(self):
        assert message_entries(None) == []


class TestMessagesUpsert:
    """Test MESSAGES_UPSERT handling"""

    @pytest.mark.asyncio
    async def test_v2_event_creates_ticket(self, processor, upsert_payload, ticket_repo, connections):
        response = await processor.process(WebhookPayload(**upsert_payload))

        assert response.processed
        assert response.instance == "atendimento"
        assert response.ticket_id in ticket_repo.rows
        assert response.results[0].action == RoutingAction.CREATED

        room_call = connections.broadcast_to_ticket.call_args
        assert room_call.args[0] == response.ticket_id
        assert room_call.args[1] == "new-message"
        assert room_call.args[2]["content"] == "Olá, preciso de ajuda"
        assert room_call.args[2]["sender_type"] == "customer"

        all_call = connections.broadcast_all.call_args
        assert all_call.args[0] == "ticket-updated"
        assert all_call.args[1]["is_new_ticket"] is True

    @pytest.mark.asyncio
    async def test_v1_event_name(self, processor, upsert_payload):
        upsert_payload["event"] = "MESSAGES_UPSERT"
        response = await processor.process(WebhookPayload(**upsert_payload))
        assert response.processed

    @pytest.mark.asyncio
    async def test_instance_object(self, processor, upsert_payload, ticket_repo):
        upsert_payload["instance"] = {"instanceName": "atendimento", "state": "open"}

        response = await processor.process(WebhookPayload(**upsert_payload))

        assert response.instance == "atendimento"
        assert ticket_repo.rows[response.ticket_id].department_id == "dept-support"

    @pytest.mark.asyncio
    async def test_own_message_is_ignored(self, processor, upsert_payload, ticket_repo, connections):
        upsert_payload["data"] = make_upsert_entry(from_me=True)

        response = await processor.process(WebhookPayload(**upsert_payload))

        assert not response.processed
        assert response.results[0].action == RoutingAction.IGNORED
        assert ticket_repo.rows == {}
        connections.broadcast_to_ticket.assert_not_called()

    @pytest.mark.asyncio
    async def test_group_message_is_ignored(self, processor, upsert_payload, ticket_repo):
        upsert_payload["data"] = make_upsert_entry(phone="120363025246125244", jid_suffix="@g.us")

        response = await processor.process(WebhookPayload(**upsert_payload))

        assert not response.processed
        assert ticket_repo.rows == {}

    @pytest.mark.asyncio
    async def test_batch_shares_one_ticket(self, processor, upsert_payload, ticket_repo, message_repo):
        upsert_payload["data"] = {"messages": [
            make_upsert_entry(message_id="A", text="oi"),
            make_upsert_entry(message_id="B", text="tudo bem?"),
        ]}

        response = await processor.process(WebhookPayload(**upsert_payload))

        assert [r.action for r in response.results] == [RoutingAction.CREATED, RoutingAction.UPDATED]
        assert len(ticket_repo.rows) == 1
        assert len(message_repo.rows) == 2

    @pytest.mark.asyncio
    async def test_redelivery_is_not_broadcast_twice(self, processor, upsert_payload, connections):
        await processor.process(WebhookPayload(**upsert_payload))
        connections.broadcast_to_ticket.reset_mock()

        response = await processor.process(WebhookPayload(**upsert_payload))

        assert response.results[0].action == RoutingAction.DUPLICATE
        assert not response.processed
        connections.broadcast_to_ticket.assert_not_called()

    @pytest.mark.asyncio
    async def test_routing_error_propagates(self, processor, upsert_payload, ticket_repo):
        ticket_repo.fail_create = True

        with pytest.raises(TicketRoutingError):
            await processor.process(WebhookPayload(**upsert_payload))


class TestSendMessageEvent:
    @pytest.mark.asyncio
    async def test_echo_is_added_to_open_ticket(self, processor, upsert_payload, message_repo, connections):
        created = await processor.process(WebhookPayload(**upsert_payload))

        echo = dict(upsert_payload, event="send.message", data=make_upsert_entry(
            message_id="OUT-1", from_me=True, text="Olá! Como posso ajudar?"
        ))
        response = await processor.process(WebhookPayload(**echo))

        assert response.processed
        assert response.ticket_id == created.ticket_id
        assert message_repo.rows[-1].sender_type == "agent"
        assert connections.broadcast_to_ticket.call_args.args[2]["sender_name"] == "WhatsApp"


class TestConnectionEvents:
    """Test CONNECTION_UPDATE and QRCODE_UPDATED"""

    @pytest.mark.asyncio
    async def test_connection_open(self, processor, instance_repo, connections):
        payload = WebhookPayload(event="connection.update", instance="atendimento", data={"state": "open"})

        response = await processor.process(payload)

        assert response.processed
        assert instance_repo.rows["atendimento"].status == "connected"
        event, data = connections.broadcast_all.call_args.args
        assert event == "instance-status"
        assert data["status"] == "connected"

    @pytest.mark.asyncio
    async def test_connection_close_unregistered_instance(self, processor, instance_repo):
        payload = WebhookPayload(event="CONNECTION_UPDATE", instance="vendas", data={"state": "close"})

        response = await processor.process(payload)

        assert response.processed
        assert "not registered" in response.message
        assert ("vendas", "disconnected") in instance_repo.status_updates

    @pytest.mark.asyncio
    async def test_unknown_state(self, processor, instance_repo):
        payload = WebhookPayload(event="connection.update", instance="atendimento", data={"state": "weird"})

        response = await processor.process(payload)

        assert not response.processed
        assert instance_repo.status_updates == []

    @pytest.mark.asyncio
    async def test_qrcode_updated(self, processor, instance_repo, connections):
        payload = WebhookPayload(
            event="qrcode.updated",
            instance="atendimento",
            data={"qrcode": {"base64": "data:image/png;base64,AAA", "code": "2@abc"}},
        )

        response = await processor.process(payload)

        assert response.processed
        assert instance_repo.rows["atendimento"].status == "qr_pending"
        event, data = connections.broadcast_all.call_args.args
        assert event == "instance-qrcode"
        assert data["code"] == "2@abc"


class TestUnknownEvents:
    @pytest.mark.asyncio
    async def test_other_event_is_acknowledged(self, processor):
        response = await processor.process(WebhookPayload(event="presence.update", instance="atendimento"))

        assert response.received
        assert not response.processed

    @pytest.mark.asyncio
    async def test_missing_event(self, processor):
        response = await processor.process(WebhookPayload())
        assert not response.processed
