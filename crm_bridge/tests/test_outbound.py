"""
Unit tests for OutboundMessageService
"""
from unittest.mock import AsyncMock

import pytest

from crm_bridge.models.schemas import AgentMessage, RoutingAction, SendMessageRequest, SendMessageResult
from crm_bridge.services.outbound import OutboundMessageService, TicketNotFoundError
from crm_bridge.services.ticket_router import parse_message
from crm_bridge.tests.fakes import make_upsert_entry


@pytest.fixture
def evolution():
    client = AsyncMock()
    client.send_text.return_value = SendMessageResult(
        success=True,
        message_id="BAE5F1A2C3D4",
        status="PENDING",
        phone="5511999998888",
        instance="atendimento",
    )
    return client


@pytest.fixture
def connections():
    return AsyncMock()


@pytest.fixture
def service(ticket_repo, message_repo, evolution, connections, router):
    return OutboundMessageService(
        tickets=ticket_repo,
        messages=message_repo,
        evolution=evolution,
        connections=connections,
        router=router,
    )


@pytest.fixture
def whatsapp_ticket(ticket_repo):
    return ticket_repo.add(
        title="WhatsApp: Maria Silva",
        status="open",
        channel="whatsapp",
        nunmsg="5511999998888",
        metadata={"instance_name": "vendas"},
        unread=True,
    )


def agent_message(ticket_id: str, **kwargs) -> AgentMessage:
    fields = {"ticketId": ticket_id, "content": "Olá! Vou verificar seu pedido.", "userId": "agent-1", "senderName": "Ana"}
    fields.update(kwargs)
    return AgentMessage(**fields)


class TestSendAgentMessage:
    """Test agent message flow"""

    @pytest.mark.asyncio
    async def test_delivers_to_whatsapp(self, service, whatsapp_ticket, message_repo, evolution, connections, ticket_repo):
        result = await service.send_agent_message(agent_message(whatsapp_ticket.id))

        evolution.send_text.assert_awaited_once_with("vendas", "5511999998888", "Olá! Vou verificar seu pedido.")
        assert result["whatsapp"].success

        stored = message_repo.rows[0]
        assert stored.sender_type == "agent"
        assert stored.sender_name == "Ana"
        assert stored.metadata["evolution_sent"] is True
        assert stored.metadata["whatsapp_message_id"] == "BAE5F1A2C3D4"

        events = [c.args[1] for c in connections.broadcast_to_ticket.call_args_list]
        assert events == ["new-message", "message-status"]
        assert ticket_repo.rows[whatsapp_ticket.id].unread is False

    @pytest.mark.asyncio
    async def test_sent_id_is_remembered(self, service, whatsapp_ticket, router):
        await service.send_agent_message(agent_message(whatsapp_ticket.id))
        assert "BAE5F1A2C3D4" in router.recent

    @pytest.mark.asyncio
    async def test_internal_note_is_not_delivered(self, service, whatsapp_ticket, evolution, message_repo):
        result = await service.send_agent_message(agent_message(whatsapp_ticket.id, isInternal=True))

        evolution.send_text.assert_not_called()
        assert result["whatsapp"] is None
        assert message_repo.rows[0].is_internal

    @pytest.mark.asyncio
    async def test_non_whatsapp_ticket(self, service, ticket_repo, evolution):
        ticket = ticket_repo.add(title="Email", status="open", channel="email")

        result = await service.send_agent_message(agent_message(ticket.id))

        evolution.send_text.assert_not_called()
        assert result["whatsapp"] is None

    @pytest.mark.asyncio
    async def test_uses_default_instance(self, service, ticket_repo, evolution):
        ticket = ticket_repo.add(title="WhatsApp", status="open", channel="whatsapp", nunmsg="5511999998888")

        await service.send_agent_message(agent_message(ticket.id))

        assert evolution.send_text.call_args.args[0] == "atendimento"

    @pytest.mark.asyncio
    async def test_delivery_failure_is_recorded(self, service, whatsapp_ticket, evolution, message_repo, connections):
        evolution.send_text.return_value = SendMessageResult(success=False, error="instance not connected")

        result = await service.send_agent_message(agent_message(whatsapp_ticket.id))

        assert not result["whatsapp"].success
        assert message_repo.rows[0].metadata["evolution_sent"] is False
        assert message_repo.rows[0].metadata["evolution_error"] == "instance not connected"
        status = connections.broadcast_to_ticket.call_args.args[2]
        assert status["evolution_sent"] is False

    @pytest.mark.asyncio
    async def test_echo_before_send_returns_is_not_stored_twice(
        self, service, whatsapp_ticket, evolution, router, message_repo
    ):
        sent = evolution.send_text.return_value

        async def echo_then_reply(instance, phone, text):
            entry = make_upsert_entry(message_id=sent.message_id, from_me=True, text=text)
            echo = await router.route_message(parse_message(entry, instance))
            assert echo.action == RoutingAction.DUPLICATE
            return sent

        evolution.send_text.side_effect = echo_then_reply

        await service.send_agent_message(agent_message(whatsapp_ticket.id))

        assert [(m.sender_name, m.content) for m in message_repo.rows] == [("Ana", "Olá! Vou verificar seu pedido.")]
        assert message_repo.rows[0].metadata["whatsapp_message_id"] == "BAE5F1A2C3D4"

    @pytest.mark.asyncio
    async def test_same_text_typed_on_phone_later_is_stored(self, service, whatsapp_ticket, router, message_repo):
        await service.send_agent_message(agent_message(whatsapp_ticket.id))

        entry = make_upsert_entry(message_id="OUT-PHONE", from_me=True, text="Olá! Vou verificar seu pedido.")
        result = await router.route_message(parse_message(entry, "vendas"))

        assert result.action == RoutingAction.UPDATED
        assert [m.sender_name for m in message_repo.rows] == ["Ana", "WhatsApp"]

    @pytest.mark.asyncio
    async def test_unknown_ticket(self, service, message_repo):
        with pytest.raises(TicketNotFoundError):
            await service.send_agent_message(agent_message("missing"))
        assert message_repo.rows == []


class TestSendDirect:
    @pytest.mark.asyncio
    async def test_send_direct(self, service, evolution, router):
        request = SendMessageRequest(phone="11999998888", text="Teste", options={"delay": 0})

        result = await service.send_direct(request)

        assert result.success
        evolution.send_text.assert_awaited_once_with(
            "atendimento", "11999998888", "Teste", delay=0, link_preview=True
        )
        assert "BAE5F1A2C3D4" in router.recent

    @pytest.mark.asyncio
    async def test_explicit_instance(self, service, evolution):
        await service.send_direct(SendMessageRequest(phone="11999998888", text="Teste", instance="vendas"))
        assert evolution.send_text.call_args.args[0] == "vendas"
