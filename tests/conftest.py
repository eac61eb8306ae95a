"""
Pytest configuration and fixtures
"""
import pytest
from typing import Dict, Any


@pytest.fixture
def sample_ticket_row() -> Dict[str, Any]:
    """A WhatsApp ticket row as returned by Supabase"""
    return {
        "id": "4f1c2a9e-0000-4000-8000-000000000001",
        "title": "WhatsApp: Maria Silva",
        "description": "Mensagem inicial: Olá, preciso de ajuda",
        "status": "open",
        "priority": "medium",
        "customer_id": "c7d0e8f2-0000-4000-8000-000000000002",
        "department_id": "dept-support",
        "channel": "whatsapp",
        "nunmsg": "5511999998888",
        "metadata": {
            "client_phone": "5511999998888",
            "instance_name": "atendimento",
            "is_whatsapp": True,
        },
        "unread": True,
        "last_message_at": "2024-06-03T16:00:00+00:00",
        "created_at": "2024-06-03T16:00:00+00:00",
        "tenant_column_we_do_not_know": "ignored",
    }


@pytest.fixture
def sample_webhook_body() -> Dict[str, Any]:
    """Evolution v2 MESSAGES_UPSERT body"""
    return {
        "event": "messages.upsert",
        "instance": "atendimento",
        "data": {
            "key": {
                "remoteJid": "5511999998888@s.whatsapp.net",
                "fromMe": False,
                "id": "3EB0C767D26A1D7A0B12",
            },
            "pushName": "Maria Silva",
            "message": {"conversation": "Olá"},
            "messageType": "conversation",
            "messageTimestamp": 1717430400,
        },
        "date_time": "2024-06-03T16:00:00.000Z",
        "server_url": "http://evolution.test",
        "apikey": "instance-token",
    }
