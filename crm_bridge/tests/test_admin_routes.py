"""
Tests for the admin APIs (/api/v1/instances, /api/v1/maintenance)
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from crm_bridge.services.evolution import EvolutionAPIError


class TestAdminAuth:
    """Test X-Admin-API-Key handling"""

    def test_missing_key(self, client):
        response = client.get("/api/v1/instances")
        assert response.status_code == 401

    def test_wrong_key(self, client):
        response = client.get("/api/v1/instances", headers={"X-Admin-API-Key": "wrong"})
        assert response.status_code == 403

    def test_key_not_configured(self, client, admin_headers):
        with patch("crm_bridge.middleware.admin_auth.get_settings") as get_settings:
            get_settings.return_value.admin_api_key = ""
            response = client.get("/api/v1/instances", headers=admin_headers)
        assert response.status_code == 500

    def test_valid_key(self, client, admin_headers):
        assert client.get("/api/v1/instances", headers=admin_headers).status_code == 200

    def test_webhook_needs_no_key(self, client):
        assert client.get("/webhook/health").status_code == 200


class TestInstanceRoutes:
    def test_list(self, client, admin_headers):
        data = client.get("/api/v1/instances", headers=admin_headers).json()

        assert data["remote"] == [{"instance_name": "atendimento", "state": "open"}]
        assert data["local"][0]["instance_name"] == "atendimento"

    def test_create(self, client, admin_headers, evolution_mock, instance_repo):
        evolution_mock.create_instance.return_value = {"qrcode": {"base64": "data:image/png;base64,AAA"}}

        response = client.post(
            "/api/v1/instances",
            json={"instance_name": "vendas", "department_id": "dept-sales"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.json()["evolution"]["qrcode"]["base64"].startswith("data:image")
        row = instance_repo.rows["vendas"]
        assert row.status == "qr_pending"
        assert row.department_id == "dept-sales"
        assert row.webhook_url == "https://crm.test/webhook/evolution"

    def test_create_invalid_name(self, client, admin_headers):
        response = client.post("/api/v1/instances", json={"instance_name": "com espaço"}, headers=admin_headers)
        assert response.status_code == 422

    def test_create_conflict_passes_through(self, client, admin_headers, evolution_mock):
        evolution_mock.create_instance.side_effect = EvolutionAPIError(
            "Evolution API returned 403", status_code=403, detail={"error": "name in use"}
        )

        response = client.post("/api/v1/instances", json={"instance_name": "vendas"}, headers=admin_headers)

        assert response.status_code == 403
        assert response.json()["detail"]["upstream"] == {"error": "name in use"}

    def test_unreachable_evolution_is_bad_gateway(self, client, admin_headers, evolution_mock):
        evolution_mock.connect_instance.side_effect = EvolutionAPIError("Evolution API unreachable")

        response = client.get("/api/v1/instances/atendimento/connect", headers=admin_headers)

        assert response.status_code == 502

    def test_state(self, client, admin_headers):
        data = client.get("/api/v1/instances/atendimento/state", headers=admin_headers).json()
        assert data["instance"]["state"] == "open"

    def test_logout_marks_disconnected(self, client, admin_headers, instance_repo):
        response = client.post("/api/v1/instances/atendimento/logout", headers=admin_headers)

        assert response.status_code == 200
        assert instance_repo.rows["atendimento"].status == "disconnected"

    def test_delete(self, client, admin_headers, evolution_mock):
        response = client.delete("/api/v1/instances/atendimento", headers=admin_headers)

        assert response.status_code == 200
        evolution_mock.delete_instance.assert_awaited_once_with("atendimento")

    def test_set_webhook_defaults_to_public_url(self, client, admin_headers, evolution_mock):
        client.post("/api/v1/instances/atendimento/webhook", json={}, headers=admin_headers)

        assert evolution_mock.set_webhook.call_args.args == (
            "atendimento", "https://crm.test/webhook/evolution", None
        )

    def test_find_webhook_not_configured(self, client, admin_headers):
        response = client.get("/api/v1/instances/atendimento/webhook", headers=admin_headers)
        assert response.status_code == 404


class TestMaintenanceRoutes:
    @pytest.fixture
    def duplicates(self, ticket_repo):
        now = datetime.now(timezone.utc)
        ticket_repo.add(id="t-1", title="WhatsApp", status="open", channel="whatsapp",
                        nunmsg="+5511999998888", created_at=now - timedelta(hours=2))
        ticket_repo.add(id="t-2", title="WhatsApp", status="open", channel="whatsapp",
                        nunmsg="5511999998888", created_at=now - timedelta(hours=1))
        return ticket_repo

    def test_analyze_duplicates(self, client, admin_headers, duplicates):
        data = client.get("/api/v1/maintenance/duplicates?days_back=7", headers=admin_headers).json()

        assert data["total_duplicates"] == 1
        assert data["duplicate_groups"][0]["keep_ticket_id"] == "t-2"

    def test_fix_defaults_to_dry_run(self, client, admin_headers, duplicates):
        data = client.post(
            "/api/v1/maintenance/duplicates/fix",
            json={"phone": "5511999998888"},
            headers=admin_headers,
        ).json()

        assert data["dry_run"] is True
        assert data["tickets_closed"] == 1
        assert duplicates.rows["t-1"].status == "open"

    def test_fix_all_applies(self, client, admin_headers, duplicates):
        data = client.post(
            "/api/v1/maintenance/duplicates/fix-all",
            json={"dry_run": False},
            headers=admin_headers,
        ).json()

        assert data["tickets_closed"] == 1
        assert duplicates.rows["t-1"].status == "closed"

    def test_webhook_bursts(self, client, admin_headers, duplicates):
        data = client.get("/api/v1/maintenance/webhook-bursts?hours=3", headers=admin_headers).json()
        assert data["total_tickets"] == 2

    def test_department_issues(self, client, admin_headers, profile_repo):
        profile_repo.add(id="u-1", full_name="Ana", role="agent")

        data = client.get("/api/v1/maintenance/departments/issues", headers=admin_headers).json()

        assert {"kind": "user_without_department", "entity_id": "u-1"}.items() <= data[0].items()

    def test_department_fix_without_active_department(self, client, admin_headers, profile_repo):
        profile_repo.add(id="u-1", full_name="Ana", role="agent")

        response = client.post(
            "/api/v1/maintenance/departments/fix",
            json={"dry_run": False},
            headers=admin_headers,
        )

        assert response.status_code == 409

    def test_reconcile(self, client, admin_headers):
        data = client.get("/api/v1/maintenance/instances/reconcile", headers=admin_headers).json()
        assert data["matched"] == ["atendimento"]

    def test_rename_unknown(self, client, admin_headers):
        response = client.post(
            "/api/v1/maintenance/instances/rename",
            json={"old_name": "nao-existe", "new_name": "novo"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    def test_simulate_message(self, client, admin_headers, ticket_repo):
        response = client.post(
            "/api/v1/maintenance/simulate-message",
            json={"phone": "5511988887777", "instance": "atendimento"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "created"
        assert ticket_repo.rows[data["ticket_id"]].department_id == "dept-support"
