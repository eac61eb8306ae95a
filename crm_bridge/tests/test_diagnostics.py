"""
Unit tests for DepartmentDiagnostics
"""
import pytest

from crm_bridge.models.schemas import Department, DepartmentIssueKind
from crm_bridge.services.diagnostics import DepartmentDiagnostics
from crm_bridge.tests.fakes import (
    FakeDepartmentRepository,
    FakeProfileRepository,
    FakeTicketRepository,
)


@pytest.fixture
def departments():
    return FakeDepartmentRepository([
        Department(id="dept-old", name="Antigo", is_active=False),
        Department(id="dept-support", name="Suporte", is_active=True),
    ])


@pytest.fixture
def profiles():
    repo = FakeProfileRepository()
    repo.add(id="u-ok", full_name="Ana", role="agent", department_id="dept-support")
    repo.add(id="u-none", full_name="Bruno", role="agent")
    repo.add(id="u-inactive", full_name="Carla", role="admin", department_id="dept-old")
    repo.add(id="u-gone", full_name="Davi", role="agent", department_id="dept-deleted")
    repo.add(id="c-1", full_name="Cliente", role="customer")
    return repo


@pytest.fixture
def tickets():
    repo = FakeTicketRepository()
    repo.add(id="t-ok", title="ok", status="open", department_id="dept-support")
    repo.add(id="t-none", title="sem depto", status="open")
    repo.add(id="t-inactive", title="inativo", status="pendente", department_id="dept-old")
    repo.add(id="t-closed", title="fechado", status="closed")
    return repo


@pytest.fixture
def diagnostics(profiles, departments, tickets):
    return DepartmentDiagnostics(profiles=profiles, departments=departments, tickets=tickets)


class TestCheckIssues:
    def test_finds_users_and_tickets(self, diagnostics):
        issues = {(i.kind, i.entity_id) for i in diagnostics.check_issues()}

        assert issues == {
            (DepartmentIssueKind.USER_WITHOUT_DEPARTMENT, "u-none"),
            (DepartmentIssueKind.USER_INACTIVE_DEPARTMENT, "u-inactive"),
            (DepartmentIssueKind.USER_INACTIVE_DEPARTMENT, "u-gone"),
            (DepartmentIssueKind.TICKET_WITHOUT_DEPARTMENT, "t-none"),
            (DepartmentIssueKind.TICKET_INACTIVE_DEPARTMENT, "t-inactive"),
        }

    def test_detail_names_the_problem(self, diagnostics):
        details = {i.entity_id: i.detail for i in diagnostics.check_issues(include_tickets=False)}
        assert details["u-inactive"] == "department Antigo is inactive"
        assert details["u-gone"] == "department does not exist"


class TestFixIssues:
    def test_assigns_first_active_department(self, diagnostics, profiles):
        fixed = diagnostics.fix_issues()

        assert fixed == 3
        for user_id in ("u-none", "u-inactive", "u-gone"):
            assert profiles.rows[user_id].department_id == "dept-support"
        assert profiles.rows["c-1"].department_id is None

    def test_dry_run(self, diagnostics, profiles):
        assert diagnostics.fix_issues(dry_run=True) == 3
        assert profiles.rows["u-none"].department_id is None

    def test_explicit_users(self, diagnostics, profiles):
        assert diagnostics.fix_issues(user_ids=["u-none"]) == 1
        assert profiles.rows["u-inactive"].department_id == "dept-old"

    def test_no_active_department(self, profiles, tickets):
        diagnostics = DepartmentDiagnostics(
            profiles=profiles,
            departments=FakeDepartmentRepository([Department(id="d", name="Off", is_active=False)]),
            tickets=tickets,
        )
        with pytest.raises(ValueError):
            diagnostics.fix_issues()

    def test_nothing_to_fix(self, departments, tickets):
        profiles = FakeProfileRepository()
        profiles.add(id="u", role="agent", department_id="dept-support")
        diagnostics = DepartmentDiagnostics(profiles, departments, tickets)
        assert diagnostics.fix_issues() == 0
