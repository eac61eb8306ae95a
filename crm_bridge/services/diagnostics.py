"""
Department assignment diagnostics

Agents and admins need an active department to see tickets, and open
tickets without one never show up in any queue.
"""
from typing import Dict, List, Optional

from crm_bridge.models.schemas import Department, DepartmentIssue, DepartmentIssueKind
from crm_bridge.repositories import DepartmentRepository, ProfileRepository, TicketRepository
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)

USER_ISSUES = (
    DepartmentIssueKind.USER_WITHOUT_DEPARTMENT,
    DepartmentIssueKind.USER_INACTIVE_DEPARTMENT,
)


class DepartmentDiagnostics:
    def __init__(
        self,
        profiles: Optional[ProfileRepository] = None,
        departments: Optional[DepartmentRepository] = None,
        tickets: Optional[TicketRepository] = None
    ):
        self.profiles = profiles or ProfileRepository()
        self.departments = departments or DepartmentRepository()
        self.tickets = tickets or TicketRepository()

    def check_issues(self, include_tickets: bool = True) -> List[DepartmentIssue]:
        """List users and open tickets with a missing or inactive department"""
        by_id: Dict[str, Department] = {d.id: d for d in self.departments.list_all()}
        issues: List[DepartmentIssue] = []

        for user in self.profiles.list_staff():
            if not user.department_id:
                issues.append(DepartmentIssue(
                    kind=DepartmentIssueKind.USER_WITHOUT_DEPARTMENT,
                    entity_id=user.id,
                    name=user.full_name or user.email,
                    detail=f"{user.role} has no department",
                ))
            elif not _active(by_id.get(user.department_id)):
                issues.append(DepartmentIssue(
                    kind=DepartmentIssueKind.USER_INACTIVE_DEPARTMENT,
                    entity_id=user.id,
                    name=user.full_name or user.email,
                    department_id=user.department_id,
                    detail=_department_problem(by_id.get(user.department_id)),
                ))

        if include_tickets:
            for ticket in self.tickets.list_open():
                if not ticket.department_id:
                    issues.append(DepartmentIssue(
                        kind=DepartmentIssueKind.TICKET_WITHOUT_DEPARTMENT,
                        entity_id=ticket.id,
                        name=ticket.title,
                        detail="open ticket has no department",
                    ))
                elif not _active(by_id.get(ticket.department_id)):
                    issues.append(DepartmentIssue(
                        kind=DepartmentIssueKind.TICKET_INACTIVE_DEPARTMENT,
                        entity_id=ticket.id,
                        name=ticket.title,
                        department_id=ticket.department_id,
                        detail=_department_problem(by_id.get(ticket.department_id)),
                    ))

        logger.info(f"Found {len(issues)} department issues")
        return issues

    def fix_issues(self, user_ids: Optional[List[str]] = None, dry_run: bool = False) -> int:
        """
        Assign the first active department to users

        Args:
            user_ids: Users to fix (defaults to every user flagged by check_issues)
            dry_run: Only count

        Returns:
            Number of users assigned

        Raises:
            ValueError: If there is no active department
        """
        if user_ids is None:
            user_ids = [
                issue.entity_id
                for issue in self.check_issues(include_tickets=False)
                if issue.kind in USER_ISSUES
            ]
        if not user_ids:
            return 0

        department = self.departments.first_active()
        if department is None:
            raise ValueError("No active department available")

        if dry_run:
            logger.info(f"[dry-run] Would assign {department.name} to {len(user_ids)} users")
            return len(user_ids)

        return self.profiles.assign_department(user_ids, department.id)


def _active(department: Optional[Department]) -> bool:
    return department is not None and department.is_active


def _department_problem(department: Optional[Department]) -> str:
    if department is None:
        return "department does not exist"
    return f"department {department.name} is inactive"
