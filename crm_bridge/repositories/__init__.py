"""
Supabase repositories for the CRM tables
"""
from crm_bridge.repositories.ticket_repository import TicketRepository
from crm_bridge.repositories.message_repository import MessageRepository
from crm_bridge.repositories.profile_repository import ProfileRepository
from crm_bridge.repositories.department_repository import DepartmentRepository
from crm_bridge.repositories.instance_repository import InstanceRepository

__all__ = [
    "TicketRepository",
    "MessageRepository",
    "ProfileRepository",
    "DepartmentRepository",
    "InstanceRepository",
]
