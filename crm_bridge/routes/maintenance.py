"""
Maintenance API

Duplicate ticket repair, webhook burst analysis, department diagnostics,
instance reconciliation and synthetic message routing. Mutating endpoints
default to dry_run=true.

Requires admin API key authentication (X-Admin-API-Key).
"""
import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from crm_bridge.dependencies import (
    get_department_diagnostics,
    get_duplicate_service,
    get_instance_maintenance,
    get_ticket_router,
)
from crm_bridge.middleware.admin_auth import verify_admin_key
from crm_bridge.models.schemas import (
    DepartmentIssue,
    DuplicateAnalysis,
    DuplicateFixSummary,
    InstanceReconciliation,
    RoutingResult,
    WebhookBurstReport,
)
from crm_bridge.routes.instances import evolution_http_error
from crm_bridge.services.diagnostics import DepartmentDiagnostics
from crm_bridge.services.duplicates import DuplicateTicketService
from crm_bridge.services.evolution import EvolutionAPIError
from crm_bridge.services.instances import InstanceMaintenance
from crm_bridge.services.ticket_router import TicketRoutingError, TicketRoutingService
from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/maintenance",
    tags=["maintenance"],
    dependencies=[Depends(verify_admin_key)]
)


# Request Models

class DuplicateFixRequest(BaseModel):
    phone: str = Field(..., min_length=10)
    dry_run: bool = True
    move_messages: bool = True


class DuplicateFixAllRequest(BaseModel):
    dry_run: bool = True
    max_fix: int = Field(50, ge=1, le=500)
    days_back: Optional[int] = Field(None, ge=1, le=365)


class DepartmentFixRequest(BaseModel):
    user_ids: Optional[List[str]] = None
    dry_run: bool = True


class InstanceRenameRequest(BaseModel):
    old_name: str = Field(..., min_length=1)
    new_name: str = Field(..., min_length=1)


class SimulateMessageRequest(BaseModel):
    phone: str = Field(..., min_length=10)
    content: str = "Mensagem de teste"
    push_name: str = "Teste"
    instance: Optional[str] = None


# Routes

@router.get("/duplicates", response_model=DuplicateAnalysis)
async def analyze_duplicates(
    days_back: Optional[int] = Query(None, ge=1, le=365),
    service: DuplicateTicketService = Depends(get_duplicate_service)
):
    return await asyncio.to_thread(service.analyze, days_back)


@router.post("/duplicates/fix", response_model=DuplicateFixSummary)
async def fix_duplicates(
    request: DuplicateFixRequest,
    service: DuplicateTicketService = Depends(get_duplicate_service)
):
    return await asyncio.to_thread(service.fix, request.phone, request.dry_run, request.move_messages)


@router.post("/duplicates/fix-all", response_model=DuplicateFixSummary)
async def fix_all_duplicates(
    request: DuplicateFixAllRequest,
    service: DuplicateTicketService = Depends(get_duplicate_service)
):
    return await asyncio.to_thread(service.fix_all, request.dry_run, request.max_fix, request.days_back)


@router.get("/webhook-bursts", response_model=WebhookBurstReport)
async def webhook_bursts(
    hours: int = Query(2, ge=1, le=72),
    service: DuplicateTicketService = Depends(get_duplicate_service)
):
    return await asyncio.to_thread(service.analyze_webhook_behavior, hours)


@router.get("/departments/issues", response_model=List[DepartmentIssue])
async def department_issues(diagnostics: DepartmentDiagnostics = Depends(get_department_diagnostics)):
    return await asyncio.to_thread(diagnostics.check_issues)


@router.post("/departments/fix")
async def fix_departments(
    request: DepartmentFixRequest,
    diagnostics: DepartmentDiagnostics = Depends(get_department_diagnostics)
):
    try:
        fixed = await asyncio.to_thread(diagnostics.fix_issues, request.user_ids, request.dry_run)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return {"dry_run": request.dry_run, "users_fixed": fixed}


@router.get("/instances/reconcile", response_model=InstanceReconciliation)
async def reconcile_instances(maintenance: InstanceMaintenance = Depends(get_instance_maintenance)):
    try:
        return await maintenance.reconcile()
    except EvolutionAPIError as e:
        raise evolution_http_error(e)


@router.post("/instances/rename")
async def rename_instance(
    request: InstanceRenameRequest,
    maintenance: InstanceMaintenance = Depends(get_instance_maintenance)
):
    try:
        tickets_updated = await maintenance.rename(request.old_name, request.new_name)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return {"old_name": request.old_name, "new_name": request.new_name, "tickets_updated": tickets_updated}


@router.post("/simulate-message", response_model=RoutingResult)
async def simulate_message(
    request: SimulateMessageRequest,
    routing: TicketRoutingService = Depends(get_ticket_router)
):
    """Route a synthetic customer message through the normal pipeline"""
    try:
        return await routing.simulate_incoming_message(
            request.phone,
            content=request.content,
            push_name=request.push_name,
            instance_name=request.instance,
        )
    except TicketRoutingError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
