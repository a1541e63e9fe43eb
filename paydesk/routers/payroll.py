"""
PayDesk - Payroll Router

API endpoints for payroll calculation, entry lifecycle, periods and batch
runs. Domain errors propagate to the application exception handlers.
"""

import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Path

from paydesk.dependencies import get_batch_service, get_caller_context, get_payroll_service
from paydesk.schemas.payroll import (
    BatchRunRequest,
    CalculatePayrollRequest,
    CancelEntryRequest,
    EntryEventResponse,
    MarkPaidRequest,
    PaymentReferenceRequest,
    PayrollEntryDocument,
    PayrollPeriodResponse,
    PayrollSummaryResponse,
    RejectEntryRequest,
)
from paydesk.services.payroll_batch_service import PayrollBatchService
from paydesk.services.payroll_service import CallerContext, PayrollService


router = APIRouter()


def _document(entry) -> PayrollEntryDocument:
    return PayrollEntryDocument.model_validate(entry.to_document())


# ===========================================
# CALCULATION & READS
# ===========================================

@router.post(
    "/calculate",
    response_model=PayrollEntryDocument,
    summary="Calculate payroll for one employee and period",
)
async def calculate_payroll(
    request: CalculatePayrollRequest,
    service: PayrollService = Depends(get_payroll_service),
    caller: CallerContext = Depends(get_caller_context),
):
    """Create or recalculate the entry for (employee, month/year)."""
    entry = await service.calculate_payroll(
        employee_id=request.employee_id,
        month=request.month,
        year=request.year,
        salary_grade_id=request.salary_grade_id,
        caller=caller,
    )
    return _document(entry)


@router.get("/periods", response_model=List[PayrollPeriodResponse], summary="List payroll periods")
async def list_periods(service: PayrollService = Depends(get_payroll_service)):
    return await service.get_payroll_periods()


@router.get(
    "/periods/{period_id}/summary",
    response_model=PayrollSummaryResponse,
    summary="Recompute and return period aggregates",
)
async def period_summary(
    period_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    return await service.get_period_summary(period_id)


@router.post(
    "/periods/{period_id}/approve",
    summary="Approve every processing entry of a period",
)
async def approve_period(
    period_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    caller: CallerContext = Depends(get_caller_context),
) -> Dict[str, Any]:
    return await service.approve_period(period_id, caller)


@router.post(
    "/periods/{period_id}/tax-report",
    response_model=PayrollPeriodResponse,
    summary="Flag the period's tax report as generated",
)
async def mark_tax_report(
    period_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    return await service.mark_tax_report_generated(period_id)


@router.get("/entries/{entry_id}", response_model=PayrollEntryDocument, summary="Get payroll entry")
async def get_entry(
    entry_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    return _document(await service.get_payroll_by_id(entry_id))


@router.get(
    "/entries/{entry_id}/events",
    response_model=List[EntryEventResponse],
    summary="Get payroll entry transition history",
)
async def get_entry_events(
    entry_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    return await service.get_entry_events(entry_id)


@router.get(
    "/employees/{employee_id}/history",
    response_model=List[PayrollEntryDocument],
    summary="Payroll history of an employee",
)
async def employee_history(
    employee_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
):
    return [_document(e) for e in await service.get_employee_payroll_history(employee_id)]


# ===========================================
# LIFECYCLE
# ===========================================

@router.post("/entries/{entry_id}/process", response_model=PayrollEntryDocument)
async def process_entry(
    entry_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return _document(await service.start_processing(entry_id, caller))


@router.post("/entries/{entry_id}/approve", response_model=PayrollEntryDocument)
async def approve_entry(
    entry_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return _document(await service.approve_entry(entry_id, caller))


@router.post("/entries/{entry_id}/reject", response_model=PayrollEntryDocument)
async def reject_entry(
    request: RejectEntryRequest,
    entry_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return _document(await service.reject_entry(entry_id, request.reason, caller))


@router.post("/entries/{entry_id}/pay", response_model=PayrollEntryDocument)
async def pay_entry(
    request: MarkPaidRequest,
    entry_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return _document(await service.mark_paid(
        entry_id,
        payment_reference=request.payment_reference,
        payment_date=request.payment_date,
        caller=caller,
    ))


@router.post("/entries/{entry_id}/cancel", response_model=PayrollEntryDocument)
async def cancel_entry(
    request: CancelEntryRequest,
    entry_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return _document(await service.cancel_entry(entry_id, request.reason, caller))


@router.put("/entries/{entry_id}/payment-reference", response_model=PayrollEntryDocument)
async def attach_payment_reference(
    request: PaymentReferenceRequest,
    entry_id: uuid.UUID = Path(...),
    service: PayrollService = Depends(get_payroll_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return _document(await service.attach_payment_reference(entry_id, request.payment_reference, caller))


# ===========================================
# BATCH RUNS
# ===========================================

@router.post("/batches", summary="Run payroll for a department or the whole organization")
async def run_batch(
    request: BatchRunRequest,
    batch_service: PayrollBatchService = Depends(get_batch_service),
    caller: CallerContext = Depends(get_caller_context),
) -> Dict[str, Any]:
    if request.run_async:
        from paydesk.tasks.celery_tasks import run_payroll_batch_task
        
        task = run_payroll_batch_task.delay(
            request.month,
            request.year,
            str(request.department_id) if request.department_id else None,
            str(caller.employee_id) if caller.employee_id else None,
            str(caller.department_scope) if caller.department_scope else None,
        )
        return {"queued": True, "taskId": task.id}
    
    result = await batch_service.run(request.month, request.year, request.department_id, caller)
    return result.to_dict()
