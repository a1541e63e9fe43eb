"""
PayDesk - Catalog Router

Administration endpoints for departments, employees, salary grades,
deductions, bonuses and overtime.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from paydesk.dependencies import get_caller_context, get_catalog_service
from paydesk.models.catalog import (
    BonusType,
    CalculationMethod,
    DeductionCategory,
    DeductionCode,
    DeductionScope,
)
from paydesk.schemas.payroll import (
    BonusCreate,
    BonusReject,
    BonusResponse,
    DeductionCreate,
    DeductionResponse,
    DeductionToggle,
    DepartmentCreate,
    DepartmentResponse,
    EmployeeCreate,
    EmployeeResponse,
    OvertimeCreate,
    OvertimeResponse,
    SalaryGradeCreate,
    SalaryGradeResponse,
)
from paydesk.services.catalog_service import CatalogService
from paydesk.services.payroll_service import CallerContext


router = APIRouter()


@router.post("/departments", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(
    request: DepartmentCreate,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.create_department(request.name, request.code)


@router.post("/employees", response_model=EmployeeResponse, status_code=status.HTTP_201_CREATED)
async def create_employee(
    request: EmployeeCreate,
    service: CatalogService = Depends(get_catalog_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return await service.create_employee(
        staff_number=request.staff_number,
        first_name=request.first_name,
        last_name=request.last_name,
        grade_level=request.grade_level,
        department_id=request.department_id,
        email=request.email,
        created_by_id=caller.employee_id,
    )


@router.post("/grades", response_model=SalaryGradeResponse, status_code=status.HTTP_201_CREATED)
async def create_grade(
    request: SalaryGradeCreate,
    service: CatalogService = Depends(get_catalog_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return await service.create_salary_grade(
        level=request.level,
        basic_salary=request.basic_salary,
        effective_date=request.effective_date,
        components=[c.model_dump() for c in request.components],
        department_id=request.department_id,
        description=request.description,
        created_by_id=caller.employee_id,
    )


@router.get("/grades", response_model=List[SalaryGradeResponse])
async def list_grades(
    level: Optional[str] = Query(None),
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.list_salary_grades(level)


@router.post("/deductions", response_model=DeductionResponse, status_code=status.HTTP_201_CREATED)
async def create_deduction(
    request: DeductionCreate,
    service: CatalogService = Depends(get_catalog_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return await service.create_deduction(
        name=request.name,
        category=DeductionCategory(request.category),
        calculation_method=CalculationMethod(request.calculation_method),
        effective_date=request.effective_date,
        value=request.value,
        tax_brackets=request.brackets_as_json(),
        code=DeductionCode(request.code),
        scope=DeductionScope(request.scope),
        department_id=request.department_id,
        assigned_employee_ids=request.assigned_employee_ids,
        priority=request.priority,
        depends_on=request.depends_on,
        is_active=request.is_active,
        description=request.description,
        created_by_id=caller.employee_id,
    )


@router.get("/deductions", response_model=List[DeductionResponse])
async def list_deductions(
    active_only: bool = Query(False),
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.list_deductions(active_only=active_only)


@router.patch("/deductions/{deduction_id}", response_model=DeductionResponse)
async def toggle_deduction(
    request: DeductionToggle,
    deduction_id: uuid.UUID = Path(...),
    service: CatalogService = Depends(get_catalog_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return await service.set_deduction_active(deduction_id, request.is_active, caller.employee_id)


@router.post("/deductions/statutory", response_model=List[DeductionResponse], status_code=status.HTTP_201_CREATED)
async def seed_statutory(
    effective_date: date = Query(...),
    service: CatalogService = Depends(get_catalog_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return await service.seed_statutory_deductions(effective_date, caller.employee_id)


@router.post("/bonuses", response_model=BonusResponse, status_code=status.HTTP_201_CREATED)
async def create_bonus(
    request: BonusCreate,
    service: CatalogService = Depends(get_catalog_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return await service.create_bonus(
        employee_id=request.employee_id,
        bonus_type=BonusType(request.bonus_type),
        amount=request.amount,
        payment_date=request.payment_date,
        taxable=request.taxable,
        description=request.description,
        created_by_id=caller.employee_id,
    )


@router.post("/bonuses/{bonus_id}/approve", response_model=BonusResponse)
async def approve_bonus(
    bonus_id: uuid.UUID = Path(...),
    service: CatalogService = Depends(get_catalog_service),
    caller: CallerContext = Depends(get_caller_context),
):
    return await service.approve_bonus(bonus_id, caller.employee_id)


@router.post("/bonuses/{bonus_id}/reject", response_model=BonusResponse)
async def reject_bonus(
    request: BonusReject,
    bonus_id: uuid.UUID = Path(...),
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.reject_bonus(bonus_id, request.reason)


@router.put("/overtime", response_model=OvertimeResponse)
async def record_overtime(
    request: OvertimeCreate,
    service: CatalogService = Depends(get_catalog_service),
):
    return await service.record_overtime(
        request.employee_id, request.month, request.year, request.hours_worked,
    )
