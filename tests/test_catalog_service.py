"""
PayDesk - Catalog Service Tests

Grades, deductions, bonuses and overtime administration.
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from paydesk.models.catalog import (
    ApprovalStatus,
    BonusType,
    CalculationMethod,
    DeductionCategory,
    DeductionScope,
)
from paydesk.services.catalog_service import CatalogService
from paydesk.utils.error_handling import (
    BusinessRuleException,
    CatalogIntegrityError,
    CatalogValidationError,
    ConflictException,
    MissingEmployeeError,
)


EFFECTIVE = date(2024, 1, 1)


@pytest.fixture
def catalog(db_session) -> CatalogService:
    return CatalogService(db_session)


class TestSalaryGrades:

    @pytest.mark.asyncio
    async def test_components_keep_order(self, catalog):
        """Grade components are stored in the order given."""
        grade = await catalog.create_salary_grade(
            "GL-05", Decimal("400000"), EFFECTIVE,
            components=[
                {"name": "Housing", "kind": "fixed", "value": "80000"},
                {"name": "Meal", "kind": "percentage", "value": "2.5"},
            ],
        )
        grades = await catalog.list_salary_grades("GL-05")

        assert [c.name for c in grades[0].components] == ["Housing", "Meal"]
        assert grade.basic_salary == Decimal("400000")

    @pytest.mark.asyncio
    async def test_duplicate_global_version_conflicts(self, catalog):
        """A second global grade with the same level and date conflicts."""
        await catalog.create_salary_grade("GL-05", Decimal("400000"), EFFECTIVE)

        with pytest.raises(ConflictException):
            await catalog.create_salary_grade("GL-05", Decimal("450000"), EFFECTIVE)

    @pytest.mark.asyncio
    async def test_new_version_with_later_date(self, catalog):
        """A later effective date adds a new grade version."""
        await catalog.create_salary_grade("GL-05", Decimal("400000"), EFFECTIVE)
        await catalog.create_salary_grade("GL-05", Decimal("450000"), date(2024, 7, 1))

        assert len(await catalog.list_salary_grades("GL-05")) == 2

    @pytest.mark.asyncio
    async def test_percentage_component_out_of_range(self, catalog):
        """Percentage components above 100 are invalid."""
        with pytest.raises(CatalogValidationError):
            await catalog.create_salary_grade(
                "GL-05", Decimal("400000"), EFFECTIVE,
                components=[{"name": "Meal", "kind": "percentage", "value": "101"}],
            )


class TestDeductions:

    @pytest.mark.asyncio
    async def test_seed_statutory_is_idempotent(self, catalog):
        """Seeding twice creates the statutory deductions once."""
        created = await catalog.seed_statutory_deductions(EFFECTIVE)
        again = await catalog.seed_statutory_deductions(EFFECTIVE)

        assert sorted(d.name for d in created) == ["NHF", "PAYE Tax", "Pension"]
        assert again == []

    @pytest.mark.asyncio
    async def test_gap_in_brackets_rejected(self, catalog):
        """Bracket tables are validated when written."""
        with pytest.raises(CatalogIntegrityError):
            await catalog.create_deduction(
                "PAYE Tax",
                DeductionCategory.STATUTORY,
                CalculationMethod.PROGRESSIVE,
                EFFECTIVE,
                tax_brackets=[
                    {"min": "0", "max": "300000", "rate": "7"},
                    {"min": "300001", "max": None, "rate": "11"},
                ],
            )

    @pytest.mark.asyncio
    async def test_individual_scope_needs_employees(self, catalog):
        """An individual deduction needs assigned employees."""
        with pytest.raises(CatalogValidationError):
            await catalog.create_deduction(
                "Staff Loan",
                DeductionCategory.VOLUNTARY,
                CalculationMethod.FIXED,
                EFFECTIVE,
                value=Decimal("25000"),
                scope=DeductionScope.INDIVIDUAL,
            )

    @pytest.mark.asyncio
    async def test_self_dependency_rejected(self, catalog):
        """A deduction cannot depend on itself."""
        with pytest.raises(CatalogValidationError):
            await catalog.create_deduction(
                "Cooperative",
                DeductionCategory.VOLUNTARY,
                CalculationMethod.PERCENTAGE,
                EFFECTIVE,
                value=Decimal("5"),
                depends_on=["Cooperative"],
            )

    @pytest.mark.asyncio
    async def test_toggle_active(self, catalog):
        """Deactivated deductions drop out of the active list."""
        deduction = await catalog.create_deduction(
            "Union Dues",
            DeductionCategory.VOLUNTARY,
            CalculationMethod.FIXED,
            EFFECTIVE,
            value=Decimal("2000"),
        )

        await catalog.set_deduction_active(deduction.id, False)

        assert await catalog.list_deductions(active_only=True) == []


class TestBonusesAndOvertime:

    @pytest.mark.asyncio
    async def test_bonus_approval(self, catalog, engineer):
        """An approved bonus records its approver and can no longer be rejected."""
        bonus = await catalog.create_bonus(engineer.id, BonusType.PERFORMANCE, Decimal("50000"), date(2024, 3, 15))
        approver = uuid.uuid4()

        approved = await catalog.approve_bonus(bonus.id, approver)

        assert approved.approval_status == ApprovalStatus.APPROVED
        assert approved.approved_by_id == approver
        with pytest.raises(BusinessRuleException):
            await catalog.reject_bonus(bonus.id, "too late")

    @pytest.mark.asyncio
    async def test_bonus_for_unknown_employee(self, catalog):
        """Bonuses need an existing employee."""
        with pytest.raises(MissingEmployeeError):
            await catalog.create_bonus(uuid.uuid4(), BonusType.SPECIAL, Decimal("1000"), date(2024, 3, 15))

    @pytest.mark.asyncio
    async def test_overtime_is_set_not_added(self, catalog, engineer):
        """Recording overtime again replaces the month's hours."""
        await catalog.record_overtime(engineer.id, 3, 2024, Decimal("10"))
        record = await catalog.record_overtime(engineer.id, 3, 2024, Decimal("6"))

        assert record.hours_worked == Decimal("6")

    @pytest.mark.asyncio
    async def test_negative_overtime_rejected(self, catalog, engineer):
        """Overtime hours cannot be negative."""
        with pytest.raises(CatalogValidationError):
            await catalog.record_overtime(engineer.id, 3, 2024, Decimal("-1"))
