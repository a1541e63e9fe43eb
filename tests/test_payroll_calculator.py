"""
PayDesk - Payroll Calculator Tests

Unit tests for the pure payroll calculation.
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from paydesk.models.catalog import (
    ApprovalStatus,
    ComponentKind,
    DeductionCategory,
    DeductionCode,
    DeductionScope,
)
from paydesk.models.payroll import EntryStatus
from paydesk.services.deduction_rules import (
    DeductionDefinition,
    FixedRule,
    PercentageRule,
    ProgressiveRule,
    TaxBracket,
)
from paydesk.services.payroll_calculator import (
    BonusRecord,
    CatalogSnapshot,
    EmployeeSnapshot,
    GradeComponent,
    GradeSnapshot,
    PayPeriod,
    calculate,
    evaluation_order,
    resolve_salary_grade,
    select_effective,
    validate_catalog,
)
from paydesk.utils.error_handling import CatalogIntegrityError


ENGINEERING = uuid.uuid4()
MARKETING = uuid.uuid4()

PAYE = DeductionDefinition(
    name="PAYE Tax",
    category=DeductionCategory.STATUTORY,
    code=DeductionCode.PAYE,
    rule=ProgressiveRule((
        TaxBracket(Decimal("0"), Decimal("300000"), Decimal("7")),
        TaxBracket(Decimal("300000"), None, Decimal("11")),
    )),
    priority=10,
)
PENSION = DeductionDefinition(
    name="Pension",
    category=DeductionCategory.STATUTORY,
    code=DeductionCode.PENSION,
    rule=PercentageRule(Decimal("8")),
    priority=20,
)


def make_employee(department_id=ENGINEERING) -> EmployeeSnapshot:
    return EmployeeSnapshot(
        id=uuid.uuid4(),
        full_name="Ada Obi",
        department_id=department_id,
        grade_level="GL-07",
    )


def make_grade(basic="600000", department_id=None, effective=date(2024, 1, 1)) -> GradeSnapshot:
    return GradeSnapshot(
        id=uuid.uuid4(),
        level="GL-07",
        basic_salary=Decimal(basic),
        components=(
            GradeComponent("Housing", ComponentKind.FIXED, Decimal("100000")),
            GradeComponent("Transport", ComponentKind.PERCENTAGE, Decimal("5")),
        ),
        department_id=department_id,
        effective_date=effective,
    )


PERIOD = PayPeriod(3, 2024)


class TestReferenceScenario:
    """600000 basic, Housing 100000, Transport 5%, two-band PAYE and 8% pension."""

    def test_net_pay(self):
        """The worked example nets 603300 after PAYE and pension."""
        calc = calculate(make_employee(), make_grade(), CatalogSnapshot((PAYE, PENSION)), PERIOD)

        assert calc.total_allowances == Decimal("130000")
        assert calc.gross_pay == Decimal("730000")
        assert calc.tax_amount == Decimal("68300")
        assert calc.pension_amount == Decimal("58400")
        assert calc.total_deductions == Decimal("126700")
        assert calc.net_pay == Decimal("603300")

    def test_missing_line_is_absent_not_zero(self):
        """A deduction the catalog lacks is absent, not a zero line."""
        calc = calculate(make_employee(), make_grade(), CatalogSnapshot((PAYE, PENSION)), PERIOD)

        assert calc.nhf_amount is None
        assert calc.other_deductions == []

    def test_allowance_lines_keep_grade_order(self):
        """Allowance lines follow the grade's component order."""
        calc = calculate(make_employee(), make_grade(), CatalogSnapshot(()), PERIOD)

        assert [line.name for line in calc.allowance_lines] == ["Housing", "Transport"]
        assert calc.allowance_lines[1].amount == Decimal("30000")

    def test_same_inputs_same_result(self):
        """Catalog order does not change the result."""
        employee, grade = make_employee(), make_grade()
        first = calculate(employee, grade, CatalogSnapshot((PAYE, PENSION)), PERIOD)
        second = calculate(employee, grade, CatalogSnapshot((PENSION, PAYE)), PERIOD)

        assert first == second

    def test_status_pending_outside_batch(self):
        """A single calculation produces a pending entry."""
        calc = calculate(make_employee(), make_grade(), CatalogSnapshot(()), PERIOD)
        assert calc.status == EntryStatus.PENDING

    def test_status_processing_inside_batch(self):
        """A batch calculation produces a processing entry."""
        calc = calculate(make_employee(), make_grade(), CatalogSnapshot(()), PERIOD, in_batch=True)
        assert calc.status == EntryStatus.PROCESSING


class TestEarnings:
    """Overtime and bonuses."""

    def test_overtime_at_hourly_basic(self):
        """Hourly rate = 600000 / 160 = 3750."""
        calc = calculate(
            make_employee(), make_grade(), CatalogSnapshot(()), PERIOD,
            overtime_hours=Decimal("10"),
            standard_monthly_hours=Decimal("160"),
        )

        assert calc.overtime_amount == Decimal("37500")
        assert calc.gross_pay == Decimal("767500")

    def test_only_approved_bonuses_inside_window(self):
        """Only approved bonuses paid within the month count."""
        bonuses = [
            BonusRecord(Decimal("50000"), date(2024, 3, 15), ApprovalStatus.APPROVED),
            BonusRecord(Decimal("20000"), date(2024, 3, 20), ApprovalStatus.PENDING),
            BonusRecord(Decimal("30000"), date(2024, 4, 1), ApprovalStatus.APPROVED),
        ]
        calc = calculate(make_employee(), make_grade(), CatalogSnapshot(()), PERIOD, bonuses=bonuses)

        assert calc.total_bonuses == Decimal("50000")
        assert calc.gross_pay == Decimal("780000")

    def test_non_taxable_bonus_joins_net_only(self):
        """A non-taxable bonus bypasses gross and deductions."""
        bonuses = [BonusRecord(Decimal("40000"), date(2024, 3, 1), ApprovalStatus.APPROVED, taxable=False)]
        calc = calculate(make_employee(), make_grade(), CatalogSnapshot((PAYE, PENSION)), PERIOD, bonuses=bonuses)

        assert calc.gross_pay == Decimal("730000")
        assert calc.total_bonuses == Decimal("40000")
        assert calc.net_pay == Decimal("643300")


class TestDeductions:
    """Ordering, scoping and capping."""

    def test_statutory_before_voluntary(self):
        """Statutory deductions are evaluated ahead of voluntary ones."""
        union = DeductionDefinition(
            name="Union Dues",
            category=DeductionCategory.VOLUNTARY,
            rule=FixedRule(Decimal("2000")),
            priority=1,
        )
        ordered = evaluation_order([union, PENSION, PAYE])

        assert [d.name for d in ordered] == ["PAYE Tax", "Pension", "Union Dues"]

    def test_dependent_deduction_uses_reduced_base(self):
        """A dependent deduction is computed on gross less its dependencies."""
        cooperative = DeductionDefinition(
            name="Cooperative",
            category=DeductionCategory.VOLUNTARY,
            rule=PercentageRule(Decimal("10")),
            depends_on=("Pension",),
        )
        calc = calculate(make_employee(), make_grade(), CatalogSnapshot((PENSION, cooperative)), PERIOD)

        line = calc.other_deductions[0]
        assert line.base == Decimal("671600")
        assert line.amount == Decimal("67160")

    def test_dependency_cycle_rejected(self):
        """Deductions that depend on each other are a catalog error."""
        a = DeductionDefinition("A", DeductionCategory.VOLUNTARY, FixedRule(Decimal("1")), depends_on=("B",))
        b = DeductionDefinition("B", DeductionCategory.VOLUNTARY, FixedRule(Decimal("1")), depends_on=("A",))

        with pytest.raises(CatalogIntegrityError):
            validate_catalog([a, b])

    def test_unknown_dependency_rejected(self):
        """A dependency on a missing deduction is a catalog error."""
        a = DeductionDefinition("A", DeductionCategory.VOLUNTARY, FixedRule(Decimal("1")), depends_on=("Ghost",))

        with pytest.raises(CatalogIntegrityError):
            validate_catalog([a])

    def test_department_scoped_deduction(self):
        """Department deductions apply only to that department."""
        levy = DeductionDefinition(
            name="Welfare Levy",
            category=DeductionCategory.VOLUNTARY,
            rule=FixedRule(Decimal("1500")),
            scope=DeductionScope.DEPARTMENT,
            department_id=MARKETING,
        )
        engineer = calculate(make_employee(ENGINEERING), make_grade(), CatalogSnapshot((levy,)), PERIOD)
        marketer = calculate(make_employee(MARKETING), make_grade(), CatalogSnapshot((levy,)), PERIOD)

        assert engineer.total_deductions == Decimal("0")
        assert marketer.total_deductions == Decimal("1500")

    def test_individual_deduction(self):
        """Individual deductions apply only to assigned employees."""
        employee = make_employee()
        loan = DeductionDefinition(
            name="Staff Loan",
            category=DeductionCategory.VOLUNTARY,
            rule=FixedRule(Decimal("25000")),
            scope=DeductionScope.INDIVIDUAL,
            assigned_employee_ids=(employee.id,),
        )
        calc = calculate(employee, make_grade(), CatalogSnapshot((loan,)), PERIOD)
        other = calculate(make_employee(), make_grade(), CatalogSnapshot((loan,)), PERIOD)

        assert calc.total_deductions == Decimal("25000")
        assert other.total_deductions == Decimal("0")

    def test_deductions_capped_at_gross(self):
        """The last-applied line is truncated first."""
        grade = GradeSnapshot(id=None, level="GL-01", basic_salary=Decimal("50000"))
        loan = DeductionDefinition(
            name="Staff Loan",
            category=DeductionCategory.VOLUNTARY,
            rule=FixedRule(Decimal("48000")),
        )
        calc = calculate(make_employee(), grade, CatalogSnapshot((PENSION, loan)), PERIOD)

        assert calc.pension_amount == Decimal("4000")
        loan_line = calc.other_deductions[0]
        assert loan_line.computed_amount == Decimal("48000")
        assert loan_line.amount == Decimal("46000")
        assert loan_line.capped
        assert calc.net_pay == Decimal("0")

    def test_inactive_deduction_skipped(self):
        """Inactive deductions produce no line."""
        inactive = DeductionDefinition(
            name="Pension",
            category=DeductionCategory.STATUTORY,
            code=DeductionCode.PENSION,
            rule=PercentageRule(Decimal("8")),
            is_active=False,
        )
        calc = calculate(make_employee(), make_grade(), CatalogSnapshot((inactive,)), PERIOD)

        assert calc.pension_amount is None


class TestGradeResolution:
    """Department-scoped grades take precedence over global ones."""

    def test_department_grade_wins(self):
        """A department grade beats the global grade of the same level."""
        global_grade = make_grade("600000")
        engineering_grade = make_grade("700000", department_id=ENGINEERING)
        grades = [global_grade, engineering_grade]

        assert resolve_salary_grade(grades, "GL-07", ENGINEERING) is engineering_grade
        assert resolve_salary_grade(grades, "GL-07", MARKETING) is global_grade

    def test_no_level_no_grade(self):
        """An employee without a grade level resolves no grade."""
        assert resolve_salary_grade([make_grade()], None, ENGINEERING) is None

    def test_other_department_grade_never_matches(self):
        """Another department's grade is never used."""
        assert resolve_salary_grade([make_grade(department_id=MARKETING)], "GL-07", ENGINEERING) is None

    def test_newest_effective_version(self):
        """The newest version effective on the date is chosen."""
        old = make_grade("500000", effective=date(2023, 1, 1))
        new = make_grade("600000", effective=date(2024, 1, 1))
        future = make_grade("900000", effective=date(2025, 1, 1))

        chosen = select_effective(
            [old, new, future], date(2024, 3, 31),
            key=lambda g: g.department_id,
            effective=lambda g: g.effective_date,
        )
        assert chosen == [new]


class TestPayPeriod:

    def test_window(self):
        """A period spans the whole calendar month."""
        period = PayPeriod(2, 2024)

        assert period.start == date(2024, 2, 1)
        assert period.end == date(2024, 2, 29)
        assert period.contains(date(2024, 2, 29))
        assert not period.contains(date(2024, 3, 1))

    def test_effective_date_defaults_to_month_end(self):
        """The processing date defaults to the last day of the month."""
        assert PayPeriod(4, 2024).effective_date == date(2024, 4, 30)
        assert PayPeriod(4, 2024, date(2024, 4, 25)).effective_date == date(2024, 4, 25)
