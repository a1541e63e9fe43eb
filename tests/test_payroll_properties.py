"""
PayDesk - Payroll Property Tests

Hypothesis checks over generated grades, deductions and incomes.
"""

import uuid
from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from paydesk.models.catalog import CalculationMethod, ComponentKind, DeductionCategory, DeductionCode
from paydesk.models.payroll import EntryStatus, PayrollEntry
from paydesk.services.catalog_service import DEFAULT_TAX_BRACKETS
from paydesk.services.deduction_rules import (
    DeductionDefinition,
    FixedRule,
    PercentageRule,
    build_rule,
    round_money,
    rule_amount,
)
from paydesk.services.payroll_aggregator import summarize_entries
from paydesk.services.payroll_calculator import (
    CatalogSnapshot,
    EmployeeSnapshot,
    GradeComponent,
    GradeSnapshot,
    PayPeriod,
    calculate,
)


PAYE_RULE = build_rule(CalculationMethod.PROGRESSIVE, None, DEFAULT_TAX_BRACKETS)

money = st.decimals(min_value=Decimal("0"), max_value=Decimal("10000000"), places=2)
rates = st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=2)


@st.composite
def deductions(draw):
    kind = draw(st.sampled_from(["fixed", "percentage", "paye"]))
    name = draw(st.text(alphabet="ABCDEFGH", min_size=3, max_size=8))
    if kind == "paye":
        return DeductionDefinition(name, DeductionCategory.STATUTORY, PAYE_RULE, code=DeductionCode.PAYE)
    if kind == "percentage":
        return DeductionDefinition(name, DeductionCategory.VOLUNTARY, PercentageRule(draw(rates)))
    return DeductionDefinition(name, DeductionCategory.VOLUNTARY, FixedRule(draw(money)))


@st.composite
def grades(draw):
    components = draw(st.lists(
        st.one_of(
            st.builds(GradeComponent, st.just("Fixed"), st.just(ComponentKind.FIXED), money),
            st.builds(GradeComponent, st.just("Pct"), st.just(ComponentKind.PERCENTAGE), rates),
        ),
        max_size=4,
    ))
    return GradeSnapshot(id=None, level="GL", basic_salary=draw(money), components=tuple(components))


def unique_by_name(items):
    seen = {}
    for item in items:
        seen.setdefault(item.name, item)
    return tuple(seen.values())


class TestPercentageDeductions:

    @given(base=money, rate=rates)
    def test_percentage_is_exact_before_rounding(self, base, rate):
        """A percentage rule is exactly base times rate over 100."""
        amount = rule_amount(PercentageRule(rate), base)

        assert amount == base * rate / Decimal("100")
        assert Decimal("0") <= amount <= base


class TestProgressiveTax:
    """Marginal PAYE over the default monthly table."""

    @pytest.mark.parametrize("income,expected", [
        ("300000", "21000"),
        ("600000", "54000"),
        ("1100000", "129000"),
        ("1600000", "224000"),
    ])
    def test_hand_computed_boundaries(self, income, expected):
        """PAYE at band boundaries matches hand-computed figures."""
        assert rule_amount(PAYE_RULE, Decimal(income)) == Decimal(expected)

    @given(a=money, b=money)
    def test_monotonic_in_income(self, a, b):
        """More income never means less PAYE."""
        low, high = min(a, b), max(a, b)
        assert rule_amount(PAYE_RULE, low) <= rule_amount(PAYE_RULE, high)

    @given(income=money)
    def test_never_exceeds_top_rate(self, income):
        """PAYE stays under the top marginal rate of income."""
        assert rule_amount(PAYE_RULE, income) <= income * Decimal("0.24")


class TestCalculationInvariants:

    @settings(max_examples=75, deadline=None)
    @given(grade=grades(), catalog=st.lists(deductions(), max_size=5))
    def test_net_pay_never_negative(self, grade, catalog):
        """Random deduction stacks never push net pay below zero."""
        employee = EmployeeSnapshot(id=uuid.uuid4(), full_name="Ada Obi")
        calc = calculate(employee, grade, CatalogSnapshot(unique_by_name(catalog)), PayPeriod(3, 2024))

        assert calc.total_deductions <= calc.gross_pay
        assert calc.net_pay >= 0
        assert calc.gross_pay - calc.total_deductions == calc.net_pay

    @settings(max_examples=75, deadline=None)
    @given(grade=grades())
    def test_gross_is_sum_of_parts(self, grade):
        """Gross is basic salary plus allowance lines."""
        employee = EmployeeSnapshot(id=uuid.uuid4(), full_name="Ada Obi")
        calc = calculate(employee, grade, CatalogSnapshot(()), PayPeriod(3, 2024))

        assert calc.gross_pay == round_money(grade.basic_salary) + sum(
            (line.amount for line in calc.allowance_lines), Decimal("0")
        )


class TestAggregateInvariants:

    @given(amounts=st.lists(st.tuples(money, money), max_size=20))
    def test_period_totals_equal_entry_sums(self, amounts):
        """Period totals equal the sums over the entries."""
        entries = []
        for gross, deductions_total in amounts:
            deductions_total = min(gross, deductions_total)
            entries.append(PayrollEntry(
                id=uuid.uuid4(),
                employee_id=uuid.uuid4(),
                status=EntryStatus.PENDING,
                basic_salary=gross,
                total_allowances=Decimal("0"),
                overtime_amount=Decimal("0"),
                total_bonuses=Decimal("0"),
                gross_pay=gross,
                total_deductions=deductions_total,
                net_pay=gross - deductions_total,
            ))
        summary = summarize_entries(entries, 3, 2024)

        assert summary.total_employees == len(entries)
        assert summary.total_gross_pay == sum((e.gross_pay for e in entries), Decimal("0"))
        assert summary.total_net_salary == sum((e.net_pay for e in entries), Decimal("0"))
        assert sum(
            (b.total_cost for b in summary.department_breakdown), Decimal("0")
        ) == summary.total_net_salary + summary.total_deductions
