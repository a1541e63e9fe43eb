"""
PayDesk - Deduction Rule Tests

Unit tests for rule building, bracket validation and amount resolution.
"""

import pytest
from decimal import Decimal

from paydesk.models.catalog import CalculationMethod, DeductionCategory, DeductionCode
from paydesk.services.deduction_rules import (
    DeductionDefinition,
    FixedRule,
    PercentageRule,
    ProgressiveRule,
    TaxBracket,
    bracket_problems,
    build_rule,
    parse_brackets,
    resolve_deduction_amount,
    round_money,
    rule_amount,
)
from paydesk.utils.error_handling import CatalogIntegrityError


TWO_BANDS = [
    {"min": "0", "max": "300000", "rate": "7"},
    {"min": "300000", "max": None, "rate": "11"},
]


class TestRounding:
    """Amounts are rounded half-up to the currency minor unit."""

    def test_half_cent_rounds_up(self):
        """Half a minor unit rounds away from zero."""
        assert round_money(Decimal("10.005")) == Decimal("10.01")

    def test_below_half_rounds_down(self):
        """Anything under half a minor unit rounds down."""
        assert round_money(Decimal("10.0049")) == Decimal("10.00")


class TestBuildRule:
    """Stored deduction rows become validated rules."""

    def test_percentage_rule(self):
        """A percentage method with a value becomes a percentage rule."""
        rule = build_rule(CalculationMethod.PERCENTAGE, Decimal("8"))
        assert rule == PercentageRule(Decimal("8"))

    def test_fixed_rule(self):
        """A fixed method with a value becomes a fixed rule."""
        rule = build_rule(CalculationMethod.FIXED, Decimal("5000"))
        assert rule == FixedRule(Decimal("5000"))

    def test_brackets_make_rule_progressive(self):
        """A bracket table wins over the declared method and value."""
        rule = build_rule(CalculationMethod.PERCENTAGE, Decimal("50"), TWO_BANDS)

        assert isinstance(rule, ProgressiveRule)
        assert len(rule.brackets) == 2
        assert rule.brackets[1].upper is None

    def test_progressive_without_brackets_rejected(self):
        """A progressive deduction needs a bracket table."""
        with pytest.raises(CatalogIntegrityError):
            build_rule(CalculationMethod.PROGRESSIVE, None, None, deduction="PAYE Tax")

    def test_negative_value_rejected(self):
        """Negative deduction values are refused."""
        with pytest.raises(CatalogIntegrityError):
            build_rule(CalculationMethod.FIXED, Decimal("-1"))

    def test_non_numeric_bracket_rejected(self):
        """Bracket bounds must be numbers."""
        with pytest.raises(CatalogIntegrityError):
            parse_brackets([{"min": "zero", "max": None, "rate": "7"}])

    def test_bracket_without_rate_rejected(self):
        """Every bracket carries a rate."""
        with pytest.raises(CatalogIntegrityError):
            parse_brackets([{"min": "0", "max": None}])


class TestBracketValidation:
    """Malformed tables are reported, never silently truncated."""

    def test_valid_table_has_no_problems(self):
        """A contiguous table from zero with an open top band is valid."""
        assert bracket_problems(parse_brackets(TWO_BANDS)) == []

    def test_empty_table(self):
        """An empty table is reported."""
        assert bracket_problems(()) == ["bracket table is empty"]

    def test_gap_between_brackets(self):
        """A hole between two bands is reported as a gap."""
        brackets = parse_brackets([
            {"min": "0", "max": "300000", "rate": "7"},
            {"min": "300001", "max": None, "rate": "11"},
        ])
        problems = bracket_problems(brackets)

        assert any("gap" in p for p in problems)

    def test_overlapping_brackets(self):
        """Bands that cover the same income are reported."""
        brackets = parse_brackets([
            {"min": "0", "max": "300000", "rate": "7"},
            {"min": "200000", "max": None, "rate": "11"},
        ])
        assert any("overlap" in p for p in bracket_problems(brackets))

    def test_unsorted_brackets(self):
        """Bands out of ascending order are reported."""
        brackets = parse_brackets([
            {"min": "0", "max": "600000", "rate": "7"},
            {"min": "600000", "max": "900000", "rate": "11"},
            {"min": "300000", "max": None, "rate": "15"},
        ])
        assert any("not sorted" in p for p in bracket_problems(brackets))

    def test_open_bracket_must_be_last(self):
        """Only the top band may be open-ended."""
        brackets = parse_brackets([
            {"min": "0", "max": None, "rate": "7"},
            {"min": "300000", "max": None, "rate": "11"},
        ])
        assert any("not the last" in p for p in bracket_problems(brackets))

    def test_last_bracket_must_be_open(self):
        """The top band must have no upper bound."""
        brackets = parse_brackets([{"min": "0", "max": "300000", "rate": "7"}])
        assert any("open-ended" in p for p in bracket_problems(brackets))

    def test_table_must_start_at_zero(self):
        """The first band starts at zero income."""
        brackets = parse_brackets([{"min": "1000", "max": None, "rate": "7"}])
        assert any("expected 0" in p for p in bracket_problems(brackets))

    def test_rate_above_hundred(self):
        """Rates are percentages between 0 and 100."""
        brackets = parse_brackets([{"min": "0", "max": None, "rate": "120"}])
        assert any("outside 0-100" in p for p in bracket_problems(brackets))

    def test_build_rule_lists_every_problem(self):
        """All problems of a table are reported together."""
        with pytest.raises(CatalogIntegrityError) as exc_info:
            build_rule(CalculationMethod.PROGRESSIVE, None, [
                {"min": "100", "max": "50", "rate": "7"},
            ], deduction="PAYE Tax")

        problems = exc_info.value.details["problems"]
        assert len(problems) >= 2


class TestRuleAmount:
    """Amounts per rule shape."""

    def test_progressive_marginal_rates(self):
        """300000 at 7% plus 430000 at 11%."""
        rule = build_rule(CalculationMethod.PROGRESSIVE, None, TWO_BANDS)
        assert rule_amount(rule, Decimal("730000")) == Decimal("68300")

    def test_progressive_inside_first_band(self):
        """Income inside the first band is taxed at its rate only."""
        rule = build_rule(CalculationMethod.PROGRESSIVE, None, TWO_BANDS)
        assert rule_amount(rule, Decimal("100000")) == Decimal("7000")

    def test_percentage_of_base(self):
        """A percentage rule takes its share of the base."""
        assert rule_amount(PercentageRule(Decimal("8")), Decimal("730000")) == Decimal("58400")

    def test_fixed_never_exceeds_base(self):
        """A fixed amount is capped at the base."""
        assert rule_amount(FixedRule(Decimal("5000")), Decimal("3000")) == Decimal("3000")

    def test_negative_base_yields_zero(self):
        """A negative base produces no deduction."""
        assert rule_amount(PercentageRule(Decimal("8")), Decimal("-100")) == Decimal("0")

    def test_bracket_slice(self):
        """A band taxes only the income that falls inside it."""
        bracket = TaxBracket(Decimal("300000"), Decimal("600000"), Decimal("11"))

        assert bracket.calculate_tax(Decimal("200000")) == Decimal("0")
        assert bracket.calculate_tax(Decimal("400000")) == Decimal("11000")
        assert bracket.calculate_tax(Decimal("900000")) == Decimal("33000")


class TestResolveDeductionAmount:

    def test_inactive_deduction_is_zero(self):
        """Inactive deductions resolve to zero."""
        definition = DeductionDefinition(
            name="Union Dues",
            category=DeductionCategory.VOLUNTARY,
            rule=FixedRule(Decimal("2000")),
            is_active=False,
        )
        assert resolve_deduction_amount(definition, Decimal("100000")) == Decimal("0")

    def test_hand_built_malformed_table_rejected(self):
        """A table that skipped build_rule is still validated."""
        definition = DeductionDefinition(
            name="PAYE Tax",
            category=DeductionCategory.STATUTORY,
            code=DeductionCode.PAYE,
            rule=ProgressiveRule((
                TaxBracket(Decimal("0"), Decimal("300000"), Decimal("7")),
                TaxBracket(Decimal("300001"), None, Decimal("11")),
            )),
        )
        with pytest.raises(CatalogIntegrityError):
            resolve_deduction_amount(definition, Decimal("730000"))

    def test_result_is_rounded(self):
        """Resolved amounts are rounded to the minor unit."""
        definition = DeductionDefinition(
            name="NHF",
            category=DeductionCategory.STATUTORY,
            code=DeductionCode.NHF,
            rule=PercentageRule(Decimal("2.5")),
        )
        assert resolve_deduction_amount(definition, Decimal("1234.57")) == Decimal("30.86")
