"""
PayDesk - Deduction Rule Evaluation

Catalog deductions are turned into one of three rule shapes before any
arithmetic happens:

- FixedRule(value): a flat amount
- PercentageRule(value): value percent of the base
- ProgressiveRule(brackets): marginal-rate tax table (PAYE style)

A deduction row with a bracket table is always progressive; its value is
ignored. Bracket tables are validated when the rule is built so a malformed
table stops the calculation with CatalogIntegrityError instead of silently
dropping bands.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import uuid

from paydesk.config import settings
from paydesk.models.catalog import CalculationMethod, DeductionCategory, DeductionCode, DeductionScope
from paydesk.utils.error_handling import CatalogIntegrityError


ZERO = Decimal("0")
HUNDRED = Decimal("100")


def round_money(amount: Decimal, unit: Optional[Decimal] = None) -> Decimal:
    """Round half-up to the smallest currency unit."""
    return amount.quantize(unit or settings.currency_minor_unit, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class TaxBracket:
    """Tax bracket [lower, upper) taxed at rate percent. upper=None is open-ended."""
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal
    
    def calculate_tax(self, taxable_income: Decimal) -> Decimal:
        """Tax due on the slice of income that falls inside this bracket."""
        if taxable_income <= self.lower:
            return ZERO
        
        if self.upper is None:
            taxable_in_band = taxable_income - self.lower
        else:
            taxable_in_band = min(taxable_income, self.upper) - self.lower
        
        if taxable_in_band <= 0:
            return ZERO
        
        return taxable_in_band * (self.rate / HUNDRED)
    
    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "min": str(self.lower),
            "max": None if self.upper is None else str(self.upper),
            "rate": str(self.rate),
        }


@dataclass(frozen=True)
class FixedRule:
    value: Decimal


@dataclass(frozen=True)
class PercentageRule:
    value: Decimal


@dataclass(frozen=True)
class ProgressiveRule:
    brackets: Tuple[TaxBracket, ...]


DeductionRule = Union[FixedRule, PercentageRule, ProgressiveRule]


@dataclass(frozen=True)
class DeductionDefinition:
    """A catalog deduction as the calculator sees it: one effective version, rule already built."""
    name: str
    category: DeductionCategory
    rule: DeductionRule
    code: DeductionCode = DeductionCode.OTHER
    is_active: bool = True
    effective_date: Optional[date] = None
    scope: DeductionScope = DeductionScope.COMPANY_WIDE
    department_id: Optional[uuid.UUID] = None
    assigned_employee_ids: Tuple[uuid.UUID, ...] = ()
    priority: int = 100
    depends_on: Tuple[str, ...] = field(default_factory=tuple)
    
    @property
    def is_statutory(self) -> bool:
        return self.category == DeductionCategory.STATUTORY
    
    def applies_to(self, employee_id: uuid.UUID, department_id: Optional[uuid.UUID]) -> bool:
        """Whether this deduction reaches the given employee."""
        if self.scope == DeductionScope.COMPANY_WIDE:
            return True
        if self.scope == DeductionScope.DEPARTMENT:
            return department_id is not None and self.department_id == department_id
        return employee_id in self.assigned_employee_ids


# ===========================================
# BRACKET TABLES
# ===========================================

def _to_decimal(raw: Any, label: str, deduction: Optional[str]) -> Decimal:
    try:
        return Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise CatalogIntegrityError(
            f"Tax bracket {label} '{raw}' is not a number",
            deduction=deduction,
        )


def parse_brackets(raw: Sequence[Dict[str, Any]], deduction: Optional[str] = None) -> Tuple[TaxBracket, ...]:
    """Build TaxBracket objects from stored {"min", "max", "rate"} dicts."""
    brackets = []
    for item in raw:
        if "min" not in item or "rate" not in item:
            raise CatalogIntegrityError(
                "Tax bracket requires 'min' and 'rate'",
                deduction=deduction,
            )
        upper = item.get("max")
        brackets.append(TaxBracket(
            lower=_to_decimal(item["min"], "min", deduction),
            upper=None if upper is None else _to_decimal(upper, "max", deduction),
            rate=_to_decimal(item["rate"], "rate", deduction),
        ))
    return tuple(brackets)


def bracket_problems(brackets: Sequence[TaxBracket]) -> List[str]:
    """List every structural defect of a bracket table, empty when valid."""
    if not brackets:
        return ["bracket table is empty"]
    
    problems = []
    if brackets[0].lower != ZERO:
        problems.append(f"first bracket starts at {brackets[0].lower}, expected 0")
    
    for index, bracket in enumerate(brackets):
        if bracket.rate < 0 or bracket.rate > HUNDRED:
            problems.append(f"bracket {index} rate {bracket.rate} is outside 0-100")
        if bracket.lower < 0:
            problems.append(f"bracket {index} has a negative lower bound")
        is_last = index == len(brackets) - 1
        if bracket.upper is None:
            if not is_last:
                problems.append(f"open-ended bracket {index} is not the last bracket")
            continue
        if bracket.upper <= bracket.lower:
            problems.append(f"bracket {index} max {bracket.upper} is not above min {bracket.lower}")
        if is_last:
            problems.append("last bracket must be open-ended (max=null)")
            continue
        following = brackets[index + 1]
        if following.lower < bracket.lower:
            problems.append(f"bracket {index + 1} is not sorted ascending by min")
        elif following.lower > bracket.upper:
            problems.append(f"gap between {bracket.upper} and {following.lower}")
        elif following.lower < bracket.upper:
            problems.append(f"brackets {index} and {index + 1} overlap")
    return problems


def validate_brackets(brackets: Sequence[TaxBracket], deduction: Optional[str] = None) -> None:
    problems = bracket_problems(brackets)
    if problems:
        raise CatalogIntegrityError(
            f"Malformed tax bracket table{f' for {deduction}' if deduction else ''}",
            deduction=deduction,
            problems=problems,
        )


def build_rule(
    calculation_method: CalculationMethod,
    value: Optional[Decimal],
    tax_brackets: Optional[Sequence[Dict[str, Any]]] = None,
    deduction: Optional[str] = None,
) -> DeductionRule:
    """Turn a stored deduction row into a validated rule."""
    if tax_brackets:
        brackets = parse_brackets(tax_brackets, deduction)
        validate_brackets(brackets, deduction)
        return ProgressiveRule(brackets)
    if calculation_method == CalculationMethod.PROGRESSIVE:
        raise CatalogIntegrityError(
            "Progressive deduction has no tax brackets",
            deduction=deduction,
        )
    amount = Decimal(value if value is not None else 0)
    if amount < 0:
        raise CatalogIntegrityError(
            f"Deduction value {amount} is negative",
            deduction=deduction,
        )
    if calculation_method == CalculationMethod.PERCENTAGE:
        return PercentageRule(amount)
    return FixedRule(amount)


# ===========================================
# AMOUNT RESOLUTION
# ===========================================

def progressive_amount(brackets: Sequence[TaxBracket], base: Decimal) -> Decimal:
    """Marginal-rate total over ascending brackets, unrounded."""
    return sum((bracket.calculate_tax(base) for bracket in brackets), ZERO)


def rule_amount(rule: DeductionRule, base: Decimal) -> Decimal:
    """Unrounded amount a rule produces against base."""
    base = max(base, ZERO)
    if isinstance(rule, ProgressiveRule):
        return progressive_amount(rule.brackets, base)
    if isinstance(rule, PercentageRule):
        amount = base * rule.value / HUNDRED
    elif isinstance(rule, FixedRule):
        amount = rule.value
    else:
        raise TypeError(f"Unknown deduction rule {rule!r}")
    return min(max(amount, ZERO), base)


def resolve_deduction_amount(definition: DeductionDefinition, base: Decimal) -> Decimal:
    """
    Deduction amount for one line, rounded to the currency unit.
    
    Inactive deductions resolve to zero. Progressive tables are re-validated
    here so that a table built without build_rule still cannot slip through.
    """
    if not definition.is_active:
        return ZERO
    if isinstance(definition.rule, ProgressiveRule):
        validate_brackets(definition.rule.brackets, definition.name)
    return round_money(rule_amount(definition.rule, base))
