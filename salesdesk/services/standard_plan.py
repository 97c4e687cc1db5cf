from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Any, Iterable, Optional, Tuple

from ..core.errors import DomainError, ErrorKind
from ..utils.money import round_to, to_decimal

PERIODS_PER_YEAR = {
    "monthly": 12,
    "quarterly": 4,
    "bi-annually": 2,
    "annually": 1,
}

FREQUENCY_ALIASES = {
    "biannually": "bi-annually",
    "bi_annually": "bi-annually",
    "semi-annually": "bi-annually",
    "semiannually": "bi-annually",
    "yearly": "annually",
}


def normalize_frequency(value: Any, field: str = "frequency") -> str:
    text = str(value or "").strip().lower()
    text = FREQUENCY_ALIASES.get(text, text)
    if text not in PERIODS_PER_YEAR:
        raise DomainError(
            ErrorKind.VALIDATION,
            f"{field} must be one of {', '.join(PERIODS_PER_YEAR)}",
            {"field": field, "value": value},
        )
    return text


def periods_per_year(frequency: str) -> int:
    return PERIODS_PER_YEAR[normalize_frequency(frequency)]


def step_months(frequency: str) -> int:
    return 12 // periods_per_year(frequency)


def monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    """Effective monthly rate m with (1 + m)^12 = 1 + r/100."""
    rate = to_decimal(annual_rate_percent, "annualRatePercent")
    if rate <= 0:
        return Decimal("0")
    with localcontext() as ctx:
        ctx.prec = 34
        return (Decimal(1) + rate / Decimal(100)) ** (Decimal(1) / Decimal(12)) - Decimal(1)


def period_rate(annual_rate_percent: Decimal, frequency: str) -> Decimal:
    m = monthly_rate(annual_rate_percent)
    with localcontext() as ctx:
        ctx.prec = 34
        return (Decimal(1) + m) ** step_months(frequency) - Decimal(1)


def discount_factor(m: Decimal, month: int) -> Decimal:
    if m == 0 or month == 0:
        return Decimal(1)
    with localcontext() as ctx:
        ctx.prec = 34
        return Decimal(1) / (Decimal(1) + m) ** month


def present_value(flows: Iterable[Tuple[int, Decimal]], m: Decimal) -> Decimal:
    """Unrounded PV of (monthOffset, amount) pairs at monthly rate ``m``."""
    total = Decimal(0)
    with localcontext() as ctx:
        ctx.prec = 34
        for month, amount in flows:
            total += Decimal(amount) * discount_factor(m, month)
    return total


@dataclass(frozen=True)
class StandardPlan:
    list_price: Decimal
    annual_rate_percent: Decimal
    duration_years: int
    frequency: str
    computed_pv: Optional[Decimal] = None


@dataclass(frozen=True)
class StandardPlanEvaluation:
    installment: Decimal
    installment_count: int
    step_months: int
    monthly_rate: Decimal
    period_rate: Decimal
    pv: Decimal


def validate_standard_plan(plan: StandardPlan) -> StandardPlan:
    errors = []
    price = to_decimal(plan.list_price, "listPrice")
    rate = to_decimal(plan.annual_rate_percent, "annualRatePercent")
    if price <= 0:
        errors.append({"field": "listPrice", "message": "must be greater than 0"})
    if rate < 0:
        errors.append({"field": "annualRatePercent", "message": "must be 0 or more"})
    if not isinstance(plan.duration_years, int) or plan.duration_years < 1:
        errors.append({"field": "durationYears", "message": "must be a whole number of years >= 1"})
    frequency = normalize_frequency(plan.frequency, "stdPlan.frequency")
    computed = None if plan.computed_pv is None else to_decimal(plan.computed_pv, "computedPV")
    # 0 is read as "not computed".
    if computed is not None and (computed < 0 or (price > 0 and computed > price)):
        errors.append({"field": "computedPV", "message": "must be greater than 0 and at most the list price"})
    if errors:
        raise DomainError(ErrorKind.VALIDATION, "Invalid standard plan", {"errors": errors})
    return StandardPlan(price, rate, plan.duration_years, frequency, computed)


def evaluate_standard_plan(plan: StandardPlan) -> StandardPlanEvaluation:
    """Equal installments of P/n over every period; PV discounted at the effective monthly rate."""
    plan = validate_standard_plan(plan)
    count = plan.duration_years * periods_per_year(plan.frequency)
    step = step_months(plan.frequency)
    m = monthly_rate(plan.annual_rate_percent)
    with localcontext() as ctx:
        ctx.prec = 34
        installment = plan.list_price / Decimal(count)
    if m == 0:
        pv = plan.list_price
    else:
        pv = present_value(((k * step, installment) for k in range(1, count + 1)), m)
    return StandardPlanEvaluation(
        installment=round_to(installment),
        installment_count=count,
        step_months=step,
        monthly_rate=m,
        period_rate=period_rate(plan.annual_rate_percent, plan.frequency),
        pv=round_to(pv),
    )
