"""Builds dated nominal payment schedules for every calculation mode."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.errors import DomainError, ErrorKind
from ..utils.dates import add_months, month_offset_between
from ..utils.money import Money, sum_money, to_decimal
from .standard_plan import normalize_frequency, present_value, step_months


class PlanMode(str, Enum):
    STANDARD = "standardMode"
    EVALUATE_CUSTOM_PRICE = "evaluateCustomPrice"
    CALCULATE_FOR_TARGET_PV = "calculateForTargetPV"
    YEARLY_THEN_EQUAL_STD_PRICE = "customYearlyThenEqual_useStdPrice"
    YEARLY_THEN_EQUAL_TARGET_PV = "customYearlyThenEqual_targetPV"

    @classmethod
    def parse(cls, value: str) -> "PlanMode":
        text = str(value or "").strip()
        for mode in cls:
            if text.lower() in (mode.value.lower(), mode.name.lower()):
                return mode
        raise DomainError(ErrorKind.VALIDATION, f"Unknown calculation mode {value!r}", {"field": "mode"})

    @property
    def is_target_pv(self) -> bool:
        return self in (PlanMode.CALCULATE_FOR_TARGET_PV, PlanMode.YEARLY_THEN_EQUAL_TARGET_PV)


KIND_DP = "dp"
KIND_FIRST_YEAR = "firstYear"
KIND_SUBSEQUENT_YEAR = "subsequentYear"
KIND_EQUAL = "equal"
KIND_HANDOVER = "handover"
KIND_MAINTENANCE = "maintenance"
KIND_GARAGE = "garage"

KIND_RANK = {
    KIND_DP: 0,
    KIND_FIRST_YEAR: 1,
    KIND_SUBSEQUENT_YEAR: 2,
    KIND_EQUAL: 3,
    KIND_HANDOVER: 4,
    KIND_MAINTENANCE: 5,
    KIND_GARAGE: 6,
}
EXTRA_KINDS = frozenset({KIND_MAINTENANCE, KIND_GARAGE})
ANCHOR_KINDS = frozenset({KIND_DP, KIND_FIRST_YEAR, KIND_SUBSEQUENT_YEAR})

MAX_DURATION_YEARS = 12

# StandardMode policy
STANDARD_DP_PERCENT = Decimal("20")
STANDARD_DURATION_YEARS = 6
STANDARD_FREQUENCY = "quarterly"
STANDARD_HANDOVER_YEAR = 3
STANDARD_EARLY_YEARS = 3
STANDARD_EARLY_QUARTER_PERCENT = Decimal("3.75")


@dataclass(frozen=True)
class FirstYearPayment:
    amount: Decimal
    month: int
    kind: str = "regular"


@dataclass(frozen=True)
class SubsequentYear:
    total_nominal: Decimal
    frequency: str


@dataclass(frozen=True)
class CustomPlanInputs:
    sales_discount_percent: Decimal = Decimal("0")
    dp_type: str = "percentage"
    dp_value: Decimal = Decimal("0")
    duration_years: int = STANDARD_DURATION_YEARS
    frequency: str = STANDARD_FREQUENCY
    handover_year: int = STANDARD_HANDOVER_YEAR
    additional_handover_payment: Decimal = Decimal("0")
    split_first_year: bool = False
    first_year_payments: Tuple[FirstYearPayment, ...] = ()
    subsequent_years: Tuple[SubsequentYear, ...] = ()
    maintenance_amount: Decimal = Decimal("0")
    maintenance_month: int = 0
    maintenance_date: Optional[date] = None
    garage_amount: Decimal = Decimal("0")
    garage_month: int = 0
    garage_date: Optional[date] = None
    offer_date: Optional[date] = None
    first_payment_date: Optional[date] = None


@dataclass(frozen=True)
class ScheduleEntry:
    sequence_index: int
    label: str
    month_offset: int
    amount: Money
    kind: str
    due_date: Optional[date] = None
    written_amount: Optional[str] = None


@dataclass
class PlanComponents:
    """Schedule pieces before the residual is spread; amounts of ``scalable`` may be rescaled."""

    fixed: List[ScheduleEntry] = field(default_factory=list)
    blocks: List[ScheduleEntry] = field(default_factory=list)
    extras: List[ScheduleEntry] = field(default_factory=list)
    equal_months: List[int] = field(default_factory=list)
    handover_month: int = 0
    block_start_years: List[int] = field(default_factory=list)


def _error(errors: List[Dict[str, str]], field_name: str, message: str) -> None:
    errors.append({"field": field_name, "message": message})


def _non_negative(errors: List[Dict[str, str]], value: Decimal, field_name: str) -> None:
    if to_decimal(value, field_name) < 0:
        _error(errors, field_name, "must be 0 or more")


def validate_inputs(inputs: CustomPlanInputs, mode: PlanMode) -> None:
    errors: List[Dict[str, str]] = []
    discount = to_decimal(inputs.sales_discount_percent, "salesDiscountPercent")
    if discount < 0 or discount > 100:
        _error(errors, "salesDiscountPercent", "must be between 0 and 100")
    _non_negative(errors, inputs.maintenance_amount, "maintenancePaymentAmount")
    _non_negative(errors, inputs.garage_amount, "garagePaymentAmount")
    if inputs.maintenance_month < 0:
        _error(errors, "maintenancePaymentMonth", "must be 0 or more")
    if inputs.garage_month < 0:
        _error(errors, "garagePaymentMonth", "must be 0 or more")

    if mode is not PlanMode.STANDARD:
        if inputs.dp_type not in ("amount", "percentage"):
            _error(errors, "dpType", "must be 'amount' or 'percentage'")
        dp_value = to_decimal(inputs.dp_value, "downPaymentValue")
        if dp_value < 0:
            _error(errors, "downPaymentValue", "must be 0 or more")
        if inputs.dp_type == "percentage" and dp_value > 100:
            _error(errors, "downPaymentValue", "percentage must not exceed 100")
        if mode.is_target_pv and inputs.dp_type != "amount":
            _error(errors, "dpType", "target-PV modes require a fixed down payment amount")
        if not isinstance(inputs.duration_years, int) or not 1 <= inputs.duration_years <= MAX_DURATION_YEARS:
            _error(errors, "planDurationYears", f"must be an integer between 1 and {MAX_DURATION_YEARS}")
        normalize_frequency(inputs.frequency, "installmentFrequency")
        if not isinstance(inputs.handover_year, int) or inputs.handover_year < 1:
            _error(errors, "handoverYear", "must be an integer >= 1")
        elif isinstance(inputs.duration_years, int) and inputs.handover_year > inputs.duration_years:
            _error(errors, "handoverYear", "must fall within the plan duration")
        _non_negative(errors, inputs.additional_handover_payment, "additionalHandoverPayment")
        if inputs.split_first_year:
            for index, payment in enumerate(inputs.first_year_payments):
                prefix = f"firstYearPayments[{index}]"
                _non_negative(errors, payment.amount, f"{prefix}.amount")
                if not isinstance(payment.month, int) or not 1 <= payment.month <= 12:
                    _error(errors, f"{prefix}.month", "must be an integer between 1 and 12")
                if payment.kind not in ("dp", "regular"):
                    _error(errors, f"{prefix}.type", "must be 'dp' or 'regular'")
        for index, block in enumerate(inputs.subsequent_years):
            prefix = f"subsequentYears[{index}]"
            _non_negative(errors, block.total_nominal, f"{prefix}.totalNominal")
            normalize_frequency(block.frequency, f"{prefix}.frequency")
        if isinstance(inputs.duration_years, int) and inputs.subsequent_years:
            last_year = first_block_year(inputs) + len(inputs.subsequent_years) - 1
            if last_year > inputs.duration_years:
                _error(errors, "subsequentYears", "blocks extend past the plan duration")

    if errors:
        raise DomainError(ErrorKind.VALIDATION, "Invalid inputs", {"errors": errors})


def first_block_year(inputs: CustomPlanInputs) -> int:
    """Year 1 belongs to the down payment and the optional first-year split."""
    return 2


def effective_price(list_price: Money, inputs: CustomPlanInputs, mode: PlanMode) -> Money:
    if mode in (PlanMode.STANDARD, PlanMode.EVALUATE_CUSTOM_PRICE):
        return list_price.sub(list_price.percent_of(inputs.sales_discount_percent))
    return list_price


def _entry(label: str, month: int, amount: Money, kind: str, order: int) -> ScheduleEntry:
    return ScheduleEntry(sequence_index=order, label=label, month_offset=month, amount=amount, kind=kind)


def resolve_extra_month(month: int, when: Optional[date], base_date: date, handover_month: int) -> int:
    """Calendar date wins, then an explicit positive month; 0 or missing falls back to handover."""
    if when is not None:
        offset = month_offset_between(base_date, when)
        if offset < 0:
            raise DomainError(
                ErrorKind.VALIDATION,
                "Maintenance and garage dates must not precede the plan base date",
                {"date": when.isoformat(), "baseDate": base_date.isoformat()},
            )
        return offset
    if month and month > 0:
        return month
    return handover_month


def build_extras(inputs: CustomPlanInputs, base_date: date, handover_month: int, currency: str, start_order: int) -> List[ScheduleEntry]:
    extras: List[ScheduleEntry] = []
    maintenance = Money.of(inputs.maintenance_amount, currency)
    if maintenance.minor > 0:
        month = resolve_extra_month(inputs.maintenance_month, inputs.maintenance_date, base_date, handover_month)
        extras.append(_entry("Maintenance Deposit", month, maintenance, KIND_MAINTENANCE, start_order))
    garage = Money.of(inputs.garage_amount, currency)
    if garage.minor > 0:
        month = resolve_extra_month(inputs.garage_month, inputs.garage_date, base_date, handover_month)
        extras.append(_entry("Garage Fee", month, garage, KIND_GARAGE, start_order + 1))
    return extras


def build_components(inputs: CustomPlanInputs, price: Money, base_date: date) -> PlanComponents:
    """DP, first-year split, subsequent-year blocks, handover lump, extras and the equal-installment slots."""
    currency = price.currency
    components = PlanComponents(handover_month=inputs.handover_year * 12)
    order = 0

    if inputs.dp_type == "percentage":
        dp = price.percent_of(inputs.dp_value)
    else:
        dp = Money.of(inputs.dp_value, currency)
    if dp.minor > 0:
        components.fixed.append(_entry("Down Payment", 0, dp, KIND_DP, order))
        order += 1

    horizon = 0
    if inputs.split_first_year:
        horizon = 12
        for payment in inputs.first_year_payments:
            amount = Money.of(payment.amount, currency)
            if amount.minor <= 0:
                continue
            if payment.kind == "dp":
                components.fixed.append(_entry("Down Payment (Y1 split)", payment.month, amount, KIND_DP, order))
            else:
                components.fixed.append(_entry("First Year", payment.month, amount, KIND_FIRST_YEAR, order))
            order += 1

    start_year = first_block_year(inputs)
    for index, block in enumerate(inputs.subsequent_years):
        year = start_year + index
        frequency = normalize_frequency(block.frequency)
        step = step_months(frequency)
        count = 12 // step
        components.block_start_years.append(year)
        horizon = max(horizon, year * 12)
        total = Money.of(block.total_nominal, currency)
        if total.minor <= 0:
            continue
        for position, amount in enumerate(total.allocate(count), start=1):
            month = (year - 1) * 12 + step * position
            components.blocks.append(_entry(f"Year {year} ({frequency})", month, amount, KIND_SUBSEQUENT_YEAR, order))
            order += 1

    lump = Money.of(inputs.additional_handover_payment, currency)
    if lump.minor > 0:
        components.fixed.append(_entry("Handover", components.handover_month, lump, KIND_HANDOVER, order))
        order += 1

    step = step_months(inputs.frequency)
    components.equal_months = list(range(horizon + step, inputs.duration_years * 12 + 1, step))
    components.extras = build_extras(inputs, base_date, components.handover_month, currency, order)
    return components


def equal_entries(residual: Money, months: Sequence[int], start_order: int) -> List[ScheduleEntry]:
    if residual.minor == 0:
        return []
    return [
        _entry("Equal Installment", month, amount, KIND_EQUAL, start_order + position)
        for position, (month, amount) in enumerate(zip(months, residual.allocate(len(months))))
    ]


def build_custom_schedule(inputs: CustomPlanInputs, price: Money, base_date: date) -> Tuple[List[ScheduleEntry], PlanComponents]:
    """Anchors first, then the residual ``price - anchors`` spread in equal installments after the last anchor."""
    components = build_components(inputs, price, base_date)
    anchored = sum_money((entry.amount for entry in components.fixed + components.blocks), price.currency)
    residual = price.sub(anchored)
    if residual.is_negative():
        raise DomainError(
            ErrorKind.INFEASIBLE_PLAN,
            "Anchored payments exceed the plan price",
            {"price": str(price.amount), "anchored": str(anchored.amount), "residual": str(residual.amount)},
        )
    if residual.minor > 0 and not components.equal_months:
        raise DomainError(
            ErrorKind.INFEASIBLE_PLAN,
            "No installment periods remain after the anchored payments",
            {"residual": str(residual.amount)},
        )
    start = len(components.fixed) + len(components.blocks) + len(components.extras)
    entries = components.fixed + components.blocks + equal_entries(residual, components.equal_months, start) + components.extras
    return entries, components


def build_standard_schedule(inputs: CustomPlanInputs, price: Money, base_date: date) -> Tuple[List[ScheduleEntry], PlanComponents]:
    """Fixed policy: 20% DP, 3.75% per quarter in years 1-3, the rest equally over years 4-6."""
    components = PlanComponents(handover_month=STANDARD_HANDOVER_YEAR * 12)
    order = 0
    dp = price.percent_of(STANDARD_DP_PERCENT)
    components.fixed.append(_entry("Down Payment", 0, dp, KIND_DP, order))
    order += 1
    step = step_months(STANDARD_FREQUENCY)
    quarter = price.percent_of(STANDARD_EARLY_QUARTER_PERCENT)
    for position in range(1, STANDARD_EARLY_YEARS * 4 + 1):
        month = position * step
        year = (month - 1) // 12 + 1
        if year == 1:
            components.fixed.append(_entry("First Year", month, quarter, KIND_FIRST_YEAR, order))
        else:
            components.fixed.append(_entry(f"Year {year} ({STANDARD_FREQUENCY})", month, quarter, KIND_SUBSEQUENT_YEAR, order))
        order += 1
    components.equal_months = list(range(STANDARD_EARLY_YEARS * 12 + step, STANDARD_DURATION_YEARS * 12 + 1, step))
    components.extras = build_extras(inputs, base_date, components.handover_month, price.currency, order)
    residual = price.sub(sum_money((entry.amount for entry in components.fixed), price.currency))
    start = len(components.fixed) + len(components.extras)
    entries = components.fixed + equal_entries(residual, components.equal_months, start) + components.extras
    return entries, components


def finalize_schedule(entries: Iterable[ScheduleEntry], base_date: Optional[date] = None) -> Tuple[ScheduleEntry, ...]:
    """Order by month then kind rank then build order; number from 1 and attach due dates."""
    ordered = sorted(entries, key=lambda entry: (entry.month_offset, KIND_RANK[entry.kind], entry.sequence_index))
    return tuple(
        replace(
            entry,
            sequence_index=index,
            due_date=add_months(base_date, entry.month_offset) if base_date else None,
        )
        for index, entry in enumerate(ordered, start=1)
    )


def plan_totals(entries: Iterable[ScheduleEntry], currency: str = "EGP") -> Tuple[Money, Money]:
    entries = list(entries)
    excluding = sum_money((entry.amount for entry in entries if entry.kind not in EXTRA_KINDS), currency)
    including = sum_money((entry.amount for entry in entries), currency)
    return excluding, including


def schedule_pv(entries: Iterable[ScheduleEntry], m: Decimal) -> Decimal:
    """Unrounded PV; maintenance and garage never count."""
    return present_value(
        ((entry.month_offset, entry.amount.amount) for entry in entries if entry.kind not in EXTRA_KINDS),
        m,
    )
