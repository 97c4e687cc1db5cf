"""Calculate / GeneratePlan use cases: build the schedule, solve PV targets, evaluate acceptance."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from ..constants import FINANCIAL_MANAGER, PROPERTY_CONSULTANT
from ..core.errors import DomainError, ErrorKind
from ..core.ports import AmountWords
from ..utils.dates import format_display
from ..utils.money import Money, round_to, sum_money, to_decimal
from .acceptance import AcceptanceThresholds, Evaluation, evaluate_plan
from .plan_builder import (
    STANDARD_DURATION_YEARS,
    STANDARD_FREQUENCY,
    CustomPlanInputs,
    PlanMode,
    ScheduleEntry,
    build_components,
    build_custom_schedule,
    build_standard_schedule,
    effective_price,
    equal_entries,
    finalize_schedule,
    plan_totals,
    schedule_pv,
    validate_inputs,
)
from .pv_solver import solve_scale_factor
from .standard_plan import StandardPlan, evaluate_standard_plan, monthly_rate, validate_standard_plan

# Highest sales discount each role may key in; other roles are limited only by the 0..100 range.
DISCOUNT_AUTHORITY = {
    PROPERTY_CONSULTANT: Decimal("2"),
    FINANCIAL_MANAGER: Decimal("5"),
}
NPV_WARNING_PERCENT = Decimal("70")


@dataclass(frozen=True)
class CalculationRequest:
    mode: PlanMode
    inputs: CustomPlanInputs = field(default_factory=CustomPlanInputs)
    std_plan: Optional[StandardPlan] = None
    unit_id: Optional[int] = None
    language: str = "en"
    currency: str = "EGP"
    base_date: Optional[date] = None


@dataclass(frozen=True)
class PlanResult:
    schedule: Tuple[ScheduleEntry, ...]
    nominal_excl_maintenance: Money
    nominal_incl_maintenance: Money
    computed_pv: Decimal
    evaluation: Evaluation
    meta: Dict[str, Any]

    def to_dict(self, generate: bool = False) -> Dict[str, Any]:
        rows = []
        for entry in self.schedule:
            row = {
                "sequenceIndex": entry.sequence_index,
                "label": entry.label,
                "monthOffset": entry.month_offset,
                "dueDate": entry.due_date.isoformat() if entry.due_date else None,
                "amount": str(entry.amount.amount),
                "kindTag": entry.kind,
            }
            if generate:
                row["date"] = format_display(entry.due_date)
                row["writtenAmount"] = entry.written_amount
            rows.append(row)
        return {
            "ok": True,
            "schedule": rows,
            "totals": {
                "count": len(rows),
                "nominalExclMaintenance": str(self.nominal_excl_maintenance.amount),
                "nominalInclMaintenance": str(self.nominal_incl_maintenance.amount),
            },
            "computedPV": str(self.computed_pv),
            "evaluation": self.evaluation.to_dict(),
            "meta": dict(self.meta),
        }


def check_discount_authority(role: Optional[str], discount: Decimal) -> None:
    limit = DISCOUNT_AUTHORITY.get(role or "")
    if limit is not None and to_decimal(discount, "salesDiscountPercent") > limit:
        raise DomainError(
            ErrorKind.FORBIDDEN_ROLE,
            f"Role {role} may apply a sales discount of at most {limit}%",
            {"role": role, "maxDiscountPercent": str(limit)},
        )


def resolve_base_date(request: CalculationRequest, today: date) -> date:
    return request.base_date or request.inputs.first_payment_date or request.inputs.offer_date or today


def resolve_standard_pv(plan: StandardPlan, server_locked: bool) -> Tuple[Decimal, str]:
    if server_locked:
        return evaluate_standard_plan(plan).pv, "unit_pricing"
    if plan.computed_pv is not None and plan.computed_pv > 0:
        return round_to(plan.computed_pv), "client_computed"
    return evaluate_standard_plan(plan).pv, "evaluated"


def calculate(
    request: CalculationRequest,
    *,
    thresholds: AcceptanceThresholds,
    today: date,
    unit_plan: Optional[StandardPlan] = None,
    pv_scale_cap: Decimal = Decimal("10"),
    words: Optional[AmountWords] = None,
    generate: bool = False,
    actor_role: Optional[str] = None,
) -> PlanResult:
    """Pure calculation; ``unit_plan`` is the server-locked standard plan when a unit was selected."""
    mode = request.mode
    inputs = request.inputs
    check_discount_authority(actor_role, inputs.sales_discount_percent)
    validate_inputs(inputs, mode)

    server_locked = unit_plan is not None
    if server_locked:
        plan = validate_standard_plan(unit_plan)
    elif request.std_plan is not None:
        plan = validate_standard_plan(request.std_plan)
    else:
        raise DomainError(ErrorKind.VALIDATION, "Either stdPlan or unitId is required", {"field": "stdPlan"})

    currency = request.currency
    m = monthly_rate(plan.annual_rate_percent)
    list_price = Money.of(plan.list_price, currency)
    base_date = resolve_base_date(request, today)
    scale_factor: Optional[Decimal] = None

    if mode is PlanMode.STANDARD:
        price = effective_price(list_price, inputs, mode)
        entries, components = build_standard_schedule(inputs, price, base_date)
        policy_entries, _ = build_standard_schedule(CustomPlanInputs(), list_price, base_date)
        standard_pv, pv_source = round_to(schedule_pv(policy_entries, m)), "policy_schedule"
        duration_used, frequency_used = STANDARD_DURATION_YEARS, STANDARD_FREQUENCY
    else:
        standard_pv, pv_source = resolve_standard_pv(plan, server_locked)
        duration_used, frequency_used = inputs.duration_years, inputs.frequency
        if mode.is_target_pv:
            components = build_components(inputs, list_price, base_date)
            anchored = sum_money((e.amount for e in components.fixed + components.blocks), currency)
            residual = list_price.sub(anchored)
            if residual.is_negative():
                residual = Money.zero(currency)
            start = len(components.fixed) + len(components.blocks) + len(components.extras)
            remainder = equal_entries(residual, components.equal_months, start)
            if mode is PlanMode.CALCULATE_FOR_TARGET_PV:
                fixed, scaled = components.fixed, components.blocks + remainder
            else:
                fixed, scaled = components.fixed + components.blocks, remainder
            solved = solve_scale_factor(
                fixed=fixed,
                scaled=scaled,
                standard_pv=standard_pv,
                m=m,
                cap=to_decimal(pv_scale_cap, "pvScaleCap"),
            )
            scale_factor = solved.scale_factor
            entries = solved.entries + components.extras
        else:
            price = effective_price(list_price, inputs, mode)
            entries, components = build_custom_schedule(inputs, price, base_date)

    schedule = finalize_schedule(entries, base_date)
    if generate and words is not None:
        schedule = tuple(
            replace(entry, written_amount=words.words(entry.amount.amount, request.language, currency))
            for entry in schedule
        )
    nominal_excl, nominal_incl = plan_totals(schedule, currency)
    proposed_pv = round_to(schedule_pv(schedule, m))
    evaluation = evaluate_plan(
        schedule,
        nominal_excl_maintenance=nominal_excl,
        proposed_pv=proposed_pv,
        standard_pv=standard_pv,
        thresholds=thresholds,
        mode=mode,
        sales_discount_percent=inputs.sales_discount_percent,
    )

    meta: Dict[str, Any] = {
        "mode": mode.value,
        "rateUsedPercent": str(plan.annual_rate_percent),
        "durationYearsUsed": duration_used,
        "frequencyUsed": frequency_used,
        "standardPvSource": pv_source,
        "serverLocked": server_locked,
        "computedPVEqualsTotalNominal": standard_pv == list_price.amount,
        "handoverMonth": components.handover_month,
        "effectiveStartYears": list(components.block_start_years),
        "listPrice": str(list_price.amount),
        "baseDate": base_date.isoformat(),
        "currency": currency,
        "language": request.language,
        "npvWarning": proposed_pv < list_price.amount * NPV_WARNING_PERCENT / Decimal(100),
    }
    if scale_factor is not None:
        meta["scaleFactor"] = str(round_to(scale_factor, 6))
    return PlanResult(
        schedule=schedule,
        nominal_excl_maintenance=nominal_excl,
        nominal_incl_maintenance=nominal_incl,
        computed_pv=proposed_pv,
        evaluation=evaluation,
        meta=meta,
    )


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value


def request_to_dict(request: CalculationRequest) -> Dict[str, Any]:
    """JSON-safe copy of the request kept inside deal snapshots."""
    return {
        "mode": request.mode.value,
        "inputs": _plain(asdict(request.inputs)),
        "stdPlan": _plain(asdict(request.std_plan)) if request.std_plan else None,
        "unitId": request.unit_id,
        "language": request.language,
        "currency": request.currency,
        "baseDate": request.base_date.isoformat() if request.base_date else None,
    }
