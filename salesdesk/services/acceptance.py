from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..utils.money import Money, round_to, sum_money, to_decimal
from .plan_builder import ANCHOR_KINDS, KIND_DP, KIND_HANDOVER, PlanMode, ScheduleEntry
from .pv_solver import PV_TOLERANCE

ACCEPT = "ACCEPT"
REJECT = "REJECT"
PASS = "PASS"
FAIL = "FAIL"

THRESHOLD_FIELDS = {
    "firstYearPercentMin": "first_year_percent_min",
    "firstYearPercentMax": "first_year_percent_max",
    "secondYearPercentMin": "second_year_percent_min",
    "secondYearPercentMax": "second_year_percent_max",
    "handoverPercentMin": "handover_percent_min",
    "handoverPercentMax": "handover_percent_max",
    "dpPercentMin": "dp_percent_min",
    "dpPercentMax": "dp_percent_max",
}


@dataclass(frozen=True)
class AcceptanceThresholds:
    """TM-approved bounds; ``None`` leaves that side unbounded."""

    first_year_percent_min: Optional[Decimal] = None
    first_year_percent_max: Optional[Decimal] = None
    second_year_percent_min: Optional[Decimal] = None
    second_year_percent_max: Optional[Decimal] = None
    handover_percent_min: Optional[Decimal] = None
    handover_percent_max: Optional[Decimal] = None
    dp_percent_min: Optional[Decimal] = None
    dp_percent_max: Optional[Decimal] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "AcceptanceThresholds":
        values: Dict[str, Optional[Decimal]] = {}
        for key, attr in THRESHOLD_FIELDS.items():
            raw = (data or {}).get(key, (data or {}).get(attr))
            values[attr] = None if raw is None or raw == "" else to_decimal(raw, key)
        return cls(**values)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            key: (None if getattr(self, attr) is None else str(getattr(self, attr)))
            for key, attr in THRESHOLD_FIELDS.items()
        }


@dataclass(frozen=True)
class Condition:
    key: str
    label: str
    status: str
    required_min: Optional[Decimal]
    required_max: Optional[Decimal]
    actual_percent: Optional[Decimal]
    actual_amount: Optional[Decimal]

    @property
    def passed(self) -> bool:
        return self.status == PASS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "status": self.status,
            "required": {
                "min": None if self.required_min is None else str(self.required_min),
                "max": None if self.required_max is None else str(self.required_max),
            },
            "actual": {
                "percent": None if self.actual_percent is None else str(self.actual_percent),
                "amount": None if self.actual_amount is None else str(self.actual_amount),
            },
        }


@dataclass(frozen=True)
class PvCheck:
    proposed_pv: Decimal
    standard_pv: Decimal
    difference: Decimal
    passed: bool


@dataclass(frozen=True)
class Evaluation:
    decision: str
    pv: PvCheck
    conditions: Tuple[Condition, ...]
    needs_override: bool

    @property
    def accepted(self) -> bool:
        return self.decision == ACCEPT

    def to_dict(self) -> Dict[str, Any]:
        failed = [condition.key for condition in self.conditions if not condition.passed]
        return {
            "decision": self.decision,
            "needsOverride": self.needs_override,
            "pv": {
                "proposedPV": str(self.pv.proposed_pv),
                "standardPV": str(self.pv.standard_pv),
                "difference": str(self.pv.difference),
                "pass": self.pv.passed,
            },
            "conditions": [condition.to_dict() for condition in self.conditions],
            "summary": {
                "pvPass": self.pv.passed,
                "failedConditions": failed,
            },
        }


def percent_of_total(part: Money, total: Money) -> Decimal:
    if total.minor <= 0:
        return Decimal("0.00")
    return round_to(part.amount / total.amount * Decimal(100))


def _check(value: Decimal, minimum: Optional[Decimal], maximum: Optional[Decimal]) -> str:
    if minimum is not None and value < minimum:
        return FAIL
    if maximum is not None and value > maximum:
        return FAIL
    return PASS


def anchored_cash(entries: Iterable[ScheduleEntry], currency: str) -> Dict[str, Money]:
    entries = list(entries)
    return {
        "dp": sum_money((e.amount for e in entries if e.kind == KIND_DP), currency),
        "firstYear": sum_money(
            (e.amount for e in entries if e.kind in ANCHOR_KINDS and e.month_offset <= 12), currency
        ),
        "secondYear": sum_money(
            (e.amount for e in entries if e.kind in ANCHOR_KINDS and 12 < e.month_offset <= 24), currency
        ),
        "handover": sum_money((e.amount for e in entries if e.kind == KIND_HANDOVER), currency),
    }


def evaluate_plan(
    entries: Iterable[ScheduleEntry],
    *,
    nominal_excl_maintenance: Money,
    proposed_pv: Decimal,
    standard_pv: Decimal,
    thresholds: AcceptanceThresholds,
    mode: PlanMode,
    sales_discount_percent: Decimal = Decimal("0"),
) -> Evaluation:
    entries = list(entries)
    cash = anchored_cash(entries, nominal_excl_maintenance.currency)
    pv = PvCheck(
        proposed_pv=proposed_pv,
        standard_pv=standard_pv,
        difference=round_to(proposed_pv - standard_pv),
        passed=proposed_pv >= standard_pv - PV_TOLERANCE,
    )

    specs = [
        ("dp_percent", "Down payment %", cash["dp"], thresholds.dp_percent_min, thresholds.dp_percent_max),
        (
            "first_year_percent",
            "First year %",
            cash["firstYear"],
            thresholds.first_year_percent_min,
            thresholds.first_year_percent_max,
        ),
        (
            "second_year_percent",
            "Second year %",
            cash["secondYear"],
            thresholds.second_year_percent_min,
            thresholds.second_year_percent_max,
        ),
        (
            "handover_percent",
            "Handover %",
            cash["handover"],
            thresholds.handover_percent_min,
            thresholds.handover_percent_max,
        ),
    ]
    conditions: List[Condition] = []
    for key, label, amount, minimum, maximum in specs:
        percent = percent_of_total(amount, nominal_excl_maintenance)
        conditions.append(
            Condition(
                key=key,
                label=label,
                status=_check(percent, minimum, maximum),
                required_min=minimum,
                required_max=maximum,
                actual_percent=percent,
                actual_amount=amount.amount,
            )
        )

    discount = to_decimal(sales_discount_percent, "salesDiscountPercent")
    if mode is PlanMode.STANDARD:
        conditions.append(
            Condition(
                key="standard_policy_discount",
                label="Standard policy allows no sales discount",
                status=PASS if discount == 0 else FAIL,
                required_min=None,
                required_max=Decimal("0"),
                actual_percent=discount,
                actual_amount=None,
            )
        )

    decision = ACCEPT if pv.passed and all(condition.passed for condition in conditions) else REJECT
    needs_override = decision == REJECT or (mode is PlanMode.STANDARD and discount != 0)
    return Evaluation(decision=decision, pv=pv, conditions=tuple(conditions), needs_override=needs_override)
