from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, localcontext
from typing import List, Sequence

from ..core.errors import DomainError, ErrorKind
from ..utils.money import Money, round_to
from .plan_builder import ScheduleEntry, schedule_pv

PV_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class SolveResult:
    entries: List[ScheduleEntry]
    scale_factor: Decimal
    proposed_pv: Decimal


def solve_scale_factor(
    *,
    fixed: Sequence[ScheduleEntry],
    scaled: Sequence[ScheduleEntry],
    standard_pv: Decimal,
    m: Decimal,
    cap: Decimal,
) -> SolveResult:
    """Closed form: A + s*C = PV_std.

    ``fixed`` cash flows keep their amounts (PV ``A``); every ``scaled`` amount is
    multiplied by ``s``. After rounding to cents the last scaled installment
    absorbs the leftover PV so the result lands within a cent of the target.
    """
    anchor_pv = schedule_pv(fixed, m)
    scalable_pv = schedule_pv(scaled, m)
    details = {
        "standardPV": str(standard_pv),
        "anchorPV": str(round_to(anchor_pv)),
        "scalablePV": str(round_to(scalable_pv)),
    }
    if scalable_pv <= 0:
        raise DomainError(ErrorKind.PV_UNREACHABLE, "No installments are available to reach the standard PV", details)
    with localcontext() as ctx:
        ctx.prec = 34
        scale = (standard_pv - anchor_pv) / scalable_pv
    details["scaleFactor"] = str(round_to(scale, 6))
    if scale < 0:
        raise DomainError(ErrorKind.PV_UNREACHABLE, "Fixed payments already exceed the standard PV", details)
    if scale > cap:
        raise DomainError(ErrorKind.PV_UNREACHABLE, f"Required scale factor exceeds the cap of {cap}", details)

    rescaled = [replace(entry, amount=entry.amount.mul(scale)) for entry in scaled]
    last_index = max(range(len(rescaled)), key=lambda index: (rescaled[index].month_offset, index))
    last = rescaled[last_index]
    with localcontext() as ctx:
        ctx.prec = 34
        shortfall = standard_pv - anchor_pv - schedule_pv(rescaled, m)
        growth = (Decimal(1) + m) ** last.month_offset
        adjusted = last.amount.add(Money.of(shortfall * growth, last.amount.currency))
    if adjusted.is_negative():
        raise DomainError(ErrorKind.CONVERGENCE_FAIL, "Rounding adjustment produced a negative installment", details)
    rescaled[last_index] = replace(last, amount=adjusted)

    proposed = round_to(anchor_pv + schedule_pv(rescaled, m))
    if abs(proposed - standard_pv) > PV_TOLERANCE:
        details["proposedPV"] = str(proposed)
        raise DomainError(ErrorKind.CONVERGENCE_FAIL, "Solved plan misses the standard PV", details)
    return SolveResult(entries=list(fixed) + rescaled, scale_factor=scale, proposed_pv=proposed)
