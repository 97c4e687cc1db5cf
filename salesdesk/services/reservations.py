from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from ..constants import (
    ADMIN_ROLES,
    DOCUMENT_VERSION,
    FINANCIAL_ADMIN,
    FINANCIAL_MANAGER,
    LANGUAGES,
    UNIT_AVAILABLE,
    UNIT_BLOCKED,
    UNIT_RESERVED,
)
from ..core.actors import Actor
from ..core.errors import DomainError, ErrorKind
from ..models.models import Deal, ReservationForm, Unit
from ..utils.dates import parse_optional_date
from ..utils.money import round_to, to_decimal
from ..utils.retry import retry_on_conflict
from .audit import RESERVATION_FORM, UNIT, record_history
from .deals import deal_requires_override, plan_schedule
from .notifications import notify
from .state_machine import StateMachine, transition
from .unit_blocks import active_block_for_unit

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("draft", "pending_approval", "approved")
DP_EDITOR_ROLES = frozenset({FINANCIAL_ADMIN, FINANCIAL_MANAGER}) | ADMIN_ROLES
REVIEW_NOTIFICATIONS = {"approve": "reservation.approved", "reject": "reservation.rejected"}

RESERVATION_MACHINE = StateMachine(
    RESERVATION_FORM,
    [
        transition("submit", ["draft"], "pending_approval", [FINANCIAL_ADMIN, *ADMIN_ROLES]),
        transition("approve", ["pending_approval"], "approved", [FINANCIAL_MANAGER]),
        transition("reject", ["pending_approval"], "rejected", [FINANCIAL_MANAGER]),
        transition("cancel", ["draft", "pending_approval"], "cancelled", [FINANCIAL_ADMIN, FINANCIAL_MANAGER, *ADMIN_ROLES]),
    ],
)


def _retry(ctx, operation):
    return retry_on_conflict(operation, attempts=ctx.settings.conflict_retry_attempts, on_conflict=ctx.store.rollback)


def _deal_ready(deal: Deal) -> None:
    if deal.status != "approved":
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            f"Deal {deal.id} must be approved before reservation",
            {"dealId": deal.id, "status": deal.status},
        )
    if deal_requires_override(deal):
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            "The deal's override has not been approved by top management",
            {"dealId": deal.id, "overrideStatus": deal.override_status},
        )
    if not plan_schedule(deal):
        raise DomainError(ErrorKind.INVALID_TRANSITION, "Deal has no payment plan", {"dealId": deal.id})


def _unit_held_by_deal(ctx, deal: Deal) -> None:
    if deal.unit_id is None:
        return
    block = active_block_for_unit(ctx, deal.unit_id)
    if block is None or block.deal_id != deal.id:
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            "The unit must be blocked for this deal before reservation",
            {"dealId": deal.id, "unitId": deal.unit_id},
        )


def _check_unit_reservable(ctx, unit_id: Optional[int]) -> Optional[Unit]:
    if unit_id is None:
        return None
    unit = ctx.store.get(Unit, unit_id)
    if unit.status not in (UNIT_AVAILABLE, UNIT_BLOCKED):
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            f"Unit {unit.code} is {unit.status} and cannot be reserved",
            {"unitId": unit_id, "unitStatus": unit.status},
        )
    return unit


def down_payment_total(deal: Deal) -> Decimal:
    return sum((to_decimal(row["amount"], "amount") for row in plan_schedule(deal) if row.get("kindTag") == "dp"), Decimal("0"))


def dp_breakdown(
    total: Decimal,
    preliminary_amount: Decimal,
    preliminary_date: Optional[date],
    paid_amount: Decimal = Decimal("0"),
    paid_date: Optional[date] = None,
) -> Dict[str, Any]:
    remaining = max(Decimal("0"), total - preliminary_amount - paid_amount)
    return {
        "total": str(round_to(total)),
        "preliminary_amount": str(round_to(preliminary_amount)),
        "preliminary_date": preliminary_date.isoformat() if preliminary_date else None,
        "paid_amount": str(round_to(paid_amount)),
        "paid_date": paid_date.isoformat() if paid_date else None,
        "remaining": str(round_to(remaining)),
    }


def _non_negative(value: Any, field: str) -> Decimal:
    amount = to_decimal(value, field)
    if amount < 0:
        raise DomainError(ErrorKind.VALIDATION, f"{field} must not be negative", {"field": field})
    return amount


def create_reservation(
    ctx,
    actor: Actor,
    deal_id: int,
    *,
    reservation_date: date,
    preliminary_payment: Any = 0,
    preliminary_date: Optional[date] = None,
    language: str = "en",
) -> ReservationForm:
    if actor.role != FINANCIAL_ADMIN and not actor.is_admin:
        raise DomainError(ErrorKind.FORBIDDEN_ROLE, "Only financial admins create reservation forms", {"role": actor.role})
    if language not in LANGUAGES:
        raise DomainError(ErrorKind.VALIDATION, f"Unsupported language {language!r}", {"field": "language"})
    preliminary = _non_negative(preliminary_payment, "preliminaryPayment")
    deal = ctx.store.get(Deal, deal_id)
    _deal_ready(deal)
    _unit_held_by_deal(ctx, deal)
    _check_unit_reservable(ctx, deal.unit_id)
    if ctx.store.find(ReservationForm, deal_id=deal_id, status=list(OPEN_STATUSES)):
        raise DomainError(ErrorKind.INVALID_TRANSITION, f"Deal {deal_id} already has a reservation form", {"dealId": deal_id})

    total = down_payment_total(deal)
    if preliminary > total:
        raise DomainError(
            ErrorKind.VALIDATION,
            "Preliminary payment cannot exceed the down payment",
            {"field": "preliminaryPayment", "downPayment": str(total)},
        )
    now = ctx.clock.now()
    details = dict(deal.details or {})
    details["version"] = DOCUMENT_VERSION
    details["dp"] = dp_breakdown(total, preliminary, preliminary_date or reservation_date)
    form = ctx.store.add(
        ReservationForm(
            id=ctx.ids.next_id("reservation_forms"),
            deal_id=deal.id,
            payment_plan_id=deal.payment_plan_id,
            unit_id=deal.unit_id,
            status="draft",
            reservation_date=reservation_date,
            preliminary_payment=preliminary,
            language=language,
            details=details,
            created_by=actor.id,
            created_at=now,
            updated_at=now,
        )
    )
    record_history(ctx, RESERVATION_FORM, form.id, "created", actor, {"dealId": deal.id}, at=now)
    return form


def apply_reservation_event(
    ctx,
    actor: Actor,
    form_id: int,
    event: str,
    reason: Optional[str] = None,
) -> ReservationForm:
    def _apply() -> ReservationForm:
        form = ctx.store.get(ReservationForm, form_id)
        rule = RESERVATION_MACHINE.check(event, form, actor)
        deal = ctx.store.get(Deal, form.deal_id)
        if event in ("submit", "approve"):
            _deal_ready(deal)
        if event == "approve":
            _unit_held_by_deal(ctx, deal)
            _check_unit_reservable(ctx, form.unit_id)
        now = ctx.clock.now()
        values: Dict[str, Any] = {"status": rule.target, "updated_at": now}
        if event in ("approve", "reject"):
            values.update(reviewed_by=actor.id, reviewed_at=now)
        if event in ("reject", "cancel"):
            values["rejection_reason"] = reason
        updated = ctx.store.update(ReservationForm, form.id, form.version, **values)
        record_history(ctx, RESERVATION_FORM, form.id, event, actor, {"reason": reason} if reason else None, at=now)
        return updated

    form = _retry(ctx, _apply)
    if event == "approve" and form.unit_id is not None:
        _set_unit_status(ctx, form.unit_id, UNIT_RESERVED, actor, form.id)
    if event == "submit":
        notify(ctx, "reservation.submitted", {"reservationFormId": form.id, "dealId": form.deal_id}, roles=[FINANCIAL_MANAGER])
    elif event in REVIEW_NOTIFICATIONS:
        notify(
            ctx,
            REVIEW_NOTIFICATIONS[event],
            {"reservationFormId": form.id, "dealId": form.deal_id},
            user_ids=[form.created_by],
        )
    return form


def _set_unit_status(ctx, unit_id: int, status: str, actor: Actor, form_id: int) -> Unit:
    def _update() -> Unit:
        unit = _check_unit_reservable(ctx, unit_id)
        now = ctx.clock.now()
        updated = ctx.store.update(Unit, unit.id, unit.version, status=status, available=False, updated_at=now)
        record_history(ctx, UNIT, unit.id, "reserved", actor, {"reservationFormId": form_id}, at=now)
        return updated

    return _retry(ctx, _update)


def record_dp_payment(
    ctx,
    actor: Actor,
    form_id: int,
    *,
    preliminary_amount: Any = None,
    preliminary_date: Optional[date] = None,
    paid_amount: Any = None,
    paid_date: Optional[date] = None,
) -> ReservationForm:
    """Record down-payment receipts on the form and recompute what remains due at signing."""
    if actor.role not in DP_EDITOR_ROLES:
        raise DomainError(ErrorKind.FORBIDDEN_ROLE, "Only finance can record down payments", {"role": actor.role})

    def _record() -> ReservationForm:
        form = ctx.store.get(ReservationForm, form_id)
        if form.status not in OPEN_STATUSES:
            raise DomainError(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot record payments on a {form.status} reservation form",
                {"status": form.status},
            )
        details = dict(form.details or {})
        current = details.get("dp") or {}
        total = to_decimal(current.get("total", "0"), "total")
        preliminary = (
            _non_negative(preliminary_amount, "preliminaryAmount")
            if preliminary_amount is not None
            else to_decimal(current.get("preliminary_amount", "0"), "preliminaryAmount")
        )
        paid = (
            _non_negative(paid_amount, "paidAmount")
            if paid_amount is not None
            else to_decimal(current.get("paid_amount", "0"), "paidAmount")
        )
        prelim_on = preliminary_date or parse_optional_date(current.get("preliminary_date"), "preliminaryDate")
        paid_on = paid_date or parse_optional_date(current.get("paid_date"), "paidDate")
        details["dp"] = dp_breakdown(total, preliminary, prelim_on, paid, paid_on)
        now = ctx.clock.now()
        updated = ctx.store.update(
            ReservationForm,
            form.id,
            form.version,
            details=details,
            preliminary_payment=preliminary,
            updated_at=now,
        )
        record_history(ctx, RESERVATION_FORM, form.id, "dp_payment_recorded", actor, details["dp"], at=now)
        return updated

    return _retry(ctx, _record)
