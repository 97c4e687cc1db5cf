from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..constants import (
    ADMIN_ROLES,
    DOCUMENT_VERSION,
    FINANCIAL_MANAGER,
    PROPERTY_CONSULTANT,
    SALES_MANAGER,
    SYSTEM,
    TOP_MANAGEMENT_ROLES,
)
from ..core.actors import SYSTEM_ACTOR, Actor
from ..core.errors import DomainError, ErrorKind
from ..models.models import Deal, Unit
from ..utils.retry import retry_on_conflict
from .acceptance import ACCEPT
from .audit import DEAL, record_history
from .calculation import CalculationRequest, PlanResult, calculate, request_to_dict
from .notifications import notify
from .state_machine import StateMachine, transition
from .thresholds import current_thresholds
from .units import standard_plan_for_unit, unit_info

logger = logging.getLogger(__name__)

DEAL_CREATOR_ROLES = frozenset({PROPERTY_CONSULTANT, SALES_MANAGER, FINANCIAL_MANAGER}) | ADMIN_ROLES
MAX_BUYERS = 4
BUYER_FIELDS = ("buyer_name", "id_or_passport", "nationality", "address", "phone_primary", "phone_secondary", "email")


def plan_schedule(deal: Deal) -> List[Dict[str, Any]]:
    details = deal.details or {}
    return (((details.get("calculator") or {}).get("generatedPlan") or {}).get("schedule")) or []


def _has_plan(deal: Deal) -> Optional[str]:
    return None if plan_schedule(deal) else "Deal has no payment plan"


def _accept_or_override(deal: Deal) -> Optional[str]:
    if deal.decision == ACCEPT or deal.override_status == "tm_approved":
        return None
    return "Deal needs an ACCEPT evaluation or a top-management approved override"


def _edits_addressed(deal: Deal) -> Optional[str]:
    if not deal.edits_requested:
        return "No edits were requested on this deal"
    return _has_plan(deal)


def _override_allowed(deal: Deal) -> Optional[str]:
    if deal.decision == ACCEPT:
        return "Override is only available for rejected evaluations"
    if deal.status == "cancelled":
        return "Deal is cancelled"
    return None


DEAL_MACHINE = StateMachine(
    DEAL,
    [
        transition("submit", ["draft"], "pending_approval", ADMIN_ROLES, owner_allowed=True, guard=_has_plan),
        transition("approve_sm", ["pending_approval"], "approved", [SALES_MANAGER], guard=_accept_or_override),
        transition("reject_sm", ["pending_approval"], "rejected", [SALES_MANAGER]),
        transition("request_edits", ["pending_approval"], "draft", [SALES_MANAGER]),
        transition("edits_addressed", ["draft"], "pending_approval", ADMIN_ROLES, owner_allowed=True, guard=_edits_addressed),
        transition("cancel", ["draft", "pending_approval"], "cancelled", ADMIN_ROLES, owner_allowed=True),
        transition(
            "request_override",
            ["none", "rejected"],
            "requested",
            ADMIN_ROLES,
            owner_allowed=True,
            field="override_status",
            guard=_override_allowed,
        ),
        transition("override_sm_approve", ["requested"], "sm_approved", [SALES_MANAGER], field="override_status"),
        transition("override_fm_approve", ["sm_approved"], "fm_approved", [FINANCIAL_MANAGER], field="override_status"),
        transition("override_tm_approve", ["fm_approved"], "tm_approved", TOP_MANAGEMENT_ROLES, field="override_status"),
        transition("override_sm_reject", ["requested"], "rejected", [SALES_MANAGER], field="override_status"),
        transition("override_fm_reject", ["sm_approved"], "rejected", [FINANCIAL_MANAGER], field="override_status"),
        transition("override_tm_reject", ["fm_approved"], "rejected", TOP_MANAGEMENT_ROLES, field="override_status"),
        transition(
            "auto_approved_on_block",
            ["pending_approval", "approved"],
            "approved",
            [SYSTEM],
            guard=_accept_or_override,
        ),
    ],
)

OVERRIDE_APPROVE_EVENTS = {
    "requested": "override_sm_approve",
    "sm_approved": "override_fm_approve",
    "fm_approved": "override_tm_approve",
}
OVERRIDE_REJECT_EVENTS = {
    "requested": "override_sm_reject",
    "sm_approved": "override_fm_reject",
    "fm_approved": "override_tm_reject",
}

# (event notification, role recipients, notify creator)
EVENT_NOTIFICATIONS = {
    "submit": ("deal.submitted", [SALES_MANAGER], False),
    "edits_addressed": ("deal.submitted", [SALES_MANAGER], False),
    "approve_sm": ("deal.approved", [], True),
    "reject_sm": ("deal.rejected", [], True),
    "request_edits": ("deal.edits_requested", [], True),
    "request_override": ("deal.override_requested", [SALES_MANAGER], False),
    "override_sm_approve": ("deal.override_advanced", [FINANCIAL_MANAGER], True),
    "override_fm_approve": ("deal.override_advanced", sorted(TOP_MANAGEMENT_ROLES), True),
    "override_tm_approve": ("deal.override_approved", [SALES_MANAGER], True),
    "override_sm_reject": ("deal.override_rejected", [], True),
    "override_fm_reject": ("deal.override_rejected", [], True),
    "override_tm_reject": ("deal.override_rejected", [], True),
}


def normalize_client_info(buyers: Optional[Sequence[Dict[str, Any]]]) -> Dict[str, Any]:
    """Flatten up to four buyers into suffixed keys: buyer_name, buyer_name_2, ..."""
    buyers = list(buyers or [])
    if len(buyers) > MAX_BUYERS:
        raise DomainError(
            ErrorKind.VALIDATION,
            f"A deal supports at most {MAX_BUYERS} buyers",
            {"field": "buyers", "count": len(buyers)},
        )
    info: Dict[str, Any] = {"number_of_buyers": len(buyers)}
    for index, buyer in enumerate(buyers, start=1):
        suffix = "" if index == 1 else f"_{index}"
        for key in BUYER_FIELDS:
            info[f"{key}{suffix}"] = buyer.get(key)
    return info


def _calculate_for_deal(ctx, actor: Actor, request: CalculationRequest) -> PlanResult:
    unit_plan = standard_plan_for_unit(ctx, request.unit_id) if request.unit_id else None
    return calculate(
        request,
        thresholds=current_thresholds(ctx),
        today=ctx.clock.today(ctx.settings.timezone),
        unit_plan=unit_plan,
        pv_scale_cap=ctx.settings.pv_scale_cap,
        words=ctx.words,
        generate=True,
        actor_role=actor.role,
    )


def _calculator_snapshot(request: CalculationRequest, result: PlanResult) -> Dict[str, Any]:
    return {"request": request_to_dict(request), "generatedPlan": result.to_dict(generate=True)}


def create_deal(
    ctx,
    actor: Actor,
    request: CalculationRequest,
    *,
    title: Optional[str] = None,
    buyers: Optional[Sequence[Dict[str, Any]]] = None,
) -> Deal:
    if actor.role not in DEAL_CREATOR_ROLES:
        raise DomainError(ErrorKind.FORBIDDEN_ROLE, f"Role {actor.role} cannot create deals", {"role": actor.role})
    client_info = normalize_client_info(buyers)
    unit_details: Dict[str, Any] = {}
    if request.unit_id:
        unit_details = unit_info(ctx.store.get(Unit, request.unit_id))
    result = _calculate_for_deal(ctx, actor, request)
    now = ctx.clock.now()
    deal = ctx.store.add(
        Deal(
            id=ctx.ids.next_id("deals"),
            title=title,
            created_by=actor.id,
            creator_role=actor.role,
            unit_id=request.unit_id,
            status="draft",
            override_status="none",
            decision=result.evaluation.decision,
            needs_override=result.evaluation.needs_override,
            payment_plan_id=ctx.ids.next_id("payment_plans"),
            amount=result.nominal_excl_maintenance.amount,
            details={
                "version": DOCUMENT_VERSION,
                "calculator": _calculator_snapshot(request, result),
                "clientInfo": client_info,
                "unitInfo": unit_details,
            },
            created_at=now,
            updated_at=now,
        )
    )
    record_history(
        ctx,
        DEAL,
        deal.id,
        "created",
        actor,
        {"decision": deal.decision, "paymentPlanId": deal.payment_plan_id},
        at=now,
    )
    logger.info("Deal %s created by %s with decision %s", deal.id, actor.id, deal.decision)
    return deal


def update_snapshot(
    ctx,
    actor: Actor,
    deal_id: int,
    request: CalculationRequest,
    *,
    buyers: Optional[Sequence[Dict[str, Any]]] = None,
) -> Deal:
    """Replace the plan of a draft deal; any earlier override no longer applies."""

    def _update() -> Deal:
        deal = ctx.store.get(Deal, deal_id)
        if actor.id != deal.created_by and not actor.is_admin:
            raise DomainError(ErrorKind.FORBIDDEN_ROLE, "Only the deal creator can change its plan", {"dealId": deal_id})
        if deal.status != "draft":
            raise DomainError(
                ErrorKind.INVALID_TRANSITION,
                "The plan snapshot can only change while the deal is a draft",
                {"status": deal.status},
            )
        if request.unit_id != deal.unit_id and request.unit_id is not None:
            raise DomainError(ErrorKind.VALIDATION, "A deal cannot move to another unit", {"unitId": request.unit_id})
        result = _calculate_for_deal(ctx, actor, request)
        details = dict(deal.details or {})
        details["version"] = DOCUMENT_VERSION
        details["calculator"] = _calculator_snapshot(request, result)
        if buyers is not None:
            details["clientInfo"] = normalize_client_info(buyers)
        now = ctx.clock.now()
        updated = ctx.store.update(
            Deal,
            deal.id,
            deal.version,
            details=details,
            decision=result.evaluation.decision,
            needs_override=result.evaluation.needs_override,
            override_status="none",
            payment_plan_id=ctx.ids.next_id("payment_plans"),
            amount=result.nominal_excl_maintenance.amount,
            updated_at=now,
        )
        record_history(
            ctx,
            DEAL,
            updated.id,
            "snapshot_updated",
            actor,
            {"decision": updated.decision, "paymentPlanId": updated.payment_plan_id},
            at=now,
        )
        return updated

    return retry_on_conflict(_update, attempts=ctx.settings.conflict_retry_attempts, on_conflict=ctx.store.rollback)


def _event_values(event: str, deal: Deal, target: str, actor: Actor, now, notes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    rule = DEAL_MACHINE.transitions[event]
    values: Dict[str, Any] = {rule.field: target, "updated_at": now}
    reason = (notes or {}).get("reason")
    if event == "approve_sm":
        values.update(manager_review_at=now, manager_review_by=actor.id, edits_requested=False)
    elif event == "reject_sm":
        values.update(manager_review_at=now, manager_review_by=actor.id, rejection_reason=reason)
    elif event == "request_edits":
        values.update(edits_requested=True)
    elif event == "edits_addressed":
        values.update(edits_requested=False)
    elif event == "request_override":
        values.update(override_requested_at=now, override_requested_by=actor.id)
    elif event == "override_sm_approve":
        values.update(manager_review_at=now, manager_review_by=actor.id)
    elif event == "override_fm_approve":
        values.update(fm_review_at=now, fm_review_by=actor.id)
    elif event == "override_tm_approve":
        values.update(override_approved_at=now, override_approved_by=actor.id)
        if deal.status in ("draft", "pending_approval"):
            values["status"] = "approved"
    elif event.startswith("override_") and event.endswith("_reject"):
        values.update(rejection_reason=reason)
    return values


def apply_deal_event(ctx, deal_id: int, event: str, actor: Actor, notes: Optional[Dict[str, Any]] = None) -> Deal:
    def _apply() -> Deal:
        deal = ctx.store.get(Deal, deal_id)
        rule = DEAL_MACHINE.check(event, deal, actor, owner_id=deal.created_by)
        target = DEAL_MACHINE.target_for(event, deal)
        now = ctx.clock.now()
        updated = ctx.store.update(Deal, deal.id, deal.version, **_event_values(event, deal, target, actor, now, notes))
        history_notes = dict(notes or {})
        if rule.field != "status":
            history_notes.setdefault("overrideStatus", updated.override_status)
        history_notes.setdefault("status", updated.status)
        record_history(ctx, DEAL, updated.id, event, actor, history_notes, at=now)
        return updated

    deal = retry_on_conflict(_apply, attempts=ctx.settings.conflict_retry_attempts, on_conflict=ctx.store.rollback)
    message = EVENT_NOTIFICATIONS.get(event)
    if message:
        name, roles, to_creator = message
        notify(
            ctx,
            name,
            {"dealId": deal.id, "status": deal.status, "overrideStatus": deal.override_status},
            roles=roles,
            user_ids=[deal.created_by] if to_creator else [],
        )
    return deal


def approve_override(ctx, deal_id: int, actor: Actor, notes: Optional[Dict[str, Any]] = None) -> Deal:
    deal = ctx.store.get(Deal, deal_id)
    event = OVERRIDE_APPROVE_EVENTS.get(deal.override_status)
    if event is None:
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            f"No override approval is pending (override is {deal.override_status})",
            {"overrideStatus": deal.override_status},
        )
    return apply_deal_event(ctx, deal_id, event, actor, notes)


def reject_override(ctx, deal_id: int, actor: Actor, notes: Optional[Dict[str, Any]] = None) -> Deal:
    deal = ctx.store.get(Deal, deal_id)
    event = OVERRIDE_REJECT_EVENTS.get(deal.override_status)
    if event is None:
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            f"No override approval is pending (override is {deal.override_status})",
            {"overrideStatus": deal.override_status},
        )
    return apply_deal_event(ctx, deal_id, event, actor, notes)


def auto_approve_on_block(ctx, deal_id: int, block_id: int) -> Optional[Deal]:
    """Approving a block approves its deal when the plan is acceptable; otherwise nothing happens."""
    deal = ctx.store.get(Deal, deal_id)
    rule = DEAL_MACHINE.transitions["auto_approved_on_block"]
    if deal.status not in rule.sources or _accept_or_override(deal) is not None:
        return None
    return apply_deal_event(ctx, deal_id, "auto_approved_on_block", SYSTEM_ACTOR, {"blockId": block_id})


def deal_requires_override(deal: Deal) -> bool:
    return bool(deal.needs_override) and deal.override_status != "tm_approved"
