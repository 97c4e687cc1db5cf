import logging
from typing import Any, Dict, Optional

from ..constants import (
    ADMIN_ROLES,
    CONTRACT_MANAGER,
    CONTRACT_PERSON,
    DOCUMENT_VERSION,
    TOP_MANAGEMENT_ROLES,
    UNIT_CONTRACTED,
)
from ..core.actors import Actor
from ..core.errors import DomainError, ErrorKind
from ..models.models import Contract, ReservationForm, Unit
from ..utils.retry import retry_on_conflict
from .audit import CONTRACT, UNIT, record_history
from .notifications import notify
from .state_machine import StateMachine, transition

logger = logging.getLogger(__name__)

CONTRACT_MACHINE = StateMachine(
    CONTRACT,
    [
        transition("submit", ["draft"], "pending_cm", [CONTRACT_PERSON, *ADMIN_ROLES]),
        transition("approve_cm", ["pending_cm"], "pending_tm", [CONTRACT_MANAGER]),
        transition("reject_cm", ["pending_cm"], "rejected", [CONTRACT_MANAGER]),
        transition("approve_tm", ["pending_tm"], "approved", TOP_MANAGEMENT_ROLES),
        transition("reject_tm", ["pending_tm"], "rejected", TOP_MANAGEMENT_ROLES),
        transition("execute", ["approved"], "executed", [CONTRACT_PERSON, *ADMIN_ROLES]),
    ],
)

APPROVE_EVENTS = {"pending_cm": "approve_cm", "pending_tm": "approve_tm"}
REJECT_EVENTS = {"pending_cm": "reject_cm", "pending_tm": "reject_tm"}

# (event notification, role recipients, notify creator)
EVENT_NOTIFICATIONS = {
    "submit": ("contract.submitted", [CONTRACT_MANAGER], False),
    "approve_cm": ("contract.advanced", sorted(TOP_MANAGEMENT_ROLES), False),
    "approve_tm": ("contract.approved", [], True),
    "reject_cm": ("contract.rejected", [], True),
    "reject_tm": ("contract.rejected", [], True),
    "execute": ("contract.executed", [CONTRACT_MANAGER], False),
}


def create_contract(ctx, actor: Actor, reservation_form_id: int) -> Contract:
    if actor.role != CONTRACT_PERSON and not actor.is_admin:
        raise DomainError(ErrorKind.FORBIDDEN_ROLE, "Only contract staff create contracts", {"role": actor.role})
    form = ctx.store.get(ReservationForm, reservation_form_id)
    if form.status != "approved":
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            f"Reservation form {form.id} must be approved before drafting a contract",
            {"reservationFormId": form.id, "status": form.status},
        )
    if ctx.store.find(Contract, reservation_form_id=form.id, status=["draft", "pending_cm", "pending_tm", "approved", "executed"]):
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            f"Reservation form {form.id} already has a contract",
            {"reservationFormId": form.id},
        )
    now = ctx.clock.now()
    details = dict(form.details or {})
    details["version"] = DOCUMENT_VERSION
    contract = ctx.store.add(
        Contract(
            id=ctx.ids.next_id("contracts"),
            reservation_form_id=form.id,
            deal_id=form.deal_id,
            status="draft",
            created_by=actor.id,
            approvers=[],
            details=details,
            created_at=now,
            updated_at=now,
        )
    )
    record_history(ctx, CONTRACT, contract.id, "created", actor, {"reservationFormId": form.id}, at=now)
    return contract


def apply_contract_event(
    ctx,
    actor: Actor,
    contract_id: int,
    event: str,
    reason: Optional[str] = None,
) -> Contract:
    def _apply() -> Contract:
        contract = ctx.store.get(Contract, contract_id)
        rule = CONTRACT_MACHINE.check(event, contract, actor)
        now = ctx.clock.now()
        values: Dict[str, Any] = {"status": rule.target, "updated_at": now}
        if event.startswith("approve_"):
            values["approvers"] = list(contract.approvers or []) + [
                {"actorId": actor.id, "role": actor.role, "at": now.isoformat()}
            ]
        elif event.startswith("reject_"):
            values["rejection_reason"] = reason
        elif event == "execute":
            values.update(executed_at=now, executed_by=actor.id)
        updated = ctx.store.update(Contract, contract.id, contract.version, **values)
        record_history(ctx, CONTRACT, contract.id, event, actor, {"reason": reason} if reason else None, at=now)
        return updated

    contract = retry_on_conflict(_apply, attempts=ctx.settings.conflict_retry_attempts, on_conflict=ctx.store.rollback)
    if event == "execute":
        _mark_unit_contracted(ctx, actor, contract)
    name, roles, to_creator = EVENT_NOTIFICATIONS[event]
    notify(
        ctx,
        name,
        {"contractId": contract.id, "status": contract.status},
        roles=roles,
        user_ids=[contract.created_by] if to_creator else [],
    )
    return contract


def approve_contract(ctx, actor: Actor, contract_id: int) -> Contract:
    contract = ctx.store.get(Contract, contract_id)
    event = APPROVE_EVENTS.get(contract.status)
    if event is None:
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            f"Contract {contract.id} is not awaiting approval",
            {"status": contract.status},
        )
    return apply_contract_event(ctx, actor, contract_id, event)


def reject_contract(ctx, actor: Actor, contract_id: int, reason: Optional[str] = None) -> Contract:
    contract = ctx.store.get(Contract, contract_id)
    event = REJECT_EVENTS.get(contract.status)
    if event is None:
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            f"Contract {contract.id} is not awaiting approval",
            {"status": contract.status},
        )
    return apply_contract_event(ctx, actor, contract_id, event, reason)


def _mark_unit_contracted(ctx, actor: Actor, contract: Contract) -> None:
    form = ctx.store.get(ReservationForm, contract.reservation_form_id)
    if form.unit_id is None:
        return

    def _update() -> Unit:
        unit = ctx.store.get(Unit, form.unit_id)
        now = ctx.clock.now()
        updated = ctx.store.update(Unit, unit.id, unit.version, status=UNIT_CONTRACTED, available=False, updated_at=now)
        record_history(ctx, UNIT, unit.id, "contracted", actor, {"contractId": contract.id}, at=now)
        return updated

    retry_on_conflict(_update, attempts=ctx.settings.conflict_retry_attempts, on_conflict=ctx.store.rollback)
    logger.info("Unit %s contracted under contract %s", form.unit_id, contract.id)
