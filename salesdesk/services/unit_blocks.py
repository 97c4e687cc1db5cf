"""Unit availability: blocks, the unblock chain and expiry."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..constants import (
    ADMIN_ROLES,
    BLOCK_ACTIVE_STATUSES,
    FINANCIAL_MANAGER,
    PROPERTY_CONSULTANT,
    SALES_MANAGER,
    SYSTEM,
    TOP_MANAGEMENT_ROLES,
    UNIT_ADVANCED_STATUSES,
    UNIT_AVAILABLE,
    UNIT_BLOCKED,
    UNIT_INVENTORY_DRAFT,
)
from ..core.actors import SYSTEM_ACTOR, Actor
from ..core.errors import DomainError, ErrorKind
from ..models.models import Deal, Unit, UnitBlock
from ..utils.retry import retry_on_conflict
from .audit import UNIT, UNIT_BLOCK, record_history
from .deals import _accept_or_override, auto_approve_on_block
from .notifications import notify
from .state_machine import StateMachine, transition

logger = logging.getLogger(__name__)

REQUESTER_ROLES = frozenset({PROPERTY_CONSULTANT, SALES_MANAGER}) | ADMIN_ROLES
MAX_BLOCK_DAYS = 90

BLOCK_MACHINE = StateMachine(
    UNIT_BLOCK,
    [
        transition("approve", ["pending"], "approved", [FINANCIAL_MANAGER]),
        transition("reject", ["pending"], "rejected", [FINANCIAL_MANAGER]),
        transition("cancel_pending", ["pending"], "cancelled", [SALES_MANAGER, *ADMIN_ROLES], owner_allowed=True),
        transition("cancel_approved", ["approved"], "cancelled", [FINANCIAL_MANAGER, SALES_MANAGER, *ADMIN_ROLES]),
        transition(
            "request_unblock",
            ["approved"],
            "unblocking_requested",
            [SALES_MANAGER, FINANCIAL_MANAGER, *ADMIN_ROLES],
            owner_allowed=True,
        ),
        transition("extend", ["approved"], None, [FINANCIAL_MANAGER]),
        transition("reject_unblock", ["unblocking_requested"], "approved", [FINANCIAL_MANAGER, *TOP_MANAGEMENT_ROLES]),
        transition("expire", list(BLOCK_ACTIVE_STATUSES), "expired", [SYSTEM]),
    ],
)

# Unblock approvals: FM moves pending_fm to pending_tm; top management finishes from either stage.
UNBLOCK_STAGE_MACHINE = StateMachine(
    UNIT_BLOCK,
    [
        transition("unblock_fm_approve", ["pending_fm"], "pending_tm", [FINANCIAL_MANAGER], field="unblock_stage"),
        transition("unblock_tm_approve", ["pending_fm", "pending_tm"], None, TOP_MANAGEMENT_ROLES, field="unblock_stage"),
    ],
)


def is_active(block: UnitBlock, now: datetime) -> bool:
    return block.status in BLOCK_ACTIVE_STATUSES and block.expires_at is not None and block.expires_at > now


def _retry(ctx, operation):
    return retry_on_conflict(operation, attempts=ctx.settings.conflict_retry_attempts, on_conflict=ctx.store.rollback)


def _restore_unit(ctx, unit_id: int, now: datetime, actor: Actor, block_id: int) -> Unit:
    """Give the unit back unless it moved on to RESERVED/CONTRACTED or another block holds it."""

    def _restore() -> Unit:
        unit = ctx.store.get(Unit, unit_id)
        if unit.status in UNIT_ADVANCED_STATUSES or unit.status != UNIT_BLOCKED:
            return unit
        if ctx.store.active_blocks(unit_id, now):
            return unit
        restored = ctx.store.update(Unit, unit.id, unit.version, status=UNIT_AVAILABLE, available=True, updated_at=now)
        record_history(ctx, UNIT, unit.id, "availability_restored", actor, {"blockId": block_id}, at=now)
        return restored

    return _retry(ctx, _restore)


def _mark_unit_blocked(ctx, unit_id: int, now: datetime, actor: Actor, block_id: int) -> Unit:
    """Mark the unit BLOCKED once the approval is committed; retried on its own."""

    def _mark() -> Unit:
        unit = ctx.store.get(Unit, unit_id)
        if unit.status in UNIT_ADVANCED_STATUSES or unit.status == UNIT_BLOCKED:
            return unit
        blocked = ctx.store.update(Unit, unit.id, unit.version, status=UNIT_BLOCKED, available=False, updated_at=now)
        record_history(ctx, UNIT, unit.id, "blocked", actor, {"blockId": block_id}, at=now)
        return blocked

    return _retry(ctx, _mark)


def _check_unit_open(unit: Unit) -> None:
    if unit.status == UNIT_INVENTORY_DRAFT:
        raise DomainError(ErrorKind.INVALID_TRANSITION, f"Unit {unit.code} is not released for sale", {"unitId": unit.id})
    if unit.status in UNIT_ADVANCED_STATUSES:
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            f"Unit {unit.code} is already {unit.status}",
            {"unitId": unit.id, "unitStatus": unit.status},
        )


def _expire(ctx, block: UnitBlock, now: datetime) -> UnitBlock:
    expired = ctx.store.update(UnitBlock, block.id, block.version, status="expired", unblock_stage=None, updated_at=now)
    record_history(ctx, UNIT_BLOCK, block.id, "expire", SYSTEM_ACTOR, {"expiresAt": block.expires_at.isoformat()}, at=now)
    _restore_unit(ctx, block.unit_id, now, SYSTEM_ACTOR, block.id)
    logger.info("Block %s on unit %s expired", block.id, block.unit_id)
    notify(
        ctx,
        "block.expired",
        {"blockId": block.id, "unitId": block.unit_id},
        roles=[FINANCIAL_MANAGER],
        user_ids=[block.requested_by],
    )
    return expired


def get_block(ctx, block_id: int) -> UnitBlock:
    """Read with lazy expiry so callers never see an overdue block as active."""
    block = ctx.store.get(UnitBlock, block_id)
    now = ctx.clock.now()
    if block.status in BLOCK_ACTIVE_STATUSES and block.expires_at is not None and block.expires_at <= now:
        return _expire(ctx, block, now)
    return block


def active_block_for_unit(ctx, unit_id: int) -> Optional[UnitBlock]:
    now = ctx.clock.now()
    for block in ctx.store.find(UnitBlock, unit_id=unit_id, status=list(BLOCK_ACTIVE_STATUSES)):
        if block.expires_at is not None and block.expires_at <= now:
            _expire(ctx, block, now)
    active = ctx.store.active_blocks(unit_id, now)
    return active[0] if active else None



def read_unit(ctx, unit_id: int) -> Unit:
    active_block_for_unit(ctx, unit_id)
    return ctx.store.get(Unit, unit_id)


def list_units(ctx, **filters: Any) -> List[Unit]:
    """Unit listing after the overdue blocks are expired, so ``available`` is current."""
    expire_due(ctx)
    return ctx.store.find(Unit, **filters)


def request_block(
    ctx,
    actor: Actor,
    unit_id: int,
    deal_id: int,
    duration_days: Optional[int] = None,
    reason: Optional[str] = None,
) -> UnitBlock:
    if actor.role not in REQUESTER_ROLES:
        raise DomainError(ErrorKind.FORBIDDEN_ROLE, f"Role {actor.role} cannot request unit blocks", {"role": actor.role})
    days = ctx.settings.default_block_days if duration_days is None else duration_days
    if not isinstance(days, int) or not 1 <= days <= MAX_BLOCK_DAYS:
        raise DomainError(
            ErrorKind.VALIDATION,
            f"Block duration must be between 1 and {MAX_BLOCK_DAYS} days",
            {"field": "durationDays", "value": days},
        )
    unit = ctx.store.get(Unit, unit_id)
    deal = ctx.store.get(Deal, deal_id)
    _check_unit_open(unit)
    if deal.unit_id is not None and deal.unit_id != unit_id:
        raise DomainError(ErrorKind.VALIDATION, "The deal is for a different unit", {"dealId": deal_id, "unitId": unit_id})
    if deal.status in ("rejected", "cancelled"):
        raise DomainError(ErrorKind.INVALID_TRANSITION, f"Deal {deal_id} is {deal.status}", {"dealId": deal_id})
    failure = _accept_or_override(deal)
    if failure:
        raise DomainError(ErrorKind.INVALID_TRANSITION, failure, {"dealId": deal_id, "decision": deal.decision})
    if active_block_for_unit(ctx, unit_id) is not None:
        raise DomainError(ErrorKind.INVALID_TRANSITION, f"Unit {unit.code} is already blocked", {"unitId": unit_id})
    if ctx.store.find(UnitBlock, unit_id=unit_id, deal_id=deal_id, status="pending"):
        raise DomainError(ErrorKind.INVALID_TRANSITION, "This deal already has a pending block request", {"dealId": deal_id})

    now = ctx.clock.now()
    block = ctx.store.add(
        UnitBlock(
            id=ctx.ids.next_id("unit_blocks"),
            unit_id=unit_id,
            deal_id=deal_id,
            requested_by=actor.id,
            requested_role=actor.role,
            status="pending",
            duration_days=days,
            reason=reason,
            created_at=now,
            updated_at=now,
        )
    )
    record_history(ctx, UNIT_BLOCK, block.id, "request", actor, {"durationDays": days, "reason": reason}, at=now)
    notify(ctx, "block.requested", {"blockId": block.id, "unitId": unit_id, "dealId": deal_id}, roles=[FINANCIAL_MANAGER])
    return block


def approve_block(ctx, actor: Actor, block_id: int) -> UnitBlock:
    def _approve() -> UnitBlock:
        block = get_block(ctx, block_id)
        BLOCK_MACHINE.check("approve", block, actor)
        _check_unit_open(ctx.store.get(Unit, block.unit_id))
        deal = ctx.store.get(Deal, block.deal_id)
        failure = _accept_or_override(deal)
        if failure:
            raise DomainError(ErrorKind.INVALID_TRANSITION, failure, {"dealId": deal.id})
        now = ctx.clock.now()
        expires_at = now + timedelta(days=block.duration_days)
        if not ctx.store.approve_block(
            block.id,
            block.version,
            now,
            approved_by=actor.id,
            approved_at=now,
            expires_at=expires_at,
            updated_at=now,
        ):
            current = ctx.store.get(UnitBlock, block.id)
            if current.version != block.version:
                raise DomainError(ErrorKind.CONFLICT, f"Block {block.id} was modified concurrently", {"blockId": block.id})
            raise DomainError(
                ErrorKind.INVALID_TRANSITION,
                "Another block already holds this unit",
                {"blockId": block.id, "unitId": block.unit_id},
            )
        record_history(ctx, UNIT_BLOCK, block.id, "approve", actor, {"expiresAt": expires_at.isoformat()}, at=now)
        return ctx.store.get(UnitBlock, block.id)

    block = _retry(ctx, _approve)
    _mark_unit_blocked(ctx, block.unit_id, ctx.clock.now(), actor, block.id)
    auto_approve_on_block(ctx, block.deal_id, block.id)
    notify(
        ctx,
        "block.approved",
        {"blockId": block.id, "unitId": block.unit_id, "expiresAt": block.expires_at.isoformat()},
        user_ids=[block.requested_by],
    )
    return block


def _simple_transition(
    ctx,
    actor: Actor,
    block_id: int,
    event: str,
    notes: Optional[Dict[str, Any]] = None,
    **extra: Any,
) -> UnitBlock:
    def _apply() -> UnitBlock:
        block = get_block(ctx, block_id)
        rule = BLOCK_MACHINE.check(event, block, actor, owner_id=block.requested_by)
        now = ctx.clock.now()
        values = {"updated_at": now, **extra}
        if rule.target is not None:
            values["status"] = rule.target
        updated = ctx.store.update(UnitBlock, block.id, block.version, **values)
        record_history(ctx, UNIT_BLOCK, block.id, event, actor, notes, at=now)
        return updated

    return _retry(ctx, _apply)


def reject_block(ctx, actor: Actor, block_id: int, reason: Optional[str] = None) -> UnitBlock:
    block = _simple_transition(ctx, actor, block_id, "reject", {"reason": reason}, decision_reason=reason)
    _restore_unit(ctx, block.unit_id, ctx.clock.now(), actor, block.id)
    notify(ctx, "block.rejected", {"blockId": block.id, "reason": reason}, user_ids=[block.requested_by])
    return block


def cancel_block(ctx, actor: Actor, block_id: int, reason: Optional[str] = None) -> UnitBlock:
    block = get_block(ctx, block_id)
    event = "cancel_pending" if block.status == "pending" else "cancel_approved"
    block = _simple_transition(ctx, actor, block_id, event, {"reason": reason}, decision_reason=reason)
    _restore_unit(ctx, block.unit_id, ctx.clock.now(), actor, block.id)
    notify(ctx, "block.cancelled", {"blockId": block.id, "unitId": block.unit_id}, roles=[FINANCIAL_MANAGER])
    return block


def extend_block(ctx, actor: Actor, block_id: int, additional_days: int, reason: Optional[str] = None) -> UnitBlock:
    if not isinstance(additional_days, int) or not 1 <= additional_days <= MAX_BLOCK_DAYS:
        raise DomainError(
            ErrorKind.VALIDATION,
            f"Extension must be between 1 and {MAX_BLOCK_DAYS} days",
            {"field": "additionalDays", "value": additional_days},
        )

    def _apply() -> UnitBlock:
        block = get_block(ctx, block_id)
        BLOCK_MACHINE.check("extend", block, actor)
        now = ctx.clock.now()
        expires_at = block.expires_at + timedelta(days=additional_days)
        updated = ctx.store.update(
            UnitBlock,
            block.id,
            block.version,
            expires_at=expires_at,
            duration_days=block.duration_days + additional_days,
            extension_count=block.extension_count + 1,
            updated_at=now,
        )
        record_history(
            ctx,
            UNIT_BLOCK,
            block.id,
            "extend",
            actor,
            {"additionalDays": additional_days, "expiresAt": expires_at.isoformat(), "reason": reason},
            at=now,
        )
        return updated

    block = _retry(ctx, _apply)
    notify(ctx, "block.extended", {"blockId": block.id, "expiresAt": block.expires_at.isoformat()}, user_ids=[block.requested_by])
    return block


def request_unblock(ctx, actor: Actor, unit_id: int, reason: Optional[str] = None) -> UnitBlock:
    block = active_block_for_unit(ctx, unit_id)
    if block is None:
        raise DomainError(ErrorKind.NOT_FOUND, f"Unit {unit_id} has no active block", {"unitId": unit_id})
    block = _simple_transition(
        ctx,
        actor,
        block.id,
        "request_unblock",
        {"reason": reason},
        unblock_stage="pending_fm",
        unblock_reason=reason,
        unblock_requested_by=actor.id,
    )
    notify(ctx, "block.unblock_requested", {"blockId": block.id, "unitId": unit_id}, roles=[FINANCIAL_MANAGER])
    return block


def approve_unblock(ctx, actor: Actor, block_id: int) -> UnitBlock:
    def _apply() -> UnitBlock:
        block = get_block(ctx, block_id)
        if block.status != "unblocking_requested":
            raise DomainError(
                ErrorKind.INVALID_TRANSITION,
                f"Block {block.id} has no pending unblock request",
                {"status": block.status},
            )
        event = "unblock_tm_approve" if actor.is_top_management else "unblock_fm_approve"
        rule = UNBLOCK_STAGE_MACHINE.check(event, block, actor)
        now = ctx.clock.now()
        if rule.target is not None:
            values = {"unblock_stage": rule.target, "updated_at": now}
        else:
            values = {"status": "unblocked", "unblock_stage": None, "updated_at": now}
        updated = ctx.store.update(UnitBlock, block.id, block.version, **values)
        record_history(ctx, UNIT_BLOCK, block.id, event, actor, {"stage": block.unblock_stage}, at=now)
        return updated

    block = _retry(ctx, _apply)
    if block.status == "unblocked":
        _restore_unit(ctx, block.unit_id, ctx.clock.now(), actor, block.id)
        notify(ctx, "block.unblocked", {"blockId": block.id, "unitId": block.unit_id}, user_ids=[block.requested_by])
    else:
        notify(ctx, "block.unblock_requested", {"blockId": block.id, "stage": block.unblock_stage}, roles=sorted(TOP_MANAGEMENT_ROLES))
    return block


def reject_unblock(ctx, actor: Actor, block_id: int, reason: Optional[str] = None) -> UnitBlock:
    return _simple_transition(ctx, actor, block_id, "reject_unblock", {"reason": reason}, unblock_stage=None)


def expire_due(ctx) -> List[UnitBlock]:
    """Background sweep; returns the blocks it expired."""
    now = ctx.clock.now()
    expired = []

    def _expire_if_due(block_id: int) -> Optional[UnitBlock]:
        block = ctx.store.get(UnitBlock, block_id)
        if block.status not in BLOCK_ACTIVE_STATUSES or block.expires_at > now:
            return None
        return _expire(ctx, block, now)

    for due in ctx.store.due_blocks(now):
        block = _retry(ctx, lambda block_id=due.id: _expire_if_due(block_id))
        if block is not None:
            expired.append(block)
    if expired:
        logger.info("Expired %s unit block(s)", len(expired))
    return expired
