import logging
from datetime import datetime
from typing import Any, List, Optional

from ..core.actors import SYSTEM_ACTOR, Actor
from ..models.models import Contract, Deal, HistoryRecord, ReservationForm, UnitBlock

logger = logging.getLogger(__name__)

DEAL = "deal"
RESERVATION_FORM = "reservation_form"
CONTRACT = "contract"
UNIT_BLOCK = "unit_block"
UNIT = "unit"
THRESHOLDS = "acceptance_thresholds"
MODEL_PRICING = "unit_model_pricing"

RECONCILED_ENTITIES = {
    DEAL: Deal,
    RESERVATION_FORM: ReservationForm,
    CONTRACT: Contract,
    UNIT_BLOCK: UnitBlock,
}


def record_history(
    ctx,
    entity: str,
    entity_id: int,
    action: str,
    actor: Actor,
    notes: Any = None,
    *,
    at: Optional[datetime] = None,
    reconciled: bool = False,
) -> HistoryRecord:
    """Append one history row; ``at`` never goes backwards for the same entity."""
    stamp = at or ctx.clock.now()
    last = ctx.store.last_history(entity, entity_id)
    if last is not None and last.at > stamp:
        stamp = last.at
    entry = HistoryRecord(
        entity=entity,
        entity_id=entity_id,
        action=action,
        actor_id=actor.id,
        actor_role=actor.role,
        at=stamp,
        notes=notes,
        reconciled=reconciled,
    )
    return ctx.store.append_history(entry)


def reconcile_history(ctx) -> List[HistoryRecord]:
    """Fill in a ``reconciled`` row for every record changed after its last history entry."""
    written: List[HistoryRecord] = []
    for entity, model in RECONCILED_ENTITIES.items():
        for record in ctx.store.find(model):
            last = ctx.store.last_history(entity, record.id)
            if last is not None and record.updated_at <= last.at:
                continue
            logger.warning("History missing for %s %s; writing reconciled entry", entity, record.id)
            written.append(
                record_history(
                    ctx,
                    entity,
                    record.id,
                    "reconciled",
                    SYSTEM_ACTOR,
                    {"status": record.status, "version": record.version},
                    at=record.updated_at,
                    reconciled=True,
                )
            )
    return written
