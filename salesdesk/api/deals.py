from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..api.dependencies import get_context
from ..auth.jwt import get_current_actor
from ..constants import PROPERTY_CONSULTANT
from ..core.actors import Actor
from ..models.models import Deal
from ..schemas.schemas import DealCreate, DealRead, DealSnapshotUpdate, TransitionRequest
from ..services import deals as deal_service
from ..services.context import ServiceContext

router = APIRouter()

# URL action -> state machine event
DEAL_ACTIONS = {
    "submit": "submit",
    "approve": "approve_sm",
    "reject": "reject_sm",
    "request-edits": "request_edits",
    "edits-addressed": "edits_addressed",
    "cancel": "cancel",
    "request-override": "request_override",
}


@router.get("/", response_model=List[DealRead])
def list_deals(
    status: Optional[str] = None,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> List[Deal]:
    filters = {}
    if status:
        filters["status"] = status
    if actor.role == PROPERTY_CONSULTANT:
        filters["created_by"] = actor.id
    return ctx.store.find(Deal, **filters)


@router.post("/", response_model=DealRead)
def create_deal(
    payload: DealCreate,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Deal:
    return deal_service.create_deal(
        ctx,
        actor,
        payload.calculation.to_request(),
        title=payload.title,
        buyers=[buyer.model_dump() for buyer in payload.buyers],
    )


@router.get("/{deal_id}", response_model=DealRead)
def get_deal(
    deal_id: int,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> Deal:
    return ctx.store.get(Deal, deal_id)


@router.put("/{deal_id}/snapshot", response_model=DealRead)
def update_snapshot(
    deal_id: int,
    payload: DealSnapshotUpdate,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Deal:
    buyers = None if payload.buyers is None else [buyer.model_dump() for buyer in payload.buyers]
    return deal_service.update_snapshot(ctx, actor, deal_id, payload.calculation.to_request(), buyers=buyers)


@router.post("/{deal_id}/override/approve", response_model=DealRead)
def approve_override(
    deal_id: int,
    payload: TransitionRequest = TransitionRequest(),
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Deal:
    return deal_service.approve_override(ctx, deal_id, actor, payload.history_notes() or None)


@router.post("/{deal_id}/override/reject", response_model=DealRead)
def reject_override(
    deal_id: int,
    payload: TransitionRequest = TransitionRequest(),
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Deal:
    return deal_service.reject_override(ctx, deal_id, actor, payload.history_notes() or None)


@router.post("/{deal_id}/{action}", response_model=DealRead)
def transition_deal(
    deal_id: int,
    action: str,
    payload: TransitionRequest = TransitionRequest(),
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Deal:
    event = DEAL_ACTIONS.get(action)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Unknown deal action {action}")
    return deal_service.apply_deal_event(ctx, deal_id, event, actor, payload.history_notes() or None)
