from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends

from ..api.dependencies import get_context
from ..auth.jwt import get_current_actor
from ..core.actors import Actor
from ..models.models import Unit, UnitModelPricing
from ..schemas.schemas import (
    BlockRead,
    ModelPricingCreate,
    ModelPricingRead,
    PricingDecision,
    UnitCreate,
    UnitRead,
)
from ..services import unit_blocks as block_service
from ..services import units as unit_service
from ..services.context import ServiceContext

router = APIRouter()


@router.get("/", response_model=List[UnitRead])
def list_units(
    status: Optional[str] = None,
    available: Optional[bool] = None,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> List[Unit]:
    filters: Dict[str, Any] = {}
    if status:
        filters["status"] = status
    if available is not None:
        filters["available"] = available
    return block_service.list_units(ctx, **filters)


@router.post("/", response_model=UnitRead)
def create_unit(
    payload: UnitCreate,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Unit:
    return unit_service.create_unit(ctx, actor, **payload.model_dump())


@router.post("/model-pricing", response_model=ModelPricingRead)
def propose_model_pricing(
    payload: ModelPricingCreate,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> UnitModelPricing:
    return unit_service.propose_model_pricing(ctx, actor, **payload.model_dump())


@router.post("/model-pricing/{pricing_id}/decision", response_model=ModelPricingRead)
def decide_model_pricing(
    pricing_id: int,
    payload: PricingDecision,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> UnitModelPricing:
    return unit_service.decide_model_pricing(ctx, actor, pricing_id, payload.decision)


@router.get("/{unit_id}", response_model=UnitRead)
def get_unit(
    unit_id: int,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> Unit:
    return block_service.read_unit(ctx, unit_id)


@router.get("/{unit_id}/availability")
def unit_availability(
    unit_id: int,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> Dict[str, Any]:
    block = block_service.active_block_for_unit(ctx, unit_id)
    unit = ctx.store.get(Unit, unit_id)
    return {
        "unit": UnitRead.model_validate(unit).model_dump(mode="json", by_alias=True),
        "activeBlock": None if block is None else BlockRead.model_validate(block).model_dump(mode="json", by_alias=True),
    }


@router.post("/{unit_id}/publish", response_model=UnitRead)
def publish_unit(
    unit_id: int,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Unit:
    return unit_service.publish_unit(ctx, actor, unit_id)
