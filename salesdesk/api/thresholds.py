from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..api.dependencies import get_context
from ..auth.jwt import get_current_actor
from ..core.actors import Actor
from ..schemas.schemas import ThresholdsUpdate
from ..services.context import ServiceContext
from ..services.thresholds import current_thresholds, set_thresholds

router = APIRouter()


@router.get("/")
def get_thresholds(
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> Dict[str, Any]:
    return current_thresholds(ctx).to_dict()


@router.put("/")
def update_thresholds(
    payload: ThresholdsUpdate,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Dict[str, Any]:
    config = set_thresholds(ctx, actor, payload.model_dump(by_alias=True))
    return {"id": config.id, "thresholds": config.bounds, "approvedAt": config.approved_at.isoformat()}
