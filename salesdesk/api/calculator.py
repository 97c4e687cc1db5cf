from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..api.dependencies import get_context
from ..auth.jwt import get_current_actor
from ..core.actors import Actor
from ..schemas.schemas import CalculateRequest
from ..services.calculation import calculate
from ..services.context import ServiceContext
from ..services.thresholds import current_thresholds
from ..services.units import standard_plan_for_unit

router = APIRouter()


def _run(ctx: ServiceContext, actor: Actor, payload: CalculateRequest, generate: bool) -> Dict[str, Any]:
    request = payload.to_request()
    unit_plan = standard_plan_for_unit(ctx, request.unit_id) if request.unit_id else None
    result = calculate(
        request,
        thresholds=current_thresholds(ctx),
        today=ctx.clock.today(ctx.settings.timezone),
        unit_plan=unit_plan,
        pv_scale_cap=ctx.settings.pv_scale_cap,
        words=ctx.words,
        generate=generate,
        actor_role=actor.role,
    )
    return result.to_dict(generate=generate)


@router.post("/calculate")
def calculate_plan(
    payload: CalculateRequest,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Dict[str, Any]:
    return _run(ctx, actor, payload, generate=False)


@router.post("/generate-plan")
def generate_plan(
    payload: CalculateRequest,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Dict[str, Any]:
    return _run(ctx, actor, payload, generate=True)
