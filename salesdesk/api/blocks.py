from typing import List, Optional

from fastapi import APIRouter, Depends

from ..api.dependencies import get_context
from ..auth.jwt import get_current_actor, require_roles
from ..constants import ADMIN_ROLES
from ..core.actors import Actor
from ..models.models import UnitBlock
from ..schemas.schemas import BlockCreate, BlockExtend, BlockRead, TransitionRequest, UnblockCreate
from ..services import unit_blocks as block_service
from ..services.context import ServiceContext

router = APIRouter()


@router.get("/", response_model=List[BlockRead])
def list_blocks(
    unit_id: Optional[int] = None,
    status: Optional[str] = None,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> List[UnitBlock]:
    filters = {}
    if unit_id is not None:
        filters["unit_id"] = unit_id
    if status:
        filters["status"] = status
    return ctx.store.find(UnitBlock, **filters)


@router.post("/", response_model=BlockRead)
def request_block(
    payload: BlockCreate,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> UnitBlock:
    return block_service.request_block(
        ctx, actor, payload.unit_id, payload.deal_id, duration_days=payload.duration_days, reason=payload.reason
    )


@router.post("/unblock", response_model=BlockRead)
def request_unblock(
    payload: UnblockCreate,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> UnitBlock:
    return block_service.request_unblock(ctx, actor, payload.unit_id, payload.reason)


@router.post("/expire-due", response_model=List[BlockRead])
def expire_due(
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(require_roles(*ADMIN_ROLES)),
) -> List[UnitBlock]:
    return block_service.expire_due(ctx)


@router.get("/{block_id}", response_model=BlockRead)
def get_block(
    block_id: int,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> UnitBlock:
    return block_service.get_block(ctx, block_id)


@router.post("/{block_id}/approve", response_model=BlockRead)
def approve_block(
    block_id: int,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> UnitBlock:
    return block_service.approve_block(ctx, actor, block_id)


@router.post("/{block_id}/reject", response_model=BlockRead)
def reject_block(
    block_id: int,
    payload: TransitionRequest = TransitionRequest(),
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> UnitBlock:
    return block_service.reject_block(ctx, actor, block_id, payload.reason)


@router.post("/{block_id}/cancel", response_model=BlockRead)
def cancel_block(
    block_id: int,
    payload: TransitionRequest = TransitionRequest(),
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> UnitBlock:
    return block_service.cancel_block(ctx, actor, block_id, payload.reason)


@router.post("/{block_id}/extend", response_model=BlockRead)
def extend_block(
    block_id: int,
    payload: BlockExtend,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> UnitBlock:
    return block_service.extend_block(ctx, actor, block_id, payload.additional_days, payload.reason)


@router.post("/{block_id}/unblock/approve", response_model=BlockRead)
def approve_unblock(
    block_id: int,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> UnitBlock:
    return block_service.approve_unblock(ctx, actor, block_id)


@router.post("/{block_id}/unblock/reject", response_model=BlockRead)
def reject_unblock(
    block_id: int,
    payload: TransitionRequest = TransitionRequest(),
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> UnitBlock:
    return block_service.reject_unblock(ctx, actor, block_id, payload.reason)
