from typing import List, Optional

from fastapi import APIRouter, Depends

from ..api.dependencies import get_context
from ..auth.jwt import get_current_actor
from ..core.actors import Actor
from ..models.models import Contract
from ..schemas.schemas import ContractCreate, ContractRead, TransitionRequest
from ..services import contracts as contract_service
from ..services.context import ServiceContext

router = APIRouter()


@router.get("/", response_model=List[ContractRead])
def list_contracts(
    status: Optional[str] = None,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> List[Contract]:
    return ctx.store.find(Contract, status=status) if status else ctx.store.find(Contract)


@router.post("/", response_model=ContractRead)
def create_contract(
    payload: ContractCreate,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Contract:
    return contract_service.create_contract(ctx, actor, payload.reservation_form_id)


@router.get("/{contract_id}", response_model=ContractRead)
def get_contract(
    contract_id: int,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> Contract:
    return ctx.store.get(Contract, contract_id)


@router.post("/{contract_id}/submit", response_model=ContractRead)
def submit_contract(
    contract_id: int,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Contract:
    return contract_service.apply_contract_event(ctx, actor, contract_id, "submit")


@router.post("/{contract_id}/approve", response_model=ContractRead)
def approve_contract(
    contract_id: int,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Contract:
    return contract_service.approve_contract(ctx, actor, contract_id)


@router.post("/{contract_id}/reject", response_model=ContractRead)
def reject_contract(
    contract_id: int,
    payload: TransitionRequest = TransitionRequest(),
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Contract:
    return contract_service.reject_contract(ctx, actor, contract_id, payload.reason)


@router.post("/{contract_id}/execute", response_model=ContractRead)
def execute_contract(
    contract_id: int,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> Contract:
    return contract_service.apply_contract_event(ctx, actor, contract_id, "execute")
