from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..api.dependencies import get_context
from ..auth.jwt import get_current_actor
from ..core.actors import Actor
from ..models.models import ReservationForm
from ..schemas.schemas import DpPaymentUpdate, ReservationCreate, ReservationRead, TransitionRequest
from ..services import reservations as reservation_service
from ..services.context import ServiceContext

router = APIRouter()

RESERVATION_ACTIONS = ("submit", "approve", "reject", "cancel")


@router.get("/", response_model=List[ReservationRead])
def list_reservation_forms(
    status: Optional[str] = None,
    deal_id: Optional[int] = None,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> List[ReservationForm]:
    filters = {}
    if status:
        filters["status"] = status
    if deal_id is not None:
        filters["deal_id"] = deal_id
    return ctx.store.find(ReservationForm, **filters)


@router.post("/", response_model=ReservationRead)
def create_reservation_form(
    payload: ReservationCreate,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> ReservationForm:
    return reservation_service.create_reservation(
        ctx,
        actor,
        payload.deal_id,
        reservation_date=payload.reservation_date,
        preliminary_payment=payload.preliminary_payment,
        preliminary_date=payload.preliminary_date,
        language=payload.language,
    )


@router.get("/{form_id}", response_model=ReservationRead)
def get_reservation_form(
    form_id: int,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> ReservationForm:
    return ctx.store.get(ReservationForm, form_id)


@router.patch("/{form_id}/dp", response_model=ReservationRead)
def record_dp_payment(
    form_id: int,
    payload: DpPaymentUpdate,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> ReservationForm:
    return reservation_service.record_dp_payment(
        ctx,
        actor,
        form_id,
        preliminary_amount=payload.preliminary_amount,
        preliminary_date=payload.preliminary_date,
        paid_amount=payload.paid_amount,
        paid_date=payload.paid_date,
    )


@router.post("/{form_id}/{action}", response_model=ReservationRead)
def transition_reservation_form(
    form_id: int,
    action: str,
    payload: TransitionRequest = TransitionRequest(),
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> ReservationForm:
    if action not in RESERVATION_ACTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown reservation form action {action}")
    return reservation_service.apply_reservation_event(ctx, actor, form_id, action, payload.reason)
