from typing import List

from fastapi import APIRouter, Depends

from ..api.dependencies import get_context
from ..auth.jwt import get_current_actor
from ..core.actors import Actor
from ..models.models import HistoryRecord
from ..schemas.schemas import HistoryRead
from ..services.context import ServiceContext

router = APIRouter()


@router.get("/{entity}/{entity_id}", response_model=List[HistoryRead])
def entity_history(
    entity: str,
    entity_id: int,
    ctx: ServiceContext = Depends(get_context),
    _: Actor = Depends(get_current_actor),
) -> List[HistoryRecord]:
    return list(ctx.store.history(entity, entity_id))
